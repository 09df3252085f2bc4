"""
PDF Dictionary Keys and Name Constants

Names are given without the leading slash, the way pdfminer.six resolves them.
"""

# Resource Dictionary Keys
KEY_EXT_GSTATE = "ExtGState"
KEY_COLOR_SPACE = "ColorSpace"
KEY_COLOR_SPACE_ABBR = "CS"

# Image Properties
KEY_WIDTH = "Width"
KEY_WIDTH_ABBR = "W"
KEY_HEIGHT = "Height"
KEY_HEIGHT_ABBR = "H"
KEY_BITS_PER_COMPONENT = "BitsPerComponent"
KEY_BITS_PER_COMPONENT_ABBR = "BPC"
KEY_DECODE = "Decode"
KEY_DECODE_ABBR = "D"
KEY_IMAGE_MASK = "ImageMask"
KEY_IMAGE_MASK_ABBR = "IM"
KEY_N = "N"

# Graphics State Parameter Keys (ExtGState)
KEY_FILL_OPACITY = "ca"          # Non-stroking alpha constant
KEY_STROKE_OPACITY = "CA"        # Stroking alpha constant
KEY_LINE_WIDTH = "LW"

# Font Descriptor Keys
KEY_FONT_FILE = "FontFile"       # Type 1
KEY_FONT_FILE2 = "FontFile2"     # TrueType
KEY_FONT_FILE3 = "FontFile3"     # CFF / OpenType, see Subtype
KEY_SUBTYPE = "Subtype"
FONT_FILE_KEYS = (KEY_FONT_FILE, KEY_FONT_FILE2, KEY_FONT_FILE3)
SUBTYPE_OPENTYPE = "OpenType"

# Color Space Names
CS_DEVICE_GRAY = "DeviceGray"
CS_DEVICE_RGB = "DeviceRGB"
CS_DEVICE_CMYK = "DeviceCMYK"
CS_CAL_GRAY = "CalGray"
CS_CAL_RGB = "CalRGB"
CS_LAB = "Lab"
CS_ICC_BASED = "ICCBased"
CS_INDEXED = "Indexed"
CS_SEPARATION = "Separation"
CS_DEVICE_N = "DeviceN"

COLOR_SPACE_COMPONENTS = {
    CS_DEVICE_GRAY: 1, "G": 1, CS_CAL_GRAY: 1,
    CS_DEVICE_RGB: 3, "RGB": 3, CS_CAL_RGB: 3, CS_LAB: 3,
    CS_DEVICE_CMYK: 4, "CMYK": 4,
    CS_INDEXED: 1, "I": 1,
    CS_SEPARATION: 1,
}

# Image Filters
FILTER_DCT = ("DCTDecode", "DCT")

# Text render modes (PDF 32000-1:2008, 9.3.6)
RENDER_FILL = 0
RENDER_STROKE = 1
RENDER_FILL_STROKE = 2
RENDER_INVISIBLE = 3
RENDER_FILL_CLIP = 4
RENDER_STROKE_CLIP = 5
RENDER_FILL_STROKE_CLIP = 6
RENDER_CLIP = 7

STROKE_RENDER_MODES = frozenset({RENDER_STROKE, RENDER_FILL_STROKE, RENDER_STROKE_CLIP, RENDER_FILL_STROKE_CLIP})
NO_FILL_RENDER_MODES = frozenset({RENDER_STROKE, RENDER_INVISIBLE, RENDER_STROKE_CLIP, RENDER_CLIP})

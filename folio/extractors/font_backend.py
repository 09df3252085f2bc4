"""
pdfminer.six font backend.

Turns pdfminer font objects into FontRef values for the core and serves the
font registry: glyph code to Unicode maps and embedded font programs.
TrueType (FontFile2) and OpenType (FontFile3/OpenType) programs are
repackaged as web fonts with fontTools; bare CFF and Type1 programs are not
converted and their text falls back to the CSS family.
"""

import logging
from io import BytesIO
from typing import Any, Dict, Optional

from fontTools.ttLib import TTFont
from pdfminer.pdffont import PDFFont, PDFType3Font
from pdfminer.psparser import PSLiteral, literal_name
from pdfminer.pdftypes import resolve1, stream_value

from folio.constants.pdf_keys import FONT_FILE_KEYS, KEY_FONT_FILE2, KEY_FONT_FILE3, KEY_SUBTYPE, SUBTYPE_OPENTYPE
from folio.processors.events import FontRef
from folio.processors.font_registry import FontProgram

logger = logging.getLogger(__name__)

DEFAULT_FONT_ASCENT = 0.8
DEFAULT_FONT_DESCENT = -0.2
INVALID_METRIC_THRESHOLD = 0.01
CAPHEIGHT_TO_ASCENT_RATIO = 1.1
CAPHEIGHT_TO_DESCENT_RATIO = -0.3
FONT_UNITS = 1000.0

# fontTools flavor per output format
FONT_FLAVORS = {
    'woff2': 'woff2',
    'woff': 'woff',
    'ttf': None,
}


def _font_name(font: PDFFont) -> str:
    name = getattr(font, 'basefont', None) or getattr(font, 'fontname', None) or ''
    if isinstance(name, PSLiteral):
        name = literal_name(name)
    elif isinstance(name, bytes):
        name = name.decode('latin-1', errors='replace')
    return str(name)


def _descriptor(font: PDFFont) -> Dict[str, Any]:
    descriptor = getattr(font, 'descriptor', None)
    return descriptor if isinstance(descriptor, dict) else {}


def _metrics(font: PDFFont) -> tuple:
    """Ascent and descent in units of the font size, with descriptor fallbacks."""
    try:
        ascent = float(font.get_ascent())
        descent = float(font.get_descent())
    except (TypeError, ValueError, AttributeError):
        ascent, descent = 0.0, 0.0

    ascent_invalid = abs(ascent) < INVALID_METRIC_THRESHOLD
    descent_invalid = abs(descent) < INVALID_METRIC_THRESHOLD
    if ascent_invalid or descent_invalid:
        capheight = resolve1(_descriptor(font).get('CapHeight'))
        if isinstance(capheight, (int, float)) and capheight > 0:
            normalized = capheight / FONT_UNITS
            if ascent_invalid:
                ascent = normalized * CAPHEIGHT_TO_ASCENT_RATIO
            if descent_invalid:
                descent = normalized * CAPHEIGHT_TO_DESCENT_RATIO
        else:
            if ascent_invalid:
                ascent = DEFAULT_FONT_ASCENT
            if descent_invalid:
                descent = DEFAULT_FONT_DESCENT
    if descent > 0:
        descent = -descent
    return ascent, descent


class PdfminerFontBackend:
    """
    Registry of the pdfminer fonts seen during a conversion.

    FontRef keys are derived from the pdfminer object identity; the backend
    keeps a reference to every registered font so keys are never recycled.
    """

    def __init__(self):
        self._fonts: Dict[str, PDFFont] = {}
        self._refs: Dict[str, FontRef] = {}

    def __len__(self) -> int:
        return len(self._fonts)

    def register(self, font: PDFFont) -> FontRef:
        key = f"pdfminer-{id(font)}"
        ref = self._refs.get(key)
        if ref is not None:
            return ref

        descriptor = _descriptor(font)
        ascent, descent = _metrics(font)
        ref = FontRef(
            key=key,
            name=_font_name(font),
            ascent=ascent,
            descent=descent,
            is_type3=isinstance(font, PDFType3Font),
            is_embedded=any(k in descriptor for k in FONT_FILE_KEYS),
            is_vertical=bool(font.is_vertical()),
        )
        self._fonts[key] = font
        self._refs[key] = ref
        logger.debug(f"Registered font {ref.name or key} (embedded={ref.is_embedded}, type3={ref.is_type3})")
        return ref

    def pdf_font(self, ref: FontRef) -> Optional[PDFFont]:
        return self._fonts.get(ref.key)

    def glyph_map(self, ref: FontRef) -> Dict[int, str]:
        """Glyph code to text from the simple-font encoding and the ToUnicode CMap."""
        font = self._fonts.get(ref.key)
        if font is None:
            return {}
        glyphs: Dict[int, str] = {}
        encoding = getattr(font, 'cid2unicode', None)
        if isinstance(encoding, dict):
            glyphs.update(encoding)
        unicode_map = getattr(font, 'unicode_map', None)
        if unicode_map is not None:
            glyphs.update(getattr(unicode_map, 'cid2unichr', {}) or {})
        return {int(code): text for code, text in glyphs.items() if isinstance(text, str) and text}

    def _font_file(self, font: PDFFont) -> Optional[bytes]:
        descriptor = _descriptor(font)
        if KEY_FONT_FILE2 in descriptor:
            return stream_value(descriptor[KEY_FONT_FILE2]).get_data()
        if KEY_FONT_FILE3 in descriptor:
            stream = stream_value(descriptor[KEY_FONT_FILE3])
            subtype = resolve1(stream.get(KEY_SUBTYPE))
            if isinstance(subtype, PSLiteral):
                subtype = literal_name(subtype)
            if subtype == SUBTYPE_OPENTYPE:
                return stream.get_data()
            logger.debug(f"Font {_font_name(font)} has a {subtype} program, not converted")
        return None

    def extract_font(self, ref: FontRef, target_format: str) -> Optional[FontProgram]:
        """
        Convert the embedded TrueType/OpenType program to ``target_format``.

        Returns None when the font has no convertible program or fontTools
        cannot read it.
        """
        font = self._fonts.get(ref.key)
        if font is None:
            return None
        if target_format not in FONT_FLAVORS:
            logger.warning(f"Unsupported font format '{target_format}', using woff2")
            target_format = 'woff2'

        try:
            data = self._font_file(font)
        except Exception as e:
            logger.warning(f"Could not read font program of {ref.name}: {e}")
            return None
        if not data:
            return None

        try:
            ttfont = TTFont(BytesIO(data), lazy=False)
            # OpenType CFF outlines cannot be stored as .ttf
            if target_format == 'ttf' and 'glyf' not in ttfont:
                target_format = 'woff'
            ttfont.flavor = FONT_FLAVORS[target_format]
            buf = BytesIO()
            ttfont.save(buf)
        except Exception as e:
            logger.warning(f"Failed to convert font {ref.name} to {target_format}: {e}")
            return None

        logger.debug(f"Converted font {ref.name}: {len(data)} -> {len(buf.getvalue())} bytes ({target_format})")
        return FontProgram(data=buf.getvalue(), format=target_format)

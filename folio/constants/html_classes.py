"""
HTML/CSS Class Names and Base Stylesheet

Class prefixes are followed by a StyleId, e.g. ``fs3`` or ``m0``.
"""

# Style value classes (one rule per StyleId)
CLASS_FONT_SIZE = "fs"
CLASS_FILL_COLOR = "fc"
CLASS_STROKE_COLOR = "sc"
CLASS_LETTER_SPACE = "ls"
CLASS_WORD_SPACE = "ws"
CLASS_TRANSFORM = "m"
CLASS_WHITESPACE = "_"
CLASS_LEFT = "x"
CLASS_BOTTOM = "y"
CLASS_FONT_FAMILY = "ff"

# Structural classes
CLASS_PAGE = "pf"
CLASS_PAGE_CONTENT = "pc"
CLASS_BACKGROUND = "bi"
CLASS_LINE = "t"
CLASS_CLIP = "c"
CLASS_OFFSET = "_"
CLASS_WARNING = "w"

PAGE_ID_PREFIX = "pf"

BASE_CSS = """\
.pf{position:relative;overflow:hidden;margin:0 auto;background-color:white;}
.pc{position:absolute;left:0;top:0;width:100%;height:100%;overflow:hidden;}
.bi{position:absolute;left:0;top:0;width:100%;height:100%;border:0;margin:0;user-select:none;}
.c{position:absolute;left:0;top:0;width:100%;height:100%;}
.t{position:absolute;white-space:pre;font-size:1px;transform-origin:0 100%;-ms-transform-origin:0 100%;-webkit-transform-origin:0 100%;unicode-bidi:bidi-override;-moz-font-feature-settings:"liga" 0;}
._{display:inline-block;}
.w{outline:1px dashed red;}
"""

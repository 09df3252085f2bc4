"""
Font name utilities
Maps PDF font names to CSS fallback families, weights and styles for @font-face rules
"""

import re
from functools import lru_cache
from typing import Tuple

SUBSET_PREFIX = re.compile(r'^[A-Z]{6}\+')

# Checked in order, first substring match wins
FALLBACK_FAMILIES = (
    ('timesnewroman', 'Times New Roman, Times, serif'),
    ('times', 'Times New Roman, Times, serif'),
    ('helvetica', 'Helvetica, Arial, sans-serif'),
    ('arial', 'Arial, Helvetica, sans-serif'),
    ('liberationsans', 'Liberation Sans, Arial, sans-serif'),
    ('liberationserif', 'Liberation Serif, Times, serif'),
    ('liberationmono', 'Liberation Mono, Courier, monospace'),
    ('dejavusansmono', 'DejaVu Sans Mono, Courier, monospace'),
    ('dejavusans', 'DejaVu Sans, Arial, sans-serif'),
    ('dejavuserif', 'DejaVu Serif, Times, serif'),
    ('couriernew', 'Courier New, Courier, monospace'),
    ('courier', 'Courier New, Courier, monospace'),
    ('calibri', 'Calibri, sans-serif'),
    ('verdana', 'Verdana, sans-serif'),
    ('georgia', 'Georgia, serif'),
    ('symbol', 'Symbol, serif'),
    ('zapfdingbats', 'Zapf Dingbats, serif'),
)


def strip_subset_prefix(font_name: str) -> str:
    """'ABCDEF+Helvetica' -> 'Helvetica'"""
    return SUBSET_PREFIX.sub('', font_name or '')


@lru_cache(maxsize=128)
def map_pdf_font_to_css(font_name: str) -> str:
    """
    Map a PDF font name to a CSS fallback font-family list

    Used behind the embedded font program, or alone when the font is not embedded.
    """
    if not font_name:
        return "serif"

    base_name = strip_subset_prefix(font_name.split(',')[0].strip().strip('\'"'))
    base_name = re.sub(r'-(Bold|Italic|BoldItalic|Regular|Normal|MT|PS)$', '', base_name, flags=re.IGNORECASE)
    base_name = re.sub(r',?(Bold|Italic|BoldItalic|Regular|Normal)$', '', base_name, flags=re.IGNORECASE)

    clean_name = base_name.lower().replace('-', '').replace('_', '').replace(' ', '')

    for pdf_font, css_font in FALLBACK_FAMILIES:
        if pdf_font in clean_name:
            return css_font

    if clean_name in ('serif', 'sansserif', 'monospace'):
        return 'sans-serif' if clean_name == 'sansserif' else clean_name

    return "serif"


@lru_cache(maxsize=128)
def get_font_weight_and_style(font_name: str) -> Tuple[str, str]:
    """
    Extract CSS font weight and style from a font name
    """
    font_weight = "normal"
    font_style = "normal"

    if not font_name:
        return font_weight, font_style

    font_name_lower = font_name.lower()

    if 'semibold' in font_name_lower or 'demibold' in font_name_lower:
        font_weight = "600"
    elif any(bold_indicator in font_name_lower for bold_indicator in ['bold', 'black', 'heavy']):
        font_weight = "bold"
    elif any(light_indicator in font_name_lower for light_indicator in ['light', 'thin', 'hairline']):
        font_weight = "300"
    elif 'medium' in font_name_lower:
        font_weight = "500"

    if any(italic_indicator in font_name_lower for italic_indicator in ['italic', 'oblique', 'slant']):
        font_style = "italic"

    return font_weight, font_style

"""Glyph text cleanup helpers."""

import unicodedata

# Alphabetic presentation forms that decompose to plain Latin letters
LIGATURE_RANGE = range(0xFB00, 0xFB07)

REPLACEMENT_CHARACTER = "\ufffd"


def decompose_ligatures(text: str) -> str:
    """Expand ligature code points such as U+FB01 into their letters."""
    if not any(ord(ch) in LIGATURE_RANGE for ch in text):
        return text
    return "".join(
        unicodedata.normalize("NFKC", ch) if ord(ch) in LIGATURE_RANGE else ch
        for ch in text
    )


def is_illegal_unicode(code_point: int) -> bool:
    """
    Code points browsers drop or reinterpret when they appear in markup.

    C0/C1 controls (other than tab, newline and carriage return), bidi
    overrides, zero-width joiners, the BOM and noncharacters all qualify.
    """
    if code_point < 0x20:
        return code_point not in (0x09, 0x0A, 0x0D)
    if 0x7F <= code_point <= 0x9F:
        return True
    if code_point in (0x200B, 0x200C, 0x200D, 0x200E, 0x200F, 0xFEFF):
        return True
    if 0x202A <= code_point <= 0x202E:
        return True
    if 0xFDD0 <= code_point <= 0xFDEF or (code_point & 0xFFFE) == 0xFFFE:
        return True
    return False


def has_illegal_unicode(text: str) -> bool:
    return any(is_illegal_unicode(ord(ch)) for ch in text)


def glyph_text_for_code(code: int) -> str:
    """Best-effort text for a glyph the font backend could not map."""
    if 0 <= code <= 0x10FFFF and not is_illegal_unicode(code) and not 0xD800 <= code <= 0xDFFF:
        return chr(code)
    return REPLACEMENT_CHARACTER

"""
Document-scoped font ids and @font-face output.

FontRegistry assigns each distinct font a small id the first time a glyph
uses it (class ``ff{id}``). Font programs are requested from a font backend
lazily and only written out at ``emit`` time.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from folio.constants.html_classes import CLASS_FONT_FAMILY
from folio.models.render_types import FontAsset
from folio.processors.events import FontRef
from folio.utils.assets import AssetSink, reference_asset
from folio.utils.font_mapping import get_font_weight_and_style, map_pdf_font_to_css, strip_subset_prefix
from folio.utils.pdf_transforms import format_number
from folio.utils.validation import MemoryLimitError

logger = logging.getLogger(__name__)

CSS_FONT_FORMATS = {
    'woff2': 'woff2',
    'woff': 'woff',
    'ttf': 'truetype',
    'otf': 'opentype',
}


@dataclass
class FontProgram:
    """Font binary as produced by the font backend."""
    data: bytes = field(repr=False)
    format: str  # file extension: woff2, woff, ttf, otf


class FontBackend(Protocol):
    def extract_font(self, font: FontRef, target_format: str) -> Optional[FontProgram]:
        """Embedded font program converted to ``target_format``, None when unavailable."""
        ...

    def glyph_map(self, font: FontRef) -> Dict[int, str]:
        """Glyph code to Unicode text."""
        ...


@dataclass
class _Entry:
    font_id: int
    font: FontRef
    glyphs: Dict[int, str]
    program: Optional[FontProgram] = None
    extracted: bool = False
    reference: Optional[str] = None  # asset name when written as a file


class FontRegistry:
    """
    Font id allocation shared by every page of one document.

    Example:
        >>> fonts = FontRegistry(backend)
        >>> fonts.install(font_ref)
        0
        >>> fonts.class_name(0)
        'ff0'
    """

    def __init__(self, backend: Optional[FontBackend] = None, font_format: str = "woff2"):
        self.backend = backend
        self.font_format = font_format
        self._entries: List[_Entry] = []
        self._by_key: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def install(self, font: FontRef) -> int:
        """Return the font's id, allocating one on first use."""
        font_id = self._by_key.get(font.key)
        if font_id is not None:
            return font_id

        font_id = len(self._entries)
        glyphs: Dict[int, str] = {}
        if self.backend is not None:
            glyphs = self.backend.glyph_map(font)
        self._entries.append(_Entry(font_id, font, glyphs))
        self._by_key[font.key] = font_id
        logger.debug(f"Installed font {font.name or font.key} as {self.class_name(font_id)}")
        return font_id

    def lookup(self, font: FontRef) -> Optional[int]:
        return self._by_key.get(font.key)

    def font(self, font_id: int) -> FontRef:
        return self._entries[font_id].font

    def class_name(self, font_id: int) -> str:
        return f"{CLASS_FONT_FAMILY}{font_id}"

    def glyph_text(self, font: FontRef, code: int) -> Optional[str]:
        """Unicode text for a glyph code from the backend's glyph map."""
        font_id = self._by_key.get(font.key)
        if font_id is None:
            return None
        return self._entries[font_id].glyphs.get(code)

    def _program(self, entry: _Entry) -> Optional[FontProgram]:
        if not entry.extracted:
            entry.extracted = True
            if self.backend is not None and entry.font.is_embedded and not entry.font.is_type3:
                entry.program = self.backend.extract_font(entry.font, self.font_format)
                if entry.program is None:
                    logger.info(f"Font {entry.font.name} could not be extracted, using fallback family")
        return entry.program

    def _rule(self, entry: _Entry, reference: Optional[str]) -> str:
        name = self.class_name(entry.font_id)
        fallback = map_pdf_font_to_css(entry.font.name)
        weight, style = get_font_weight_and_style(strip_subset_prefix(entry.font.name))
        family = f"{name},{fallback}" if reference else fallback
        line_height = format_number(entry.font.ascent - entry.font.descent)
        rule = ""
        if reference:
            fmt = CSS_FONT_FORMATS.get(entry.program.format, entry.program.format)
            rule += f"@font-face{{font-family:{name};src:url({reference})format(\"{fmt}\");}}\n"
        rule += (
            f".{name}{{font-family:{family};line-height:{line_height};"
            f"font-weight:{weight};font-style:{style};visibility:visible;}}\n"
        )
        return rule

    def emit(self, sink: AssetSink, inline: bool = True) -> List[str]:
        """
        Write font programs and return one CSS block per font id.

        Args:
            sink: Destination for font files when not inlined
            inline: Embed font programs as data URIs

        Returns:
            CSS text per font, in id order
        """
        rules = []
        for entry in self._entries:
            program = self._program(entry)
            reference = None
            if program is not None:
                try:
                    reference = reference_asset(sink, program.data, program.format, inline)
                except MemoryLimitError as e:
                    logger.warning(f"Font {entry.font.name} not written, using fallback family: {e}")
                    entry.program = None
                entry.reference = None if inline else reference
            rules.append(self._rule(entry, reference))
        return rules

    def assets(self) -> List[FontAsset]:
        """Font summaries for the conversion result."""
        out = []
        for entry in self._entries:
            program = entry.program
            out.append(FontAsset(
                font_id=entry.font_id,
                family=self.class_name(entry.font_id),
                original_name=entry.font.name,
                format=program.format if program is not None else "none",
                reference=entry.reference,
                ascent=entry.font.ascent,
                descent=entry.font.descent,
            ))
        return out

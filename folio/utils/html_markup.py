"""
HTML serialization of converted pages.

Pure writers: they take pydantic output models and write markup to any
text stream. Page coordinates are PDF points with the origin at the
bottom-left, which CSS ``left``/``bottom`` consume directly.
"""

import html
from typing import Iterable, List, Optional, TextIO

from folio.constants.html_classes import (
    BASE_CSS,
    CLASS_BACKGROUND,
    CLASS_CLIP,
    CLASS_OFFSET,
    CLASS_PAGE,
    CLASS_PAGE_CONTENT,
    CLASS_WARNING,
    PAGE_ID_PREFIX,
)
from folio.models.render_types import (
    ClipRegionOutput,
    LineOutput,
    OffsetSegment,
    PageLayout,
    PageResult,
    RunOutput,
)
from folio.utils.pdf_transforms import format_number


def _escape(text: str) -> str:
    return html.escape(text, quote=False)


def _attr(value: str) -> str:
    return html.escape(value, quote=True)


def write_run(out: TextIO, run: RunOutput) -> None:
    classes = list(run.classes)
    if run.warning:
        classes.append(CLASS_WARNING)
    out.write(f'<span class="{" ".join(classes)}">')
    for segment in run.segments:
        if isinstance(segment, OffsetSegment):
            out.write(f'<span class="{CLASS_OFFSET} {segment.class_name}"></span>')
        else:
            out.write(_escape(segment.text))
    out.write('</span>')


def write_line(out: TextIO, line: LineOutput) -> None:
    out.write(f'<div class="{" ".join(line.classes)}">')
    for run in line.runs:
        write_run(out, run)
    out.write('</div>\n')


def _clip_style(clip: ClipRegionOutput, width: float, height: float) -> str:
    box = clip.bbox
    top = format_number(height - box.y1)
    right = format_number(width - box.x1)
    bottom = format_number(box.y0)
    left = format_number(box.x0)
    inset = f"inset({top}px {right}px {bottom}px {left}px)"
    return f"clip-path:{inset};-webkit-clip-path:{inset};"


def write_text_layer(out: TextIO, layout: PageLayout) -> None:
    """Write all lines, wrapping clipped ranges in clip containers."""
    clip_at = {clip.first_line: clip for clip in layout.clips}
    active: Optional[ClipRegionOutput] = None
    for line in layout.lines:
        if active is not None and line.index >= active.last_line:
            out.write('</div>\n')
            active = None
        if line.index in clip_at:
            active = clip_at[line.index]
            style = _clip_style(active, layout.width, layout.height)
            out.write(f'<div class="{CLASS_CLIP}" style="{style}">\n')
        write_line(out, line)
    if active is not None:
        out.write('</div>\n')


def write_page(out: TextIO, page: PageResult) -> None:
    width = format_number(page.width)
    height = format_number(page.height)
    style = f"width:{width}px;height:{height}px;"
    if page.background is not None and page.background.page_color:
        style += f"background-color:{page.background.page_color};"
    out.write(
        f'<div id="{PAGE_ID_PREFIX}{page.number}" class="{CLASS_PAGE}" '
        f'style="{style}" data-page-no="{page.number}" data-status="{page.status.value}">\n'
    )
    out.write(f'<div class="{CLASS_PAGE_CONTENT}">\n')
    if page.background is not None and page.background.reference:
        out.write(f'<img class="{CLASS_BACKGROUND}" alt="" src="{_attr(page.background.reference)}"/>\n')
    if page.layout is not None:
        write_text_layer(out, page.layout)
    out.write('</div>\n</div>\n')


def build_stylesheet(style_rules: str, font_faces: Iterable[str] = ()) -> str:
    """Base rules, then @font-face blocks, then the deduplicated style classes."""
    parts: List[str] = [BASE_CSS]
    parts.extend(font_faces)
    parts.append(style_rules)
    return "".join(parts)


def write_html_document(
    out: TextIO,
    pages: Iterable[PageResult],
    stylesheet: str,
    css_href: Optional[str] = None,
    title: str = "",
) -> None:
    """
    Write a complete HTML document.

    When ``css_href`` is given the stylesheet is linked, otherwise it is
    inlined in a <style> element.
    """
    out.write('<!DOCTYPE html>\n<html>\n<head>\n<meta charset="utf-8"/>\n')
    out.write(f'<title>{_escape(title)}</title>\n')
    if css_href:
        out.write(f'<link rel="stylesheet" href="{_attr(css_href)}"/>\n')
    else:
        out.write(f'<style type="text/css">\n{stylesheet}</style>\n')
    out.write('</head>\n<body>\n<div id="page-container">\n')
    for page in pages:
        write_page(out, page)
    out.write('</div>\n</body>\n</html>\n')

"""
Line and run assembly for one page.

LineBuilder receives placements from the GraphicsStateTracker and groups
glyphs into runs (shared style ids) and lines (shared transform class).
``dump`` turns the page into a PageLayout, hiding covered glyphs behind
the transparent fill style and dropping clip regions that span the page.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Collection, Dict, List, Optional, Tuple, TextIO

from folio.constants.html_classes import CLASS_FONT_FAMILY, CLASS_LINE
from folio.models.render_types import (
    BoundingBox,
    ClipRegionOutput,
    LineOutput,
    OffsetSegment,
    PageLayout,
    RunOutput,
    Segment,
    TextSegment,
)
from folio.processors.events import Color
from folio.processors.graphics_state import LineStyle, Placement, RunDecision, RunStyle
from folio.processors.state_registry import StyleKind, StyleTable
from folio.utils.html_markup import write_text_layer
from folio.utils.pdf_transforms import Rect

logger = logging.getLogger(__name__)


@dataclass
class Run:
    """Glyphs sharing one style; offsets are (glyph index they precede, width)."""
    style: Optional[RunStyle]
    glyphs: List[str] = field(default_factory=list)
    handles: List[Optional[int]] = field(default_factory=list)
    offsets: List[Tuple[int, float]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.glyphs)

    @property
    def text(self) -> str:
        return "".join(self.glyphs)


@dataclass
class Line:
    index: int
    style: Optional[LineStyle]
    runs: List[Run] = field(default_factory=list)
    closed: bool = False

    @property
    def current_run(self) -> Optional[Run]:
        return self.runs[-1] if self.runs else None

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass
class ClipRegion:
    rect: Rect
    first_line_index: int


class LineBuilder:
    """Accumulates one page's lines, runs, offsets and clip regions."""

    def __init__(self, styles: StyleTable, page_width: float, page_height: float, h_eps: float = 0.5):
        self.styles = styles
        self.page_rect = Rect.from_size(page_width, page_height)
        self.h_eps = h_eps
        self._lines: List[Line] = []
        self._clips: List[ClipRegion] = []

    @property
    def lines(self) -> List[Line]:
        return list(self._lines)

    @property
    def clips(self) -> List[ClipRegion]:
        return list(self._clips)

    @property
    def current_line(self) -> Optional[Line]:
        if self._lines and not self._lines[-1].closed:
            return self._lines[-1]
        return None

    def open_new_line(self, line_style: Optional[LineStyle]) -> Line:
        self.close_line()
        line = Line(index=len(self._lines), style=line_style)
        self._lines.append(line)
        return line

    def close_line(self) -> None:
        line = self.current_line
        if line is not None:
            line.closed = True

    def append_char(self, glyph: str, style: Optional[RunStyle], handle: Optional[int] = None) -> None:
        line = self.current_line
        if line is None:
            logger.warning(f"Glyph {glyph!r} appended with no open line, opening an unstyled line")
            line = self.open_new_line(None)

        run = line.current_run
        if run is None or run.style != style:
            run = Run(style=style)
            line.runs.append(run)
        run.glyphs.append(glyph)
        run.handles.append(handle)

    def append_offset(self, width: float) -> bool:
        """Record horizontal spacing; returns False when it is below h_eps and dropped."""
        if abs(width) < self.h_eps:
            return False
        line = self.current_line
        if line is None:
            logger.warning(f"Offset {width:.3f} with no open line, dropping")
            return False
        run = line.current_run
        if run is None:
            run = Run(style=None)
            line.runs.append(run)
        run.offsets.append((len(run.glyphs), width))
        return True

    def register_clip(self, rect: Optional[Rect], first_line_index: int) -> None:
        """Clip applied from ``first_line_index`` until the next registered clip."""
        self._clips.append(ClipRegion(rect if rect is not None else self.page_rect, first_line_index))

    def apply(self, placement: Placement, handle: Optional[int] = None) -> None:
        """Feed one tracker placement."""
        if placement.decision is RunDecision.NEW_LINE:
            line = self.open_new_line(placement.line_style)
            if placement.clip_changed:
                self.register_clip(placement.trace.clip, line.index)
        else:
            self.append_offset(placement.offset)
        self.append_char(placement.trace.text, placement.run_style, handle)

    def discard(self) -> None:
        """Drop everything built so far for this page."""
        self._lines.clear()
        self._clips.clear()

    # --- Serialization ---

    def _line_classes(self, style: Optional[LineStyle]) -> List[str]:
        if style is None:
            return [CLASS_LINE]
        return [
            CLASS_LINE,
            self.styles.class_name(StyleKind.TRANSFORM, style.transform_id),
            self.styles.class_name(StyleKind.LEFT, style.left_id),
            self.styles.class_name(StyleKind.BOTTOM, style.bottom_id),
        ]

    def _run_classes(self, style: RunStyle, suppressed: bool) -> List[str]:
        if suppressed:
            style = style.with_fill(self.styles.install(StyleKind.FILL_COLOR, Color.TRANSPARENT))
        classes = []
        if style.font_id is not None:
            classes.append(f"{CLASS_FONT_FAMILY}{style.font_id}")
        classes.extend(self.styles.class_name(kind, style_id) for kind, style_id in style.style_ids())
        return classes

    def _offset_segment(self, width: float) -> OffsetSegment:
        style_id = self.styles.install(StyleKind.WHITESPACE, width)
        return OffsetSegment(width=width, class_name=self.styles.class_name(StyleKind.WHITESPACE, style_id))

    @staticmethod
    def _append_text(segments: List[Segment], text: str) -> None:
        if segments and isinstance(segments[-1], TextSegment):
            segments[-1] = TextSegment(text=segments[-1].text + text)
        else:
            segments.append(TextSegment(text=text))

    def _split_run(self, run: Run, suppressed: Collection[int]) -> List[Tuple[bool, List[Segment]]]:
        """Cut a run where glyphs switch between visible and suppressed."""
        offsets: Dict[int, List[float]] = defaultdict(list)
        for position, width in run.offsets:
            offsets[position].append(width)

        pieces: List[Tuple[bool, List[Segment]]] = []
        flag: Optional[bool] = None
        segments: List[Segment] = []
        for i, glyph in enumerate(run.glyphs):
            handle = run.handles[i]
            hidden = handle is not None and handle in suppressed
            if flag is None:
                flag = hidden
            elif hidden != flag:
                pieces.append((flag, segments))
                segments = []
                flag = hidden
            for width in offsets.get(i, ()):
                segments.append(self._offset_segment(width))
            self._append_text(segments, glyph)

        for width in offsets.get(len(run.glyphs), ()):
            segments.append(self._offset_segment(width))
        if segments:
            pieces.append((bool(flag), segments))
        return pieces

    def _dump_runs(self, line: Line, suppressed: Collection[int]) -> List[RunOutput]:
        runs_out: List[RunOutput] = []
        for run in line.runs:
            warning = run.style is None or not run.style.style_ids()
            if warning and run.glyphs:
                logger.warning(
                    f"Run {run.text!r} on line {line.index} has no style ids, emitting with warning marker"
                )
            for hidden, segments in self._split_run(run, suppressed):
                classes = [] if warning else self._run_classes(run.style, hidden)
                previous = runs_out[-1] if runs_out else None
                if (
                    previous is not None
                    and previous.classes == classes
                    and previous.warning == warning
                    and previous.suppressed == hidden
                ):
                    for segment in segments:
                        if isinstance(segment, TextSegment):
                            self._append_text(previous.segments, segment.text)
                        else:
                            previous.segments.append(segment)
                else:
                    runs_out.append(RunOutput(classes=classes, segments=segments, suppressed=hidden, warning=warning))
        return runs_out

    def _dump_clips(self) -> List[ClipRegionOutput]:
        clips_out = []
        for i, clip in enumerate(self._clips):
            last_line = self._clips[i + 1].first_line_index if i + 1 < len(self._clips) else len(self._lines)
            if last_line <= clip.first_line_index:
                continue
            if clip.rect.approx_equals(self.page_rect):
                continue
            clips_out.append(ClipRegionOutput(
                bbox=BoundingBox(x0=clip.rect.x0, y0=clip.rect.y0, x1=clip.rect.x1, y1=clip.rect.y1),
                first_line=clip.first_line_index,
                last_line=last_line,
            ))
        return clips_out

    def dump(self, out: Optional[TextIO] = None, suppressed: Collection[int] = frozenset()) -> PageLayout:
        """
        Serialize the page.

        Args:
            out: Optional stream receiving the text-layer markup
            suppressed: Occlusion handles of glyphs to render transparent

        Returns:
            PageLayout with lines, runs and non-trivial clip regions
        """
        self.close_line()
        lines_out = []
        for line in self._lines:
            origin = line.style.origin if line.style else (0.0, 0.0)
            lines_out.append(LineOutput(
                index=line.index,
                classes=self._line_classes(line.style),
                x=origin[0],
                y=origin[1],
                runs=self._dump_runs(line, suppressed),
            ))

        layout = PageLayout(
            width=self.page_rect.width,
            height=self.page_rect.height,
            lines=lines_out,
            clips=self._dump_clips(),
        )
        if out is not None:
            write_text_layer(out, layout)
        return layout

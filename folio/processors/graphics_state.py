"""
Graphics state tracking for text layout.

GraphicsStateTracker mirrors the backend's save/restore protocol with a
list of value snapshots and decides, per drawn glyph, whether the glyph
continues the current run, starts a new run on the same line, or starts a
new line. The style values of every new run are interned in the document's
StyleTable.

Numeric normalization rules:
- A negative font size is made positive and the transform's linear part is
  negated, which renders the same glyph.
- The transform class of a line is the linear part divided by its vertical
  scale; that scale is folded into the effective font size.
- An effective font size below ``min_font_size`` is raised to it; one above
  ``MAX_FONT_SIZE``, or one that overflows, is lowered to the cap.
- Glyph origins are clamped to ``MAX_COORDINATE`` on either axis.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum, IntFlag
from typing import List, Optional, Tuple, TYPE_CHECKING

from folio.constants.pdf_keys import NO_FILL_RENDER_MODES, STROKE_RENDER_MODES
from folio.processors.events import Color, FontRef
from folio.processors.state_registry import StyleKind, StyleTable
from folio.utils.pdf_transforms import MATRIX_EPSILON, Matrix, Point, Rect
from folio.utils.text_cleanup import decompose_ligatures, glyph_text_for_code, has_illegal_unicode

if TYPE_CHECKING:
    from folio.engine.config import ConversionConfig
    from folio.processors.font_registry import FontRegistry

logger = logging.getLogger(__name__)

MIN_FONT_SIZE = 0.001
MAX_FONT_SIZE = 1e6
MAX_COORDINATE = 1e9
DEFAULT_GLYPH_WIDTH = 0.5  # em, used for the box of glyphs reported without an advance
SPACE = " "


class DirtyFlag(IntFlag):
    NONE = 0
    TRANSFORM = 1
    FONT = 2
    COLOR = 4
    CLIP = 8
    TEXT_POSITION = 16
    SPACING = 32
    RENDER_MODE = 64
    ALL = 127


STYLE_FLAGS = DirtyFlag.TRANSFORM | DirtyFlag.FONT | DirtyFlag.COLOR | DirtyFlag.SPACING | DirtyFlag.RENDER_MODE


@dataclass
class GraphicsState:
    """One snapshot on the save/restore stack."""
    transform: Matrix = field(default_factory=Matrix.identity)
    font: Optional[FontRef] = None
    font_size: float = 0.0
    fill_color: Color = Color.BLACK
    stroke_color: Color = Color.BLACK
    clip: Optional[Rect] = None  # None means the whole page
    render_mode: int = 0
    char_space: float = 0.0
    word_space: float = 0.0
    tx: float = 0.0
    ty: float = 0.0

    def copy(self) -> 'GraphicsState':
        return replace(self)


class RunDecision(str, Enum):
    CONTINUE = "continue"
    NEW_RUN = "new_run"
    NEW_LINE = "new_line"


@dataclass(frozen=True)
class RunStyle:
    """StyleIds governing one run. Optional ids are only set when non-default."""
    font_size_id: int
    fill_color_id: int
    font_id: Optional[int] = None
    stroke_color_id: Optional[int] = None
    letter_space_id: Optional[int] = None
    word_space_id: Optional[int] = None

    def style_ids(self) -> Tuple[Tuple[StyleKind, int], ...]:
        ids = [
            (StyleKind.FONT_SIZE, self.font_size_id),
            (StyleKind.FILL_COLOR, self.fill_color_id),
        ]
        if self.stroke_color_id is not None:
            ids.append((StyleKind.STROKE_COLOR, self.stroke_color_id))
        if self.letter_space_id is not None:
            ids.append((StyleKind.LETTER_SPACE, self.letter_space_id))
        if self.word_space_id is not None:
            ids.append((StyleKind.WORD_SPACE, self.word_space_id))
        return tuple(ids)

    def with_fill(self, fill_color_id: int) -> 'RunStyle':
        return replace(self, fill_color_id=fill_color_id)


@dataclass(frozen=True)
class LineStyle:
    """Transform class and position of a line."""
    transform_id: int
    left_id: int
    bottom_id: int
    matrix: Matrix
    origin: Point


@dataclass
class CharTrace:
    """Geometry and paint of one glyph, shared with the other page analyzers."""
    code: int
    text: str
    bbox: Rect
    origin: Point
    glyph_matrix: Matrix  # text space to device space, translated to the origin
    font_size: float  # positive, text space units
    font: Optional[FontRef]
    fill_color: Color
    stroke_color: Color
    render_mode: int
    non_representable: bool
    clip: Optional[Rect]


@dataclass
class Placement:
    """What the line builder must do with one glyph."""
    decision: RunDecision
    trace: CharTrace
    offset: float = 0.0
    run_style: Optional[RunStyle] = None
    line_style: Optional[LineStyle] = None
    clip_changed: bool = False


@dataclass
class _Normalized:
    size: float  # positive font size
    sign: float  # -1 when the font size was negative
    matrix: Matrix  # sign-compensated text matrix
    class_matrix: Matrix  # linear part divided by the vertical scale
    scale: float
    effective_size: float


@dataclass
class _ActiveLine:
    matrix: Matrix
    inverse: Matrix
    clip: Optional[Rect]


def _same_clip(a: Optional[Rect], b: Optional[Rect]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a.approx_equals(b)


class GraphicsStateTracker:
    """
    Save/restore stack plus run and line classification.

    Example:
        >>> tracker = GraphicsStateTracker(StyleTable())
        >>> tracker.update_font(font, 12)
        >>> placement = tracker.place_char(ord("A"), "A", (72, 700), 8.0)
        >>> placement.decision
        <RunDecision.NEW_LINE: 'new_line'>
    """

    def __init__(
        self,
        styles: StyleTable,
        h_eps: float = 0.5,
        v_eps: float = 0.5,
        min_font_size: float = MIN_FONT_SIZE,
        fonts: Optional['FontRegistry'] = None,
        process_type3: bool = False,
        decompose_ligatures: bool = False,
    ):
        self.styles = styles
        self.h_eps = h_eps
        self.v_eps = v_eps
        self.min_font_size = min_font_size
        self.fonts = fonts
        self.process_type3 = process_type3
        self.decompose_ligatures = decompose_ligatures
        self.reset()

    @classmethod
    def from_config(
        cls,
        styles: StyleTable,
        config: 'ConversionConfig',
        fonts: Optional['FontRegistry'] = None,
    ) -> 'GraphicsStateTracker':
        return cls(
            styles,
            h_eps=config.h_eps,
            v_eps=config.v_eps,
            min_font_size=config.min_font_size,
            fonts=fonts,
            process_type3=config.process_type3,
            decompose_ligatures=config.decompose_ligatures,
        )

    def reset(self) -> None:
        """Forget all page state."""
        self._state = GraphicsState()
        self._saved: List[GraphicsState] = []
        self._dirty = DirtyFlag.ALL
        self._line: Optional[_ActiveLine] = None
        self._line_clip: Optional[Rect] = None
        self._run_key: Optional[tuple] = None
        self._run_style: Optional[RunStyle] = None
        self._pen: Optional[Point] = None

    # --- State stack ---

    @property
    def state(self) -> GraphicsState:
        return self._state

    @property
    def depth(self) -> int:
        return len(self._saved)

    @property
    def dirty(self) -> DirtyFlag:
        return self._dirty

    def save(self) -> None:
        self._saved.append(self._state.copy())

    def restore(self) -> None:
        if not self._saved:
            logger.warning("Restore without matching save, ignoring")
            return
        previous = self._state
        self._state = self._saved.pop()
        self._mark_differences(previous, self._state)

    def _mark_differences(self, old: GraphicsState, new: GraphicsState) -> None:
        if old.transform != new.transform:
            self._dirty |= DirtyFlag.TRANSFORM
        if old.font != new.font or old.font_size != new.font_size:
            self._dirty |= DirtyFlag.FONT
        if old.fill_color != new.fill_color or old.stroke_color != new.stroke_color:
            self._dirty |= DirtyFlag.COLOR
        if not _same_clip(old.clip, new.clip):
            self._dirty |= DirtyFlag.CLIP
        if old.char_space != new.char_space or old.word_space != new.word_space:
            self._dirty |= DirtyFlag.SPACING
        if old.render_mode != new.render_mode:
            self._dirty |= DirtyFlag.RENDER_MODE

    # --- State updates ---

    def update_transform(self, matrix: Matrix) -> None:
        if matrix != self._state.transform:
            self._state.transform = matrix
            self._dirty |= DirtyFlag.TRANSFORM | DirtyFlag.TEXT_POSITION

    def update_font(self, font: Optional[FontRef], size: float) -> None:
        if font != self._state.font or size != self._state.font_size:
            self._state.font = font
            self._state.font_size = size
            self._dirty |= DirtyFlag.FONT

    def update_color(self, fill: Color, stroke: Color) -> None:
        if fill != self._state.fill_color or stroke != self._state.stroke_color:
            self._state.fill_color = fill
            self._state.stroke_color = stroke
            self._dirty |= DirtyFlag.COLOR

    def update_clip(self, rect: Rect) -> None:
        """Intersect the current clip with ``rect``."""
        if not rect.is_finite():
            logger.warning(f"Ignoring non-finite clip {rect}")
            return
        current = self._state.clip
        clip = rect if current is None else current.intersect(rect)
        if not _same_clip(clip, current):
            self._state.clip = clip
            self._dirty |= DirtyFlag.CLIP

    def update_text_spacing(self, char_space: float, word_space: float) -> None:
        if not (math.isfinite(char_space) and math.isfinite(word_space)):
            logger.warning("Ignoring non-finite text spacing")
            return
        if char_space != self._state.char_space or word_space != self._state.word_space:
            self._state.char_space = char_space
            self._state.word_space = word_space
            self._dirty |= DirtyFlag.SPACING

    def update_render_mode(self, mode: int) -> None:
        if mode != self._state.render_mode:
            self._state.render_mode = mode
            self._dirty |= DirtyFlag.RENDER_MODE

    # --- Classification ---

    def _normalize(self, state: GraphicsState) -> _Normalized:
        size = state.font_size
        matrix = state.transform
        if not matrix.is_finite():
            logger.warning(f"Non-finite text transform {matrix.as_tuple()}, using identity")
            matrix = Matrix.identity()
        if not math.isfinite(size):
            logger.warning(f"Non-finite font size {size}, using minimum")
            size = self.min_font_size
        if abs(size) > MAX_FONT_SIZE:
            logger.warning(f"Font size {size} out of range, clamping")
            size = math.copysign(MAX_FONT_SIZE, size)

        sign = 1.0
        if size < 0:
            size = -size
            sign = -1.0
            matrix = matrix.negated_linear()

        scale = matrix.vertical_scale
        if scale < MATRIX_EPSILON:
            logger.debug("Degenerate text transform, classifying as identity")
            class_matrix = Matrix.identity()
        else:
            class_matrix = matrix.scaled(1.0 / scale).without_translation()

        effective = size * scale
        if not math.isfinite(effective) or effective > MAX_FONT_SIZE:
            effective = MAX_FONT_SIZE
        elif effective < self.min_font_size:
            effective = self.min_font_size

        return _Normalized(size, sign, matrix, class_matrix, scale, effective)

    def _fill_for(self, state: GraphicsState) -> Color:
        if state.render_mode in NO_FILL_RENDER_MODES:
            return Color.TRANSPARENT
        return state.fill_color

    def _stroke_for(self, state: GraphicsState) -> Optional[Color]:
        if state.render_mode in STROKE_RENDER_MODES:
            return state.stroke_color
        return None

    def _spacing(self, norm: _Normalized, state: GraphicsState) -> Tuple[float, float]:
        """Letter and word spacing in line units."""
        factor = norm.sign * norm.scale
        return state.char_space * factor, state.word_space * factor

    def _style_key(self, norm: _Normalized, state: GraphicsState) -> tuple:
        letter, word = self._spacing(norm, state)
        return (
            state.font,
            norm.effective_size,
            self._fill_for(state),
            self._stroke_for(state),
            letter,
            word,
        )

    def _style_changed(self, norm: _Normalized, state: GraphicsState) -> bool:
        if self._run_key is None:
            return True
        if not self._dirty & STYLE_FLAGS:
            return False
        eps = self.styles.eps
        font, size, fill, stroke, letter, word = self._style_key(norm, state)
        old_font, old_size, old_fill, old_stroke, old_letter, old_word = self._run_key
        return (
            font != old_font
            or abs(size - old_size) > eps
            or fill != old_fill
            or stroke != old_stroke
            or abs(letter - old_letter) > eps
            or abs(word - old_word) > eps
        )

    def _classify(self, norm: _Normalized, origin: Point, state: GraphicsState) -> Tuple[RunDecision, float]:
        line = self._line
        if line is None or self._pen is None:
            return RunDecision.NEW_LINE, 0.0
        if not _same_clip(state.clip, line.clip):
            return RunDecision.NEW_LINE, 0.0
        if not norm.class_matrix.is_proportional_to(line.matrix, self.styles.eps):
            return RunDecision.NEW_LINE, 0.0

        dx, dy = line.inverse.apply_delta(origin[0] - self._pen[0], origin[1] - self._pen[1])
        if abs(dy) > self.v_eps:
            return RunDecision.NEW_LINE, 0.0
        if self._style_changed(norm, state):
            return RunDecision.NEW_RUN, dx
        return RunDecision.CONTINUE, dx

    def _origin(self, norm: _Normalized, position: Optional[Point]) -> Point:
        origin = position if position is not None else norm.matrix.translation
        if not all(math.isfinite(v) for v in origin):
            logger.warning(f"Non-finite glyph origin {origin}, using page origin")
            return (0.0, 0.0)
        x, y = (min(max(float(v), -MAX_COORDINATE), MAX_COORDINATE) for v in origin)
        return (x, y)

    def should_start_new_run(self, position: Optional[Point] = None) -> bool:
        """True when a glyph drawn now could not extend the current run."""
        norm = self._normalize(self._state)
        decision, _ = self._classify(norm, self._origin(norm, position), self._state)
        return decision is not RunDecision.CONTINUE

    # --- Placement ---

    def _glyph_text(self, code: int, text: str, font: Optional[FontRef]) -> str:
        if not text and self.fonts is not None and font is not None:
            self.fonts.install(font)
            text = self.fonts.glyph_text(font, code) or ""
        if not text:
            text = glyph_text_for_code(code)
        if self.decompose_ligatures:
            text = decompose_ligatures(text)
        return text

    def _glyph_bbox(self, norm: _Normalized, glyph_matrix: Matrix, advance: float, font: Optional[FontRef]) -> Rect:
        ascent = font.ascent if font else 0.8
        descent = font.descent if font else -0.2
        width = advance if abs(advance) > MATRIX_EPSILON else DEFAULT_GLYPH_WIDTH * norm.size
        local = Rect(min(0.0, width), descent * norm.size, max(0.0, width), ascent * norm.size)
        return local.transform(glyph_matrix)

    def _is_non_representable(self, state: GraphicsState, text: str) -> bool:
        if state.render_mode in STROKE_RENDER_MODES:
            return True
        if state.font is not None and state.font.is_type3 and not self.process_type3:
            return True
        return has_illegal_unicode(text)

    def _install_run_style(self, norm: _Normalized, state: GraphicsState) -> RunStyle:
        styles = self.styles
        letter, word = self._spacing(norm, state)
        stroke = self._stroke_for(state)
        font_id = None
        if self.fonts is not None and state.font is not None:
            font_id = self.fonts.install(state.font)
        return RunStyle(
            font_size_id=styles.install(StyleKind.FONT_SIZE, norm.effective_size),
            fill_color_id=styles.install(StyleKind.FILL_COLOR, self._fill_for(state)),
            font_id=font_id,
            stroke_color_id=styles.install(StyleKind.STROKE_COLOR, stroke) if stroke is not None else None,
            letter_space_id=styles.install(StyleKind.LETTER_SPACE, letter) if abs(letter) > styles.eps else None,
            word_space_id=styles.install(StyleKind.WORD_SPACE, word) if abs(word) > styles.eps else None,
        )

    def _open_line(self, norm: _Normalized, origin: Point, clip: Optional[Rect]) -> LineStyle:
        styles = self.styles
        inverse = norm.class_matrix.inverse()
        if inverse is None:
            logger.debug("Line transform is not invertible, measuring offsets in page space")
            inverse = Matrix.identity()
        self._line = _ActiveLine(matrix=norm.class_matrix, inverse=inverse, clip=clip)
        self._line_clip = clip
        return LineStyle(
            transform_id=styles.install(StyleKind.TRANSFORM, norm.class_matrix),
            left_id=styles.install(StyleKind.LEFT, origin[0]),
            bottom_id=styles.install(StyleKind.BOTTOM, origin[1]),
            matrix=norm.class_matrix.with_translation(*origin),
            origin=origin,
        )

    def place_char(
        self,
        code: int,
        text: str = "",
        position: Optional[Point] = None,
        advance: float = 0.0,
    ) -> Placement:
        """
        Classify one glyph and advance the pen.

        Args:
            code: Backend glyph code
            text: Unicode text for the glyph, may hold several code points
            position: Device-space origin, defaults to the transform translation
            advance: Glyph advance in text space, font size already applied.
                It carries the sign of the font size, as pdfminer reports it,
                so a negative size with a negated transform places glyphs
                exactly like the positive size.

        Returns:
            Placement with the decision, offset, style ids and glyph trace
        """
        state = self._state
        norm = self._normalize(state)
        origin = self._origin(norm, position)
        if not math.isfinite(advance) or abs(advance) > MAX_COORDINATE:
            logger.warning(f"Unusable advance {advance} for glyph {code}, using 0")
            advance = 0.0
        advance *= norm.sign

        glyph_text = self._glyph_text(code, text, state.font)
        glyph_matrix = norm.matrix.with_translation(*origin)
        trace = CharTrace(
            code=code,
            text=glyph_text,
            bbox=self._glyph_bbox(norm, glyph_matrix, advance, state.font),
            origin=origin,
            glyph_matrix=glyph_matrix,
            font_size=norm.size,
            font=state.font,
            fill_color=state.fill_color,
            stroke_color=state.stroke_color,
            render_mode=state.render_mode,
            non_representable=self._is_non_representable(state, glyph_text),
            clip=state.clip,
        )

        previous_clip = self._line_clip
        decision, offset = self._classify(norm, origin, state)
        placement = Placement(decision=decision, trace=trace, offset=offset)

        if decision is RunDecision.NEW_LINE:
            placement.clip_changed = not _same_clip(state.clip, previous_clip)
            placement.line_style = self._open_line(norm, origin, state.clip)
        if decision is not RunDecision.CONTINUE:
            self._run_style = self._install_run_style(norm, state)
            self._run_key = self._style_key(norm, state)
        placement.run_style = self._run_style

        spacing = state.char_space * norm.sign
        if glyph_text == SPACE:
            spacing += state.word_space * norm.sign
        self._pen = glyph_matrix.apply(advance + spacing, 0.0)
        state.tx, state.ty = self._pen
        self._dirty = DirtyFlag.NONE
        return placement

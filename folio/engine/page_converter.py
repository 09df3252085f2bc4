"""
Per-page event fan-out.

PageConverter owns one page's analyzers and forwards every backend event to
them in a fixed order: graphics state tracker, occlusion detector, background
strategy. Text placements go to the LineBuilder as they are classified.

Page lifecycle:
    PageBegin -> drawing and state events -> PageEnd -> finish(sink)

Any event outside that sequence is a backend contract violation and fails the
page. Running out of time or output budget aborts it; in both cases the
page's partial lines, clips and background are discarded while the shared
StyleTable keeps every id it handed out.
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from folio.engine.config import ConversionConfig
from folio.models.render_types import PageResult, PageStatus
from folio.processors.background import BackgroundDecision, BackgroundRenderingStrategy
from folio.processors.events import (
    Color,
    DrawChar,
    DrawImage,
    DrawKind,
    DrawPath,
    FontRef,
    PageBegin,
    PageEnd,
    PageEvent,
    RestoreState,
    SaveState,
    UpdateClip,
    UpdateColor,
    UpdateFont,
    UpdateRenderMode,
    UpdateTextSpacing,
    UpdateTransform,
)
from folio.processors.font_registry import FontRegistry
from folio.processors.graphics_state import GraphicsStateTracker
from folio.processors.line_builder import LineBuilder
from folio.processors.occlusion import OcclusionDetector
from folio.processors.state_registry import StyleTable
from folio.utils.assets import AssetSink
from folio.utils.pdf_transforms import Matrix, Point, Rect
from folio.utils.resource_limits import Deadline
from folio.utils.validation import BackendContractError, MemoryLimitError, ProcessingTimeoutError

logger = logging.getLogger(__name__)

Replay = Callable[[Callable[[PageEvent], None]], None]


class PageConverter:
    """
    Event sink for one page at a time.

    The converter is reused across the pages of a document; analyzers are
    rebuilt on every PageBegin.

    Example:
        >>> converter = PageConverter(StyleTable(), ConversionConfig())
        >>> result = converter.run(events, MemoryAssetSink())
        >>> result.status
        <PageStatus.CONVERTED: 'converted'>
    """

    def __init__(
        self,
        styles: StyleTable,
        config: ConversionConfig,
        fonts: Optional[FontRegistry] = None,
        deadline: Optional[Deadline] = None,
    ):
        self.styles = styles
        self.config = config
        self.fonts = fonts
        self.deadline = deadline
        self.tracker = GraphicsStateTracker.from_config(styles, config, fonts)
        self.lines: Optional[LineBuilder] = None
        self.occlusion = OcclusionDetector(config.occlusion_opacity_threshold)
        self.background: Optional[BackgroundRenderingStrategy] = None

        self._open = False
        self._ended = False
        self._number = 0
        self._number_override: Optional[int] = None
        self._width = 0.0
        self._height = 0.0
        self._decision: Optional[BackgroundDecision] = None

        self._handlers: Dict[type, Callable[[PageEvent], None]] = {
            PageBegin: lambda e: self.on_page_begin(e.width, e.height, e.number),
            PageEnd: lambda e: self.on_page_end(),
            SaveState: lambda e: self.on_save_state(),
            RestoreState: lambda e: self.on_restore_state(),
            UpdateTransform: lambda e: self.on_update_transform(e.matrix),
            UpdateFont: lambda e: self.on_update_font(e.font, e.size),
            UpdateColor: lambda e: self.on_update_color(e.fill, e.stroke),
            UpdateClip: lambda e: self.on_update_clip(e.rect),
            UpdateTextSpacing: lambda e: self.on_update_text_spacing(e.char_space, e.word_space),
            UpdateRenderMode: lambda e: self.on_update_render_mode(e.mode),
            DrawChar: lambda e: self.on_draw_char(e.code, e.text, e.position, e.advance),
            DrawPath: self.on_draw_path,
            DrawImage: self.on_draw_image,
        }

    @property
    def page_open(self) -> bool:
        return self._open

    @property
    def page_number(self) -> int:
        return self._number

    # --- Dispatch ---

    def dispatch(self, event: PageEvent) -> None:
        """Route one event to its handler."""
        handler = self._handlers.get(type(event))
        if handler is None:
            raise BackendContractError(f"Unknown page event {type(event).__name__}")
        if self.deadline is not None:
            self.deadline.check()
        handler(event)

    def _require_open(self, what: str) -> None:
        if not self._open:
            raise BackendContractError(f"{what} outside of an open page")

    # --- Page lifecycle ---

    def on_page_begin(self, width: float, height: float, number: int = 1) -> None:
        if self._open:
            raise BackendContractError(f"PageBegin for page {number} while page {self._number} is open")
        if not (width > 0 and height > 0):
            raise BackendContractError(f"Invalid page size {width}x{height}")

        if self._number_override is not None:
            number = self._number_override
        self._open = True
        self._ended = False
        self._number = number
        self._width = width
        self._height = height
        self._decision = None

        self.tracker.reset()
        self.occlusion.reset()
        self.lines = LineBuilder(self.styles, width, height, self.config.h_eps)
        self.lines.register_clip(None, 0)
        self.background = BackgroundRenderingStrategy(width, height, self.config)
        logger.debug(f"Page {number} begin ({width:.1f}x{height:.1f})")

    def on_page_end(self) -> BackgroundDecision:
        """Close the event stream and settle the background decision."""
        self._require_open("PageEnd")
        self._open = False
        self._ended = True
        self.lines.close_line()
        self._decision = self.background.finalize(self.occlusion)
        return self._decision

    # --- State events ---

    def on_save_state(self) -> None:
        self._require_open("SaveState")
        self.tracker.save()

    def on_restore_state(self) -> None:
        self._require_open("RestoreState")
        self.tracker.restore()

    def on_update_transform(self, matrix: Matrix) -> None:
        self._require_open("UpdateTransform")
        self.tracker.update_transform(matrix)

    def on_update_font(self, font: Optional[FontRef], size: float) -> None:
        self._require_open("UpdateFont")
        self.tracker.update_font(font, size)

    def on_update_color(self, fill: Color, stroke: Color) -> None:
        self._require_open("UpdateColor")
        self.tracker.update_color(fill, stroke)

    def on_update_clip(self, rect: Rect) -> None:
        self._require_open("UpdateClip")
        self.tracker.update_clip(rect)

    def on_update_text_spacing(self, char_space: float, word_space: float) -> None:
        self._require_open("UpdateTextSpacing")
        self.tracker.update_text_spacing(char_space, word_space)

    def on_update_render_mode(self, mode: int) -> None:
        self._require_open("UpdateRenderMode")
        self.tracker.update_render_mode(mode)

    # --- Drawing events ---

    def on_draw_char(self, code: int, text: str = "", position: Optional[Point] = None, advance: float = 0.0) -> None:
        self._require_open("DrawChar")
        placement = self.tracker.place_char(code, text, position, advance)
        handle = self.occlusion.add_char_bbox(placement.trace.bbox)
        self.lines.apply(placement, handle)
        self.background.on_draw_char(placement.trace, handle)

    def _occludes(self) -> bool:
        return self.config.process_nontext and self.config.correct_text_visibility > 0

    def on_draw_path(self, event: DrawPath) -> None:
        self._require_open("DrawPath")
        clip = self.tracker.state.clip
        if self._occludes() and event.color is not None and not event.color.transparent:
            if event.kind is DrawKind.FILL:
                rect = event.rect if clip is None else event.rect.intersect(clip)
                self.occlusion.add_non_char_bbox(rect, event.opacity)
            else:
                band = event.rect.expanded(max(event.line_width, 0.0) / 2.0)
                # A clipped outline only occludes when the clip leaves it whole
                if clip is None or clip.intersect(band).approx_equals(band):
                    self.occlusion.add_non_char_bbox(event.rect, event.opacity, stroke_width=event.line_width)
        self.background.on_draw_path(event, clip)

    def on_draw_image(self, event: DrawImage) -> None:
        self._require_open("DrawImage")
        clip = self.tracker.state.clip
        if self._occludes() and not event.image.is_mask:
            rect = event.rect if clip is None else event.rect.intersect(clip)
            self.occlusion.add_non_char_bbox(rect, event.opacity)
        self.background.on_draw_image(event, clip)

    # --- Results ---

    def _discard(self) -> None:
        self.tracker.reset()
        self.occlusion.reset()
        if self.lines is not None:
            self.lines.discard()
        if self.background is not None:
            self.background.discard()
        self._open = False
        self._ended = False
        self._decision = None

    def finish(self, sink: AssetSink) -> PageResult:
        """
        Serialize the ended page and write its background.

        Args:
            sink: Destination for the background and extracted images

        Returns:
            PageResult with layout, background asset and coverage summary
        """
        if not self._ended:
            raise BackendContractError(f"Page {self._number} finished without PageEnd")

        decision = self._decision
        layout = self.lines.dump(suppressed=decision.suppressed)
        background = self.background.embed(sink, inline=self.config.embed_image)
        coverage = self.occlusion.summary()
        result = PageResult(
            number=self._number,
            status=PageStatus.CONVERTED,
            width=self._width,
            height=self._height,
            layout=layout,
            background=background,
            coverage=coverage,
        )
        logger.info(
            f"Page {self._number}: {len(layout.lines)} lines, {coverage.total_chars} chars "
            f"({coverage.covered_chars} covered), {background.mode.value} background"
        )
        self._ended = False
        return result

    def _unfinished(self, status: PageStatus, reason: str) -> PageResult:
        result = PageResult(
            number=self._number,
            status=status,
            width=self._width,
            height=self._height,
            error=reason,
        )
        self._discard()
        return result

    def abort(self, reason: str) -> PageResult:
        """Drop the page after a resource limit was hit."""
        logger.warning(f"Page {self._number} aborted: {reason}")
        return self._unfinished(PageStatus.ABORTED, reason)

    def fail(self, reason: str) -> PageResult:
        """Drop the page after a backend error."""
        logger.error(f"Page {self._number} failed: {reason}")
        return self._unfinished(PageStatus.FAILED, reason)

    def convert(self, replay: Replay, sink: AssetSink, number: Optional[int] = None) -> PageResult:
        """
        Drive one page through ``replay`` and return its result.

        ``replay`` receives ``dispatch`` and pushes the page's events into it.
        Resource limits abort the page; contract violations fail it. Other
        exceptions propagate after the page state is discarded. A given
        ``number`` takes precedence over the one carried by PageBegin.
        """
        if number is not None and not self._open:
            self._number = number
        self._number_override = number
        try:
            replay(self.dispatch)
            return self.finish(sink)
        except (ProcessingTimeoutError, MemoryLimitError) as e:
            return self.abort(str(e))
        except BackendContractError as e:
            return self.fail(str(e))
        except Exception:
            self._discard()
            raise
        finally:
            self._number_override = None

    def run(self, events: Iterable[PageEvent], sink: AssetSink, number: Optional[int] = None) -> PageResult:
        """Convert a page from an already collected event sequence."""
        def replay(emit: Callable[[PageEvent], None]) -> None:
            for event in events:
                emit(event)

        return self.convert(replay, sink, number)

"""
Background rendering strategy.

Records a page's non-text primitives (and the glyphs that cannot stay live
text) as a display list while the page is replayed, then decides at page end
whether the background is written as SVG or as a raster image:

    VECTOR attempt -> primitive count > svg_node_count_limit -> RASTER
                   -> otherwise stays VECTOR

Glyphs that are drawn as paths, come from Type3 glyph programs, or are fully
covered by later primitives are painted into the background and suppressed in
the text layer.

A full-page opaque fill drawn before anything else sets the page colour and
is left out of the display list.

JPEG images with one or three components and no remapping are kept as the
original JPEG stream and referenced by name (or inlined as a JPEG data URI
when images are embedded); every other image is decoded and re-encoded as PNG.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Set, Union, TYPE_CHECKING

from folio.constants.pdf_keys import NO_FILL_RENDER_MODES, RENDER_CLIP, RENDER_INVISIBLE
from folio.models.render_types import BackgroundAsset, BackgroundMode
from folio.processors.events import Color, DrawKind, DrawImage, DrawPath, ImageRef
from folio.processors.graphics_state import CharTrace
from folio.processors.occlusion import OcclusionDetector
from folio.processors.render_surfaces import RasterSurface, VectorSurface
from folio.utils.assets import AssetSink, asset_name, mime_for, reference_asset
from folio.utils.image_codec import check_decompression_ratio, decode_image, encode_image, to_data_uri
from folio.utils.pdf_transforms import Rect
from folio.utils.validation import MemoryLimitError

if TYPE_CHECKING:
    from folio.engine.config import ConversionConfig

logger = logging.getLogger(__name__)

PAGE_COLOR_TOLERANCE = 0.5


@dataclass
class _PathOp:
    kind: DrawKind
    rect: Rect
    color: Color
    opacity: float
    line_width: float
    clip: Optional[Rect]


@dataclass
class _ImageOp:
    rect: Rect
    image: ImageRef
    opacity: float
    clip: Optional[Rect]


@dataclass
class _GlyphOp:
    trace: CharTrace
    handle: int


_DisplayOp = Union[_PathOp, _ImageOp, _GlyphOp]


@dataclass
class BackgroundDecision:
    """Final per-page background verdict."""
    mode: BackgroundMode
    raster_chars: FrozenSet[int] = frozenset()  # occlusion handles painted into the background
    extracted_images: List[str] = field(default_factory=list)
    primitive_count: int = 0
    dpi: Optional[float] = None
    reason: Optional[str] = None
    page_color: Optional[Color] = None

    @property
    def suppressed(self) -> FrozenSet[int]:
        """Handles whose live text is rendered transparent."""
        return self.raster_chars


class BackgroundRenderingStrategy:
    """
    Per-page display list plus the vector/raster decision.

    Drawing callbacks only record; nothing is rendered before ``finalize``,
    since occlusion verdicts depend on primitives drawn later in the page.
    """

    def __init__(self, page_width: float, page_height: float, config: 'ConversionConfig'):
        self.config = config
        self.page_width = page_width
        self.page_height = page_height
        self.reset()

    def reset(self) -> None:
        self._ops: List[_DisplayOp] = []
        self._page_color: Optional[Color] = None
        self._decision: Optional[BackgroundDecision] = None
        self._svg: Optional[bytes] = None
        self._extracted: Dict[str, bytes] = {}
        self._skipped_images = 0

    def discard(self) -> None:
        """Drop the page's display list and any decision; used when a page is aborted."""
        self.reset()

    @property
    def decision(self) -> Optional[BackgroundDecision]:
        return self._decision

    @property
    def page_rect(self) -> Rect:
        return Rect.from_size(self.page_width, self.page_height)

    def __len__(self) -> int:
        return len(self._ops)

    # --- Recording ---

    def _check_open(self) -> bool:
        if self._decision is not None:
            logger.warning("Drawing event after the background was finalized, ignoring")
            return False
        return True

    def on_draw_path(self, event: DrawPath, clip: Optional[Rect] = None) -> None:
        if not self._check_open() or not self.config.process_nontext:
            return
        if event.color is None or event.rect.is_empty or not event.rect.is_finite():
            return
        if (
            self._page_color is None
            and not self._ops
            and (clip is None or clip.intersect(self.page_rect).approx_equals(self.page_rect))
            and event.kind is DrawKind.FILL
            and event.opacity >= 1.0
            and not event.color.transparent
            and event.rect.expanded(PAGE_COLOR_TOLERANCE).intersect(self.page_rect).approx_equals(self.page_rect)
        ):
            # Painted by the page container instead of the background
            self._page_color = event.color
            return
        self._ops.append(_PathOp(event.kind, event.rect, event.color, event.opacity, event.line_width, clip))

    def on_draw_image(self, event: DrawImage, clip: Optional[Rect] = None) -> None:
        if not self._check_open() or not self.config.process_nontext:
            return
        image = event.image
        ok, message = check_decompression_ratio(image.raw_length, len(image.data), self.config.max_decompression_ratio)
        if not ok:
            logger.warning(f"Skipping image {image.name}: {message}")
            self._skipped_images += 1
            return
        self._ops.append(_ImageOp(event.rect, image, event.opacity, clip))

    def on_draw_char(self, trace: CharTrace, handle: int) -> None:
        if not self._check_open():
            return
        self._ops.append(_GlyphOp(trace, handle))

    # --- Decision ---

    def _raster_chars(self, occlusion: OcclusionDetector) -> Set[int]:
        level = self.config.correct_text_visibility
        chosen: Set[int] = set()
        for op in self._ops:
            if not isinstance(op, _GlyphOp) or op.handle < 0:
                continue
            if self.config.fallback or op.trace.non_representable:
                chosen.add(op.handle)
            elif level >= 1 and not occlusion.get_visibility(op.handle):
                chosen.add(op.handle)
        return chosen

    def _image_href(self, image: ImageRef) -> Optional[str]:
        """Reference for an image in SVG output, None when it cannot be decoded."""
        inline = self.config.embed_image
        if image.extractable:
            if inline:
                return to_data_uri(image.data, mime_for('jpg'))
            name = asset_name(image.data, 'jpg')
            self._extracted[name] = image.data
            return name
        img = decode_image(image)
        if img is None:
            return None
        return to_data_uri(encode_image(img, 'png'), mime_for('png'))

    def _replay(self, surface: Union[VectorSurface, RasterSurface], raster_chars: Set[int],
                limit: Optional[int] = None) -> bool:
        """
        Paint the display list onto a surface.

        Returns False as soon as the surface's primitive count exceeds ``limit``.
        """
        current_clip: Optional[Rect] = None
        clip_open = False
        for op in self._ops:
            if isinstance(op, _GlyphOp):
                if op.handle not in raster_chars:
                    continue
                clip = op.trace.clip
            else:
                clip = op.clip

            if clip_open and (clip is None or current_clip is None or not clip.approx_equals(current_clip)):
                surface.pop_clip()
                clip_open = False
                current_clip = None
            if clip is not None and not clip_open:
                surface.push_clip(clip)
                clip_open = True
                current_clip = clip

            if isinstance(op, _PathOp):
                if op.kind is DrawKind.FILL:
                    surface.fill_rect(op.rect, op.color, op.opacity)
                else:
                    surface.stroke_rect(op.rect, op.color, op.opacity, op.line_width)
            elif isinstance(op, _ImageOp):
                if isinstance(surface, VectorSurface):
                    href = self._image_href(op.image)
                    if href is not None:
                        surface.draw_image(op.rect, href, op.opacity)
                else:
                    img = decode_image(op.image)
                    if img is not None:
                        surface.draw_image(op.rect, img, op.opacity)
            else:
                trace = op.trace
                if trace.render_mode in (RENDER_INVISIBLE, RENDER_CLIP):
                    continue
                color = trace.stroke_color if trace.render_mode in NO_FILL_RENDER_MODES else trace.fill_color
                family = trace.font.name if trace.font is not None and trace.font.name else "sans-serif"
                surface.draw_glyph(trace.glyph_matrix, trace.text, trace.font_size, color, font_family=family)

            if limit is not None and surface.primitive_count > limit:
                return False
        if clip_open:
            surface.pop_clip()
        return True

    def finalize(self, occlusion: OcclusionDetector) -> BackgroundDecision:
        """
        Decide the page's background mode; called once, after the page end event.

        Args:
            occlusion: The page's detector, frozen here

        Returns:
            BackgroundDecision with mode, painted glyphs and extracted images
        """
        if self._decision is not None:
            return self._decision

        occlusion.freeze()
        config = self.config
        raster_chars = self._raster_chars(occlusion)
        decision = BackgroundDecision(mode=BackgroundMode.RASTER, raster_chars=frozenset(raster_chars),
                                      page_color=self._page_color)

        if config.fallback:
            decision.reason = "fallback rendering requested"
            decision.dpi = config.desired_dpi
        elif config.correct_text_visibility == 2 and occlusion.partially_covered_handles():
            decision.reason = "partially covered text"
            decision.dpi = max(config.desired_dpi, config.text_dpi)
        elif config.bg_format != "svg":
            decision.dpi = config.desired_dpi
        else:
            surface = VectorSurface(self.page_width, self.page_height)
            within_limit = self._replay(surface, raster_chars, config.svg_node_count_limit)
            decision.primitive_count = surface.primitive_count
            if within_limit:
                decision.mode = BackgroundMode.VECTOR
                decision.extracted_images = list(self._extracted)
                self._svg = None if surface.empty else surface.finish()
            else:
                logger.info(
                    f"Vector background exceeds {config.svg_node_count_limit} primitives, "
                    f"falling back to raster"
                )
                decision.reason = f"more than {config.svg_node_count_limit} vector primitives"
                decision.dpi = config.desired_dpi
                self._extracted.clear()

        if decision.mode is BackgroundMode.RASTER and decision.primitive_count == 0:
            decision.primitive_count = sum(
                1 for op in self._ops if not isinstance(op, _GlyphOp) or op.handle in raster_chars
            )
        if self._skipped_images:
            logger.debug(f"{self._skipped_images} images skipped on this page")

        self._decision = decision
        logger.debug(
            f"Background decision: {decision.mode.value}, {decision.primitive_count} primitives, "
            f"{len(raster_chars)} glyphs painted"
        )
        return decision

    # --- Output ---

    def _reserve(self, sink: AssetSink) -> None:
        """Fail before writing anything when the vector assets do not fit the budget."""
        known = set(sink.names)
        size = sum(len(data) for name, data in self._extracted.items() if name not in known)
        if self._svg is not None:
            size += len(self._svg)
        if sink.budget.would_exceed(size):
            raise MemoryLimitError(
                f"Output size limit exceeded writing page background: "
                f"{sink.budget.used + size} bytes (max: {sink.budget.limit} bytes)"
            )

    def embed(self, sink: AssetSink, inline: Optional[bool] = None) -> BackgroundAsset:
        """
        Write the finished background and return its reference.

        Raster backgrounds are rendered here. A vector background and its
        extracted JPEG files are checked against the budget as a whole, then
        the JPEGs are written before the SVG that references them.
        """
        decision = self._decision
        if decision is None:
            raise RuntimeError("embed() called before finalize()")
        if inline is None:
            inline = self.config.embed_image

        page_color = decision.page_color.to_css() if decision.page_color is not None else None
        asset = BackgroundAsset(
            mode=decision.mode,
            reference=None,
            mime_type=mime_for('svg'),
            width=self.page_width,
            height=self.page_height,
            dpi=decision.dpi,
            primitive_count=decision.primitive_count,
            extracted_images=list(decision.extracted_images),
            page_color=page_color,
            fallback_reason=decision.reason,
        )

        if decision.mode is BackgroundMode.VECTOR:
            self._reserve(sink)
            for name, data in self._extracted.items():
                written = sink.write(data, 'jpg')
                if written != name:
                    logger.warning(f"Asset sink renamed {name} to {written}")
            if self._svg is not None:
                asset.reference = reference_asset(sink, self._svg, 'svg', inline)
            return asset

        fmt = 'jpg' if self.config.bg_format == 'jpg' else 'png'
        surface = RasterSurface(self.page_width, self.page_height, decision.dpi or self.config.desired_dpi, fmt)
        self._replay(surface, set(decision.raster_chars))
        asset.dpi = surface.dpi
        asset.mime_type = mime_for(fmt)
        if surface.primitive_count:
            asset.reference = reference_asset(sink, surface.finish(), fmt, inline)
        return asset

import base64
import io

import pytest
from PIL import Image

from folio.engine.config import ConversionConfig
from folio.models.render_types import BackgroundMode
from folio.processors.background import BackgroundRenderingStrategy
from folio.processors.events import Color, DrawImage, DrawKind, DrawPath, ImageRef
from folio.processors.graphics_state import GraphicsStateTracker
from folio.processors.occlusion import OcclusionDetector
from folio.utils.assets import MemoryAssetSink
from folio.utils.pdf_transforms import Matrix, Rect
from folio.utils.resource_limits import OutputBudget
from folio.utils.validation import MemoryLimitError


def _strategy(**overrides):
    config = ConversionConfig(timeout_seconds=None, **overrides)
    return BackgroundRenderingStrategy(200, 200, config)


def _fill(rect, color=Color(0, 0, 255), opacity=1.0):
    return DrawPath(kind=DrawKind.FILL, rect=rect, color=color, opacity=opacity)


def _jpeg(size=(4, 4)):
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 10, 10)).save(buf, format="JPEG")
    data = buf.getvalue()
    return ImageRef(name="Im1", width=size[0], height=size[1], filters=("DCTDecode",), data=data,
                    raw_length=len(data))


def _draw_glyph(strategy, occlusion, styles, font, x=72.0):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, 12)
    placement = tracker.place_char(65, "A", (x, 100), 8.0)
    handle = occlusion.add_char_bbox(placement.trace.bbox)
    strategy.on_draw_char(placement.trace, handle)
    return handle


def test_empty_page_has_no_reference():
    strategy = _strategy()
    decision = strategy.finalize(OcclusionDetector())

    asset = strategy.embed(MemoryAssetSink())

    assert decision.mode is BackgroundMode.VECTOR
    assert asset.reference is None


def test_small_page_stays_vector():
    strategy = _strategy()
    strategy.on_draw_path(_fill(Rect(10, 10, 50, 50)))

    decision = strategy.finalize(OcclusionDetector())
    asset = strategy.embed(MemoryAssetSink())

    assert decision.mode is BackgroundMode.VECTOR
    assert decision.primitive_count == 1
    assert asset.reference.startswith("data:image/svg+xml;base64,")
    svg = base64.b64decode(asset.reference.split(",", 1)[1]).decode()
    assert '<rect x="10" y="10" width="40" height="40" fill="rgb(0,0,255)"/>' in svg


def test_node_limit_equal_stays_vector_above_goes_raster():
    strategy = _strategy(svg_node_count_limit=2)
    for i in range(2):
        strategy.on_draw_path(_fill(Rect(i, i, i + 5, i + 5)))
    assert strategy.finalize(OcclusionDetector()).mode is BackgroundMode.VECTOR

    strategy = _strategy(svg_node_count_limit=2)
    for i in range(3):
        strategy.on_draw_path(_fill(Rect(i, i, i + 5, i + 5)))
    decision = strategy.finalize(OcclusionDetector())

    assert decision.mode is BackgroundMode.RASTER
    assert decision.dpi == 144.0
    assert decision.primitive_count == 3


def test_raster_background_is_png_file():
    strategy = _strategy(bg_format="png")
    strategy.on_draw_path(_fill(Rect(10, 10, 50, 50)))
    strategy.finalize(OcclusionDetector())
    sink = MemoryAssetSink()

    asset = strategy.embed(sink, inline=False)

    assert asset.mode is BackgroundMode.RASTER
    assert asset.mime_type == "image/png"
    assert asset.reference in sink.assets
    assert sink.assets[asset.reference][:8] == b"\x89PNG\r\n\x1a\n"
    image = Image.open(io.BytesIO(sink.assets[asset.reference]))
    assert image.size == (400, 400)


def test_covered_glyph_is_painted_into_background(styles, font):
    strategy = _strategy()
    occlusion = OcclusionDetector()
    handle = _draw_glyph(strategy, occlusion, styles, font)
    occlusion.add_non_char_bbox(Rect(60, 90, 160, 120))
    strategy.on_draw_path(_fill(Rect(60, 90, 160, 120)))

    decision = strategy.finalize(occlusion)

    assert decision.suppressed == frozenset({handle})
    assert decision.primitive_count == 2


def test_visible_glyph_stays_live_text(styles, font):
    strategy = _strategy()
    occlusion = OcclusionDetector()
    _draw_glyph(strategy, occlusion, styles, font)

    decision = strategy.finalize(occlusion)

    assert decision.suppressed == frozenset()
    assert strategy.embed(MemoryAssetSink()).reference is None


def test_visibility_correction_off_keeps_covered_text(styles, font):
    strategy = _strategy(correct_text_visibility=0)
    occlusion = OcclusionDetector()
    _draw_glyph(strategy, occlusion, styles, font)
    occlusion.add_non_char_bbox(Rect(0, 0, 200, 200))

    assert strategy.finalize(occlusion).suppressed == frozenset()


def test_partially_covered_text_forces_raster_at_text_dpi(styles, font):
    strategy = _strategy(correct_text_visibility=2)
    occlusion = OcclusionDetector()
    _draw_glyph(strategy, occlusion, styles, font)
    occlusion.add_non_char_bbox(Rect(0, 0, 76, 200))

    decision = strategy.finalize(occlusion)

    assert decision.mode is BackgroundMode.RASTER
    assert decision.dpi == 300.0
    assert decision.reason == "partially covered text"


def test_fallback_paints_all_text(styles, font):
    strategy = _strategy(fallback=True)
    occlusion = OcclusionDetector()
    handle = _draw_glyph(strategy, occlusion, styles, font)

    decision = strategy.finalize(occlusion)

    assert decision.mode is BackgroundMode.RASTER
    assert handle in decision.suppressed


def test_full_page_fill_sets_page_color():
    strategy = _strategy()
    strategy.on_draw_path(_fill(Rect(0, 0, 200, 200), color=Color(250, 250, 240)))
    strategy.on_draw_path(_fill(Rect(0, 0, 200, 200), color=Color(0, 0, 0)))

    asset_color = strategy.finalize(OcclusionDetector()).page_color

    assert asset_color == Color(250, 250, 240)


def test_extractable_jpeg_is_written_as_file():
    strategy = _strategy(embed_image=False)
    image = _jpeg()
    strategy.on_draw_image(DrawImage(rect=Rect(0, 0, 50, 50), image=image))
    decision = strategy.finalize(OcclusionDetector())
    sink = MemoryAssetSink()

    asset = strategy.embed(sink, inline=False)

    assert len(decision.extracted_images) == 1
    name = decision.extracted_images[0]
    assert name.endswith(".jpg")
    assert sink.assets[name] == image.data
    svg = sink.assets[asset.reference].decode()
    assert f'href="{name}"' in svg


def test_inline_jpeg_is_a_data_uri():
    strategy = _strategy()
    strategy.on_draw_image(DrawImage(rect=Rect(0, 0, 50, 50), image=_jpeg()))
    decision = strategy.finalize(OcclusionDetector())
    asset = strategy.embed(MemoryAssetSink())

    svg = base64.b64decode(asset.reference.split(",", 1)[1]).decode()

    assert decision.extracted_images == []
    assert 'href="data:image/jpeg;base64,' in svg


def test_decompression_bomb_is_skipped():
    strategy = _strategy(max_decompression_ratio=10)
    image = ImageRef(name="Im2", width=100, height=100, components=1, color_space="DeviceGray",
                     data=b"\x00" * 10000, raw_length=20, filters=("FlateDecode",))

    strategy.on_draw_image(DrawImage(rect=Rect(0, 0, 50, 50), image=image))

    assert len(strategy) == 0


def test_nontext_can_be_disabled():
    strategy = _strategy(process_nontext=False)
    strategy.on_draw_path(_fill(Rect(10, 10, 50, 50)))

    assert len(strategy) == 0


def test_embed_before_finalize_is_an_error():
    with pytest.raises(RuntimeError):
        _strategy().embed(MemoryAssetSink())


def test_clip_groups_are_written():
    strategy = _strategy()
    strategy.on_draw_path(_fill(Rect(10, 10, 50, 50)), clip=Rect(0, 0, 20, 20))
    strategy.finalize(OcclusionDetector())
    asset = strategy.embed(MemoryAssetSink())

    svg = base64.b64decode(asset.reference.split(",", 1)[1]).decode()

    assert "<clipPath" in svg
    assert 'clip-path="url(#c0)"' in svg


def test_glyph_matrix_is_used_for_painted_text(styles, font):
    strategy = _strategy()
    occlusion = OcclusionDetector()
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, 10)
    tracker.update_transform(Matrix(0, 1, -1, 0, 0, 0))
    placement = tracker.place_char(65, "A", (50, 50), 5.0)
    handle = occlusion.add_char_bbox(placement.trace.bbox)
    strategy.on_draw_char(placement.trace, handle)
    occlusion.add_non_char_bbox(Rect(0, 0, 200, 200))
    strategy.on_draw_path(_fill(Rect(0, 0, 200, 200)))

    strategy.finalize(occlusion)
    svg = base64.b64decode(strategy.embed(MemoryAssetSink()).reference.split(",", 1)[1]).decode()

    assert 'transform="matrix(0,1,1,0,50,50)"' in svg
    assert ">A</text>" in svg


def test_page_color_fill_is_not_painted():
    strategy = _strategy()
    strategy.on_draw_path(_fill(Rect(0, 0, 200, 200), color=Color(250, 250, 240)))
    strategy.on_draw_path(_fill(Rect(10, 10, 50, 50)))

    decision = strategy.finalize(OcclusionDetector())
    asset = strategy.embed(MemoryAssetSink())

    assert decision.primitive_count == 1
    assert asset.page_color == Color(250, 250, 240).to_css()
    svg = base64.b64decode(asset.reference.split(",", 1)[1]).decode()
    assert "rgb(250,250,240)" not in svg


def test_full_page_fill_over_content_stays_in_background():
    strategy = _strategy()
    strategy.on_draw_path(_fill(Rect(10, 10, 50, 50)))
    strategy.on_draw_path(_fill(Rect(0, 0, 200, 200), color=Color(250, 250, 240)))

    decision = strategy.finalize(OcclusionDetector())

    assert decision.page_color is None
    assert decision.primitive_count == 2


def test_clipped_full_page_fill_is_not_page_color():
    strategy = _strategy()
    strategy.on_draw_path(_fill(Rect(0, 0, 200, 200)), clip=Rect(0, 0, 100, 100))

    assert strategy.finalize(OcclusionDetector()).page_color is None


def test_vector_budget_is_checked_before_images_are_written():
    strategy = _strategy(embed_image=False)
    image = _jpeg()
    strategy.on_draw_image(DrawImage(rect=Rect(0, 0, 50, 50), image=image))
    strategy.finalize(OcclusionDetector())
    sink = MemoryAssetSink(OutputBudget(len(image.data) + 1))

    with pytest.raises(MemoryLimitError):
        strategy.embed(sink, inline=False)

    assert sink.assets == {}
    assert sink.budget.used == 0

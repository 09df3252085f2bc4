import io

import pytest

from folio.models.render_types import OffsetSegment, TextSegment
from folio.processors.events import Color
from folio.processors.graphics_state import GraphicsStateTracker
from folio.processors.line_builder import LineBuilder
from folio.utils.pdf_transforms import Matrix, Rect


@pytest.fixture()
def tracker(styles, font):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, 12)
    tracker.update_transform(Matrix(1, 0, 0, 1, 72, 100))
    return tracker


@pytest.fixture()
def builder(styles):
    builder = LineBuilder(styles, 200, 200)
    builder.register_clip(None, 0)
    return builder


def _feed(tracker, builder, glyphs):
    handles = []
    for i, (text, x, y) in enumerate(glyphs):
        builder.apply(tracker.place_char(ord(text), text, (x, y), 8.0), i)
        handles.append(i)
    return handles


def test_single_run_line(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100), ("B", 80, 100)])

    layout = builder.dump()

    assert len(layout.lines) == 1
    line = layout.lines[0]
    assert line.classes == ["t", "m0", "x0", "y0"]
    assert len(line.runs) == 1
    assert line.runs[0].classes == ["fs0", "fc0"]
    assert line.text == "AB"


def test_offsets_are_interleaved_with_text(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100), ("B", 90, 100)])

    segments = builder.dump().lines[0].runs[0].segments

    assert isinstance(segments[0], TextSegment) and segments[0].text == "A"
    assert isinstance(segments[1], OffsetSegment) and segments[1].width == pytest.approx(10.0)
    assert segments[1].class_name == "_0"
    assert isinstance(segments[2], TextSegment) and segments[2].text == "B"


def test_offsets_below_h_eps_are_dropped(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100), ("B", 80.2, 100)])

    segments = builder.dump().lines[0].runs[0].segments

    assert segments == [TextSegment(text="AB")]


def test_new_line_for_each_baseline(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100), ("B", 72, 80)])

    layout = builder.dump()

    assert [line.text for line in layout.lines] == ["A", "B"]
    assert layout.lines[1].classes == ["t", "m0", "x0", "y1"]


def test_suppressed_glyphs_split_the_run(tracker, builder, styles):
    handles = _feed(tracker, builder, [("A", 72, 100), ("B", 80, 100), ("C", 88, 100)])

    runs = builder.dump(suppressed={handles[1]}).lines[0].runs

    assert [run.text for run in runs] == ["A", "B", "C"]
    assert [run.suppressed for run in runs] == [False, True, False]
    transparent = styles.fill_color.lookup(Color.TRANSPARENT)
    assert runs[1].classes == ["fs0", f"fc{transparent}"]
    assert runs[0].classes == runs[2].classes == ["fs0", "fc0"]


def test_page_sized_clip_is_dropped(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100)])

    assert builder.dump().clips == []


def test_clip_region_spans_its_lines(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100)])
    tracker.update_clip(Rect(0, 0, 100, 150))
    builder.apply(tracker.place_char(66, "B", (72, 80), 8.0), 1)
    builder.apply(tracker.place_char(67, "C", (72, 60), 8.0), 2)

    clips = builder.dump().clips

    assert len(clips) == 1
    assert clips[0].first_line == 1
    assert clips[0].last_line == 3
    assert clips[0].bbox.x1 == pytest.approx(100)


def test_unstyled_glyph_gets_warning_marker(builder):
    builder.append_char("?", None)

    run = builder.dump().lines[0].runs[0]

    assert run.warning
    assert run.classes == []


def test_dump_writes_markup(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100), ("<", 80, 100)])
    out = io.StringIO()

    builder.dump(out)

    assert out.getvalue() == '<div class="t m0 x0 y0"><span class="fs0 fc0">A&lt;</span></div>\n'


def test_discard_drops_the_page(tracker, builder):
    _feed(tracker, builder, [("A", 72, 100)])
    builder.discard()

    assert builder.dump().lines == []

import pytest

from folio.constants.pdf_keys import RENDER_STROKE
from folio.processors.events import Color, FontRef
from folio.processors.graphics_state import MAX_COORDINATE, MAX_FONT_SIZE, DirtyFlag, GraphicsStateTracker, RunDecision
from folio.processors.state_registry import StyleKind
from folio.utils.pdf_transforms import Matrix, Rect


@pytest.fixture()
def tracker(styles, font):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, 12)
    tracker.update_transform(Matrix(1, 0, 0, 1, 72, 100))
    return tracker


def test_first_glyph_opens_a_line(tracker):
    placement = tracker.place_char(65, "A", (72, 100), 8.0)

    assert placement.decision is RunDecision.NEW_LINE
    assert placement.line_style is not None
    assert placement.run_style is not None
    assert placement.trace.text == "A"


def test_adjacent_glyph_continues_the_run(tracker):
    tracker.place_char(65, "A", (72, 100), 8.0)
    placement = tracker.place_char(66, "B", (80, 100), 8.0)

    assert placement.decision is RunDecision.CONTINUE
    assert placement.offset == pytest.approx(0.0)


def test_gap_is_reported_as_offset(tracker):
    tracker.place_char(65, "A", (72, 100), 8.0)
    placement = tracker.place_char(66, "B", (90, 100), 8.0)

    assert placement.decision is RunDecision.CONTINUE
    assert placement.offset == pytest.approx(10.0)


def test_vertical_jump_starts_a_new_line(tracker):
    tracker.place_char(65, "A", (72, 100), 8.0)
    placement = tracker.place_char(66, "B", (80, 80), 8.0)

    assert placement.decision is RunDecision.NEW_LINE


def test_color_change_starts_a_new_run(tracker):
    first = tracker.place_char(65, "A", (72, 100), 8.0)
    tracker.update_color(Color(255, 0, 0), Color.BLACK)
    second = tracker.place_char(66, "B", (80, 100), 8.0)

    assert second.decision is RunDecision.NEW_RUN
    assert second.run_style.fill_color_id != first.run_style.fill_color_id
    assert second.run_style.font_size_id == first.run_style.font_size_id


def test_proportional_transform_stays_on_the_line(tracker, styles):
    tracker.place_char(65, "A", (72, 100), 8.0)
    tracker.update_transform(Matrix(2, 0, 0, 2, 80, 100))
    placement = tracker.place_char(66, "B", (80, 100), 8.0)

    assert placement.decision is RunDecision.NEW_RUN
    assert len(styles.registry(StyleKind.TRANSFORM)) == 1
    assert styles.font_size.value(placement.run_style.font_size_id) == pytest.approx(24.0)


def test_rotated_transform_starts_a_new_line(tracker, styles):
    tracker.place_char(65, "A", (72, 100), 8.0)
    tracker.update_transform(Matrix(0, 1, -1, 0, 80, 100))
    placement = tracker.place_char(66, "B", (80, 100), 8.0)

    assert placement.decision is RunDecision.NEW_LINE
    assert len(styles.registry(StyleKind.TRANSFORM)) == 2


def test_negative_font_size_is_normalized(styles, font):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, -12)
    tracker.update_transform(Matrix(1, 0, 0, 1, 0, 0))
    placement = tracker.place_char(65, "A", (10, 10), 8.0)

    assert placement.trace.font_size == pytest.approx(12.0)
    assert styles.font_size.value(placement.run_style.font_size_id) == pytest.approx(12.0)
    # The linear part is negated, so the transform class is a half turn
    assert styles.transform.value(placement.line_style.transform_id).approx_equals(Matrix(-1, 0, 0, -1, 0, 0))


def test_tiny_font_size_is_raised_to_minimum(styles, font):
    tracker = GraphicsStateTracker(styles, min_font_size=0.5)
    tracker.update_font(font, 0.01)
    placement = tracker.place_char(65, "A", (0, 0), 0.0)

    assert styles.font_size.value(placement.run_style.font_size_id) == pytest.approx(0.5)


def test_restore_brings_back_saved_values(tracker):
    tracker.save()
    tracker.update_color(Color(0, 255, 0), Color.BLACK)
    tracker.update_clip(Rect(0, 0, 50, 50))
    tracker.restore()

    assert tracker.state.fill_color == Color.BLACK
    assert tracker.state.clip is None
    assert tracker.dirty & DirtyFlag.CLIP


def test_unbalanced_restore_is_ignored(tracker):
    tracker.restore()

    assert tracker.depth == 0


def test_clips_intersect(tracker):
    tracker.update_clip(Rect(0, 0, 100, 100))
    tracker.update_clip(Rect(50, 50, 200, 200))

    assert tracker.state.clip == Rect(50, 50, 100, 100)


def test_clip_change_starts_a_new_line(tracker):
    tracker.place_char(65, "A", (72, 100), 8.0)
    tracker.update_clip(Rect(0, 0, 150, 150))
    placement = tracker.place_char(66, "B", (80, 100), 8.0)

    assert placement.decision is RunDecision.NEW_LINE
    assert placement.clip_changed


def test_stroked_text_is_non_representable(tracker, styles):
    tracker.update_render_mode(RENDER_STROKE)
    placement = tracker.place_char(65, "A", (72, 100), 8.0)

    assert placement.trace.non_representable
    assert placement.run_style.stroke_color_id is not None
    # Stroke-only text has a transparent fill
    assert styles.fill_color.value(placement.run_style.fill_color_id).transparent


def test_type3_glyphs_need_opt_in(styles):
    type3 = FontRef(key="t3", name="T3", is_type3=True)
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(type3, 10)

    assert tracker.place_char(65, "A", (0, 0), 5.0).trace.non_representable

    tracker = GraphicsStateTracker(styles, process_type3=True)
    tracker.update_font(type3, 10)
    assert not tracker.place_char(65, "A", (0, 0), 5.0).trace.non_representable


def test_spacing_is_recorded_in_run_style(tracker, styles):
    tracker.update_text_spacing(1.5, 0.0)
    placement = tracker.place_char(65, "A", (72, 100), 8.0)

    assert styles.registry(StyleKind.LETTER_SPACE).value(placement.run_style.letter_space_id) == pytest.approx(1.5)
    assert placement.run_style.word_space_id is None


def test_word_space_advances_the_pen_after_spaces(tracker):
    tracker.update_text_spacing(0.0, 4.0)
    tracker.place_char(32, " ", (72, 100), 3.0)
    placement = tracker.place_char(65, "A", (79, 100), 8.0)

    assert placement.decision is RunDecision.CONTINUE
    assert placement.offset == pytest.approx(0.0)


def test_glyph_box_uses_font_metrics(tracker):
    placement = tracker.place_char(65, "A", (72, 100), 8.0)

    assert placement.trace.bbox.approx_equals(Rect(72, 97.6, 80, 109.6))


def test_ligatures_decompose_when_enabled(styles, font):
    tracker = GraphicsStateTracker(styles, decompose_ligatures=True)
    tracker.update_font(font, 10)

    assert tracker.place_char(0xFB01, "ﬁ", (0, 0), 5.0).trace.text == "fi"


def test_missing_text_falls_back_to_code(tracker):
    assert tracker.place_char(0x42, "", (72, 100), 8.0).trace.text == "B"


def test_from_config_copies_tolerances(styles, config):
    config.h_eps = 2.0
    config.process_type3 = True
    tracker = GraphicsStateTracker.from_config(styles, config)

    assert tracker.h_eps == 2.0
    assert tracker.process_type3


def test_should_start_new_run_reflects_pending_changes(tracker):
    tracker.place_char(65, "A", (72, 100), 8.0)

    assert not tracker.should_start_new_run((80, 100))

    tracker.update_color(Color(0, 0, 255), Color.BLACK)
    assert tracker.should_start_new_run((80, 100))


def test_huge_font_size_is_clamped(styles, font):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, 1e305)
    placement = tracker.place_char(65, "A", (10, 10), 8.0)

    assert styles.font_size.value(placement.run_style.font_size_id) == pytest.approx(MAX_FONT_SIZE)


def test_overflowing_scale_and_origin_are_clamped(styles, font):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, 100)
    tracker.update_transform(Matrix(1e307, 0, 0, 1e307, 0, 0))
    placement = tracker.place_char(65, "A", (1e305, -1e305), 8.0)

    assert styles.font_size.value(placement.run_style.font_size_id) == pytest.approx(MAX_FONT_SIZE)
    assert placement.trace.origin == (MAX_COORDINATE, -MAX_COORDINATE)
    assert styles.registry(StyleKind.LEFT).value(placement.line_style.left_id) == MAX_COORDINATE


def _place_pair(styles, font, size, matrix, advance):
    tracker = GraphicsStateTracker(styles)
    tracker.update_font(font, size)
    tracker.update_transform(matrix)
    first = tracker.place_char(65, "A", (72, 100), advance)
    second = tracker.place_char(66, "B", (60, 100), advance)
    return first, second


def test_negative_font_size_places_glyphs_like_negated_transform(styles, font):
    # Backends report advances with the sign of the font size
    neg_first, neg_second = _place_pair(styles, font, -12, Matrix(1, 0, 0, 1, 0, 0), -8.0)
    pos_first, pos_second = _place_pair(styles, font, 12, Matrix(-1, 0, 0, -1, 0, 0), 8.0)

    assert neg_first.trace.bbox.approx_equals(pos_first.trace.bbox)
    assert neg_first.trace.glyph_matrix.approx_equals(pos_first.trace.glyph_matrix)
    assert neg_second.decision is pos_second.decision is RunDecision.CONTINUE
    assert neg_second.offset == pytest.approx(pos_second.offset)
    assert neg_second.offset == pytest.approx(4.0)

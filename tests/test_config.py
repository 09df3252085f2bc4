import pytest

from folio.engine.config import ConversionConfig, PageRange


def test_defaults_are_valid():
    config = ConversionConfig()

    assert config.validate()
    assert config.h_eps == 0.5
    assert config.v_eps == 0.5
    assert config.svg_node_count_limit == 1000
    assert config.desired_dpi == 144.0
    assert config.text_dpi == 300.0


@pytest.mark.parametrize("overrides", [
    {"zoom": 0},
    {"h_eps": -1},
    {"correct_text_visibility": 3},
    {"occlusion_opacity_threshold": 1.5},
    {"bg_format": "gif"},
    {"font_format": "pfb"},
    {"svg_node_count_limit": -5},
    {"text_dpi": 0},
    {"max_decompression_ratio": 0},
    {"timeout_seconds": 0},
    {"embed_css": False},
])
def test_invalid_values_fail_validation(overrides):
    assert not ConversionConfig(**overrides).validate()


def test_external_css_needs_dest_dir(tmp_path):
    assert ConversionConfig(embed_css=False, dest_dir=str(tmp_path)).validate()


def test_dict_round_trip_with_page_bounds():
    config = ConversionConfig.from_dict({"first_page": 2, "last_page": 4, "bg_format": "png", "bogus": 1})

    assert config.page_range == PageRange(2, 4)
    assert config.bg_format == "png"
    data = config.to_dict()
    assert data["first_page"] == 2
    assert data["last_page"] == 4
    assert "page_range" not in data
    assert "bogus" not in data


def test_page_range_validation():
    with pytest.raises(ValueError):
        PageRange(0)
    with pytest.raises(ValueError):
        PageRange(3, 2)


def test_page_range_is_clamped_to_document():
    assert PageRange(2, 5).to_page_numbers(3) == [2, 3]
    assert PageRange.all_pages().to_page_numbers(2) == [1, 2]
    assert PageRange.single_page(4).to_page_numbers(3) == []
    assert PageRange(1).to_page_numbers(0) == []

import pytest

from folio.processors.events import FontRef
from folio.processors.font_registry import FontProgram, FontRegistry
from folio.utils.assets import MemoryAssetSink
from folio.utils.font_mapping import get_font_weight_and_style, map_pdf_font_to_css, strip_subset_prefix
from folio.utils.resource_limits import OutputBudget

EMBEDDED = FontRef(key="f7", name="ABCDEF+Arial-BoldItalic", is_embedded=True)


class FakeBackend:
    def __init__(self, program=None):
        self.program = program
        self.extract_calls = 0

    def glyph_map(self, font):
        return {1: "x"}

    def extract_font(self, font, target_format):
        self.extract_calls += 1
        return self.program


def test_ids_are_stable_per_key(font):
    fonts = FontRegistry()

    assert fonts.install(font) == 0
    assert fonts.install(EMBEDDED) == 1
    assert fonts.install(FontRef(key="f1", name="Other")) == 0
    assert len(fonts) == 2
    assert fonts.class_name(1) == "ff1"
    assert fonts.lookup(EMBEDDED) == 1


def test_glyph_text_comes_from_backend():
    fonts = FontRegistry(FakeBackend())
    fonts.install(EMBEDDED)

    assert fonts.glyph_text(EMBEDDED, 1) == "x"
    assert fonts.glyph_text(EMBEDDED, 2) is None
    assert fonts.glyph_text(FontRef(key="nope"), 1) is None


def test_embedded_program_becomes_font_face():
    backend = FakeBackend(FontProgram(b"wOF2data", "woff2"))
    fonts = FontRegistry(backend)
    fonts.install(EMBEDDED)

    rules = fonts.emit(MemoryAssetSink())

    assert len(rules) == 1
    assert rules[0].startswith("@font-face{font-family:ff0;src:url(data:font/woff2;base64,")
    assert 'format("woff2")' in rules[0]
    assert ".ff0{font-family:ff0,Arial, Helvetica, sans-serif;" in rules[0]
    assert "font-weight:bold;font-style:italic;" in rules[0]
    assert fonts.assets()[0].format == "woff2"


def test_program_written_as_file_when_not_inlined():
    fonts = FontRegistry(FakeBackend(FontProgram(b"\x00\x01\x00\x00ttf", "ttf")), font_format="ttf")
    fonts.install(EMBEDDED)
    sink = MemoryAssetSink()

    rules = fonts.emit(sink, inline=False)

    name = sink.names[0]
    assert name.endswith(".ttf")
    assert f'src:url({name})format("truetype")' in rules[0]
    assert fonts.assets()[0].reference == name


def test_font_without_program_uses_fallback_family(font):
    backend = FakeBackend()
    fonts = FontRegistry(backend)
    fonts.install(font)

    rules = fonts.emit(MemoryAssetSink())

    assert "@font-face" not in rules[0]
    assert ".ff0{font-family:Helvetica, Arial, sans-serif;line-height:1;" in rules[0]
    # Not embedded, so the backend is never asked for a program
    assert backend.extract_calls == 0
    assert fonts.assets()[0].format == "none"


def test_program_over_budget_falls_back():
    fonts = FontRegistry(FakeBackend(FontProgram(b"x" * 100, "woff2")))
    fonts.install(EMBEDDED)

    rules = fonts.emit(MemoryAssetSink(OutputBudget(10)))

    assert "@font-face" not in rules[0]
    assert fonts.assets()[0].format == "none"


def test_type3_fonts_are_never_extracted():
    backend = FakeBackend(FontProgram(b"data", "woff2"))
    fonts = FontRegistry(backend)
    fonts.install(FontRef(key="t3", name="T3", is_type3=True, is_embedded=True))

    fonts.emit(MemoryAssetSink())

    assert backend.extract_calls == 0


@pytest.mark.parametrize("name,expected", [
    ("ABCDEF+TimesNewRomanPSMT", "Times New Roman, Times, serif"),
    ("Courier-Bold", "Courier New, Courier, monospace"),
    ("UnknownFace", "serif"),
    ("", "serif"),
])
def test_fallback_family_mapping(name, expected):
    assert map_pdf_font_to_css(name) == expected


def test_weight_and_style_from_name():
    assert get_font_weight_and_style("Helvetica-BoldOblique") == ("bold", "italic")
    assert get_font_weight_and_style("Foo-Light") == ("300", "normal")
    assert strip_subset_prefix("QWERTY+Foo") == "Foo"

import io

from folio.constants.html_classes import BASE_CSS
from folio.models.render_types import (
    BackgroundAsset,
    BackgroundMode,
    BoundingBox,
    ClipRegionOutput,
    LineOutput,
    OffsetSegment,
    PageLayout,
    PageResult,
    PageStatus,
    RunOutput,
    TextSegment,
)
from folio.utils.html_markup import build_stylesheet, write_html_document, write_page, write_text_layer


def _line(index, text, classes=("fs0",)):
    return LineOutput(index=index, classes=["t", "m0", "x0", f"y{index}"], x=0, y=0,
                      runs=[RunOutput(classes=list(classes), segments=[TextSegment(text=text)])])


def test_offsets_and_warnings_are_written():
    run = RunOutput(classes=[], warning=True, segments=[
        TextSegment(text="a"), OffsetSegment(width=3, class_name="_1"), TextSegment(text="b")])
    layout = PageLayout(width=100, height=100, lines=[
        LineOutput(index=0, classes=["t"], x=0, y=0, runs=[run])])
    out = io.StringIO()

    write_text_layer(out, layout)

    assert out.getvalue() == '<div class="t"><span class="w">a<span class="_ _1"></span>b</span></div>\n'


def test_clip_region_wraps_its_lines():
    layout = PageLayout(
        width=200, height=100,
        lines=[_line(0, "a"), _line(1, "b"), _line(2, "c")],
        clips=[ClipRegionOutput(bbox=BoundingBox(x0=10, y0=20, x1=150, y1=90), first_line=1, last_line=2)],
    )
    out = io.StringIO()

    write_text_layer(out, layout)
    html = out.getvalue().splitlines()

    assert html[1] == '<div class="c" style="clip-path:inset(10px 50px 20px 10px);-webkit-clip-path:inset(10px 50px 20px 10px);">'
    assert html[2].endswith("b</span></div>")
    assert html[3] == "</div>"
    assert html[4].endswith("c</span></div>")


def test_page_container_with_background():
    page = PageResult(
        number=2, status=PageStatus.CONVERTED, width=200, height=100,
        layout=PageLayout(width=200, height=100, lines=[_line(0, "x")]),
        background=BackgroundAsset(mode=BackgroundMode.VECTOR, reference="bg.svg", mime_type="image/svg+xml",
                                   width=200, height=100, page_color="rgb(1,2,3)"),
    )
    out = io.StringIO()

    write_page(out, page)
    html = out.getvalue()

    assert html.startswith('<div id="pf2" class="pf" style="width:200px;height:100px;background-color:rgb(1,2,3);"')
    assert 'data-status="converted"' in html
    assert '<img class="bi" alt="" src="bg.svg"/>' in html


def test_aborted_page_is_an_empty_container():
    out = io.StringIO()

    write_page(out, PageResult(number=1, status=PageStatus.ABORTED, width=10, height=10, error="limit"))

    assert 'data-status="aborted"' in out.getvalue()
    assert "<span" not in out.getvalue()


def test_stylesheet_order():
    css = build_stylesheet(".fs0{font-size:12px;}\n", ["@font-face{}\n"])

    assert css.startswith(BASE_CSS)
    assert css.index("@font-face") < css.index(".fs0")


def test_document_inlines_or_links_css():
    out = io.StringIO()
    write_html_document(out, [], ".a{}", title="A & B")
    assert "<title>A &amp; B</title>" in out.getvalue()
    assert "<style" in out.getvalue()

    out = io.StringIO()
    write_html_document(out, [], ".a{}", css_href="style.css")
    assert '<link rel="stylesheet" href="style.css"/>' in out.getvalue()
    assert "<style" not in out.getvalue()

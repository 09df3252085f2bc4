from pdfminer.pdfdocument import PDFDocument
from pdfminer.pdfparser import PDFParser

from folio.extractors.page_backend import PdfminerPageBackend, page_ctm, pdf_color
from folio.processors.events import Color, DrawChar, DrawPath, PageBegin, PageEnd, UpdateClip

from conftest import COVERED_PAGE, TEXT_PAGE


def _events(path, config):
    with open(path, "rb") as f:
        backend = PdfminerPageBackend(PDFDocument(PDFParser(f)), config)
        events = []
        for number, page in backend.pages():
            backend.replay(page, events.append, number)
    return events


def test_pdf_color_operands():
    assert pdf_color(None) == Color.BLACK
    assert pdf_color(1.0) == Color.WHITE
    assert pdf_color([1, 0, 0]) == Color(255, 0, 0)
    assert pdf_color([0, 0, 0, 1]) == Color.BLACK


def test_page_ctm_rotation():
    assert page_ctm((0, 0, 200, 100), 0) == (1, 0, 0, 1, 0, 0)
    assert page_ctm((0, 0, 200, 100), 90) == (0, -1, 1, 0, 0, 200)
    assert page_ctm((0, 0, 200, 100), 0, zoom=2) == (2, 0, 0, 2, 0, 0)


def test_text_page_events(pdf_factory, config):
    events = _events(pdf_factory("t.pdf", [TEXT_PAGE]), config)

    assert events[0] == PageBegin(200, 200, 1)
    assert isinstance(events[-1], PageEnd)
    chars = [e for e in events if isinstance(e, DrawChar)]
    assert [c.text for c in chars] == ["A", "B"]
    assert chars[0].position[0] == 72
    assert chars[1].position[0] > chars[0].position[0]


def test_fill_becomes_draw_path(pdf_factory, config):
    events = _events(pdf_factory("c.pdf", [COVERED_PAGE]), config)

    paths = [e for e in events if isinstance(e, DrawPath)]
    assert len(paths) == 1
    assert paths[0].color == Color(0, 0, 255)
    assert paths[0].rect.x0 == 60 and paths[0].rect.y1 == 120


def test_clip_operator_emits_update_clip(pdf_factory, config):
    events = _events(pdf_factory("k.pdf", [b"q 0 0 100 150 re W n Q"]), config)

    clips = [e for e in events if isinstance(e, UpdateClip)]
    assert len(clips) == 1
    assert clips[0].rect.x1 == 100


def test_pages_are_numbered(pdf_factory, config):
    events = _events(pdf_factory("m.pdf", [TEXT_PAGE, TEXT_PAGE]), config)

    assert [e.number for e in events if isinstance(e, PageBegin)] == [1, 2]

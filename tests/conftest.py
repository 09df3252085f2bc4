from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional, Sequence
import sys

import pikepdf
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from folio.engine.config import ConversionConfig  # noqa: E402
from folio.processors.events import FontRef  # noqa: E402
from folio.processors.state_registry import StyleTable  # noqa: E402
from folio.utils.assets import MemoryAssetSink  # noqa: E402

TEXT_PAGE = b"BT /F1 12 Tf 72 100 Td (AB) Tj ET"
COVERED_PAGE = TEXT_PAGE + b" 0 0 1 rg 60 90 100 30 re f"


def _write_pdf(
    path: Path,
    contents: Sequence[bytes],
    media_box: Sequence[float] = (0, 0, 200, 200),
    rotate: int = 0,
    title: Optional[str] = None,
) -> Path:
    pdf = pikepdf.new()
    font = pdf.make_indirect(pikepdf.Dictionary(
        Type=pikepdf.Name.Font,
        Subtype=pikepdf.Name.Type1,
        BaseFont=pikepdf.Name.Helvetica,
    ))
    for content in contents:
        page = pdf.add_blank_page(page_size=(media_box[2], media_box[3]))
        page.obj.MediaBox = pikepdf.Array(list(media_box))
        page.obj.Resources = pikepdf.Dictionary(Font=pikepdf.Dictionary(F1=font))
        page.obj.Contents = pdf.make_stream(content)
        if rotate:
            page.obj.Rotate = rotate
    if title is not None:
        pdf.docinfo[pikepdf.Name.Title] = title
    pdf.save(path)
    pdf.close()
    return path


@pytest.fixture()
def pdf_factory(tmp_path: Path) -> Callable[..., Path]:
    def _create(filename: str, contents: Sequence[bytes], **kwargs) -> Path:
        return _write_pdf(tmp_path / filename, contents, **kwargs)

    return _create


@pytest.fixture()
def text_pdf(pdf_factory) -> Path:
    return pdf_factory("text.pdf", [TEXT_PAGE], title="Sample")


@pytest.fixture()
def covered_pdf(pdf_factory) -> Path:
    return pdf_factory("covered.pdf", [COVERED_PAGE, TEXT_PAGE])


@pytest.fixture()
def styles() -> StyleTable:
    return StyleTable()


@pytest.fixture()
def config() -> ConversionConfig:
    return ConversionConfig(timeout_seconds=None)


@pytest.fixture()
def sink() -> MemoryAssetSink:
    return MemoryAssetSink()


@pytest.fixture()
def font() -> FontRef:
    return FontRef(key="f1", name="Helvetica", ascent=0.8, descent=-0.2)

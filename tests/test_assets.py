import hashlib
import os

import pytest

from folio.utils.assets import DirectoryAssetSink, MemoryAssetSink, asset_name, mime_for, reference_asset
from folio.utils.resource_limits import Deadline, OutputBudget
from folio.utils.validation import MemoryLimitError, ProcessingTimeoutError


def test_asset_names_are_content_addressed():
    assert asset_name(b"abc", "png") == hashlib.sha256(b"abc").hexdigest() + ".png"
    assert mime_for("svg") == "image/svg+xml"
    assert mime_for("bin") == "application/octet-stream"


def test_memory_sink_deduplicates():
    sink = MemoryAssetSink()

    first = sink.write(b"data", "png")
    second = sink.write(b"data", "png")

    assert first == second
    assert sink.names == [first]
    assert sink.budget.used == 4


def test_directory_sink_writes_files(tmp_path):
    sink = DirectoryAssetSink(str(tmp_path / "out"))

    name = sink.write(b"payload", "svg")

    assert (tmp_path / "out" / name).read_bytes() == b"payload"
    assert sink.names == [name]


def test_budget_raises_when_exceeded(tmp_path):
    sink = DirectoryAssetSink(str(tmp_path), OutputBudget(5))
    sink.write(b"12345", "bin")

    with pytest.raises(MemoryLimitError):
        sink.write(b"6", "bin")
    assert len(os.listdir(tmp_path)) == 1


def test_disabled_budget_never_raises():
    budget = OutputBudget(-1)
    budget.charge(10 ** 9)

    assert budget.limit is None
    assert budget.remaining is None


def test_budget_remaining():
    budget = OutputBudget(100)
    budget.charge(30)

    assert budget.remaining == 70
    assert budget.would_exceed(71)
    assert not budget.would_exceed(70)


def test_inline_reference_charges_budget_without_writing():
    sink = MemoryAssetSink(OutputBudget(1000))

    uri = reference_asset(sink, b"<svg/>", "svg", inline=True)

    assert uri == "data:image/svg+xml;base64,PHN2Zy8+"
    assert sink.assets == {}
    assert sink.budget.used == 6


def test_file_reference_returns_name():
    sink = MemoryAssetSink()

    name = reference_asset(sink, b"<svg/>", "svg", inline=False)

    assert name == asset_name(b"<svg/>", "svg")
    assert sink.assets[name] == b"<svg/>"


def test_deadline():
    assert not Deadline(None).expired
    Deadline(60).check()

    deadline = Deadline(1)
    deadline.start -= 5
    with pytest.raises(ProcessingTimeoutError):
        deadline.check()

"""
Document Conversion Engine - Core Coordinator

The DocumentEngine opens a PDF, replays the selected pages through the
pdfminer page backend and collects the per-page results into one
ConversionResult. Style ids, font ids, the asset sink, the output budget
and the deadline are shared by every page of the document.

Usage:
    >>> from folio.engine.document_engine import DocumentEngine
    >>> from folio.engine.config import ConversionConfig
    >>>
    >>> with DocumentEngine('document.pdf', config=ConversionConfig(zoom=1.5)) as engine:
    ...     result = engine.convert()
    ...     print(f"{len(result.pages)} pages converted")
"""

import io
import logging
import os
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional

import pikepdf
from pdfminer.pdfdocument import PDFDocument
from pdfminer.pdfparser import PDFParser

from folio.engine.config import ConversionConfig
from folio.engine.page_converter import PageConverter
from folio.extractors.font_backend import PdfminerFontBackend
from folio.extractors.page_backend import PdfminerPageBackend
from folio.models.render_types import ConversionResult, PageResult, PageStatus
from folio.processors.font_registry import FontRegistry
from folio.processors.state_registry import StyleTable
from folio.utils.assets import AssetSink, DirectoryAssetSink, MemoryAssetSink
from folio.utils.html_markup import build_stylesheet, write_html_document
from folio.utils.resource_limits import Deadline, OutputBudget
from folio.utils.validation import (
    ConfigurationError,
    MemoryLimitError,
    PdfValidationError,
    comprehensive_pdf_validation,
)

logger = logging.getLogger(__name__)


class DocumentEngine:
    """
    PDF to HTML conversion engine with resource management.

    pikepdf validates the file and provides document information; pdfminer
    replays page content.

    Example:
        >>> with DocumentEngine('document.pdf') as engine:
        ...     total_pages = engine.get_page_count()
    """

    def __init__(self, file_path: str, config: Optional[ConversionConfig] = None):
        """
        Initialize the engine with a file path and optional configuration.

        Note: Document is not opened until entering context manager (__enter__).

        Args:
            file_path: Path to PDF file to convert
            config: Conversion configuration (uses defaults if None)

        Raises:
            FileNotFoundError: If file does not exist
            ConfigurationError: If configuration is invalid
        """
        self.file_path = file_path
        self.config = config or ConversionConfig.default()

        if not os.path.exists(file_path):
            raise FileNotFoundError(f"PDF file not found: {file_path}")

        if not self.config.validate():
            raise ConfigurationError(f"Invalid conversion configuration: {self.config!r}")

        # Resource handles (initialized in __enter__)
        self._pikepdf_doc: Optional[pikepdf.Pdf] = None
        self._stream: Optional[BinaryIO] = None
        self._pdfminer_doc: Optional[PDFDocument] = None
        self._is_open = False

        # Metadata
        self._page_count: Optional[int] = None
        self._file_size_mb: Optional[float] = None
        self._title = ""

        logger.debug(f"DocumentEngine initialized for: {Path(file_path).name}")

    def __enter__(self) -> 'DocumentEngine':
        """
        Enter context manager - validate and open the PDF.

        Raises:
            PdfValidationError: If the PDF cannot be opened or is invalid
        """
        try:
            logger.info(f"Opening PDF: {self.file_path}")

            validation = comprehensive_pdf_validation(self.file_path)
            if not validation['is_valid']:
                raise PdfValidationError("; ".join(validation['errors']))
            for warning in validation['warnings']:
                logger.warning(warning)

            self._pikepdf_doc = pikepdf.open(self.file_path)
            self._page_count = len(self._pikepdf_doc.pages)
            self._title = self._read_title()

            self._stream = open(self.file_path, 'rb')
            self._pdfminer_doc = PDFDocument(PDFParser(self._stream))

            self._file_size_mb = os.path.getsize(self.file_path) / (1024 * 1024)
            self._is_open = True

            logger.info(
                f"PDF opened successfully: {self._page_count} pages, "
                f"{self._file_size_mb:.2f} MB"
            )
            return self

        except PdfValidationError:
            self._cleanup_resources()
            raise
        except Exception as e:
            logger.error(f"Failed to open PDF: {e}")
            self._cleanup_resources()
            raise PdfValidationError(f"Failed to open PDF: {str(e)}")

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Exit context manager - clean up all resources.

        Resources are cleaned up even if an exception occurred.
        """
        logger.info("Closing conversion engine")
        self._cleanup_resources()

        if exc_type is not None:
            logger.error(f"Exception during conversion: {exc_val}")

        return False

    def _read_title(self) -> str:
        try:
            title = self._pikepdf_doc.docinfo.get('/Title')
        except (pikepdf.PdfError, AttributeError):
            return ""
        return str(title) if title is not None else ""

    def _cleanup_resources(self) -> None:
        """
        Close both documents.

        This method is idempotent and safe to call multiple times.
        """
        if self._pikepdf_doc is not None:
            try:
                self._pikepdf_doc.close()
            except Exception as e:
                logger.warning(f"Error closing pikepdf document: {e}")
            finally:
                self._pikepdf_doc = None

        if self._stream is not None:
            try:
                self._stream.close()
            except OSError as e:
                logger.warning(f"Error closing PDF stream: {e}")
            finally:
                self._stream = None

        self._pdfminer_doc = None
        self._is_open = False

    # Public API - Document Information

    def _require_open(self) -> None:
        if not self._is_open:
            raise RuntimeError("Engine not opened - use within context manager")

    def get_page_count(self) -> int:
        """
        Get total number of pages in document.

        Raises:
            RuntimeError: If engine not opened
        """
        self._require_open()
        return self._page_count

    def get_file_size_mb(self) -> float:
        self._require_open()
        return self._file_size_mb

    @property
    def title(self) -> str:
        return self._title

    def get_status(self) -> Dict[str, Any]:
        """Engine state for logging and the HTTP layer."""
        return {
            'is_open': self._is_open,
            'file_path': self.file_path,
            'page_count': self._page_count,
            'file_size_mb': self._file_size_mb,
            'config': self.config.to_dict(),
        }

    # Public API - Conversion

    def _default_sink(self, budget: OutputBudget) -> AssetSink:
        if self.config.dest_dir:
            return DirectoryAssetSink(self.config.dest_dir, budget)
        return MemoryAssetSink(budget)

    def _write_text_asset(self, sink: AssetSink, filename: str, text: str) -> str:
        """Write a CSS/HTML file under dest_dir, charging the output budget."""
        data = text.encode('utf-8')
        sink.budget.charge(len(data), filename)
        os.makedirs(self.config.dest_dir, exist_ok=True)
        path = os.path.join(self.config.dest_dir, filename)
        with open(path, 'wb') as f:
            f.write(data)
        logger.debug(f"Wrote {path} ({len(data)} bytes)")
        return path

    def convert(self, sink: Optional[AssetSink] = None) -> ConversionResult:
        """
        Convert the selected pages.

        Pages that exceed the deadline or the output budget are reported as
        ABORTED; once either limit is hit the remaining pages are not replayed.

        Args:
            sink: Asset destination; defaults to dest_dir or memory

        Returns:
            ConversionResult with pages, fonts, stylesheet and HTML

        Raises:
            RuntimeError: If engine not opened
        """
        self._require_open()
        config = self.config
        if sink is None:
            sink = self._default_sink(OutputBudget(config.tmp_file_size_limit))

        styles = StyleTable(config.style_eps)
        font_backend = PdfminerFontBackend()
        fonts = FontRegistry(font_backend, config.font_format)
        deadline = Deadline(config.timeout_seconds)
        converter = PageConverter(styles, config, fonts, deadline)
        backend = PdfminerPageBackend(self._pdfminer_doc, config, font_backend)

        wanted = config.page_range.to_page_numbers(self._page_count)
        last_wanted = wanted[-1] if wanted else 0
        wanted_set = set(wanted)
        logger.info(f"Converting {len(wanted)} of {self._page_count} pages with {config!r}")

        pages: List[PageResult] = []
        aborted = False
        for number, page in backend.pages():
            if number > last_wanted:
                break
            if number not in wanted_set:
                continue
            if aborted:
                pages.append(PageResult(number=number, status=PageStatus.ABORTED,
                                        error="Skipped after an earlier page hit a resource limit"))
                continue

            def replay(emit, page=page, number=number):
                backend.replay(page, emit, number)

            try:
                result = converter.convert(replay, sink, number)
            except Exception as e:
                logger.exception(f"Page {number} could not be replayed")
                result = converter.fail(f"{type(e).__name__}: {e}")
            if result.status is PageStatus.ABORTED:
                aborted = True
            pages.append(result)

        style_rules = io.StringIO()
        styles.emit_rules(style_rules)
        stylesheet = build_stylesheet(style_rules.getvalue(), fonts.emit(sink, inline=config.embed_font))

        css_href = None
        if not config.embed_css:
            try:
                self._write_text_asset(sink, config.css_filename, stylesheet)
                css_href = config.css_filename
            except MemoryLimitError as e:
                logger.warning(f"Stylesheet not written, inlining it: {e}")
                aborted = True

        out = io.StringIO()
        write_html_document(out, pages, stylesheet, css_href=css_href, title=self._title)
        html = out.getvalue()
        if config.dest_dir:
            try:
                self._write_text_asset(sink, f"{Path(self.file_path).stem}.html", html)
            except MemoryLimitError as e:
                logger.warning(f"HTML document not written: {e}")
                aborted = True

        converted = sum(1 for p in pages if p.status is PageStatus.CONVERTED)
        logger.info(
            f"Converted {converted}/{len(pages)} pages, {len(fonts)} fonts, "
            f"{styles.total_ids()} style ids, {sink.budget.used} bytes of assets"
        )
        return ConversionResult(
            page_count=self._page_count,
            pages=pages,
            fonts=fonts.assets(),
            stylesheet=stylesheet,
            html=html,
            assets=sink.names,
            aborted=aborted,
        )

    def __repr__(self) -> str:
        status = "open" if self._is_open else "closed"
        pages = f", pages={self._page_count}" if self._page_count is not None else ""
        return f"DocumentEngine({Path(self.file_path).name!r}, {status}{pages})"

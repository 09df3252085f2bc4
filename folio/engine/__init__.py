"""
Conversion Engine

Document-level coordination: configuration, the per-page event fan-out and
the DocumentEngine context manager that drives a whole PDF.
"""

from folio.engine.config import ConversionConfig, PageRange
from folio.engine.page_converter import PageConverter
from folio.engine.document_engine import DocumentEngine

__all__ = [
    'ConversionConfig',
    'PageRange',
    'PageConverter',
    'DocumentEngine',
]

"""
PDF to HTML export

Convenience entry points over DocumentEngine for scripts and the HTTP layer.
"""

import logging
from typing import Any, Optional

from folio.engine.config import ConversionConfig
from folio.engine.document_engine import DocumentEngine
from folio.models.render_types import ConversionResult
from folio.utils.assets import AssetSink

logger = logging.getLogger(__name__)


def build_config(config: Optional[ConversionConfig] = None, **overrides: Any) -> ConversionConfig:
    """Apply keyword overrides on top of ``config`` (or the defaults)."""
    base = (config or ConversionConfig.default()).to_dict()
    base.update(overrides)
    return ConversionConfig.from_dict(base)


def convert_pdf(
    file_path: str,
    config: Optional[ConversionConfig] = None,
    sink: Optional[AssetSink] = None,
    **overrides: Any
) -> ConversionResult:
    """
    Convert a PDF file to HTML.

    Args:
        file_path: Path to the PDF
        config: Base configuration
        sink: Asset destination; defaults to ``dest_dir`` or memory
        **overrides: Individual ConversionConfig fields, plus ``first_page``/``last_page``

    Returns:
        ConversionResult for the selected pages

    Example:
        >>> result = convert_pdf('report.pdf', zoom=1.5, bg_format='png')
        >>> open('report.html', 'w').write(result.html)
    """
    if overrides:
        config = build_config(config, **overrides)

    with DocumentEngine(file_path, config=config) as engine:
        result = engine.convert(sink)

    if result.aborted:
        logger.warning(f"Conversion of {file_path} stopped early: output is partial")
    return result

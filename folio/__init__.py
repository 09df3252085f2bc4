"""
Folio - PDF to HTML conversion

Text is emitted as positioned HTML runs sharing deduplicated CSS classes;
everything else is rendered into a per-page SVG or raster background.
"""

__version__ = "1.0.0"

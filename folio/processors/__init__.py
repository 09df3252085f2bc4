"""
Page Rendering Components

Stateful processors fed by page events. These components keep per-page or
per-document state:

- StyleTable: Deduplicated CSS class ids per style kind
- GraphicsStateTracker: Graphics state stack and text run classification
- LineBuilder: Lines, runs and clip regions of the text layer
- OcclusionDetector: Which glyphs are covered by later drawing
- BackgroundRenderingStrategy: SVG or raster page background
- FontRegistry: Document font ids and @font-face output

These differ from utils/ which contains pure, stateless functions.
"""

from folio.processors.state_registry import StyleTable, StyleKind
from folio.processors.graphics_state import GraphicsStateTracker
from folio.processors.line_builder import LineBuilder
from folio.processors.occlusion import OcclusionDetector
from folio.processors.background import BackgroundRenderingStrategy
from folio.processors.font_registry import FontRegistry

__all__ = [
    'StyleTable',
    'StyleKind',
    'GraphicsStateTracker',
    'LineBuilder',
    'OcclusionDetector',
    'BackgroundRenderingStrategy',
    'FontRegistry',
]

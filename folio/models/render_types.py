"""
Pydantic models for conversion output.

Everything a page or a document produces ends up in one of these models,
which the HTML writer and the HTTP layer both consume.
"""

from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field


class PageStatus(str, Enum):
    """Outcome of one page conversion"""
    CONVERTED = "converted"
    ABORTED = "aborted"  # resource budget exceeded, partial state discarded
    FAILED = "failed"  # backend contract violation or parse error


class BackgroundMode(str, Enum):
    VECTOR = "vector"
    RASTER = "raster"


class BoundingBox(BaseModel):
    """Rectangle in page space, origin bottom-left"""
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0


class TextSegment(BaseModel):
    type: Literal["text"] = "text"
    text: str


class OffsetSegment(BaseModel):
    """Horizontal gap inside a line, in line units"""
    type: Literal["offset"] = "offset"
    width: float
    class_name: str = Field(..., description="Whitespace class, e.g. '_3'")


Segment = Union[TextSegment, OffsetSegment]


class RunOutput(BaseModel):
    """Serialized run: classes plus interleaved text and offsets"""
    classes: List[str] = Field(default_factory=list)
    segments: List[Segment] = Field(default_factory=list)
    suppressed: bool = False  # rendered transparent, kept for selection
    warning: bool = False  # produced without any style ids

    @property
    def text(self) -> str:
        return "".join(s.text for s in self.segments if isinstance(s, TextSegment))


class LineOutput(BaseModel):
    index: int
    classes: List[str]
    x: float
    y: float
    runs: List[RunOutput] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


class ClipRegionOutput(BaseModel):
    """Clip rectangle applied to lines [first_line, last_line)"""
    bbox: BoundingBox
    first_line: int
    last_line: int


class PageLayout(BaseModel):
    width: float
    height: float
    lines: List[LineOutput] = Field(default_factory=list)
    clips: List[ClipRegionOutput] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)


class CoverageSummary(BaseModel):
    """Per-page occlusion statistics"""
    total_chars: int = 0
    visible_chars: int = 0
    covered_chars: int = 0
    partially_covered_chars: int = 0
    covered_ratio: float = 0.0
    partially_covered_ratio: float = 0.0


class BackgroundAsset(BaseModel):
    """Reference to a finished background image"""
    mode: BackgroundMode
    reference: Optional[str] = Field(None, description="File name or data URI; None for an empty page")
    mime_type: str
    width: float
    height: float
    dpi: Optional[float] = None
    primitive_count: int = 0
    extracted_images: List[str] = Field(default_factory=list)
    page_color: Optional[str] = None
    fallback_reason: Optional[str] = None


class FontAsset(BaseModel):
    """Embedded font program copied out of the document"""
    font_id: int
    family: str
    original_name: str
    format: str
    reference: Optional[str] = None
    ascent: float = 0.8
    descent: float = -0.2


class PageResult(BaseModel):
    number: int
    status: PageStatus
    width: float = 0.0
    height: float = 0.0
    layout: Optional[PageLayout] = None
    background: Optional[BackgroundAsset] = None
    coverage: Optional[CoverageSummary] = None
    error: Optional[str] = None


class ConversionResult(BaseModel):
    """Output bundle for one document"""
    page_count: int
    pages: List[PageResult] = Field(default_factory=list)
    fonts: List[FontAsset] = Field(default_factory=list)
    stylesheet: str = ""
    html: Optional[str] = None
    assets: List[str] = Field(default_factory=list)
    aborted: bool = False


class ConvertResponse(BaseModel):
    """HTTP response for /convert"""
    pageCount: int
    pages: List[PageResult]
    html: str
    assets: dict = Field(default_factory=dict, description="Asset name to base64 data")

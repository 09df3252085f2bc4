"""
Page events and the value types they carry.

A page backend replays a PDF page as a flat sequence of these events.
Every event is a small frozen dataclass; ``PageConverter.dispatch`` routes
them to the analyzers by type.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Tuple, Union

from folio.constants.pdf_keys import FILTER_DCT
from folio.utils.pdf_transforms import Matrix, Point, Rect


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class Color:
    """8-bit RGB color with a transparency flag."""
    r: int = 0
    g: int = 0
    b: int = 0
    transparent: bool = False

    BLACK: ClassVar['Color']
    WHITE: ClassVar['Color']
    TRANSPARENT: ClassVar['Color']

    @classmethod
    def from_floats(cls, r: float, g: float, b: float) -> 'Color':
        return cls(
            int(round(_clamp01(r) * 255)),
            int(round(_clamp01(g) * 255)),
            int(round(_clamp01(b) * 255)),
        )

    @classmethod
    def from_gray(cls, gray: float) -> 'Color':
        return cls.from_floats(gray, gray, gray)

    @classmethod
    def from_cmyk(cls, c: float, m: float, y: float, k: float) -> 'Color':
        c, m, y, k = (_clamp01(v) for v in (c, m, y, k))
        return cls.from_floats((1 - c) * (1 - k), (1 - m) * (1 - k), (1 - y) * (1 - k))

    def key(self) -> int:
        """Identity used for deduplication; all transparent colors share -1."""
        if self.transparent:
            return -1
        return (self.r << 16) | (self.g << 8) | self.b

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Color):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self) -> int:
        return hash(self.key())

    def to_css(self) -> str:
        if self.transparent:
            return "transparent"
        return f"rgb({self.r},{self.g},{self.b})"

    def to_rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)


Color.BLACK = Color(0, 0, 0)
Color.WHITE = Color(255, 255, 255)
Color.TRANSPARENT = Color(0, 0, 0, transparent=True)


class DrawKind(str, Enum):
    """How a path primitive is painted."""
    STROKE = "stroke"
    FILL = "fill"


@dataclass(frozen=True)
class FontRef:
    """
    A font as seen by the core.

    ``key`` identifies the font to the font backend; metrics are in units of
    the font size.
    """
    key: str
    name: str = ""
    ascent: float = 0.8
    descent: float = -0.2
    is_type3: bool = False
    is_embedded: bool = False
    is_vertical: bool = False


@dataclass(frozen=True)
class ImageRef:
    """Decoded-enough view of an image XObject or inline image."""
    name: str
    width: int
    height: int
    filters: Tuple[str, ...] = ()
    color_space: str = "DeviceRGB"
    components: int = 3
    bits_per_component: int = 8
    has_remap: bool = False
    is_mask: bool = False
    data: bytes = field(default=b"", repr=False)
    palette: Optional[bytes] = field(default=None, repr=False)
    palette_components: int = 3
    raw_length: int = 0

    @property
    def is_jpeg(self) -> bool:
        return bool(self.filters) and self.filters[-1] in FILTER_DCT

    @property
    def extractable(self) -> bool:
        """JPEG data that can be written out as-is and referenced."""
        return (
            self.is_jpeg
            and self.components in (1, 3)
            and not self.has_remap
            and not self.is_mask
        )


# --- Events ---

@dataclass(frozen=True)
class PageBegin:
    width: float
    height: float
    number: int = 1


@dataclass(frozen=True)
class PageEnd:
    pass


@dataclass(frozen=True)
class SaveState:
    pass


@dataclass(frozen=True)
class RestoreState:
    pass


@dataclass(frozen=True)
class UpdateTransform:
    """Text rendering matrix without the font size applied."""
    matrix: Matrix


@dataclass(frozen=True)
class UpdateFont:
    font: Optional[FontRef]
    size: float


@dataclass(frozen=True)
class UpdateColor:
    fill: Color = Color.BLACK
    stroke: Color = Color.BLACK


@dataclass(frozen=True)
class UpdateClip:
    """New clip path bounds in device space; intersected with the current clip."""
    rect: Rect


@dataclass(frozen=True)
class UpdateTextSpacing:
    char_space: float = 0.0
    word_space: float = 0.0


@dataclass(frozen=True)
class UpdateRenderMode:
    mode: int = 0


@dataclass(frozen=True)
class DrawChar:
    """
    One glyph.

    ``position`` is the device-space glyph origin; when None the translation
    of the current transform is used. ``advance`` is in text space.
    """
    code: int
    text: str = ""
    position: Optional[Point] = None
    advance: float = 0.0


@dataclass(frozen=True)
class DrawPath:
    kind: DrawKind
    rect: Rect
    opacity: float = 1.0
    color: Optional[Color] = Color.BLACK
    line_width: float = 1.0


@dataclass(frozen=True)
class DrawImage:
    rect: Rect
    image: ImageRef
    opacity: float = 1.0


PageEvent = Union[
    PageBegin, PageEnd, SaveState, RestoreState,
    UpdateTransform, UpdateFont, UpdateColor, UpdateClip,
    UpdateTextSpacing, UpdateRenderMode,
    DrawChar, DrawPath, DrawImage,
]

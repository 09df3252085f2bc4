"""
Style value deduplication.

StateRegistry maps style values to small integer ids under an epsilon
equality and emits one CSS rule per id. StyleTable bundles the registries
a document needs so every page shares one stylesheet.
"""

import itertools
import logging
import math
from enum import Enum
from typing import Callable, Dict, Generic, Iterator, List, Optional, Protocol, Tuple, TypeVar

from folio.constants.html_classes import (
    CLASS_FILL_COLOR,
    CLASS_FONT_SIZE,
    CLASS_LEFT,
    CLASS_BOTTOM,
    CLASS_LETTER_SPACE,
    CLASS_STROKE_COLOR,
    CLASS_TRANSFORM,
    CLASS_WHITESPACE,
    CLASS_WORD_SPACE,
)
from folio.processors.events import Color
from folio.utils.pdf_transforms import STYLE_EPSILON, Matrix, format_number

logger = logging.getLogger(__name__)

V = TypeVar('V')

# Grid cell for keys whose quotient by eps is not a finite float
OUT_OF_RANGE_CELL = 2 ** 1100


class RuleWriter(Protocol):
    def write(self, text: str) -> object:
        ...


class StyleKind(str, Enum):
    """Style value families, in stylesheet emission order."""
    FONT_SIZE = "font_size"
    FILL_COLOR = "fill_color"
    STROKE_COLOR = "stroke_color"
    LETTER_SPACE = "letter_space"
    WORD_SPACE = "word_space"
    TRANSFORM = "transform"
    WHITESPACE = "whitespace"
    LEFT = "left"
    BOTTOM = "bottom"


def scalar_key(value: float) -> Tuple[float, ...]:
    return (float(value),)


def color_key(value: Color) -> Tuple[float, ...]:
    return (float(value.key()),)


def matrix_key(value: Matrix) -> Tuple[float, ...]:
    # Translation is ignored for deduplication
    return value.linear


class StateRegistry(Generic[V]):
    """
    Flyweight table of style values.

    Two values are equal when every component of their keys differs by at
    most ``eps``. Values are bucketed on an ``eps`` grid so a lookup only has
    to search the neighbouring cells; any equal value is guaranteed to sit in
    one of them. When several stored values match, the earliest id wins.
    """

    def __init__(
        self,
        prefix: str,
        formatter: Callable[[str, V], str],
        key: Callable[[V], Tuple[float, ...]] = scalar_key,
        eps: float = STYLE_EPSILON,
    ):
        self.prefix = prefix
        self.eps = eps
        self._formatter = formatter
        self._key = key
        self._values: List[V] = []
        self._keys: List[Tuple[float, ...]] = []
        self._grid: Dict[Tuple[int, ...], List[int]] = {}

    def __len__(self) -> int:
        return len(self._values)

    def _cell(self, key: Tuple[float, ...]) -> Tuple:
        if self.eps <= 0:
            return key
        return tuple(self._bucket(k) for k in key)

    def _bucket(self, k: float) -> int:
        q = k / self.eps
        if math.isfinite(q):
            return math.floor(q)
        return -OUT_OF_RANGE_CELL if q < 0 else OUT_OF_RANGE_CELL

    def _neighbour_cells(self, cell: Tuple) -> Iterator[Tuple]:
        if self.eps <= 0:
            yield cell
            return
        for delta in itertools.product((-1, 0, 1), repeat=len(cell)):
            yield tuple(c + d for c, d in zip(cell, delta))

    def _matches(self, a: Tuple[float, ...], b: Tuple[float, ...]) -> bool:
        return all(abs(x - y) <= self.eps for x, y in zip(a, b))

    def lookup(self, value: V) -> Optional[int]:
        """Id of an installed value equal to ``value``, without allocating."""
        key = self._key(value)
        best: Optional[int] = None
        for cell in self._neighbour_cells(self._cell(key)):
            for style_id in self._grid.get(cell, ()):
                if (best is None or style_id < best) and self._matches(self._keys[style_id], key):
                    best = style_id
        return best

    def install(self, value: V) -> int:
        """Return the id for ``value``, allocating the next id if it is new."""
        existing = self.lookup(value)
        if existing is not None:
            return existing

        style_id = len(self._values)
        key = self._key(value)
        self._values.append(value)
        self._keys.append(key)
        self._grid.setdefault(self._cell(key), []).append(style_id)
        return style_id

    def value(self, style_id: int) -> V:
        return self._values[style_id]

    def values(self) -> List[V]:
        return list(self._values)

    def class_name(self, style_id: int) -> str:
        return f"{self.prefix}{style_id}"

    def emit_rules(self, out: RuleWriter) -> None:
        """Write one rule per installed id, in id order."""
        for style_id, value in enumerate(self._values):
            out.write(self._formatter(self.class_name(style_id), value))


# --- Rule formatters ---

def _px(value: float) -> str:
    return f"{format_number(value)}px"


def _format_font_size(name: str, value: float) -> str:
    return f".{name}{{font-size:{_px(value)};}}\n"


def _format_fill_color(name: str, value: Color) -> str:
    return f".{name}{{color:{value.to_css()};}}\n"


def _format_stroke_color(name: str, value: Color) -> str:
    return f".{name}{{-webkit-text-stroke-color:{value.to_css()};}}\n"


def _format_letter_space(name: str, value: float) -> str:
    return f".{name}{{letter-spacing:{_px(value)};}}\n"


def _format_word_space(name: str, value: float) -> str:
    return f".{name}{{word-spacing:{_px(value)};}}\n"


def _format_transform(name: str, value: Matrix) -> str:
    # Markup y grows downward, so the matrix is conjugated by a y flip
    a, b, c, d = (format_number(v) for v in (value.a, -value.b, -value.c, value.d))
    css = f"matrix({a},{b},{c},{d},0,0)"
    return f".{name}{{transform:{css};-ms-transform:{css};-webkit-transform:{css};}}\n"


def _format_whitespace(name: str, value: float) -> str:
    if value < 0:
        return f".{name}{{margin-left:{_px(value)};}}\n"
    return f".{name}{{width:{_px(value)};}}\n"


def _format_left(name: str, value: float) -> str:
    return f".{name}{{left:{_px(value)};}}\n"


def _format_bottom(name: str, value: float) -> str:
    return f".{name}{{bottom:{_px(value)};}}\n"


class StyleTable:
    """
    Document-scoped set of registries, one per StyleKind.

    Passed explicitly to every page's tracker and line builder so all pages
    share one stylesheet.
    """

    def __init__(self, eps: float = STYLE_EPSILON):
        self.eps = eps
        self._registries: Dict[StyleKind, StateRegistry] = {
            StyleKind.FONT_SIZE: StateRegistry(CLASS_FONT_SIZE, _format_font_size, eps=eps),
            StyleKind.FILL_COLOR: StateRegistry(CLASS_FILL_COLOR, _format_fill_color, key=color_key, eps=0.0),
            StyleKind.STROKE_COLOR: StateRegistry(CLASS_STROKE_COLOR, _format_stroke_color, key=color_key, eps=0.0),
            StyleKind.LETTER_SPACE: StateRegistry(CLASS_LETTER_SPACE, _format_letter_space, eps=eps),
            StyleKind.WORD_SPACE: StateRegistry(CLASS_WORD_SPACE, _format_word_space, eps=eps),
            StyleKind.TRANSFORM: StateRegistry(CLASS_TRANSFORM, _format_transform, key=matrix_key, eps=eps),
            StyleKind.WHITESPACE: StateRegistry(CLASS_WHITESPACE, _format_whitespace, eps=eps),
            StyleKind.LEFT: StateRegistry(CLASS_LEFT, _format_left, eps=eps),
            StyleKind.BOTTOM: StateRegistry(CLASS_BOTTOM, _format_bottom, eps=eps),
        }

    def registry(self, kind: StyleKind) -> StateRegistry:
        return self._registries[kind]

    def install(self, kind: StyleKind, value) -> int:
        return self._registries[kind].install(value)

    def class_name(self, kind: StyleKind, style_id: int) -> str:
        return self._registries[kind].class_name(style_id)

    @property
    def font_size(self) -> StateRegistry:
        return self._registries[StyleKind.FONT_SIZE]

    @property
    def fill_color(self) -> StateRegistry:
        return self._registries[StyleKind.FILL_COLOR]

    @property
    def transform(self) -> StateRegistry:
        return self._registries[StyleKind.TRANSFORM]

    @property
    def whitespace(self) -> StateRegistry:
        return self._registries[StyleKind.WHITESPACE]

    def total_ids(self) -> int:
        return sum(len(r) for r in self._registries.values())

    def emit_rules(self, out: RuleWriter) -> None:
        for kind in StyleKind:
            self._registries[kind].emit_rules(out)

    def __repr__(self) -> str:
        counts = ", ".join(f"{kind.value}={len(reg)}" for kind, reg in self._registries.items())
        return f"StyleTable({counts})"

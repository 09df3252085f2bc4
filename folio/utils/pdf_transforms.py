"""PDF transformation utilities for graphics operations."""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

MATRIX_EPSILON = 1e-9
STYLE_EPSILON = 1e-4

Point = Tuple[float, float]


@dataclass(frozen=True)
class Matrix:
    """
    Affine transform ``[a b c d e f]`` in PDF row-vector convention.

    A point maps as ``(x*a + y*c + e, x*b + y*d + f)``. ``m1.multiply(m2)``
    applies ``m1`` first, matching ``pdfminer.utils.mult_matrix(m1, m2)``.
    """
    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    e: float = 0.0
    f: float = 0.0

    @classmethod
    def identity(cls) -> 'Matrix':
        return cls()

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> 'Matrix':
        if len(values) != 6:
            raise ValueError(f"Matrix needs 6 components, got {len(values)}")
        return cls(*(float(v) for v in values))

    def as_tuple(self) -> Tuple[float, float, float, float, float, float]:
        return (self.a, self.b, self.c, self.d, self.e, self.f)

    def as_array(self) -> np.ndarray:
        """3x3 homogeneous form used for numpy algebra."""
        return np.array([
            [self.a, self.b, 0.0],
            [self.c, self.d, 0.0],
            [self.e, self.f, 1.0],
        ])

    @classmethod
    def from_array(cls, arr: np.ndarray) -> 'Matrix':
        return cls(
            float(arr[0, 0]), float(arr[0, 1]),
            float(arr[1, 0]), float(arr[1, 1]),
            float(arr[2, 0]), float(arr[2, 1]),
        )

    @property
    def linear(self) -> Tuple[float, float, float, float]:
        return (self.a, self.b, self.c, self.d)

    @property
    def translation(self) -> Point:
        return (self.e, self.f)

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    @property
    def vertical_scale(self) -> float:
        """Length of the transformed unit y vector; text size scales with it."""
        return math.hypot(self.c, self.d)

    @property
    def rotation_degrees(self) -> float:
        """Counter-clockwise angle of the transformed x axis."""
        return float(np.degrees(np.arctan2(self.b, self.a)))

    def multiply(self, other: 'Matrix') -> 'Matrix':
        return Matrix.from_array(self.as_array() @ other.as_array())

    def apply(self, x: float, y: float) -> Point:
        return (x * self.a + y * self.c + self.e, x * self.b + y * self.d + self.f)

    def apply_delta(self, dx: float, dy: float) -> Point:
        return (dx * self.a + dy * self.c, dx * self.b + dy * self.d)

    def with_translation(self, e: float, f: float) -> 'Matrix':
        return Matrix(self.a, self.b, self.c, self.d, e, f)

    def without_translation(self) -> 'Matrix':
        return self.with_translation(0.0, 0.0)

    def scaled(self, factor: float) -> 'Matrix':
        """Scale the linear part, keeping the translation."""
        return Matrix(
            self.a * factor, self.b * factor,
            self.c * factor, self.d * factor,
            self.e, self.f,
        )

    def negated_linear(self) -> 'Matrix':
        return self.scaled(-1.0)

    def inverse(self) -> Optional['Matrix']:
        """Inverse transform, or None for a degenerate matrix."""
        if abs(self.determinant) < MATRIX_EPSILON:
            return None
        return Matrix.from_array(np.linalg.inv(self.as_array()))

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in self.as_tuple())

    def is_proportional_to(self, other: 'Matrix', eps: float = STYLE_EPSILON) -> bool:
        """
        True when the linear parts differ only by a positive scalar factor.

        Proportional text transforms share a baseline direction, so their
        glyphs can be laid out on the same line.
        """
        mine = np.array(self.linear)
        theirs = np.array(other.linear)
        norm = float(theirs @ theirs)
        if norm < MATRIX_EPSILON:
            return float(mine @ mine) < MATRIX_EPSILON
        factor = float(mine @ theirs) / norm
        if factor <= 0:
            return False
        return bool(np.allclose(mine, factor * theirs, rtol=0.0, atol=eps * max(1.0, factor)))

    def approx_equals(self, other: 'Matrix', eps: float = STYLE_EPSILON) -> bool:
        return all(abs(x - y) <= eps for x, y in zip(self.as_tuple(), other.as_tuple()))


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in PDF user space (y grows upward)."""
    x0: float
    y0: float
    x1: float
    y1: float

    @classmethod
    def from_points(cls, points: Iterable[Point]) -> 'Rect':
        xs, ys = zip(*points)
        return cls(min(xs), min(ys), max(xs), max(ys))

    @classmethod
    def from_size(cls, width: float, height: float) -> 'Rect':
        return cls(0.0, 0.0, width, height)

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    @property
    def is_empty(self) -> bool:
        return self.x1 < self.x0 or self.y1 < self.y0

    def corners(self) -> Tuple[Point, Point, Point, Point]:
        return (
            (self.x0, self.y0),
            (self.x1, self.y0),
            (self.x0, self.y1),
            (self.x1, self.y1),
        )

    def intersect(self, other: 'Rect') -> 'Rect':
        return Rect(
            max(self.x0, other.x0), max(self.y0, other.y0),
            min(self.x1, other.x1), min(self.y1, other.y1),
        )

    def expanded(self, amount: float) -> 'Rect':
        """Grow (or shrink, for negative amounts) every edge."""
        return Rect(self.x0 - amount, self.y0 - amount, self.x1 + amount, self.y1 + amount)

    def transform(self, matrix: Matrix) -> 'Rect':
        """Bounding box of the transformed corners."""
        return Rect.from_points(matrix.apply(x, y) for x, y in self.corners())

    def scaled(self, factor: float) -> 'Rect':
        return Rect(self.x0 * factor, self.y0 * factor, self.x1 * factor, self.y1 * factor)

    def approx_equals(self, other: 'Rect', eps: float = STYLE_EPSILON) -> bool:
        return (
            abs(self.x0 - other.x0) <= eps and abs(self.y0 - other.y0) <= eps
            and abs(self.x1 - other.x1) <= eps and abs(self.y1 - other.y1) <= eps
        )

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.x0, self.y0, self.x1, self.y1))


def path_bounds(points: Iterable[Point], matrix: Matrix) -> Optional[Rect]:
    """Device-space bounding box of user-space path points, None when empty."""
    transformed = [matrix.apply(x, y) for x, y in points]
    if not transformed:
        return None
    return Rect.from_points(transformed)


def format_number(value: float, precision: int = 6) -> str:
    """Compact decimal rendering for CSS and SVG output."""
    text = f"{value:.{precision}f}".rstrip('0').rstrip('.')
    if text in ('-0', ''):
        return '0'
    return text

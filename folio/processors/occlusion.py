"""
Covered text detection.

Every glyph box is registered when the glyph is drawn. Each later shape or
image tests all previously registered boxes corner by corner; a glyph whose
four corners are all obstructed is covered. Corner state lives in numpy
arrays that grow geometrically, so one primitive is tested against every
glyph in a single vectorized pass.

Boundary choices:
- Corners on the edge of a filled rectangle count as obstructed.
- A stroked rectangle obstructs the band of half the line width on each side
  of its outline, edges included.
- Primitives with opacity below the threshold (default 0.5) never occlude;
  opacity exactly at the threshold does.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from folio.models.render_types import CoverageSummary
from folio.utils.pdf_transforms import Rect

logger = logging.getLogger(__name__)

DEFAULT_OPACITY_THRESHOLD = 0.5
INITIAL_CAPACITY = 256


@dataclass
class CharacterBBox:
    handle: int
    rect: Rect
    unobstructed_corners: int

    @property
    def visible(self) -> bool:
        return self.unobstructed_corners > 0

    @property
    def partially_covered(self) -> bool:
        return 0 < self.unobstructed_corners < 4


class OcclusionDetector:
    """Tracks per-glyph corner visibility for one page."""

    def __init__(self, opacity_threshold: float = DEFAULT_OPACITY_THRESHOLD):
        self.opacity_threshold = opacity_threshold
        self.reset()

    def reset(self) -> None:
        self._count = 0
        self._xs = np.zeros((INITIAL_CAPACITY, 4))
        self._ys = np.zeros((INITIAL_CAPACITY, 4))
        self._obstructed = np.zeros((INITIAL_CAPACITY, 4), dtype=bool)
        self._rects: List[Rect] = []
        self._frozen = False

    def __len__(self) -> int:
        return self._count

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Stop accepting primitives; called once the page is fully traced."""
        self._frozen = True

    def _grow(self) -> None:
        capacity = self._xs.shape[0] * 2
        for name in ('_xs', '_ys', '_obstructed'):
            old = getattr(self, name)
            new = np.zeros((capacity, 4), dtype=old.dtype)
            new[:self._count] = old[:self._count]
            setattr(self, name, new)

    def add_char_bbox(self, rect: Rect) -> int:
        """Register a glyph box, initially fully visible, and return its handle."""
        if self._frozen:
            logger.warning("Glyph box added after the page was frozen, ignoring")
            return -1
        if self._count == self._xs.shape[0]:
            self._grow()

        handle = self._count
        self._xs[handle] = (rect.x0, rect.x1, rect.x0, rect.x1)
        self._ys[handle] = (rect.y0, rect.y0, rect.y1, rect.y1)
        self._obstructed[handle] = False
        self._rects.append(rect)
        self._count += 1
        return handle

    @staticmethod
    def _inside(xs: np.ndarray, ys: np.ndarray, rect: Rect) -> np.ndarray:
        return (xs >= rect.x0) & (xs <= rect.x1) & (ys >= rect.y0) & (ys <= rect.y1)

    @staticmethod
    def _strictly_inside(xs: np.ndarray, ys: np.ndarray, rect: Rect) -> np.ndarray:
        return (xs > rect.x0) & (xs < rect.x1) & (ys > rect.y0) & (ys < rect.y1)

    def add_non_char_bbox(self, rect: Rect, opacity: float = 1.0, stroke_width: Optional[float] = None) -> int:
        """
        Test every registered glyph against a shape or image drawn on top.

        Args:
            rect: Device-space bounds of the primitive
            opacity: Paint opacity of the primitive
            stroke_width: Line width when the rectangle is stroked, None when filled

        Returns:
            Number of glyphs that became covered by this primitive
        """
        if self._frozen:
            logger.warning("Primitive added after the page was frozen, ignoring")
            return 0
        if opacity < self.opacity_threshold or self._count == 0 or rect.is_empty:
            return 0

        n = self._count
        xs = self._xs[:n]
        ys = self._ys[:n]
        if stroke_width is None:
            hit = self._inside(xs, ys, rect)
        else:
            half = max(stroke_width, 0.0) / 2.0
            hit = self._inside(xs, ys, rect.expanded(half))
            inner = rect.expanded(-half)
            if not inner.is_empty:
                hit &= ~self._strictly_inside(xs, ys, inner)

        was_covered = self._obstructed[:n].all(axis=1)
        self._obstructed[:n] |= hit
        now_covered = self._obstructed[:n].all(axis=1)
        return int(np.count_nonzero(now_covered & ~was_covered))

    def _valid(self, handle: int) -> bool:
        if 0 <= handle < self._count:
            return True
        logger.warning(f"Occlusion handle {handle} out of range (0..{self._count - 1}), treating as covered")
        return False

    def get_visibility(self, handle: int) -> bool:
        """True unless all four corners are obstructed; invalid handles count as covered."""
        if not self._valid(handle):
            return False
        return not bool(self._obstructed[handle].all())

    def get_corner_count(self, handle: int) -> int:
        """Number of unobstructed corners, 0 for invalid handles."""
        if not self._valid(handle):
            return 0
        return int(4 - np.count_nonzero(self._obstructed[handle]))

    def is_partially_covered(self, handle: int) -> bool:
        return 0 < self.get_corner_count(handle) < 4

    def get_rect(self, handle: int) -> Optional[Rect]:
        if not self._valid(handle):
            return None
        return self._rects[handle]

    def _free_counts(self) -> np.ndarray:
        return 4 - np.count_nonzero(self._obstructed[:self._count], axis=1)

    def covered_handles(self) -> List[int]:
        return [int(h) for h in np.flatnonzero(self._free_counts() == 0)]

    def partially_covered_handles(self) -> List[int]:
        free = self._free_counts()
        return [int(h) for h in np.flatnonzero((free > 0) & (free < 4))]

    def visible_handles(self) -> List[int]:
        return [int(h) for h in np.flatnonzero(self._free_counts() > 0)]

    def character_boxes(self) -> List[CharacterBBox]:
        free = self._free_counts()
        return [CharacterBBox(h, self._rects[h], int(free[h])) for h in range(self._count)]

    def summary(self) -> CoverageSummary:
        free = self._free_counts()
        total = self._count
        covered = int(np.count_nonzero(free == 0))
        partial = int(np.count_nonzero((free > 0) & (free < 4)))
        return CoverageSummary(
            total_chars=total,
            visible_chars=total - covered,
            covered_chars=covered,
            partially_covered_chars=partial,
            covered_ratio=covered / total if total else 0.0,
            partially_covered_ratio=partial / total if total else 0.0,
        )

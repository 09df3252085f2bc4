"""
Per-conversion resource limits.

OutputBudget caps the bytes written for one document (fonts, images,
backgrounds). Deadline bounds wall-clock time. Both raise the errors from
folio.utils.validation so the engine can abort the current page.
"""

import logging
import time
from typing import Optional

from folio.utils.validation import MemoryLimitError, ProcessingTimeoutError

logger = logging.getLogger(__name__)


class OutputBudget:
    """Running total of bytes written; a limit of -1 or None disables the check."""

    def __init__(self, limit: Optional[int] = None):
        self.limit = None if limit is None or limit < 0 else limit
        self.used = 0

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)

    def would_exceed(self, size: int) -> bool:
        return self.limit is not None and self.used + size > self.limit

    def charge(self, size: int, what: str = "output") -> None:
        if self.would_exceed(size):
            raise MemoryLimitError(
                f"Output size limit exceeded writing {what}: "
                f"{self.used + size} bytes (max: {self.limit} bytes)"
            )
        self.used += size


class Deadline:
    """Wall-clock deadline measured with time.monotonic."""

    def __init__(self, seconds: Optional[float] = None):
        self.seconds = seconds
        self.start = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.start

    @property
    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed > self.seconds

    def check(self) -> None:
        if self.expired:
            raise ProcessingTimeoutError(
                f"Processing timeout: {self.elapsed:.1f}s (max: {self.seconds}s)"
            )

"""
Configuration system for the conversion engine.

Provides structured configuration using dataclasses with clear defaults,
type safety, and dict-based construction for the HTTP layer.
"""

from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

BG_FORMATS = ("svg", "png", "jpg")
FONT_FORMATS = ("woff2", "woff", "ttf")


@dataclass
class PageRange:
    """
    Represents a range of pages to convert.

    Uses 1-based page numbering consistent with PDF viewers.

    Example:
        >>> page_range = PageRange(start=5, end=None)   # page 5 to the end
        >>> page_range = PageRange.single_page(7)
    """

    start: int  # 1-based page number
    end: Optional[int] = None  # None means "to end of document"

    def __post_init__(self):
        """Validate page range on construction."""
        if self.start < 1:
            raise ValueError(f"start page must be >= 1, got {self.start}")

        if self.end is not None:
            if self.end < 1:
                raise ValueError(f"end page must be >= 1, got {self.end}")
            if self.end < self.start:
                raise ValueError(
                    f"end page ({self.end}) must be >= start page ({self.start})"
                )

    def to_page_numbers(self, total_pages: int) -> List[int]:
        """
        Convert range to explicit list of page numbers, clamped to the document.

        Example:
            >>> PageRange(start=2, end=5).to_page_numbers(10)
            [2, 3, 4, 5]
        """
        if total_pages < 1:
            return []

        start = max(1, self.start)
        end = total_pages if self.end is None else min(self.end, total_pages)

        if start > end:
            return []

        return list(range(start, end + 1))

    @classmethod
    def all_pages(cls) -> 'PageRange':
        """Create range representing all pages in document."""
        return cls(start=1, end=None)

    @classmethod
    def single_page(cls, page_num: int) -> 'PageRange':
        return cls(start=page_num, end=page_num)

    def __repr__(self) -> str:
        if self.end is None:
            return f"PageRange({self.start}→end)"
        elif self.start == self.end:
            return f"PageRange(page {self.start})"
        else:
            return f"PageRange({self.start}→{self.end})"


@dataclass
class ConversionConfig:
    """
    Central configuration for a document conversion.

    Geometry tolerances are in output pixels (1px = 1pt at zoom 1).

    Example:
        >>> config = ConversionConfig(bg_format="png", zoom=1.5)
        >>> with DocumentEngine(file_path, config=config) as engine:
        ...     result = engine.convert()
    """

    # Page selection and geometry
    page_range: PageRange = field(default_factory=PageRange.all_pages)
    zoom: float = 1.0
    use_cropbox: bool = True

    # Text layout tolerances
    h_eps: float = 0.5
    v_eps: float = 0.5
    style_eps: float = 1e-4
    min_font_size: float = 0.001
    decompose_ligatures: bool = False

    # Occlusion handling
    # 0: keep covered text visible, 1: hide fully covered text,
    # 2: also render pages with partially covered text at text_dpi
    correct_text_visibility: int = 1
    occlusion_opacity_threshold: float = 0.5

    # Background rendering
    bg_format: str = "svg"
    svg_node_count_limit: Optional[int] = 1000
    desired_dpi: float = 144.0
    text_dpi: float = 300.0
    process_nontext: bool = True
    process_type3: bool = False
    fallback: bool = False

    # Fonts
    font_format: str = "woff2"

    # Output
    embed_css: bool = True
    embed_font: bool = True
    embed_image: bool = True
    dest_dir: Optional[str] = None
    css_filename: str = "style.css"

    # Resource limits
    tmp_file_size_limit: int = 50 * 1024 * 1024  # bytes, -1 disables
    max_decompression_ratio: int = 100
    timeout_seconds: Optional[float] = 300

    def validate(self) -> bool:
        """
        Validate configuration values.

        Returns:
            True if all values are valid, False otherwise
        """
        if self.zoom <= 0:
            logger.error("zoom must be positive")
            return False

        if self.h_eps < 0 or self.v_eps < 0 or self.style_eps < 0:
            logger.error("h_eps, v_eps and style_eps must be non-negative")
            return False

        if self.min_font_size <= 0:
            logger.error("min_font_size must be positive")
            return False

        if self.correct_text_visibility not in (0, 1, 2):
            logger.error("correct_text_visibility must be 0, 1 or 2")
            return False

        if not 0.0 <= self.occlusion_opacity_threshold <= 1.0:
            logger.error("occlusion_opacity_threshold must be within [0, 1]")
            return False

        if self.bg_format not in BG_FORMATS:
            logger.error(f"bg_format must be one of {BG_FORMATS}, got '{self.bg_format}'")
            return False

        if self.font_format not in FONT_FORMATS:
            logger.error(f"font_format must be one of {FONT_FORMATS}, got '{self.font_format}'")
            return False

        if self.svg_node_count_limit is not None and self.svg_node_count_limit < 0:
            logger.error("svg_node_count_limit must be non-negative or None")
            return False

        if self.desired_dpi <= 0 or self.text_dpi <= 0:
            logger.error("desired_dpi and text_dpi must be positive")
            return False

        if self.max_decompression_ratio < 1:
            logger.error("max_decompression_ratio must be at least 1")
            return False

        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            logger.error("timeout_seconds must be positive or None")
            return False

        if not self.embed_css and not self.dest_dir:
            logger.error("dest_dir is required when embed_css is disabled")
            return False

        return True

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Useful for serialization, logging, and debugging.
        """
        result = {f.name: getattr(self, f.name) for f in fields(self) if f.name != 'page_range'}
        result['first_page'] = self.page_range.start
        result['last_page'] = self.page_range.end
        return result

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ConversionConfig':
        """
        Create ConversionConfig from dictionary.

        Accepts ``first_page``/``last_page`` in place of a PageRange.
        Unknown keys are ignored with a warning.
        """
        valid_keys = {f.name for f in fields(cls)} - {'page_range'}

        filtered_config: Dict[str, Any] = {}
        first_page = config.get('first_page', 1)
        last_page = config.get('last_page')
        for key, value in config.items():
            if key in ('first_page', 'last_page'):
                continue
            if key in valid_keys:
                filtered_config[key] = value
            else:
                logger.warning(f"Unknown config key '{key}' will be ignored")

        filtered_config['page_range'] = PageRange(start=first_page or 1, end=last_page)
        return cls(**filtered_config)

    @classmethod
    def default(cls) -> 'ConversionConfig':
        """Create configuration with default values."""
        return cls()

    def __repr__(self) -> str:
        return (
            f"ConversionConfig("
            f"pages={self.page_range!r}, "
            f"zoom={self.zoom}, "
            f"bg={self.bg_format}, "
            f"svg_limit={self.svg_node_count_limit}, "
            f"visibility={self.correct_text_visibility}, "
            f"timeout={self.timeout_seconds}s)"
        )

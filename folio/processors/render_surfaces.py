"""
Drawing surfaces for page backgrounds.

Both surfaces take page-space coordinates (origin bottom-left, one unit per
output pixel at 72 dpi) and expose the same drawing calls, so the background
strategy can replay one display list onto either.

VectorSurface writes SVG markup and counts the primitives it emits; the
count drives the vector to raster fallback. RasterSurface paints with
Pillow at a given resolution.
"""

import logging
import math
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from folio.processors.events import Color
from folio.utils.image_codec import encode_image
from folio.utils.pdf_transforms import Matrix, Rect, format_number

logger = logging.getLogger(__name__)

PIXELS_PER_POINT_DPI = 72.0
MAX_RASTER_PIXELS = 64_000_000

_n = format_number


def _svg_escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _paint(color: Color, opacity: float, prefix: str) -> str:
    attrs = f'{prefix}="{color.to_css()}"'
    if opacity < 1.0:
        attrs += f' {prefix}-opacity="{_n(opacity, 4)}"'
    return attrs


class VectorSurface:
    """
    SVG surface.

    Every element written (rect, image, text, clip group) counts as one
    primitive.
    """

    def __init__(self, width: float, height: float):
        self.width = width
        self.height = height
        self._parts: List[str] = []
        self._open_clips = 0
        self._clip_serial = 0
        self._count = 0

    @property
    def primitive_count(self) -> int:
        return self._count

    @property
    def empty(self) -> bool:
        return self._count == 0

    def fill_rect(self, rect: Rect, color: Color, opacity: float = 1.0) -> None:
        self._parts.append(
            f'<rect x="{_n(rect.x0)}" y="{_n(rect.y0)}" width="{_n(rect.width)}" '
            f'height="{_n(rect.height)}" {_paint(color, opacity, "fill")}/>'
        )
        self._count += 1

    def stroke_rect(self, rect: Rect, color: Color, opacity: float = 1.0, line_width: float = 1.0) -> None:
        self._parts.append(
            f'<rect x="{_n(rect.x0)}" y="{_n(rect.y0)}" width="{_n(rect.width)}" '
            f'height="{_n(rect.height)}" fill="none" {_paint(color, opacity, "stroke")} '
            f'stroke-width="{_n(line_width)}"/>'
        )
        self._count += 1

    def draw_image(self, rect: Rect, href: str, opacity: float = 1.0) -> None:
        """Place an image referenced by file name or data URI; images are stored top-down."""
        extra = f' opacity="{_n(opacity, 4)}"' if opacity < 1.0 else ''
        self._parts.append(
            f'<image x="0" y="0" width="1" height="1" preserveAspectRatio="none" '
            f'transform="matrix({_n(rect.width)},0,0,{_n(-rect.height)},{_n(rect.x0)},{_n(rect.y1)})" '
            f'href="{_svg_escape(href)}"{extra}/>'
        )
        self._count += 1

    def draw_glyph(
        self,
        glyph_matrix: Matrix,
        text: str,
        font_size: float,
        color: Color,
        opacity: float = 1.0,
        font_family: str = "sans-serif",
    ) -> None:
        if not text:
            return
        a, b, c, d, e, f = glyph_matrix.as_tuple()
        # SVG text grows downwards; the outer group flips y, so flip the glyph back
        self._parts.append(
            f'<text transform="matrix({_n(a)},{_n(b)},{_n(-c)},{_n(-d)},{_n(e)},{_n(f)})" '
            f'font-size="{_n(font_size)}" font-family="{_svg_escape(font_family)}" '
            f'{_paint(color, opacity, "fill")}>{_svg_escape(text)}</text>'
        )
        self._count += 1

    def push_clip(self, rect: Rect) -> None:
        clip_id = f"c{self._clip_serial}"
        self._clip_serial += 1
        self._parts.append(
            f'<clipPath id="{clip_id}"><rect x="{_n(rect.x0)}" y="{_n(rect.y0)}" '
            f'width="{_n(rect.width)}" height="{_n(rect.height)}"/></clipPath>'
            f'<g clip-path="url(#{clip_id})">'
        )
        self._open_clips += 1
        self._count += 1

    def pop_clip(self) -> None:
        if self._open_clips == 0:
            logger.warning("pop_clip without matching push_clip, ignoring")
            return
        self._parts.append('</g>')
        self._open_clips -= 1

    def finish(self) -> bytes:
        while self._open_clips:
            self.pop_clip()
        w, h = _n(self.width), _n(self.height)
        header = (
            f'<svg xmlns="http://www.w3.org/2000/svg" '
            f'width="{w}" height="{h}" viewBox="0 0 {w} {h}">'
            f'<g transform="matrix(1,0,0,-1,0,{h})">'
        )
        return (header + "".join(self._parts) + '</g></svg>').encode('utf-8')


class RasterSurface:
    """Pillow surface; clip regions are intersected rectangles."""

    def __init__(self, width: float, height: float, dpi: float, fmt: str = "png"):
        self.width = width
        self.height = height
        self.fmt = fmt
        scale = dpi / PIXELS_PER_POINT_DPI
        pixels = max(width * scale, 1) * max(height * scale, 1)
        if pixels > MAX_RASTER_PIXELS:
            reduced = scale * math.sqrt(MAX_RASTER_PIXELS / pixels)
            logger.warning(f"Raster background at {dpi:.0f} dpi is too large, using {reduced * 72:.0f} dpi")
            scale = reduced
        self.scale = scale
        self.dpi = scale * PIXELS_PER_POINT_DPI
        size = (max(int(math.ceil(width * scale)), 1), max(int(math.ceil(height * scale)), 1))
        self.image = Image.new("RGB", size, (255, 255, 255))
        self._clips: List[Rect] = []
        self._fonts: Dict[int, ImageFont.ImageFont] = {}
        self._count = 0

    @property
    def primitive_count(self) -> int:
        return self._count

    def _to_pixels(self, rect: Rect) -> Tuple[float, float, float, float]:
        s = self.scale
        return (rect.x0 * s, (self.height - rect.y1) * s, rect.x1 * s, (self.height - rect.y0) * s)

    def _clip_box(self) -> Optional[Tuple[int, int, int, int]]:
        """Current clip in integer pixels, None when nothing can be painted."""
        clip = Rect.from_size(self.width, self.height)
        for rect in self._clips:
            clip = clip.intersect(rect)
        if clip.is_empty:
            return None
        x0, y0, x1, y1 = self._to_pixels(clip)
        box = (max(int(math.floor(x0)), 0), max(int(math.floor(y0)), 0),
               min(int(math.ceil(x1)), self.image.width), min(int(math.ceil(y1)), self.image.height))
        if box[2] <= box[0] or box[3] <= box[1]:
            return None
        return box

    @contextmanager
    def _region(self) -> Iterator[Optional[Tuple[Image.Image, int, int]]]:
        """Yield the clipped part of the image and its offset, pasted back afterwards."""
        box = self._clip_box()
        if box is None:
            yield None
            return
        region = self.image.crop(box)
        yield region, box[0], box[1]
        self.image.paste(region, box[:2])

    def fill_rect(self, rect: Rect, color: Color, opacity: float = 1.0) -> None:
        self._count += 1
        if color.transparent:
            return
        with self._region() as clipped:
            if clipped is None:
                return
            region, ox, oy = clipped
            x0, y0, x1, y1 = self._to_pixels(rect)
            draw = ImageDraw.Draw(region, "RGBA")
            draw.rectangle((x0 - ox, y0 - oy, x1 - ox, y1 - oy), fill=color.to_rgb() + (int(round(opacity * 255)),))

    def stroke_rect(self, rect: Rect, color: Color, opacity: float = 1.0, line_width: float = 1.0) -> None:
        self._count += 1
        if color.transparent:
            return
        with self._region() as clipped:
            if clipped is None:
                return
            region, ox, oy = clipped
            x0, y0, x1, y1 = self._to_pixels(rect)
            width = max(int(round(line_width * self.scale)), 1)
            draw = ImageDraw.Draw(region, "RGBA")
            draw.rectangle(
                (x0 - ox, y0 - oy, x1 - ox, y1 - oy),
                outline=color.to_rgb() + (int(round(opacity * 255)),),
                width=width,
            )

    def draw_image(self, rect: Rect, image: Image.Image, opacity: float = 1.0) -> None:
        self._count += 1
        x0, y0, x1, y1 = self._to_pixels(rect)
        size = (max(int(round(x1 - x0)), 1), max(int(round(y1 - y0)), 1))
        with self._region() as clipped:
            if clipped is None:
                return
            region, ox, oy = clipped
            tile = image.convert("RGBA").resize(size, Image.Resampling.BILINEAR)
            if opacity < 1.0:
                alpha = tile.getchannel("A").point(lambda v: int(v * opacity))
                tile.putalpha(alpha)
            region.paste(tile, (int(round(x0)) - ox, int(round(y0)) - oy), tile)

    def _font(self, pixel_size: int) -> ImageFont.ImageFont:
        font = self._fonts.get(pixel_size)
        if font is None:
            try:
                font = ImageFont.load_default(size=pixel_size)
            except (TypeError, OSError, ImportError):
                # Pillow without FreeType only ships the fixed-size bitmap font
                font = ImageFont.load_default()
            self._fonts[pixel_size] = font
        return font

    def draw_glyph(
        self,
        glyph_matrix: Matrix,
        text: str,
        font_size: float,
        color: Color,
        opacity: float = 1.0,
        font_family: str = "sans-serif",
    ) -> None:
        """Paint a glyph at its origin, rotated to the transform's angle."""
        self._count += 1
        if not text or color.transparent:
            return
        pixel_size = max(int(round(font_size * glyph_matrix.vertical_scale * self.scale)), 1)
        font = self._font(pixel_size)
        is_truetype = isinstance(font, ImageFont.FreeTypeFont)
        if is_truetype:
            left, top, right, bottom = font.getbbox(text, anchor="ls")
        else:
            left, top, right, bottom = font.getbbox(text)
        radius = int(math.ceil(max(abs(left), abs(top), abs(right), abs(bottom)))) + 1

        # The glyph origin sits at the tile center so rotation keeps it fixed
        tile = Image.new("RGBA", (2 * radius, 2 * radius), (0, 0, 0, 0))
        draw = ImageDraw.Draw(tile)
        fill = color.to_rgb() + (int(round(opacity * 255)),)
        if is_truetype:
            draw.text((radius, radius), text, font=font, fill=fill, anchor="ls")
        else:
            draw.text((radius, radius - bottom), text, font=font, fill=fill)

        rotation = glyph_matrix.rotation_degrees
        if abs(rotation) > 0.01:
            tile = tile.rotate(rotation, resample=Image.Resampling.BICUBIC)

        ox_page, oy_page = glyph_matrix.translation
        px = ox_page * self.scale
        py = (self.height - oy_page) * self.scale
        with self._region() as clipped:
            if clipped is None:
                return
            region, ox, oy = clipped
            region.paste(tile, (int(round(px)) - radius - ox, int(round(py)) - radius - oy), tile)

    def push_clip(self, rect: Rect) -> None:
        self._clips.append(rect)

    def pop_clip(self) -> None:
        if not self._clips:
            logger.warning("pop_clip without matching push_clip, ignoring")
            return
        self._clips.pop()

    def finish(self) -> bytes:
        return encode_image(self.image, self.fmt)

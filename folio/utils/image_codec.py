"""
Image decoding and encoding helpers for background rendering.

Image samples arrive already unfiltered by pdfminer.six, except JPEG
(DCTDecode) data which is passed through untouched and handed to Pillow.
"""

import base64
import io
import logging
from typing import Optional, Tuple, TYPE_CHECKING

from PIL import Image

if TYPE_CHECKING:
    from folio.processors.events import ImageRef

logger = logging.getLogger(__name__)

MODE_BY_COMPONENTS = {1: 'L', 3: 'RGB', 4: 'CMYK'}

MIME_BY_EXTENSION = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'svg': 'image/svg+xml',
    'woff2': 'font/woff2',
    'woff': 'font/woff',
    'ttf': 'font/ttf',
    'otf': 'font/otf',
    'cff': 'application/font-cff',
    'pfa': 'application/x-font-type1',
    'css': 'text/css',
}


def detect_image_mime_type(img_bytes: bytes) -> str:
    """Detect MIME type from image bytes."""
    if not img_bytes or len(img_bytes) < 8:
        return "image/unknown"

    if img_bytes[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"
    elif img_bytes[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    elif img_bytes[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    elif img_bytes[:4] == b'RIFF' and img_bytes[8:12] == b'WEBP':
        return "image/webp"
    elif img_bytes.lstrip()[:5] in (b'<?xml', b'<svg '):
        return "image/svg+xml"

    try:
        img = Image.open(io.BytesIO(img_bytes))
    except (OSError, ValueError):
        return "image/unknown"
    format_name = img.format.lower() if img.format else 'unknown'
    return f"image/{format_name}"


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def check_decompression_ratio(raw_length: int, decoded_length: int, max_ratio: int) -> Tuple[bool, Optional[str]]:
    """
    Guard against decompression bombs.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if raw_length <= 0:
        return True, None
    ratio = decoded_length / raw_length
    if ratio > max_ratio:
        return False, f"Decompression ratio {ratio:.0f}:1 exceeds limit {max_ratio}:1"
    return True, None


def unpack_samples(data: bytes, bits_per_component: int) -> bytes:
    """Expand 1/2/4-bit samples to 8 bits and drop the low byte of 16-bit ones."""
    if bits_per_component == 8:
        return data
    if bits_per_component == 16:
        return bytes(data[0::2])
    if bits_per_component in (1, 2, 4):
        pixels_per_byte = 8 // bits_per_component
        mask = (1 << bits_per_component) - 1
        scale = 255 // mask
        unpacked = bytearray()
        for byte in data:
            for i in range(pixels_per_byte):
                shift = (pixels_per_byte - 1 - i) * bits_per_component
                unpacked.append(((byte >> shift) & mask) * scale)
        return bytes(unpacked)
    raise ValueError(f"Unsupported bits per component: {bits_per_component}")


def _unpack_rows(data: bytes, width: int, height: int, components: int, bits_per_component: int) -> bytes:
    """Unpack sub-byte samples row by row; rows are padded to whole bytes."""
    if bits_per_component >= 8:
        return unpack_samples(data, bits_per_component)
    row_bytes = (width * components * bits_per_component + 7) // 8
    samples_per_row = width * components
    rows = []
    for y in range(height):
        row = unpack_samples(data[y * row_bytes:(y + 1) * row_bytes], bits_per_component)
        rows.append(row[:samples_per_row].ljust(samples_per_row, b'\x00'))
    return b''.join(rows)


def decode_image(image: 'ImageRef') -> Optional[Image.Image]:
    """
    Build a Pillow image from an ImageRef.

    Returns None for images that cannot be decoded (unsupported filters or
    color spaces, truncated data); the caller skips them.
    """
    if image.width <= 0 or image.height <= 0 or not image.data:
        return None

    if image.is_jpeg:
        try:
            img = Image.open(io.BytesIO(image.data))
            img.load()
        except (OSError, ValueError) as e:
            logger.warning(f"Could not decode JPEG image {image.name}: {e}")
            return None
        return img.convert('RGB') if img.mode not in ('L', 'RGB') else img

    if image.filters and image.filters[-1] not in ('FlateDecode', 'Fl', 'LZWDecode', 'LZW', 'RunLengthDecode', 'RL',
                                                   'ASCII85Decode', 'A85', 'ASCIIHexDecode', 'AHx'):
        logger.debug(f"Image {image.name} uses unsupported filter {image.filters[-1]}, skipping")
        return None

    size = (image.width, image.height)
    try:
        if image.is_mask:
            samples = _unpack_rows(image.data, image.width, image.height, 1, 1)
            return Image.frombytes('L', size, samples[:image.width * image.height])

        if image.palette is not None:
            indices = _unpack_rows(image.data, image.width, image.height, 1, image.bits_per_component)
            if image.bits_per_component < 8:
                scale = 255 // ((1 << image.bits_per_component) - 1)
                indices = bytes(i // scale for i in indices)
            img = Image.frombytes('P', size, indices[:image.width * image.height])
            palette = image.palette
            if image.palette_components == 1:
                palette = bytes(v for v in palette for _ in range(3))
            img.putpalette(palette[:768])
            return img.convert('RGB')

        mode = MODE_BY_COMPONENTS.get(image.components)
        if mode is None:
            logger.debug(f"Image {image.name} has {image.components} components, skipping")
            return None
        samples = _unpack_rows(image.data, image.width, image.height, image.components, image.bits_per_component)
        expected = image.width * image.height * image.components
        if len(samples) < expected:
            samples += b'\x00' * (expected - len(samples))
        img = Image.frombytes(mode, size, samples[:expected])
        return img.convert('RGB') if mode == 'CMYK' else img
    except ValueError as e:
        logger.warning(f"Could not decode image {image.name}: {e}")
        return None


def encode_image(img: Image.Image, fmt: str = 'png') -> bytes:
    """Encode a Pillow image as PNG or JPEG bytes."""
    buffer = io.BytesIO()
    if fmt == 'jpg':
        img.convert('RGB').save(buffer, format='JPEG', quality=90)
    else:
        img.save(buffer, format='PNG', optimize=True)
    return buffer.getvalue()

import io

from PIL import Image

from folio.processors.events import ImageRef
from folio.utils.image_codec import (
    check_decompression_ratio,
    decode_image,
    detect_image_mime_type,
    encode_image,
    unpack_samples,
)


def _png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (2, 2)).save(buf, format="PNG")
    return buf.getvalue()


def test_detect_mime_type():
    assert detect_image_mime_type(_png_bytes()) == "image/png"
    assert detect_image_mime_type(b"\xff\xd8\xff\xe0" + b"\x00" * 8) == "image/jpeg"
    assert detect_image_mime_type(b"<svg xmlns='x'/>") == "image/svg+xml"
    assert detect_image_mime_type(b"") == "image/unknown"


def test_decompression_ratio():
    assert check_decompression_ratio(100, 1000, 100) == (True, None)
    ok, message = check_decompression_ratio(1, 1000, 100)
    assert not ok
    assert "1000:1" in message
    assert check_decompression_ratio(0, 1000, 100)[0]


def test_unpack_one_bit_samples():
    assert unpack_samples(b"\xa0", 1) == bytes([255, 0, 255, 0, 0, 0, 0, 0])
    assert unpack_samples(b"\x12\x34", 16) == b"\x12"


def test_decode_rgb_samples():
    image = ImageRef(name="Im0", width=2, height=1, data=bytes([255, 0, 0, 0, 0, 255]), raw_length=6)

    img = decode_image(image)

    assert img.mode == "RGB"
    assert img.getpixel((0, 0)) == (255, 0, 0)
    assert img.getpixel((1, 0)) == (0, 0, 255)


def test_decode_palette_image():
    image = ImageRef(name="Im1", width=2, height=1, components=1, bits_per_component=8,
                     data=bytes([0, 1]), palette=bytes([10, 20, 30, 40, 50, 60]), raw_length=2)

    img = decode_image(image)

    assert img.getpixel((1, 0)) == (40, 50, 60)


def test_decode_skips_unsupported_filters():
    image = ImageRef(name="Im2", width=1, height=1, filters=("JBIG2Decode",), data=b"\x00", raw_length=1)

    assert decode_image(image) is None


def test_decode_rejects_empty_images():
    assert decode_image(ImageRef(name="Im3", width=0, height=1, data=b"\x00")) is None


def test_encode_jpeg_and_png():
    img = Image.new("RGB", (3, 3), (1, 2, 3))

    assert encode_image(img, "jpg")[:3] == b"\xff\xd8\xff"
    assert encode_image(img)[:8] == b"\x89PNG\r\n\x1a\n"

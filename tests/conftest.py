import io

import pytest
from PIL import Image

from promptedit.io.codec import ImageFile


def _encoded(fmt: str, size=(32, 24)) -> bytes:
    """
    Deterministic gradient image, encoded in the given Pillow format.
    """
    w, h = size
    img = Image.new("RGB", (w, h))
    px = img.load()
    for y in range(h):
        for x in range(w):
            px[x, y] = ((x * 37) % 256, (y * 53) % 256, ((x + y) * 19) % 256)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def png_bytes() -> bytes:
    return _encoded("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return _encoded("JPEG")


@pytest.fixture
def photo_jpg(jpeg_bytes) -> ImageFile:
    return ImageFile(name="photo.jpg", mime_type="image/jpeg", data=jpeg_bytes)


@pytest.fixture
def photo_png(png_bytes) -> ImageFile:
    return ImageFile(name="photo.png", mime_type="image/png", data=png_bytes)

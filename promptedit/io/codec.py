# promptedit/io/codec.py
from __future__ import annotations

import base64
import binascii
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from PIL import Image, UnidentifiedImageError

PathLike = Union[str, Path]

DEFAULT_MIME_TYPE = "image/png"

# data:<mime>[;param=...];base64,<body>
_DATA_URL_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[\w.+-]+=[^;,]*)*);base64,(?P<body>.*)$",
    re.DOTALL,
)


class DecodeError(ValueError):
    """A file or data-URL could not be read into image bytes."""


@dataclass(frozen=True)
class ImageFile:
    """
    In-memory stand-in for a browser File: a name, a declared mime type and the raw bytes.
    """
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ImagePayload:
    """Transport form of an image: mime type + base64 body (no data: prefix)."""
    mime_type: str
    data: str


def sniff_mime_type(data: bytes, fallback: str | None = None) -> str | None:
    """
    Identify image bytes with Pillow. Returns `fallback` when Pillow does not recognize them.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError):
        return fallback
    if not fmt:
        return fallback
    return Image.MIME.get(fmt, fallback)


def to_data_url(mime_type: str, data_b64: str) -> str:
    return f"data:{mime_type};base64,{data_b64}"


def file_to_data_url(file: ImageFile) -> str:
    payload = encode(file)
    return to_data_url(payload.mime_type, payload.data)


def encode(file: ImageFile) -> ImagePayload:
    if file is None or not isinstance(file.data, (bytes, bytearray)):
        raise DecodeError("Failed to read file as base64.")
    if not file.data:
        raise DecodeError("Failed to read file as base64.")

    data_b64 = base64.b64encode(bytes(file.data)).decode("ascii")
    return ImagePayload(mime_type=file.mime_type, data=data_b64)


def parse_data_url(data_url: str) -> tuple[str, bytes]:
    """
    Split a base64 data-URL into (mime_type, raw bytes).
    Mime type defaults to image/png when the URL omits it.
    """
    if not isinstance(data_url, str):
        raise DecodeError("data URL must be a string")

    m = _DATA_URL_RE.match(data_url.strip())
    if m is None:
        raise DecodeError("not a base64 data URL")

    mime_type = m.group("mime") or DEFAULT_MIME_TYPE
    body = re.sub(r"\s+", "", m.group("body"))
    if not body:
        raise DecodeError("data URL has an empty body")

    try:
        raw = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"data URL body is not valid base64: {e}") from e

    return mime_type, raw


def decode(data_url: str, filename: str) -> ImageFile:
    mime_type, raw = parse_data_url(data_url)
    return ImageFile(name=filename, mime_type=mime_type, data=raw)


def load_image_file(path: PathLike) -> ImageFile:
    """
    Read an image from disk. The declared mime type is whatever Pillow identifies.
    """
    p = Path(path).expanduser()
    try:
        data = p.read_bytes()
    except OSError as e:
        raise DecodeError(f"cannot read {p}: {e}") from e

    mime_type = sniff_mime_type(data)
    if mime_type is None:
        raise DecodeError(f"{p.name} is not a recognized image")

    return ImageFile(name=p.name, mime_type=mime_type, data=data)

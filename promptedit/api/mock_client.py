# promptedit/api/mock_client.py
from __future__ import annotations

import base64
import hashlib
import io

from PIL import Image, ImageOps

from promptedit.api.client import ContentPart, EditResponse, ImageEditClient, OutputModality
from promptedit.io.codec import DecodeError, ImagePayload

MAX_SIDE_PX = 1024


def _tint_for(instruction: str) -> tuple[int, int, int]:
    """
    Deterministic tint derived from the instruction text.
    No randomness; stable across runs/machines.
    """
    digest = hashlib.sha256(instruction.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]


def edit_image(*, image_bytes: bytes, instruction: str) -> bytes:
    """
    Offline stand-in for the remote editor: grayscale the input, colorize it with a
    tint picked from the instruction, and return PNG bytes.
    """
    try:
        src = Image.open(io.BytesIO(image_bytes))
        src.load()
    except OSError as e:
        raise DecodeError("mock editor cannot read input image") from e

    src = src.convert("RGB")
    src.thumbnail((MAX_SIDE_PX, MAX_SIDE_PX))

    tint = _tint_for(instruction)
    out = ImageOps.colorize(ImageOps.grayscale(src), black=(0, 0, 0), white=tint)

    buf = io.BytesIO()
    out.save(buf, format="PNG")
    return buf.getvalue()


class MockImageEditClient(ImageEditClient):
    def generate(
        self,
        *,
        image: ImagePayload,
        instruction: str,
        output_modality: OutputModality = "image",
    ) -> EditResponse:
        png = edit_image(image_bytes=base64.b64decode(image.data), instruction=instruction)
        return EditResponse(
            parts=(
                ContentPart(text=f"mock edit: {instruction}"),
                ContentPart(mime_type="image/png", data=base64.b64encode(png).decode("ascii")),
            )
        )

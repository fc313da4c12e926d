from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from promptedit.api.client import (
    ClassifiedError,
    ContentPart,
    EditResponse,
    ImageEditClient,
    OutputModality,
    RemoteFailure,
)
from promptedit.io.codec import DecodeError, ImagePayload

LOGGER = logging.getLogger(__name__)

MODEL_DEFAULT = "gemini-2.5-flash-image"
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")


@dataclass(frozen=True)
class GeminiImageEditConfig:
    model: str = MODEL_DEFAULT
    timeout_s: float | None = None


def api_key_from_env() -> str | None:
    for name in API_KEY_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    return None


def remote_failure_from_api_error(e: genai_errors.APIError) -> RemoteFailure:
    """
    The SDK keeps the whole JSON body in `details`; the RetryInfo list sits under error.details.
    """
    body: Any = getattr(e, "details", None)
    detail_list: list[dict[str, Any]] = []
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and isinstance(inner.get("details"), list):
            detail_list = [d for d in inner["details"] if isinstance(d, dict)]
    elif isinstance(body, list):
        detail_list = [d for d in body if isinstance(d, dict)]

    code = getattr(e, "code", None)
    return RemoteFailure(
        status=getattr(e, "status", None),
        code=int(code) if isinstance(code, int) else None,
        message=getattr(e, "message", None) or str(e),
        details=detail_list,
    )


def _parts_from_response(response: Any) -> tuple[ContentPart, ...]:
    parts: list[ContentPart] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        if content is None:
            continue
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and getattr(inline, "data", None):
                parts.append(ContentPart(mime_type=getattr(inline, "mime_type", None), data=inline.data))
                continue
            text = getattr(part, "text", None)
            if text:
                parts.append(ContentPart(text=text))
    return tuple(parts)


class GeminiImageEditClient(ImageEditClient):
    """
    Gemini-backed image editor (image + instruction in, image out).
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        config: GeminiImageEditConfig | None = None,
    ) -> None:
        if api_key is None:
            api_key = api_key_from_env()

        if not api_key:
            raise ClassifiedError.fatal("GEMINI_API_KEY not set")

        self._config = config or GeminiImageEditConfig()

        http_options = None
        if self._config.timeout_s is not None:
            # SDK timeout is in milliseconds
            http_options = types.HttpOptions(timeout=int(self._config.timeout_s * 1000))

        self._client = genai.Client(api_key=api_key, http_options=http_options)

    @property
    def config(self) -> GeminiImageEditConfig:
        return self._config

    def generate(
        self,
        *,
        image: ImagePayload,
        instruction: str,
        output_modality: OutputModality = "image",
    ) -> EditResponse:
        try:
            image_bytes = base64.b64decode(image.data)
        except ValueError as e:
            raise DecodeError("image payload is not valid base64") from e

        contents = [
            types.Content(
                role="user",
                parts=[
                    types.Part.from_bytes(data=image_bytes, mime_type=image.mime_type),
                    types.Part.from_text(text=instruction),
                ],
            )
        ]
        config = types.GenerateContentConfig(response_modalities=[output_modality.upper()])

        try:
            response = self._client.models.generate_content(
                model=self._config.model,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            raise remote_failure_from_api_error(e) from e

        parts = _parts_from_response(response)
        LOGGER.debug("gemini returned %d part(s)", len(parts))
        return EditResponse(parts=parts)

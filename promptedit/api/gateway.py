# promptedit/api/gateway.py
from __future__ import annotations

import base64
import logging
import re
from typing import Any

from promptedit.api.client import (
    RETRY_INFO_TYPE,
    ClassifiedError,
    EditRequest,
    EditResponse,
    ImageEditClient,
    RemoteFailure,
)
from promptedit.io.codec import DEFAULT_MIME_TYPE, to_data_url

LOGGER = logging.getLogger(__name__)

DEFAULT_QUOTA_DELAY_S = 60

QUOTA_DEFAULT_MESSAGE = "You've exceeded your request limit. Please try again in 60 seconds."
SERVER_ERROR_MESSAGE = "An unexpected server error occurred. Please try again in a few moments."
UNKNOWN_ERROR_MESSAGE = "An unknown error occurred while trying to generate the image."
NO_IMAGE_MESSAGE = "No image found in the API response."

_LEADING_INT_RE = re.compile(r"^\s*(\d+)")


def parse_retry_delay(value: Any) -> int | None:
    """
    Seconds from a RetryInfo.retryDelay value. Accepts "45s", "45.2s", "45", 45, 45.0
    and {"seconds": 45}. Returns None when nothing numeric can be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None
    if isinstance(value, dict):
        return parse_retry_delay(value.get("seconds"))
    if isinstance(value, str):
        m = _LEADING_INT_RE.match(value)
        return int(m.group(1)) if m else None
    return None


def _find_retry_delay(details: list[dict[str, Any]]) -> int | None:
    for d in details:
        if not isinstance(d, dict):
            continue
        if d.get("@type") != RETRY_INFO_TYPE and d.get("type") != RETRY_INFO_TYPE:
            continue
        raw = d.get("retryDelay", d.get("retry_delay", d.get("retryDelaySeconds")))
        return parse_retry_delay(raw)
    return None


def classify_failure(exc: BaseException) -> ClassifiedError:
    """
    Map a raw remote failure onto quota / transient / fatal.

    1. status RESOURCE_EXHAUSTED -> quota(retry delay from RetryInfo, else 60)
    2. status UNKNOWN or code 500 -> transient
    3. anything else             -> fatal, wrapping the original message when there is one
    """
    if isinstance(exc, ClassifiedError):
        return exc

    if isinstance(exc, RemoteFailure) and exc.status:
        if exc.status == "RESOURCE_EXHAUSTED":
            try:
                seconds = _find_retry_delay(exc.details)
            except (TypeError, ValueError, AttributeError) as parse_err:
                LOGGER.warning("could not parse quota error details: %s", parse_err)
                seconds = None
            if seconds is not None:
                return ClassifiedError.quota(seconds)
            return ClassifiedError.quota(DEFAULT_QUOTA_DELAY_S, QUOTA_DEFAULT_MESSAGE)

        if exc.status == "UNKNOWN" or exc.code == 500:
            return ClassifiedError.transient(SERVER_ERROR_MESSAGE)

    message = getattr(exc, "message", None) if isinstance(exc, RemoteFailure) else str(exc)
    if message:
        return ClassifiedError.fatal(f"Failed to generate image: {message}")
    return ClassifiedError.fatal(UNKNOWN_ERROR_MESSAGE)


def first_inline_image(response: EditResponse) -> str | None:
    """Data-URL of the first inline image part, or None."""
    for part in response.parts:
        if not part.is_inline_image:
            continue
        data = part.data
        if isinstance(data, (bytes, bytearray)):
            data = base64.b64encode(bytes(data)).decode("ascii")
        return to_data_url(part.mime_type or DEFAULT_MIME_TYPE, data)
    return None


class EditGateway:
    """
    Wraps the single remote call. Classifies failures and returns; never retries.
    """

    def __init__(self, client: ImageEditClient) -> None:
        self._client = client

    @property
    def client(self) -> ImageEditClient:
        return self._client

    def submit(self, request: EditRequest) -> str:
        LOGGER.info(
            "submitting edit: mime=%s bytes_b64=%d instruction=%r",
            request.image.mime_type,
            len(request.image.data),
            request.instruction,
        )
        try:
            response = self._client.generate(
                image=request.image,
                instruction=request.instruction,
                output_modality="image",
            )
            result = first_inline_image(response)
            if result is None:
                raise ValueError(NO_IMAGE_MESSAGE)
        except Exception as e:
            LOGGER.error("error editing image: %r", e)
            raise classify_failure(e) from e

        return result

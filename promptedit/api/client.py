from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

from promptedit.io.codec import ImagePayload

ErrorKind = Literal["quota", "transient", "fatal"]
OutputModality = Literal["image"]

RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"


@dataclass(frozen=True)
class EditRequest:
    image: ImagePayload
    instruction: str

    def __post_init__(self) -> None:
        if not self.instruction or not self.instruction.strip():
            raise ValueError("instruction must be non-empty")


@dataclass(frozen=True)
class ContentPart:
    """
    One part of a model response. Image parts carry inline data; text parts carry text.
    `data` is base64 text or raw bytes, whichever the transport handed us.
    """
    mime_type: str | None = None
    data: str | bytes | None = None
    text: str | None = None

    @property
    def is_inline_image(self) -> bool:
        return self.data is not None and len(self.data) > 0


@dataclass(frozen=True)
class EditResponse:
    parts: tuple[ContentPart, ...] = ()


class ImageEditClient(Protocol):
    """
    The only contract the gateway needs from the remote model:

    - input: image payload, instruction, requested output modality
    - output: an EditResponse, or a raised RemoteFailure / any other exception
    """

    def generate(
        self,
        *,
        image: ImagePayload,
        instruction: str,
        output_modality: OutputModality = "image",
    ) -> EditResponse:
        ...


class RemoteFailure(RuntimeError):
    """
    Structured failure as reported by the remote service:
    {status, code?, message?, details?: [{"@type": ..., "retryDelay": ...}, ...]}
    """

    def __init__(
        self,
        *,
        status: str | None = None,
        code: int | None = None,
        message: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        self.status = status
        self.code = code
        self.message = message
        self.details: list[dict[str, Any]] = list(details or [])
        super().__init__(message or status or "remote failure")


class ClassifiedError(Exception):
    """
    Tagged failure produced by the gateway. Callers switch on `kind`:

    - quota:     rate/usage limit hit; retry after `retry_after_s` seconds
    - transient: server-side hiccup; user may try again manually
    - fatal:     anything else; message is shown verbatim
    """

    def __init__(self, kind: ErrorKind, message: str, retry_after_s: int | None = None) -> None:
        super().__init__(message)
        self.kind: ErrorKind = kind
        self.message = message
        self.retry_after_s = retry_after_s

    def __repr__(self) -> str:
        return f"ClassifiedError(kind={self.kind!r}, message={self.message!r}, retry_after_s={self.retry_after_s!r})"

    @classmethod
    def quota(cls, retry_after_s: int, message: str = "Quota exceeded.") -> "ClassifiedError":
        return cls("quota", message, max(0, int(retry_after_s)))

    @classmethod
    def transient(cls, message: str) -> "ClassifiedError":
        return cls("transient", message)

    @classmethod
    def fatal(cls, message: str) -> "ClassifiedError":
        return cls("fatal", message)

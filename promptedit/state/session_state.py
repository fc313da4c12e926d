from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Literal

from promptedit.io.codec import ImageFile

Phase = Literal["empty", "loaded", "generating", "awaiting_retry", "succeeded", "failed"]

QUOTA_COUNTDOWN_TEMPLATE = "Quota limit reached. Retrying in {n} seconds..."


@dataclass(frozen=True)
class SessionState:
    """
    One snapshot of the edit session. Replaced wholesale on every transition.

    Which fields are meaningful depends on `phase`:
      empty           nothing
      loaded          image, preview
      generating      image, preview, instruction
      awaiting_retry  image, preview, instruction, seconds_remaining
      succeeded       image, preview, result
      failed          image, preview, error
    `instruction` is the current textbox value and survives every phase.
    `error` is also used in loaded/empty for inline validation messages.
    """
    phase: Phase = "empty"
    epoch: int = 0

    image: ImageFile | None = None
    preview: str | None = None  # data-URL of `image`
    instruction: str = ""

    seconds_remaining: int | None = None
    result: str | None = None  # data-URL
    error: str | None = None

    def evolve(self, **changes: Any) -> "SessionState":
        return replace(self, **changes)

    @property
    def busy(self) -> bool:
        return self.phase in ("generating", "awaiting_retry")

    @property
    def status_message(self) -> str | None:
        # countdown text is derived from seconds_remaining, not stored as an error
        if self.phase == "awaiting_retry" and self.seconds_remaining is not None:
            return QUOTA_COUNTDOWN_TEMPLATE.format(n=self.seconds_remaining)
        return self.error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "epoch": self.epoch,
            "image_name": self.image.name if self.image else None,
            "image_mime_type": self.image.mime_type if self.image else None,
            "preview": self.preview,
            "instruction": self.instruction,
            "seconds_remaining": self.seconds_remaining,
            "result": self.result,
            "error": self.error,
            "status_message": self.status_message,
            "busy": self.busy,
        }

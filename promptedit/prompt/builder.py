# promptedit/prompt/builder.py
from __future__ import annotations

import logging

from promptedit.api.client import EditRequest
from promptedit.io.codec import ImageFile, encode

LOGGER = logging.getLogger(__name__)


def normalize_instruction(user_prompt: str | None) -> str:
    return (user_prompt or "").replace("\r\n", "\n").strip()


def build_edit_request(*, image: ImageFile, user_prompt: str) -> EditRequest:
    """
    Encode the active image and pair it with the normalized instruction.
    Raises DecodeError if the image cannot be encoded, ValueError if the instruction is blank.
    """
    instruction = normalize_instruction(user_prompt)
    payload = encode(image)
    LOGGER.debug("API FACING PROMPT: %s", instruction)
    return EditRequest(image=payload, instruction=instruction)

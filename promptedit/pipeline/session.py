# promptedit/pipeline/session.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from promptedit.api.client import ClassifiedError, EditRequest
from promptedit.api.gateway import EditGateway
from promptedit.io.codec import DecodeError, ImageFile, decode, file_to_data_url, parse_data_url
from promptedit.io.naming import download_filename, re_edit_filename
from promptedit.pipeline.retry import RetryController, RetryPolicy
from promptedit.pipeline.scheduler import Scheduler, ThreadingScheduler
from promptedit.prompt.builder import build_edit_request, normalize_instruction
from promptedit.prompt.templates import VALIDATION_MESSAGE
from promptedit.state.session_state import SessionState

LOGGER = logging.getLogger(__name__)

DRAGGED_IMAGE_PREFIX = "data:image"


@dataclass(frozen=True)
class GenerateResult:
    status: Literal["succeeded", "awaiting_retry", "failed", "rejected", "stale"]
    epoch: int
    rejection_reason: str | None = None
    error: ClassifiedError | None = None


@dataclass(frozen=True)
class DownloadFile:
    filename: str
    mime_type: str
    data: bytes


class EditSession:
    """
    The one live edit session: holds the active image, the instruction, the latest result,
    and drives the generate / quota-retry / edit-again lifecycle.

    Every transition happens under one lock and replaces `state` wholesale. The gateway call
    is the only step that runs outside the lock; its outcome is applied only if the epoch it
    started under is still current. Loading an image or changing the instruction during a
    countdown advances the epoch, so late gateway replies and timer ticks are dropped.
    """

    def __init__(
        self,
        gateway: EditGateway,
        *,
        scheduler: Scheduler | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._gateway = gateway
        self._lock = threading.RLock()
        self._state = SessionState()
        self._pending: EditRequest | None = None
        self._in_flight = False
        self._retry = RetryController(
            scheduler or ThreadingScheduler(),
            on_tick=self._on_tick,
            on_elapsed=self._on_elapsed,
            policy=retry_policy,
            lock=self._lock,
        )

    # ------------------------
    # read side

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def retry(self) -> RetryController:
        return self._retry

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            d = self._state.to_dict()
            d["in_flight"] = self._in_flight
            return d

    # ------------------------
    # image in

    def load_image(self, file: ImageFile) -> SessionState:
        """Any phase -> loaded. Discards result, error, countdown and any in-flight outcome."""
        with self._lock:
            try:
                preview = file_to_data_url(file)
            except DecodeError as e:
                self._state = self._state.evolve(error=str(e))
                raise

            self._retry.cancel()
            self._pending = None
            self._state = SessionState(
                phase="loaded",
                epoch=self._state.epoch + 1,
                image=file,
                preview=preview,
                instruction=self._state.instruction,
            )
            LOGGER.info("loaded %s (%s, %d bytes)", file.name, file.mime_type, file.size)
            return self._state

    def edit_again(self) -> SessionState:
        """succeeded -> loaded, with the result as the new active image."""
        with self._lock:
            if self._state.result is None:
                return self._state
            return self._reingest(self._state.result)

    def drop(self, *, file: ImageFile | None = None, text: str | None = None) -> SessionState:
        """
        Upload-zone drop. A file is a plain upload; a dragged result image arrives as its
        own data-URL in text/plain and is treated as edit-again on that image.
        """
        if file is not None:
            return self.load_image(file)
        if text and text.startswith(DRAGGED_IMAGE_PREFIX):
            with self._lock:
                return self._reingest(text)
        return self._state

    def _reingest(self, data_url: str) -> SessionState:
        name = re_edit_filename(self._state.image.name if self._state.image else None)
        try:
            file = decode(data_url, name)
        except DecodeError as e:
            self._state = self._state.evolve(error=str(e))
            raise
        return self.load_image(file)

    # ------------------------
    # instruction

    def set_instruction(self, text: str) -> SessionState:
        with self._lock:
            return self._set_instruction_locked(text)

    def _set_instruction_locked(self, text: str) -> SessionState:
        text = text or ""
        st = self._state
        if text == st.instruction:
            return st

        changed = normalize_instruction(text) != normalize_instruction(st.instruction)
        if st.phase == "awaiting_retry" and changed:
            # countdown belonged to the old instruction
            self._retry.cancel()
            self._pending = None
            self._state = st.evolve(
                phase="loaded",
                epoch=st.epoch + 1,
                instruction=text,
                seconds_remaining=None,
                error=None,
            )
        else:
            self._state = st.evolve(instruction=text)
        return self._state

    # ------------------------
    # generate

    def generate(self, prompt: Optional[str] = None) -> GenerateResult:
        """
        Run one edit. Blocks through the remote call; a quota failure returns right away
        with the countdown armed and the resubmission left to the timer.
        """
        with self._lock:
            if prompt is not None:
                self._set_instruction_locked(prompt)

            st = self._state
            if st.busy or self._retry.active or self._in_flight:
                return GenerateResult("rejected", st.epoch, "busy")

            instruction = normalize_instruction(st.instruction)
            if st.image is None or not instruction:
                self._state = st.evolve(error=VALIDATION_MESSAGE)
                return GenerateResult("rejected", st.epoch, "validation")

            try:
                request = build_edit_request(image=st.image, user_prompt=instruction)
            except DecodeError as e:
                self._state = st.evolve(phase="failed", result=None, error=str(e))
                return GenerateResult("failed", st.epoch, "decode_error")

            self._begin_attempt_locked()
            epoch = self._state.epoch

        return self._run_attempt(epoch, request)

    def _begin_attempt_locked(self) -> None:
        self._in_flight = True
        self._state = self._state.evolve(
            phase="generating",
            result=None,
            error=None,
            seconds_remaining=None,
        )

    def _run_attempt(self, epoch: int, request: EditRequest) -> GenerateResult:
        try:
            result = self._gateway.submit(request)
        except ClassifiedError as e:
            return self._finish_failure(epoch, request, e)
        return self._finish_success(epoch, result)

    def _is_current(self, epoch: int) -> bool:
        return self._state.epoch == epoch and self._state.phase == "generating"

    def _finish_success(self, epoch: int, result: str) -> GenerateResult:
        with self._lock:
            self._in_flight = False
            if not self._is_current(epoch):
                LOGGER.info("dropping stale result for epoch %d", epoch)
                return GenerateResult("stale", epoch)

            self._state = self._state.evolve(phase="succeeded", result=result, error=None)
            return GenerateResult("succeeded", epoch)

    def _finish_failure(self, epoch: int, request: EditRequest, err: ClassifiedError) -> GenerateResult:
        with self._lock:
            self._in_flight = False
            if not self._is_current(epoch):
                LOGGER.info("dropping stale %s failure for epoch %d", err.kind, epoch)
                return GenerateResult("stale", epoch, error=err)

            if err.kind == "quota":
                instruction = normalize_instruction(self._state.instruction)
                if not instruction:
                    self._state = self._state.evolve(phase="loaded", error=VALIDATION_MESSAGE)
                    return GenerateResult("rejected", epoch, "validation", error=err)
                if instruction != request.instruction:
                    # edited while the call was out; the retry carries the current text
                    request = replace(request, instruction=instruction)

                self._pending = request
                seconds = self._retry.start(err.retry_after_s, epoch)
                self._state = self._state.evolve(
                    phase="awaiting_retry",
                    seconds_remaining=seconds,
                    error=None,
                )
                return GenerateResult("awaiting_retry", epoch, error=err)

            # transient and fatal: surfaced verbatim, no retry
            self._state = self._state.evolve(phase="failed", error=err.message)
            return GenerateResult("failed", epoch, error=err)

    # ------------------------
    # countdown callbacks (called by RetryController with the lock held / released)

    def _on_tick(self, token: int, remaining: int) -> None:
        st = self._state
        if st.epoch != token or st.phase != "awaiting_retry":
            return
        self._state = st.evolve(seconds_remaining=remaining)

    def _on_elapsed(self, token: int) -> None:
        with self._lock:
            st = self._state
            request = self._pending
            if st.epoch != token or st.phase != "awaiting_retry" or request is None or self._in_flight:
                return
            self._pending = None
            self._begin_attempt_locked()

        LOGGER.info("countdown elapsed; resubmitting")
        self._run_attempt(token, request)

    # ------------------------
    # download

    def download(self, now: datetime | None = None) -> DownloadFile | None:
        with self._lock:
            st = self._state
            if st.result is None or st.image is None:
                return None
            mime_type, data = parse_data_url(st.result)
            filename = download_filename(st.image.name, st.result, now or datetime.now())
            return DownloadFile(filename=filename, mime_type=mime_type, data=data)

from __future__ import annotations

import base64
from datetime import datetime

import pytest

from promptedit.api.client import (
    RETRY_INFO_TYPE,
    ContentPart,
    EditResponse,
    ImageEditClient,
    RemoteFailure,
)
from promptedit.api.gateway import SERVER_ERROR_MESSAGE, EditGateway
from promptedit.io.codec import DecodeError, ImageFile, ImagePayload
from promptedit.pipeline.scheduler import ManualScheduler
from promptedit.pipeline.session import EditSession
from promptedit.prompt.templates import VALIDATION_MESSAGE

RESULT_B64 = base64.b64encode(b"edited-bytes").decode("ascii")
RESULT_URL = "data:image/png;base64," + RESULT_B64


def image_response(mime: str = "image/png", data: str = RESULT_B64) -> EditResponse:
    return EditResponse(parts=(ContentPart(mime_type=mime, data=data),))


def quota(seconds: str | None) -> RemoteFailure:
    details = [{"@type": RETRY_INFO_TYPE, "retryDelay": seconds}] if seconds is not None else []
    return RemoteFailure(status="RESOURCE_EXHAUSTED", code=429, message="quota", details=details)


class ScriptedClient(ImageEditClient):
    """Plays back outcomes in order; an exception instance is raised, anything else returned."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[ImagePayload, str]] = []

    def generate(self, *, image, instruction, output_modality="image") -> EditResponse:
        self.calls.append((image, instruction))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_session(*outcomes):
    client = ScriptedClient(*outcomes)
    sched = ManualScheduler()
    return EditSession(EditGateway(client), scheduler=sched), client, sched


# ------------------------
# preconditions


def test_generate_without_image_is_rejected_and_sends_nothing() -> None:
    sess, client, _ = make_session(image_response())
    res = sess.generate("add a hat")

    assert res.status == "rejected"
    assert res.rejection_reason == "validation"
    assert sess.state.phase == "empty"
    assert sess.state.error == VALIDATION_MESSAGE
    assert client.calls == []


@pytest.mark.parametrize("prompt", ["", "   ", "\r\n"])
def test_generate_with_blank_instruction_stays_loaded(photo_jpg: ImageFile, prompt: str) -> None:
    sess, client, _ = make_session(image_response())
    sess.load_image(photo_jpg)

    res = sess.generate(prompt)

    assert res.rejection_reason == "validation"
    assert sess.state.phase == "loaded"
    assert sess.state.error == VALIDATION_MESSAGE
    assert client.calls == []


def test_generate_sends_exactly_one_payload_with_instruction(photo_jpg: ImageFile) -> None:
    sess, client, _ = make_session(image_response())
    sess.load_image(photo_jpg)

    res = sess.generate("  add a hat  ")

    assert res.status == "succeeded"
    assert len(client.calls) == 1
    payload, instruction = client.calls[0]
    assert payload.mime_type == "image/jpeg"
    assert base64.b64decode(payload.data) == photo_jpg.data
    assert instruction == "add a hat"


# ------------------------
# outcomes


def test_success_stores_result(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session(image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    st = sess.state
    assert st.phase == "succeeded"
    assert st.result == RESULT_URL
    assert st.error is None
    assert not sess.in_flight


@pytest.mark.parametrize(
    "failure,message",
    [
        (RemoteFailure(status="UNKNOWN", message="x"), SERVER_ERROR_MESSAGE),
        (RemoteFailure(status="INVALID_ARGUMENT", code=400, message="Image too large"), "Failed to generate image: Image too large"),
        (EditResponse(parts=(ContentPart(text="no"),)), "Failed to generate image: No image found in the API response."),
    ],
)
def test_transient_and_fatal_fail_without_retry(photo_jpg: ImageFile, failure, message: str) -> None:
    sess, client, sched = make_session(failure)
    sess.load_image(photo_jpg)

    res = sess.generate("add a hat")

    assert res.status == "failed"
    assert sess.state.phase == "failed"
    assert sess.state.error == message
    assert sess.state.status_message == message
    assert not sess.retry.active
    assert sched.pending == 0

    sched.advance(300)
    assert len(client.calls) == 1


def test_failed_session_can_generate_again(photo_jpg: ImageFile) -> None:
    sess, client, _ = make_session(RemoteFailure(status="UNKNOWN"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")
    assert sess.state.phase == "failed"

    assert sess.generate().status == "succeeded"
    assert len(client.calls) == 2


# ------------------------
# quota countdown


def test_quota_counts_down_then_resubmits_same_request_once(photo_jpg: ImageFile) -> None:
    sess, client, sched = make_session(quota("5s"), image_response())
    sess.load_image(photo_jpg)

    res = sess.generate("add a hat")
    assert res.status == "awaiting_retry"
    assert res.error is not None and res.error.retry_after_s == 5
    assert sess.state.phase == "awaiting_retry"
    assert sess.state.seconds_remaining == 5
    assert sess.state.status_message == "Quota limit reached. Retrying in 5 seconds..."
    assert sess.state.error is None

    seen = []
    for _ in range(4):
        sched.advance(1)
        seen.append(sess.state.seconds_remaining)
    assert seen == [4, 3, 2, 1]
    assert len(client.calls) == 1

    sched.advance(1)
    assert len(client.calls) == 2
    assert client.calls[1] == client.calls[0]
    assert sess.state.phase == "succeeded"
    assert sess.state.result == RESULT_URL

    sched.advance(60)
    assert len(client.calls) == 2


def test_quota_without_delay_waits_60_seconds(photo_jpg: ImageFile) -> None:
    sess, client, sched = make_session(quota(None), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    assert sess.state.seconds_remaining == 60
    sched.advance(59)
    assert len(client.calls) == 1
    sched.advance(1)
    assert len(client.calls) == 2


def test_quota_zero_delay_uses_default(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session(quota("0s"))
    sess.load_image(photo_jpg)
    sess.generate("add a hat")
    assert sess.state.seconds_remaining == 60


def test_repeated_quota_rearms_countdown(photo_jpg: ImageFile) -> None:
    sess, client, sched = make_session(quota("2s"), quota("3s"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    sched.advance(2)
    assert len(client.calls) == 2
    assert sess.state.phase == "awaiting_retry"
    assert sess.state.seconds_remaining == 3

    sched.advance(3)
    assert len(client.calls) == 3
    assert sess.state.phase == "succeeded"


def test_manual_generate_rejected_while_counting(photo_jpg: ImageFile) -> None:
    sess, client, _ = make_session(quota("5s"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    res = sess.generate()
    assert res.status == "rejected"
    assert res.rejection_reason == "busy"
    assert len(client.calls) == 1
    assert sess.state.phase == "awaiting_retry"


def test_new_image_at_tick_three_cancels_retry(photo_jpg: ImageFile, photo_png: ImageFile) -> None:
    sess, client, sched = make_session(quota("5s"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    sched.advance(3)
    assert sess.state.seconds_remaining == 2
    sess.load_image(photo_png)
    sched.advance(30)

    assert len(client.calls) == 1
    assert sess.state.phase == "loaded"
    assert sess.state.image == photo_png
    assert sess.state.seconds_remaining is None
    assert sess.state.result is None
    assert sess.state.instruction == "add a hat"
    assert not sess.retry.active


def test_changing_instruction_cancels_countdown(photo_jpg: ImageFile) -> None:
    sess, client, sched = make_session(quota("5s"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    sess.set_instruction("remove the hat")
    sched.advance(10)

    assert len(client.calls) == 1
    assert sess.state.phase == "loaded"
    assert sess.state.instruction == "remove the hat"


def test_same_instruction_does_not_cancel_countdown(photo_jpg: ImageFile) -> None:
    sess, client, sched = make_session(quota("2s"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    sess.set_instruction("add a hat")
    sched.advance(2)
    assert len(client.calls) == 2


def test_whitespace_only_instruction_edit_keeps_countdown(photo_jpg: ImageFile) -> None:
    sess, client, sched = make_session(quota("2s"), image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    sess.set_instruction("add a hat \n")
    assert sess.state.phase == "awaiting_retry"
    assert sess.retry.active

    sched.advance(2)
    assert len(client.calls) == 2
    assert client.calls[1][1] == "add a hat"


# ------------------------
# in-flight replacement


class BlockingClient(ImageEditClient):
    """Runs `during_call` while the remote call is outstanding, then plays back outcomes."""

    def __init__(self, during_call, *outcomes) -> None:
        self.during_call = during_call
        self.outcomes = list(outcomes)
        self.calls = 0
        self.instructions: list[str] = []

    def generate(self, *, image, instruction, output_modality="image") -> EditResponse:
        self.calls += 1
        self.instructions.append(instruction)
        self.during_call()
        outcome = self.outcomes.pop(0) if self.outcomes else image_response()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def test_upload_during_generation_discards_late_result(photo_jpg: ImageFile, photo_png: ImageFile) -> None:
    holder: dict = {}

    def swap() -> None:
        sess = holder["sess"]
        sess.load_image(photo_png)
        # the old call is still outstanding, so a second one must not start
        assert sess.generate("another").rejection_reason == "busy"

    client = BlockingClient(swap)
    sess = EditSession(EditGateway(client), scheduler=ManualScheduler())
    holder["sess"] = sess
    sess.load_image(photo_jpg)

    res = sess.generate("add a hat")

    assert res.status == "stale"
    assert client.calls == 1
    assert sess.state.phase == "loaded"
    assert sess.state.image == photo_png
    assert sess.state.result is None
    assert not sess.in_flight


def test_instruction_edited_during_call_is_what_the_quota_retry_sends(photo_jpg: ImageFile) -> None:
    holder: dict = {}

    def edit() -> None:
        holder["sess"].set_instruction("remove the hat")

    client = BlockingClient(edit, quota("2s"), image_response())
    sched = ManualScheduler()
    sess = EditSession(EditGateway(client), scheduler=sched)
    holder["sess"] = sess
    sess.load_image(photo_jpg)

    res = sess.generate("add a hat")
    assert res.status == "awaiting_retry"
    assert sess.state.instruction == "remove the hat"

    sched.advance(2)
    assert client.instructions == ["add a hat", "remove the hat"]
    assert sess.state.phase == "succeeded"


def test_instruction_cleared_during_call_does_not_arm_retry(photo_jpg: ImageFile) -> None:
    holder: dict = {}

    def clear() -> None:
        holder["sess"].set_instruction("   ")

    client = BlockingClient(clear, quota("2s"))
    sched = ManualScheduler()
    sess = EditSession(EditGateway(client), scheduler=sched)
    holder["sess"] = sess
    sess.load_image(photo_jpg)

    res = sess.generate("add a hat")
    sched.advance(10)

    assert res.status == "rejected"
    assert res.rejection_reason == "validation"
    assert client.calls == 1
    assert sess.state.phase == "loaded"
    assert sess.state.error == VALIDATION_MESSAGE
    assert not sess.retry.active


# ------------------------
# edit again / drop / download


def test_edit_again_reingests_result_as_png_named_after_original(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session(image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")
    epoch = sess.state.epoch

    st = sess.edit_again()

    assert st.phase == "loaded"
    assert st.epoch == epoch + 1
    assert st.image is not None
    assert st.image.name == "photo_re-edit.png"
    assert st.image.mime_type == "image/png"
    assert st.image.data == b"edited-bytes"
    assert st.result is None
    assert st.preview == RESULT_URL


def test_edit_again_without_result_is_noop(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session()
    sess.load_image(photo_jpg)
    before = sess.state
    assert sess.edit_again() is before


def test_dropping_result_data_url_equals_edit_again(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session(image_response())
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    st = sess.drop(text=sess.state.result)
    assert st.image is not None
    assert st.image.name == "photo_re-edit.png"
    assert st.image.data == b"edited-bytes"


def test_dropping_file_is_upload(photo_jpg: ImageFile, photo_png: ImageFile) -> None:
    sess, _, _ = make_session()
    sess.load_image(photo_jpg)
    assert sess.drop(file=photo_png, text="data:image/png;base64,AAAA").image == photo_png


def test_dropping_other_text_is_ignored(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session()
    sess.load_image(photo_jpg)
    before = sess.state
    assert sess.drop(text="https://example.com/cat.png") is before


def test_dropping_malformed_image_url_reports_decode_error(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session()
    sess.load_image(photo_jpg)

    with pytest.raises(DecodeError):
        sess.drop(text="data:image/png;base64,@@@")
    assert sess.state.phase == "loaded"
    assert sess.state.image == photo_jpg
    assert sess.state.error


def test_empty_upload_reports_decode_error_and_keeps_state(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session()
    sess.load_image(photo_jpg)

    with pytest.raises(DecodeError):
        sess.load_image(ImageFile(name="empty.png", mime_type="image/png", data=b""))
    assert sess.state.image == photo_jpg


def test_download_name_and_bytes() -> None:
    jpeg_b64 = base64.b64encode(b"jpeg-bytes").decode("ascii")
    sess, _, _ = make_session(image_response("image/jpeg", jpeg_b64))
    sess.load_image(ImageFile(name="vacation.jpg", mime_type="image/jpeg", data=b"\xff\xd8orig"))
    sess.generate("warmer")

    out = sess.download(now=datetime(2024, 5, 1, 13, 5, 9))

    assert out is not None
    assert out.filename == "vacation_edited_20240501_130509.jpg"
    assert out.mime_type == "image/jpeg"
    assert out.data == b"jpeg-bytes"


def test_download_without_result_is_none(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session()
    sess.load_image(photo_jpg)
    assert sess.download() is None


def test_snapshot_is_json_ready(photo_jpg: ImageFile) -> None:
    sess, _, _ = make_session(quota("5s"))
    sess.load_image(photo_jpg)
    sess.generate("add a hat")

    d = sess.snapshot()
    assert d["phase"] == "awaiting_retry"
    assert d["seconds_remaining"] == 5
    assert d["busy"] is True
    assert d["in_flight"] is False
    assert d["image_name"] == "photo.jpg"
    assert d["status_message"] == "Quota limit reached. Retrying in 5 seconds..."

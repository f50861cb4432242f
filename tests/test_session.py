import base64
import threading

import pytest

import client
from session import (
    GENERIC_ERROR,
    MISSING_INPUTS,
    MISSING_REFERENCE,
    SessionState,
    StudioController,
    ValidationError,
)


def batch(tag, n=4):
    return [f"data:image/png;base64,{base64.b64encode(f'{tag}{i}'.encode()).decode()}" for i in range(n)]


class FakeGeneration:
    def __init__(self, results=None, error=None):
        self.results = results
        self.error = error
        self.calls = []

    def __call__(self, base_image, reference_image):
        self.calls.append((base_image, reference_image))
        if self.error is not None:
            raise self.error
        return list(self.results)


def make_controller(variations=None, revariate=None, state=None):
    return StudioController(
        state,
        variations_fn=variations or FakeGeneration(batch("v")),
        revariate_fn=revariate or FakeGeneration(batch("r")),
    )


def test_base_without_reference_cannot_generate(base_upload):
    controller = make_controller()
    controller.set_base_image(base_upload)
    assert controller.base_aspect_ratio() == "800 / 600"
    assert controller.can_generate is False


def test_no_base_has_no_aspect_ratio():
    assert make_controller().base_aspect_ratio() is None


def test_generate_requires_both_images(base_upload):
    variations = FakeGeneration(batch("v"))
    controller = make_controller(variations=variations)
    controller.set_base_image(base_upload)
    with pytest.raises(ValidationError):
        controller.generate()
    assert controller.state.error == MISSING_INPUTS
    assert variations.calls == []


def test_generate_replaces_batch_with_fresh_ids(base_upload, reference_upload):
    variations = FakeGeneration(batch("v"))
    controller = make_controller(variations=variations)
    controller.set_base_image(base_upload)
    controller.set_reference_image(reference_upload)
    assert controller.can_generate

    assert controller.generate() is True
    first = controller.state.results
    assert [img.src for img in first] == batch("v")
    assert len({img.id for img in first}) == 4
    assert variations.calls == [(base_upload, reference_upload)]

    controller.generate()
    second = controller.state.results
    assert len(second) == 4
    assert not {img.id for img in first} & {img.id for img in second}
    assert controller.state.loading is False
    assert controller.state.error is None


def test_generate_failure_leaves_batch_empty(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(state=state)
    controller.generate()

    controller._variations_fn = FakeGeneration(error=client.NoImageReturned("No image generated from API."))
    assert controller.generate() is False
    assert state.results == []
    assert state.error == "No image generated from API."
    assert state.loading is False


def test_generate_failure_without_message_uses_fallback(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(variations=FakeGeneration(error=RuntimeError()), state=state)
    controller.generate()
    assert state.error == GENERIC_ERROR


def test_credential_missing_is_surfaced(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = StudioController(state)
    assert controller.generate() is False
    assert "API key not found" in state.error


def test_revariate_requires_reference(base_upload):
    revariate = FakeGeneration(batch("r"))
    state = SessionState(base_image=base_upload)
    controller = make_controller(revariate=revariate, state=state)
    with pytest.raises(ValidationError):
        controller.revariate(0)
    assert state.error == MISSING_REFERENCE
    assert revariate.calls == []


def test_revariate_rejects_unknown_index(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(state=state)
    controller.generate()
    with pytest.raises(ValidationError):
        controller.revariate(4)


def test_revariate_replaces_whole_batch(base_upload, reference_upload):
    revariate = FakeGeneration(batch("r"))
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(revariate=revariate, state=state)
    controller.generate()
    chosen = state.results[2].src

    assert controller.revariate(2) is True
    assert revariate.calls == [(chosen, reference_upload)]
    assert [img.src for img in state.results] == batch("r")
    assert state.revariating_index is None


def test_revariate_failure_on_third_call_keeps_prior_batch(monkeypatch, api_key, base_upload, reference_upload):
    lock = threading.Lock()
    count = {"n": 0}

    def flaky(prompt, base_image, reference_image, *, model=None, logger=None):
        with lock:
            count["n"] += 1
            n = count["n"]
        if n == 3:
            raise RuntimeError("API error 500: internal")
        return "data:image/png;base64,QUJD"

    monkeypatch.setattr(client, "generate_one", flaky)
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = StudioController(state, variations_fn=FakeGeneration(batch("v")))
    controller.generate()
    prior = list(state.results)

    assert controller.revariate(1) is False
    assert state.results == prior
    assert state.error == "API error 500: internal"
    assert state.revariating_index is None


def test_only_one_revariation_in_flight(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(state=state)
    controller.generate()
    seen = {}

    def nested(base_image, reference_image):
        seen["flag"] = state.revariating_index
        with pytest.raises(ValidationError):
            controller.revariate(0)
        return batch("r")

    controller._revariate_fn = nested
    assert controller.revariate(3) is True
    assert seen["flag"] == 3


def test_stale_revariation_is_discarded(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(state=state)
    controller.generate()

    def slow_revariate(base_image, reference_image):
        # a new generation completes while this re-variation is still pending
        assert controller.generate() is True
        return batch("stale")

    controller._revariate_fn = slow_revariate
    assert controller.revariate(0) is False
    assert [img.src for img in state.results] == batch("v")
    assert state.revariating_index is None
    assert state.error is None


def test_download_names_and_counter(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(state=state)
    controller.generate()

    names = [controller.download(i).file_name for i in range(3)]
    assert names == ["archviz_mood_001.png", "archviz_mood_002.png", "archviz_mood_003.png"]

    controller.set_prefix("archviz")
    assert controller.next_download_name() == "archviz_mood_004.png"

    controller.set_prefix("villa")
    assert controller.next_download_name() == "villa_mood_001.png"
    assert controller.download(0).file_name == "villa_mood_001.png"
    assert state.download_counter == 2


def test_download_bytes_are_the_api_payload(base_upload, reference_upload):
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = make_controller(
        variations=FakeGeneration(["data:image/jpeg;base64,/9j/AA=="] * 4), state=state
    )
    controller.generate()
    artifact = controller.download(0)
    assert artifact.data == base64.b64decode("/9j/AA==")
    assert artifact.mime_type == "image/jpeg"
    assert artifact.file_name.endswith(".png")


def test_download_unknown_index():
    with pytest.raises(ValidationError):
        make_controller().download(0)


def test_controller_logs(base_upload, reference_upload):
    lines = []
    state = SessionState(base_image=base_upload, reference_image=reference_upload)
    controller = StudioController(
        state,
        variations_fn=FakeGeneration(batch("v")),
        revariate_fn=FakeGeneration(batch("r")),
        logger=lines.append,
    )
    controller.generate()
    assert lines == ["generate start", "generate done | images=4"]

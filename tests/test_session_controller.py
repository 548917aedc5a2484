from __future__ import annotations

import json
import threading
from pathlib import Path
from queue import Queue
from typing import Optional

import pytest

from errors import (
    GENERATION_FAILED,
    Busy,
    ContentUnavailable,
    GatewayError,
    GenerationFailed,
    InvalidMedia,
    PreconditionNotMet,
)
from models import (
    ActivityCard,
    AudioFrame,
    CaptureState,
    Channel,
    FocusArea,
    MediaAsset,
    MediaContent,
    RecordedAudio,
    ResetKind,
    Role,
    SessionMode,
)
from playback import SpeechPlaybackController
from session_controller import SessionController
from session_store import JsonSessionStore
from voice_capture import VoiceCaptureController


class FakeAI:
    def __init__(self, replies: Optional[list] = None) -> None:
        self.replies = list(replies or ["Let's count the shapes!"])
        self.calls: list[tuple[str, MediaContent]] = []

    def generate(self, prompt: str, media: MediaContent) -> Optional[str]:
        self.calls.append((prompt, media))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


class BlockingAI(FakeAI):
    def __init__(self) -> None:
        super().__init__(["slow reply"])
        self.entered = threading.Event()
        self.release = threading.Event()

    def generate(self, prompt: str, media: MediaContent) -> Optional[str]:
        self.entered.set()
        self.release.wait(timeout=2.0)
        return super().generate(prompt, media)


class FakeRecorder:
    def __init__(self) -> None:
        self.queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        self.queue = audio_queue
        audio_queue.put_nowait(AudioFrame(pcm16_bytes=b"\x01\x00" * 160))

    def stop(self) -> None:
        if self.queue is not None:
            self.queue.put_nowait(None)


class FakeSpeech:
    def __init__(self, transcript: str = "I see three") -> None:
        self.transcript = transcript
        self.spoken: list[str] = []

    def transcribe(self, audio: RecordedAudio, on_partial=None) -> str:  # noqa: ANN001
        return self.transcript

    def synthesize(self, text: str) -> bytes:
        self.spoken.append(text)
        return b"wav"


class FakeHandle:
    def __init__(self) -> None:
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakePlayer:
    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    def play(self, audio: bytes, on_finished) -> FakeHandle:  # noqa: ANN001
        self.handles.append(FakeHandle())
        return self.handles[-1]


def _asset(asset_id: str = "cat.png", content: bool = True) -> MediaAsset:
    return MediaAsset(
        id=asset_id,
        display_name=asset_id,
        mime_type="image/png",
        byte_size=3,
        content=MediaContent(b"png", "image/png") if content else None,
    )


def _make(ai=None, store=None, **kwargs):  # noqa: ANN001, ANN202
    speech = FakeSpeech()
    voice = VoiceCaptureController(recorder=FakeRecorder(), speech=speech)
    playback = SpeechPlaybackController(speech=speech, player=FakePlayer())
    controller = SessionController(
        ai=ai or FakeAI(),
        voice=voice,
        playback=playback,
        store=store,
        **kwargs,
    )
    return controller, speech


def _ready(controller: SessionController) -> MediaAsset:
    asset = _asset()
    controller.add_media(asset)
    controller.select_media(asset)
    controller.set_child_age(5)
    controller.set_focus_area(FocusArea.STEM)
    return asset


def test_end_to_end_conversation_order() -> None:
    ai = FakeAI(["Let's count the shapes!", "Great counting!"])
    controller, _ = _make(ai)
    _ready(controller)

    first = controller.request_turn(None)
    assert [(t.role, t.text) for t in controller.log] == [(Role.ASSISTANT, "Let's count the shapes!")]
    assert first is not None and first.role == Role.ASSISTANT

    controller.request_turn("I see three")

    log = controller.log
    assert [(t.role, t.text) for t in log] == [
        (Role.ASSISTANT, "Let's count the shapes!"),
        (Role.USER, "I see three"),
        (Role.ASSISTANT, "Great counting!"),
    ]
    assert log[0].turn_id < log[1].turn_id < log[2].turn_id
    assert "Begin a conversation" in ai.calls[0][0]
    assert "Assistant: Let's count the shapes!" in ai.calls[1][0]
    assert ai.calls[1][1] == MediaContent(b"png", "image/png")


def test_first_turn_text_is_not_logged() -> None:
    controller, _ = _make()
    _ready(controller)

    controller.request_turn("hello")

    assert [t.role for t in controller.log] == [Role.ASSISTANT]


@pytest.mark.parametrize(
    "age, focus, select",
    [(None, FocusArea.STEM, True), (5, None, True), (5, FocusArea.STEM, False)],
)
def test_missing_inputs_raise_precondition(age, focus, select) -> None:  # noqa: ANN001
    ai = FakeAI()
    controller, _ = _make(ai)
    if select:
        controller.select_media(_asset())
    controller.set_child_age(age)
    controller.set_focus_area(focus)

    with pytest.raises(PreconditionNotMet):
        controller.request_turn("hi")

    assert controller.log == ()
    assert ai.calls == []
    assert controller.generation_in_flight is False


def test_second_request_while_in_flight_is_busy() -> None:
    ai = BlockingAI()
    controller, _ = _make(ai)
    _ready(controller)
    busy_changes: list[bool] = []
    controller._on_busy_change = busy_changes.append

    worker = threading.Thread(target=controller.request_turn, daemon=True)
    worker.start()
    assert ai.entered.wait(timeout=2.0)
    assert controller.generation_in_flight is True
    before = controller.log

    with pytest.raises(Busy):
        controller.request_turn("again")
    assert controller.log == before

    ai.release.set()
    worker.join(timeout=2.0)

    assert controller.generation_in_flight is False
    assert [t.text for t in controller.log] == ["slow reply"]
    assert busy_changes == [True, False]


def test_gateway_failure_keeps_user_turn_only() -> None:
    ai = FakeAI(["Hello!", GatewayError("offline")])
    errors: list[tuple[str, str]] = []
    controller, _ = _make(ai, on_error=lambda c, m: errors.append((c, m)))
    _ready(controller)
    controller.request_turn()

    with pytest.raises(GenerationFailed):
        controller.request_turn("a cat")

    assert [(t.role, t.text) for t in controller.log] == [
        (Role.ASSISTANT, "Hello!"),
        (Role.USER, "a cat"),
    ]
    assert controller.generation_in_flight is False
    assert errors[0][0] == GENERATION_FAILED


def test_empty_reply_is_generation_failure() -> None:
    controller, _ = _make(FakeAI([""]))
    _ready(controller)

    with pytest.raises(GenerationFailed):
        controller.request_turn()

    assert controller.log == ()
    assert controller.generation_in_flight is False


def test_select_metadata_only_asset_is_rejected() -> None:
    controller, _ = _make()
    good = _asset("good.png")
    controller.select_media(good)

    with pytest.raises(ContentUnavailable):
        controller.select_media(_asset("restored.png", content=False))

    assert controller.selected is good


def test_select_media_clears_log() -> None:
    controller, _ = _make()
    _ready(controller)
    controller.request_turn()

    controller.select_media(_asset("dog.png"))

    assert controller.log == ()


def test_add_media_rejects_non_images() -> None:
    controller, _ = _make()
    asset = MediaAsset(id="notes.txt", display_name="notes.txt", mime_type="text/plain")

    with pytest.raises(InvalidMedia):
        controller.add_media(asset)
    assert controller.media == ()


def test_remove_selected_media_deselects_and_clears() -> None:
    controller, _ = _make()
    asset = _ready(controller)
    controller.request_turn()

    controller.remove_media(asset.id)

    assert controller.selected is None
    assert controller.log == ()
    assert controller.media == ()


def test_provide_content_makes_restored_asset_selectable() -> None:
    controller, _ = _make()
    restored = _asset("old.png", content=False)
    controller.add_media(restored)

    controller.provide_content("old.png", MediaContent(b"new", "image/png"))
    controller.select_media(restored)

    assert controller.selected is restored


@pytest.mark.parametrize("switch", ["mode", "channel"])
def test_switching_mode_or_channel_resets_everything(switch: str) -> None:
    controller, _ = _make()
    _ready(controller)
    controller.set_channel(Channel.VOICE)
    controller.request_turn()
    controller.playback.speak("still talking")
    controller.voice.start()
    assert controller.voice.state == CaptureState.RECORDING
    assert controller.playback.is_speaking is True

    if switch == "mode":
        controller.set_mode(SessionMode.SUGGESTION)
    else:
        controller.set_channel(Channel.TEXT)

    assert controller.log == ()
    assert controller.voice.state == CaptureState.IDLE
    assert controller.playback.is_speaking is False


def test_suggestion_mode_resets_channel_to_text() -> None:
    controller, _ = _make()
    controller.set_channel(Channel.VOICE)

    controller.set_mode(SessionMode.SUGGESTION)

    assert controller.config.channel == Channel.TEXT


def test_voice_conversation_consumes_transcript_and_speaks() -> None:
    ai = FakeAI(["Hi! What do you see?", "Three is right!"])
    controller, speech = _make(ai)
    _ready(controller)
    controller.set_channel(Channel.VOICE)
    controller.request_turn()

    controller.voice.start()
    controller.voice.stop()
    assert controller.voice.state == CaptureState.STAGED
    controller.request_turn()

    assert [(t.role, t.text) for t in controller.log][1:] == [
        (Role.USER, "I see three"),
        (Role.ASSISTANT, "Three is right!"),
    ]
    assert controller.voice.state == CaptureState.IDLE
    assert controller.voice.consume() is None
    assert speech.spoken == ["Hi! What do you see?", "Three is right!"]


def test_mode_switch_before_speech_starts_keeps_playback_silent() -> None:
    controller, speech = _make(FakeAI(["Let's count!"]))
    _ready(controller)
    controller.set_channel(Channel.VOICE)
    playback = controller.playback
    entered = threading.Event()
    release = threading.Event()
    original_speak = playback.speak

    def delayed_speak(text: str, utterance_id: Optional[int] = None) -> bool:
        entered.set()
        release.wait(timeout=2.0)
        return original_speak(text, utterance_id)

    playback.speak = delayed_speak  # type: ignore[method-assign]
    worker = threading.Thread(target=controller.request_turn, daemon=True)
    worker.start()
    assert entered.wait(timeout=2.0)

    controller.set_mode(SessionMode.SUGGESTION)
    release.set()
    worker.join(timeout=2.0)

    assert controller.log == ()
    assert playback.is_speaking is False
    assert speech.spoken == []


def test_staged_transcript_is_cleared_even_on_failure() -> None:
    ai = FakeAI(["Hello", GatewayError("boom")])
    controller, _ = _make(ai)
    _ready(controller)
    controller.set_channel(Channel.VOICE)
    controller.request_turn()
    controller.voice.start()
    controller.voice.stop()

    with pytest.raises(GenerationFailed):
        controller.request_turn("typed instead")

    assert controller.voice.consume() is None


def test_text_channel_does_not_speak() -> None:
    controller, speech = _make()
    _ready(controller)

    controller.request_turn()

    assert speech.spoken == []


def test_suggestion_mode_cards() -> None:
    reply = "Activity 1: Find Colors\nLook for red.\nActivity 2: Count Shapes\nCount circles."
    ai = FakeAI([reply])
    controller, speech = _make(ai)
    _ready(controller)
    controller.set_mode(SessionMode.SUGGESTION)

    controller.request_turn()

    assert "activity suggestions" in ai.calls[0][0]
    assert controller.latest_cards() == [
        ActivityCard(title="Find Colors", description="Look for red."),
        ActivityCard(title="Count Shapes", description="Count circles."),
    ]
    assert speech.spoken == []


def test_reply_after_mode_switch_is_dropped() -> None:
    ai = BlockingAI()
    controller, _ = _make(ai)
    _ready(controller)
    results: list[object] = []

    worker = threading.Thread(target=lambda: results.append(controller.request_turn()), daemon=True)
    worker.start()
    assert ai.entered.wait(timeout=2.0)
    controller.set_mode(SessionMode.SUGGESTION)
    ai.release.set()
    worker.join(timeout=2.0)

    assert results == [None]
    assert controller.log == ()
    assert controller.generation_in_flight is False


def test_reset_clear_turns_and_clear_all() -> None:
    controller, _ = _make()
    _ready(controller)
    controller.request_turn()

    controller.reset(ResetKind.CLEAR_TURNS)
    assert controller.log == ()
    assert controller.selected is not None
    assert len(controller.media) == 1

    controller.request_turn()
    controller.voice.start()
    controller.reset(ResetKind.CLEAR_ALL)
    assert controller.log == ()
    assert controller.selected is None
    assert controller.media == ()
    assert controller.voice.state == CaptureState.IDLE


def test_set_child_age_rejects_non_positive() -> None:
    controller, _ = _make()
    with pytest.raises(ValueError):
        controller.set_child_age(0)
    with pytest.raises(ValueError):
        controller.set_child_age(-3)


def test_persistence_and_restore(tmp_path: Path) -> None:
    store = JsonSessionStore(path=tmp_path / "session.json")
    controller, _ = _make(store=store)
    _ready(controller)
    controller.request_turn()

    restored, _ = _make(store=JsonSessionStore(path=tmp_path / "session.json"))
    restored.restore()

    assert [t.text for t in restored.log] == ["Let's count the shapes!"]
    assert len(restored.media) == 1
    assert restored.media[0].needs_content is True
    with pytest.raises(ContentUnavailable):
        restored.select_media(restored.media[0])


def test_reset_clears_persisted_keys(tmp_path: Path) -> None:
    path = tmp_path / "session.json"
    controller, _ = _make(store=JsonSessionStore(path=path))
    _ready(controller)
    controller.request_turn()

    controller.reset(ResetKind.CLEAR_ALL)

    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_export_conversation(tmp_path: Path) -> None:
    controller, _ = _make()
    assert controller.export_conversation(tmp_path) is None
    _ready(controller)
    controller.request_turn()
    controller.request_turn("a square")

    path = controller.export_conversation(tmp_path)

    assert path is not None and path.name.startswith("conversation_")
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["totalMessages"] == 3
    assert document["childAge"] == 5
    assert document["focusArea"] == "STEM"
    assert document["selectedImage"] == "cat.png"
    assert [m["sender"] for m in document["messages"]] == ["ai", "user", "ai"]


def test_starters_follow_channel() -> None:
    controller, _ = _make()
    text_starters = controller.starters()
    controller.set_channel(Channel.VOICE)

    assert controller.starters() != text_starters
    assert len(controller.starters()) == 5

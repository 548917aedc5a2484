"""Turn sequencing for conversation and suggestion sessions."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Optional

from errors import (
    EMPTY_RESPONSE,
    Busy,
    ContentUnavailable,
    GenerationFailed,
    InvalidMedia,
    PreconditionNotMet,
    classify_exception,
)
from interfaces import AIGateway
from models import (
    ActivityCard,
    Channel,
    ConversationLog,
    ConversationTurn,
    FocusArea,
    MediaAsset,
    MediaContent,
    ResetKind,
    Role,
    SessionConfig,
    SessionMode,
)
from playback import SpeechPlaybackController
from prompts import CONVERSATION_STARTERS, build_prompt
from session_store import (
    CONVERSATION_KEY,
    MEDIA_KEY,
    JsonSessionStore,
    build_conversation_export,
    write_conversation_export,
)
from suggestion_parser import parse
from voice_capture import VoiceCaptureController

logger = logging.getLogger(__name__)

LogCallback = Callable[[tuple[ConversationTurn, ...]], None]
BusyCallback = Callable[[bool], None]
ErrorCallback = Callable[[str, str], None]


class SessionController:
    """Owns config, media selection and the conversation log.

    At most one generation request is outstanding. ``request_turn`` marks
    the session busy before releasing the lock for the model call, so a
    second caller gets ``Busy`` instead of interleaving turns. Clearing the
    log (new media, mode, channel, reset) bumps an epoch; a reply that comes
    back under an older epoch is dropped.
    """

    def __init__(
        self,
        ai: AIGateway,
        voice: VoiceCaptureController,
        playback: SpeechPlaybackController,
        store: Optional[JsonSessionStore] = None,
        suggestion_count: int = 4,
        on_log_change: Optional[LogCallback] = None,
        on_busy_change: Optional[BusyCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._ai = ai
        self._voice = voice
        self._playback = playback
        self._store = store
        self._suggestion_count = suggestion_count
        self._on_log_change = on_log_change
        self._on_busy_change = on_busy_change
        self._on_error = on_error

        self._lock = threading.RLock()
        self._config = SessionConfig()
        self._media: list[MediaAsset] = []
        self._selected: Optional[MediaAsset] = None
        self._log = ConversationLog()
        self._in_flight = False
        self._epoch = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def config(self) -> SessionConfig:
        return replace(self._config)

    @property
    def selected(self) -> Optional[MediaAsset]:
        return self._selected

    @property
    def media(self) -> tuple[MediaAsset, ...]:
        return tuple(self._media)

    @property
    def log(self) -> tuple[ConversationTurn, ...]:
        return self._log.turns

    @property
    def generation_in_flight(self) -> bool:
        return self._in_flight

    @property
    def voice(self) -> VoiceCaptureController:
        return self._voice

    @property
    def playback(self) -> SpeechPlaybackController:
        return self._playback

    def starters(self) -> list[str]:
        return list(CONVERSATION_STARTERS[self._config.channel])

    def latest_cards(self) -> list[ActivityCard]:
        if self._config.mode != SessionMode.SUGGESTION:
            return []
        turn = self._log.last(Role.ASSISTANT)
        return parse(turn.text) if turn else []

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_child_age(self, age: Optional[int]) -> None:
        if age is not None and (isinstance(age, bool) or int(age) != age or age <= 0):
            raise ValueError(f"child age must be a positive integer, got {age!r}")
        with self._lock:
            self._config.child_age = age

    def set_focus_area(self, focus: Optional[FocusArea | str]) -> None:
        with self._lock:
            self._config.focus_area = FocusArea(focus) if focus is not None else None

    def set_mode(self, mode: SessionMode) -> None:
        with self._lock:
            self._config.mode = SessionMode(mode)
            if self._config.mode == SessionMode.SUGGESTION:
                self._config.channel = Channel.TEXT
            self._interrupt()
            self._clear_log()

    def set_channel(self, channel: Channel) -> None:
        with self._lock:
            self._config.channel = Channel(channel)
            self._interrupt()
            self._clear_log()

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def add_media(self, asset: MediaAsset) -> MediaAsset:
        if not (asset.mime_type or "").startswith("image/"):
            raise InvalidMedia(f"{asset.display_name} is not an image")
        with self._lock:
            self._media = [m for m in self._media if m.id != asset.id]
            self._media.append(asset)
            self._persist_media()
        return asset

    def provide_content(self, asset_id: str, content: MediaContent) -> MediaAsset:
        """Re-attach bytes to an asset restored from metadata."""
        with self._lock:
            asset = self._find(asset_id)
            asset.content = content
            asset.byte_size = asset.byte_size or len(content.data)
            return asset

    def remove_media(self, asset_id: str) -> None:
        with self._lock:
            asset = self._find(asset_id)
            self._media.remove(asset)
            if self._selected is not None and self._selected.id == asset_id:
                self._selected = None
                self._clear_log()
            self._persist_media()

    def select_media(self, asset: MediaAsset) -> None:
        if asset.needs_content:
            raise ContentUnavailable()
        with self._lock:
            if all(m.id != asset.id for m in self._media):
                self.add_media(asset)
            self._selected = asset
            self._clear_log()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def request_turn(self, user_text: Optional[str] = None) -> Optional[ConversationTurn]:
        """Run one exchange with the model and return the Assistant turn.

        In the voice channel a missing ``user_text`` is taken from the staged
        transcript. Returns None when the log was cleared while waiting.
        """
        with self._lock:
            if self._in_flight:
                raise Busy()
            self._check_ready()
            if user_text is None and self._config.channel == Channel.VOICE:
                user_text = self._voice.consume()
            text = (user_text or "").strip()

            prompt = build_prompt(self._config, self._log.turns, text, self._suggestion_count)
            if text and len(self._log):
                self._log.append(Role.USER, text)
                self._log_changed()
            media: MediaContent = self._selected.content  # type: ignore[union-attr,assignment]
            epoch = self._epoch
            speak = self._config.channel == Channel.VOICE and self._config.mode == SessionMode.CONVERSATION
            self._set_in_flight(True)

        reply: Optional[str] = None
        error: Optional[Exception] = None
        try:
            reply = self._ai.generate(prompt, media)
        except Exception as exc:
            error = exc

        with self._lock:
            self._set_in_flight(False)
            self._voice.discard_staged()
            if error is not None or not (reply and reply.strip()):
                code = classify_exception(error) if error is not None else EMPTY_RESPONSE
                message = str(error) if error is not None else "no text in response"
                logger.warning("generation failed: %s %s", code, message)
                failure = GenerationFailed(f"{code}: {message}")
                if self._on_error:
                    self._on_error(failure.code, failure.message)
                raise failure from error
            if epoch != self._epoch:
                logger.info("dropping reply for a cleared conversation")
                return None
            turn = self._log.append(Role.ASSISTANT, reply.strip())
            self._log_changed()
            # claimed under the session lock so a later clear stops it
            utterance = self._playback.begin() if speak else None

        if utterance is not None:
            self._playback.speak(turn.text, utterance)
        return turn

    def reset(self, kind: ResetKind = ResetKind.CLEAR_TURNS) -> None:
        with self._lock:
            self._clear_log()
            if kind == ResetKind.CLEAR_ALL:
                self._interrupt()
                self._media = []
                self._selected = None
            self._forget(CONVERSATION_KEY)
            if kind == ResetKind.CLEAR_ALL:
                self._forget(MEDIA_KEY)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self) -> None:
        """Load saved metadata and turns; restored media needs content again."""
        if self._store is None:
            return
        with self._lock:
            known = {m.id for m in self._media}
            self._media.extend(a for a in self._store.load_media() if a.id not in known)
            saved = self._store.load_log()
            if saved and not len(self._log):
                self._log.extend(saved)
                self._notify_log()

    def export_conversation(self, directory: Path) -> Optional[Path]:
        with self._lock:
            if not len(self._log):
                return None
            document = build_conversation_export(self._log.turns, self._config, self._selected)
        path = write_conversation_export(directory, document)
        logger.info("exported %d messages to %s", document["totalMessages"], path)
        return path

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_ready(self) -> None:
        if self._selected is None or self._selected.needs_content:
            raise PreconditionNotMet("Please select an image first.")
        if not self._config.is_complete():
            raise PreconditionNotMet()

    def _find(self, asset_id: str) -> MediaAsset:
        for asset in self._media:
            if asset.id == asset_id:
                return asset
        raise KeyError(asset_id)

    def _interrupt(self) -> None:
        self._voice.cancel()
        self._playback.stop()

    def _clear_log(self) -> None:
        self._epoch += 1
        if len(self._log):
            self._log.clear()
            self._log_changed()

    def _set_in_flight(self, value: bool) -> None:
        self._in_flight = value
        if self._on_busy_change:
            self._on_busy_change(value)

    def _log_changed(self) -> None:
        if self._store is not None:
            try:
                self._store.save_log(self._log.turns)
            except OSError:
                logger.warning("could not save conversation", exc_info=True)
        self._notify_log()

    def _notify_log(self) -> None:
        if self._on_log_change:
            self._on_log_change(self._log.turns)

    def _persist_media(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save_media(self._media)
        except OSError:
            logger.warning("could not save media list", exc_info=True)

    def _forget(self, key: str) -> None:
        if self._store is None:
            return
        try:
            self._store.remove(key)
        except OSError:
            logger.warning("could not clear %s", key, exc_info=True)

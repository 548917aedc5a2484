"""Single-utterance text-to-speech playback."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from errors import ERROR_MESSAGES, NO_AUDIO_CONTENT, PLAYBACK_FAILED, classify_exception
from interfaces import AudioPlayer, PlaybackHandle, SpeechGateway

logger = logging.getLogger(__name__)

SpeakingCallback = Callable[[bool], None]
ErrorCallback = Callable[[str, str], None]


class SpeechPlaybackController:
    """Keeps at most one utterance audible.

    ``speak`` blocks for synthesis; any ``stop`` or newer ``speak`` issued
    meanwhile makes the pending synthesis result stale and it is not played.
    Failures go to ``on_error`` and never raise out of ``speak``.
    """

    def __init__(
        self,
        speech: SpeechGateway,
        player: AudioPlayer,
        on_speaking_change: Optional[SpeakingCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._speech = speech
        self._player = player
        self._on_speaking_change = on_speaking_change
        self._on_error = on_error

        self._lock = threading.RLock()
        self._current: Optional[PlaybackHandle] = None
        self._utterance_id = 0
        self._speaking = False

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    def begin(self) -> int:
        """Claim the next utterance without synthesizing yet.

        Pass the returned id to ``speak``; a ``stop`` or newer utterance in
        between makes that ``speak`` a no-op.
        """
        with self._lock:
            self._halt_current()
            self._utterance_id += 1
            self._set_speaking(True)
            return self._utterance_id

    def speak(self, text: str, utterance_id: Optional[int] = None) -> bool:
        """Returns True when playback started."""
        with self._lock:
            if utterance_id is None:
                utterance_id = self.begin()
            elif utterance_id != self._utterance_id:
                logger.debug("utterance %s was superseded before synthesis", utterance_id)
                return False
            if not text.strip():
                self._set_speaking(False)
                return False
            self._set_speaking(True)

        try:
            audio = self._speech.synthesize(text)
        except Exception as exc:
            self._fail(utterance_id, classify_exception(exc), str(exc))
            return False
        if not audio:
            self._fail(utterance_id, NO_AUDIO_CONTENT, ERROR_MESSAGES[NO_AUDIO_CONTENT])
            return False

        with self._lock:
            if utterance_id != self._utterance_id:
                logger.debug("discarding synthesis for superseded utterance %s", utterance_id)
                return False
            try:
                self._current = self._player.play(audio, self._finished_for(utterance_id))
            except Exception as exc:
                self._fail(utterance_id, PLAYBACK_FAILED, str(exc))
                return False
            return True

    def stop(self) -> None:
        with self._lock:
            if self._current is None and not self._speaking:
                return
            self._utterance_id += 1
            self._halt_current()
            self._set_speaking(False)

    def _finished_for(self, utterance_id: int) -> Callable[[Optional[Exception]], None]:
        def _on_finished(error: Optional[Exception]) -> None:
            with self._lock:
                if utterance_id != self._utterance_id:
                    return
                self._current = None
                self._set_speaking(False)
            if error is not None:
                self._emit_error(PLAYBACK_FAILED, str(error))

        return _on_finished

    def _fail(self, utterance_id: int, code: str, message: str) -> None:
        with self._lock:
            if utterance_id != self._utterance_id:
                return
            self._current = None
            self._set_speaking(False)
        self._emit_error(PLAYBACK_FAILED, f"{code}: {message}")

    def _halt_current(self) -> None:
        handle, self._current = self._current, None
        if handle is None:
            return
        try:
            handle.stop()
        except Exception:
            logger.exception("stopping playback failed")

    def _set_speaking(self, value: bool) -> None:
        if self._speaking == value:
            return
        self._speaking = value
        if self._on_speaking_change:
            self._on_speaking_change(value)

    def _emit_error(self, code: str, message: str) -> None:
        logger.warning("playback failed: %s", message)
        if self._on_error:
            self._on_error(code, message)

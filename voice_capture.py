"""Record -> transcribe -> stage lifecycle for voice input."""

from __future__ import annotations

import logging
import threading
from queue import Queue
from typing import Callable, Optional

from errors import (
    ERROR_MESSAGES,
    NO_SPEECH_DETECTED,
    PERMISSION_DENIED,
    AlreadyCapturing,
    PermissionDenied,
    classify_exception,
)
from interfaces import Recorder, SpeechGateway
from models import AudioFrame, CaptureState, CaptureStatus
from recorder import collect_audio

logger = logging.getLogger(__name__)

StateCallback = Callable[[CaptureStatus, CaptureStatus], None]
PartialCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]


class VoiceCaptureController:
    """Single-flight capture pipeline.

    IDLE -> RECORDING -> TRANSCRIBING -> STAGED(text) | FAILED(reason);
    ``consume`` leaves STAGED, ``acknowledge`` leaves FAILED and ``cancel``
    returns to IDLE from anywhere. A transcription that finishes after a
    cancel belongs to a stale session and is dropped.
    """

    def __init__(
        self,
        recorder: Recorder,
        speech: SpeechGateway,
        queue_maxsize: int = 0,
        on_state_change: Optional[StateCallback] = None,
        on_partial: Optional[PartialCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._speech = speech
        self._queue_maxsize = queue_maxsize
        self._on_state_change = on_state_change
        self._on_partial = on_partial
        self._on_error = on_error

        self._lock = threading.RLock()
        self._status = CaptureStatus()
        self._session_id = 0
        self._audio_queue: Queue[AudioFrame | None] = Queue(maxsize=queue_maxsize)

    @property
    def status(self) -> CaptureStatus:
        return self._status

    @property
    def state(self) -> CaptureState:
        return self._status.state

    def start(self) -> CaptureStatus:
        with self._lock:
            if self._status.state != CaptureState.IDLE:
                raise AlreadyCapturing()
            self._session_id += 1
            self._audio_queue = Queue(maxsize=self._queue_maxsize)
            try:
                self._recorder.start(self._audio_queue)
            except PermissionDenied as exc:
                self._fail_start(exc.message)
                raise
            except Exception as exc:
                self._fail_start(str(exc))
                raise PermissionDenied(str(exc)) from exc
            self._transition(CaptureStatus(CaptureState.RECORDING))
            return self._status

    def stop(self) -> CaptureStatus:
        """Finish recording and transcribe; blocks for the speech call.

        Outside RECORDING this is a no-op returning the current status.
        """
        with self._lock:
            if self._status.state != CaptureState.RECORDING:
                return self._status
            self._transition(CaptureStatus(CaptureState.TRANSCRIBING))
            self._safe_stop_recorder()
            audio = collect_audio(self._audio_queue)
            session_id = self._session_id

        if not audio.pcm16_bytes:
            return self._finish(session_id, "", None)

        try:
            text = self._speech.transcribe(audio, on_partial=self._partial_for(session_id))
        except Exception as exc:
            return self._finish(session_id, "", exc)
        return self._finish(session_id, text or "", None)

    def consume(self) -> Optional[str]:
        """Read and clear the staged transcript in one step."""
        with self._lock:
            if self._status.state != CaptureState.STAGED:
                return None
            text = self._status.text
            self._transition(CaptureStatus(CaptureState.IDLE))
            return text

    def discard_staged(self) -> None:
        with self._lock:
            if self._status.state == CaptureState.STAGED:
                self._transition(CaptureStatus(CaptureState.IDLE))

    def acknowledge(self) -> CaptureStatus:
        with self._lock:
            if self._status.state == CaptureState.FAILED:
                self._transition(CaptureStatus(CaptureState.IDLE))
            return self._status

    def cancel(self) -> None:
        """Return to IDLE from any state, discarding buffered audio. Never raises."""
        with self._lock:
            previous = self._status.state
            self._session_id += 1
            if previous == CaptureState.RECORDING:
                self._safe_stop_recorder()
            collect_audio(self._audio_queue)
            self._transition(CaptureStatus(CaptureState.IDLE))
            if previous != CaptureState.IDLE:
                logger.debug("voice capture cancelled from %s", previous.value)

    def _finish(self, session_id: int, text: str, exc: Optional[BaseException]) -> CaptureStatus:
        with self._lock:
            if session_id != self._session_id or self._status.state != CaptureState.TRANSCRIBING:
                logger.debug("dropping transcription for stale capture %s", session_id)
                return self._status
            if exc is not None:
                code = classify_exception(exc)
                self._transition(CaptureStatus(CaptureState.FAILED, reason=code))
                self._emit_error(code, str(exc))
                return self._status
            text = text.strip()
            if not text:
                self._transition(CaptureStatus(CaptureState.FAILED, reason=NO_SPEECH_DETECTED))
                self._emit_error(NO_SPEECH_DETECTED, "")
                return self._status
            self._transition(CaptureStatus(CaptureState.STAGED, text=text))
            return self._status

    def _partial_for(self, session_id: int) -> PartialCallback:
        def _forward(text: str) -> None:
            if self._on_partial and session_id == self._session_id:
                self._on_partial(text)

        return _forward

    def _fail_start(self, message: str) -> None:
        self._transition(CaptureStatus(CaptureState.FAILED, reason=PERMISSION_DENIED))
        self._emit_error(PERMISSION_DENIED, message)

    def _emit_error(self, code: str, message: str) -> None:
        message = message or ERROR_MESSAGES.get(code, code)
        logger.warning("voice capture failed: %s %s", code, message)
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception:
            logger.exception("recorder stop failed")

    def _transition(self, to_status: CaptureStatus) -> None:
        from_status = self._status
        if from_status == to_status:
            return
        self._status = to_status
        logger.debug("capture %s -> %s", from_status.state.value, to_status.state.value)
        if self._on_state_change:
            self._on_state_change(from_status, to_status)

"""Microphone acquisition through sounddevice."""

from __future__ import annotations

import logging
import threading
from queue import Empty, Full, Queue
from typing import Any

import numpy as np

from errors import PermissionDenied
from models import AudioFrame, RecordedAudio, now_ms

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_ms: int = 100,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self.dropped_chunks = 0
        self._audio_queue: Queue[AudioFrame | None] | None = None

    def start(self, audio_queue: Queue[AudioFrame | None]) -> None:
        """Open the input stream; raises PermissionDenied if the device refuses."""
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise PermissionDenied("sounddevice is not available")
            self._audio_queue = audio_queue
            self.dropped_chunks = 0
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            try:
                self._stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    callback=self._on_audio,
                )
                self._stream.start()
            except Exception as exc:
                self._stream = None
                logger.warning("microphone unavailable: %s", exc)
                raise PermissionDenied(f"Microphone access denied: {exc}") from exc
            self._running = True

    def stop(self) -> None:
        with self._lock:
            if self._running:
                self._running = False
                if self._stream is not None:
                    self._stream.stop()
                    self._stream.close()
                    self._stream = None
                if self.dropped_chunks:
                    logger.warning(
                        "audio queue full, dropped %d chunks (%d ms)",
                        self.dropped_chunks,
                        self.dropped_chunks * self.chunk_ms,
                    )
            self._emit_sentinel()

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or self._audio_queue is None:
            return
        frame = AudioFrame(
            pcm16_bytes=np.asarray(indata, dtype=np.int16).tobytes(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            timestamp_ms=now_ms(),
        )
        try:
            self._audio_queue.put_nowait(frame)
        except Full:
            self.dropped_chunks += 1

    def _emit_sentinel(self) -> None:
        if self._audio_queue is None:
            return
        try:
            self._audio_queue.put_nowait(None)
        except Full:
            logger.debug("audio queue full, end sentinel not queued")


def collect_audio(
    audio_queue: Queue[AudioFrame | None],
    sample_rate: int = 16000,
    channels: int = 1,
) -> RecordedAudio:
    """Drain queued frames up to the end sentinel into one buffer."""
    pcm = bytearray()
    while True:
        try:
            frame = audio_queue.get_nowait()
        except Empty:
            break
        if frame is None:
            break
        pcm.extend(frame.pcm16_bytes)
        sample_rate = frame.sample_rate
        channels = frame.channels
    return RecordedAudio(pcm16_bytes=bytes(pcm), sample_rate=sample_rate, channels=channels)

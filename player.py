"""WAV playback through sounddevice."""

from __future__ import annotations

import io
import logging
import threading
import wave
from typing import Callable, Optional

import numpy as np

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio missing
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

FinishedCallback = Callable[[Optional[Exception]], None]


def decode_wav(audio: bytes) -> tuple[np.ndarray, int]:
    """Return int16 samples shaped (frames, channels) and the sample rate."""
    with wave.open(io.BytesIO(audio), "rb") as wf:
        channels = wf.getnchannels()
        sample_rate = wf.getframerate()
        if wf.getsampwidth() != 2:
            raise ValueError("only 16-bit PCM WAV is supported")
        pcm = wf.readframes(wf.getnframes())
    samples = np.frombuffer(pcm, dtype=np.int16).reshape(-1, channels)
    return samples, sample_rate


class SoundDevicePlayback:
    """Handle for one utterance playing on a sounddevice output stream."""

    def __init__(self, samples: np.ndarray, sample_rate: int, on_finished: FinishedCallback) -> None:
        self._samples = samples
        self._position = 0
        self._on_finished = on_finished
        self._done = threading.Event()
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=samples.shape[1],
            dtype="int16",
            callback=self._on_output,
            finished_callback=self._on_stream_finished,
        )

    def start(self) -> None:
        self._stream.start()

    def stop(self) -> None:
        if self._done.is_set():
            return
        self._stream.abort()

    def _on_output(self, outdata: np.ndarray, frames: int, time_info: object, status: object) -> None:
        chunk = self._samples[self._position:self._position + frames]
        outdata[: len(chunk)] = chunk
        if len(chunk) < frames:
            outdata[len(chunk):] = 0
            raise sd.CallbackStop()
        self._position += frames

    def _on_stream_finished(self) -> None:
        # Runs on the PortAudio thread; closing and notifying happen elsewhere.
        if self._done.is_set():
            return
        self._done.set()
        threading.Thread(target=self._close_and_notify, daemon=True).start()

    def _close_and_notify(self) -> None:
        error: Optional[Exception] = None
        try:
            self._stream.close()
        except Exception as exc:
            logger.exception("closing output stream failed")
            error = exc
        self._on_finished(error)


class SoundDevicePlayer:
    def play(self, audio: bytes, on_finished: FinishedCallback) -> SoundDevicePlayback:
        if sd is None:
            raise RuntimeError("sounddevice is not available")
        samples, sample_rate = decode_wav(audio)
        playback = SoundDevicePlayback(samples, sample_rate, on_finished)
        playback.start()
        return playback

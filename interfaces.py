"""Protocol interfaces for the controllers' collaborators."""

from __future__ import annotations

from queue import Queue
from typing import Any, Callable, Optional, Protocol

from models import AudioFrame, MediaContent, RecordedAudio

PartialCallback = Callable[[str], None]


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class AIGateway(Protocol):
    def generate(self, prompt: str, media: MediaContent) -> Optional[str]: ...


class SpeechGateway(Protocol):
    def transcribe(
        self,
        audio: RecordedAudio,
        on_partial: Optional[PartialCallback] = None,
    ) -> str: ...

    def synthesize(self, text: str) -> bytes: ...


class PlaybackHandle(Protocol):
    def stop(self) -> None: ...


class AudioPlayer(Protocol):
    def play(
        self,
        audio: bytes,
        on_finished: Callable[[Optional[Exception]], None],
    ) -> PlaybackHandle: ...


class MediaStore(Protocol):
    def put(self, name: str, data: bytes, content_type: str) -> Any: ...

    def delete(self, file_id: str) -> None: ...

    def list_records(self) -> list[Any]: ...

    def read(self, record: Any) -> bytes: ...

    def clear(self) -> int: ...

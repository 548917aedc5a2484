"""Core data models for the app."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional


class FocusArea(str, Enum):
    LITERACY = "Literacy"
    STEM = "STEM"
    CREATIVITY = "Creativity"
    EMOTIONAL_INTELLIGENCE = "Emotional Intelligence"


class SessionMode(str, Enum):
    CONVERSATION = "conversation"
    SUGGESTION = "suggestion"


class Channel(str, Enum):
    TEXT = "text"
    VOICE = "voice"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ResetKind(str, Enum):
    CLEAR_TURNS = "clear_turns"
    CLEAR_ALL = "clear_all"


class CaptureState(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    TRANSCRIBING = "TRANSCRIBING"
    STAGED = "STAGED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CaptureStatus:
    """Snapshot of the voice capture state machine.

    ``text`` is only meaningful in STAGED, ``reason`` only in FAILED.
    """

    state: CaptureState = CaptureState.IDLE
    text: str = ""
    reason: str = ""


@dataclass(frozen=True)
class MediaContent:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass
class MediaAsset:
    id: str
    display_name: str
    mime_type: str
    byte_size: int = 0
    content: Optional[MediaContent] = None
    url: str = ""

    @property
    def needs_content(self) -> bool:
        return self.content is None


@dataclass
class SessionConfig:
    child_age: Optional[int] = None
    focus_area: Optional[FocusArea] = None
    mode: SessionMode = SessionMode.CONVERSATION
    channel: Channel = Channel.TEXT

    def is_complete(self) -> bool:
        return bool(self.child_age) and self.focus_area is not None


@dataclass(frozen=True)
class ConversationTurn:
    turn_id: int
    role: Role
    text: str
    created_at: str = ""


@dataclass(frozen=True)
class ActivityCard:
    title: str
    description: str


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class RecordedAudio:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1

    @property
    def duration_ms(self) -> int:
        bytes_per_second = self.sample_rate * self.channels * 2
        if not bytes_per_second:
            return 0
        return int(len(self.pcm16_bytes) * 1000 / bytes_per_second)


def now_ms() -> int:
    return int(time.time() * 1000)


def utc_iso(ms: int | None = None) -> str:
    moment = datetime.now(timezone.utc) if ms is None else datetime.fromtimestamp(ms / 1000, timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


class ConversationLog:
    """Ordered turns for one (media, config) pairing.

    Turn ids are millisecond timestamps forced strictly increasing, so a
    User turn always sorts before the Assistant turn created after it even
    within the same millisecond.
    """

    def __init__(self, turns: list[ConversationTurn] | None = None) -> None:
        self._turns: list[ConversationTurn] = []
        if turns:
            self.extend(turns)

    def append(self, role: Role, text: str) -> ConversationTurn:
        turn_id = now_ms()
        if self._turns and turn_id <= self._turns[-1].turn_id:
            turn_id = self._turns[-1].turn_id + 1
        turn = ConversationTurn(turn_id=turn_id, role=role, text=text, created_at=utc_iso(turn_id))
        self._turns.append(turn)
        return turn

    def extend(self, turns: list[ConversationTurn]) -> None:
        for turn in sorted(turns, key=lambda t: t.turn_id):
            if self._turns and turn.turn_id <= self._turns[-1].turn_id:
                continue
            self._turns.append(turn)

    def clear(self) -> None:
        self._turns.clear()

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    def last(self, role: Role | None = None) -> ConversationTurn | None:
        for turn in reversed(self._turns):
            if role is None or turn.role == role:
                return turn
        return None

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(tuple(self._turns))

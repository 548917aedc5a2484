"""Best-effort local persistence for the conversation and media metadata."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from models import (
    ConversationTurn,
    MediaAsset,
    Role,
    SessionConfig,
    now_ms,
    utc_iso,
)

logger = logging.getLogger(__name__)

CONVERSATION_KEY = "conversation-log"
MEDIA_KEY = "media-files"


class JsonSessionStore:
    """Key-value store kept in one JSON document.

    Image bytes are never written; restored assets come back without content.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "picture_coach" / "session.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)

    def save_log(self, turns: Iterable[ConversationTurn]) -> None:
        self.set(
            CONVERSATION_KEY,
            [
                {
                    "turnId": turn.turn_id,
                    "role": turn.role.value,
                    "text": turn.text,
                    "createdAt": turn.created_at,
                }
                for turn in turns
            ],
        )

    def load_log(self) -> list[ConversationTurn]:
        turns = []
        for item in self.get(CONVERSATION_KEY, []) or []:
            try:
                turns.append(
                    ConversationTurn(
                        turn_id=int(item["turnId"]),
                        role=Role(item["role"]),
                        text=str(item["text"]),
                        created_at=str(item.get("createdAt", "")),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping malformed saved turn: %r", item)
        return sorted(turns, key=lambda t: t.turn_id)

    def save_media(self, assets: Iterable[MediaAsset]) -> None:
        self.set(
            MEDIA_KEY,
            [
                {
                    "id": asset.id,
                    "name": asset.display_name,
                    "url": asset.url,
                    "type": asset.mime_type or "image/jpeg",
                    "size": asset.byte_size or 0,
                }
                for asset in assets
            ],
        )

    def load_media(self) -> list[MediaAsset]:
        assets = []
        for item in self.get(MEDIA_KEY, []) or []:
            try:
                assets.append(
                    MediaAsset(
                        id=str(item["id"]),
                        display_name=str(item.get("name", item["id"])),
                        mime_type=str(item.get("type", "image/jpeg")),
                        byte_size=int(item.get("size", 0)),
                        url=str(item.get("url", "")),
                    )
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping malformed saved media: %r", item)
        return assets

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("session store %s unreadable, starting empty", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def build_conversation_export(
    turns: Iterable[ConversationTurn],
    config: SessionConfig,
    selected: Optional[MediaAsset] = None,
) -> dict:
    turns = list(turns)
    return {
        "timestamp": utc_iso(),
        "sessionId": now_ms(),
        "selectedImage": selected.display_name if selected else None,
        "childAge": config.child_age,
        "focusArea": config.focus_area.value if config.focus_area else None,
        "mode": config.mode.value,
        "conversationType": config.channel.value,
        "totalMessages": len(turns),
        "messages": [
            {
                "messageId": index,
                "timestamp": turn.created_at or utc_iso(turn.turn_id),
                "type": "user_message" if turn.role == Role.USER else "ai_response",
                "sender": "user" if turn.role == Role.USER else "ai",
                "content": turn.text,
                "responseId": turn.turn_id,
            }
            for index, turn in enumerate(turns, start=1)
        ],
    }


def export_filename(timestamp: str) -> str:
    stamp = timestamp[:19].replace(":", "-")
    return f"conversation_{stamp}.json"


def write_conversation_export(directory: Path, document: dict) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(document["timestamp"])
    path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
    return path

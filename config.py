"""Simple JSON-based config store."""

from __future__ import annotations

import json
import os
from pathlib import Path

DEFAULTS = {
    "api_key": "",
    "vision_model": "qwen-vl-plus",
    "asr_model": "qwen3-asr-flash",
    "tts_model": "cosyvoice-v1",
    "tts_voice": "longxiaochun",
    "suggestion_count": 4,
}


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "picture_coach" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        return str(self._read_all().get("api_key", ""))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def effective_api_key(self) -> str:
        return self.get_api_key() or os.getenv("DASHSCOPE_API_KEY", "")

    def get_model(self, name: str) -> str:
        """``name`` is one of vision_model, asr_model, tts_model, tts_voice."""
        if name not in DEFAULTS or name in ("api_key", "suggestion_count"):
            raise KeyError(name)
        return str(self._read_all().get(name) or DEFAULTS[name])

    def set_model(self, name: str, value: str) -> None:
        self.get_model(name)
        self._set(name, value)

    def get_suggestion_count(self) -> int:
        value = self._read_all().get("suggestion_count", DEFAULTS["suggestion_count"])
        try:
            count = int(value)
        except (TypeError, ValueError):
            count = int(DEFAULTS["suggestion_count"])
        return max(1, min(6, count))

    def set_suggestion_count(self, count: int) -> None:
        self._set("suggestion_count", max(1, min(6, int(count))))

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

"""Directory-backed media store.

Each upload is two files sharing a millisecond timestamp key: the content
``<ts>_<name>`` and a sidecar ``metadata_<ts>_<name>.json``. Ids have the
form ``<name>_<ts>`` so delete can find the sidecar from the id alone.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import asdict, dataclass
from pathlib import Path

from errors import AppError, InvalidMedia, NotFound
from models import now_ms, utc_iso

logger = logging.getLogger(__name__)

_ID_TIMESTAMP_RE = re.compile(r"_(\d+)$")
_UNSAFE_NAME_RE = re.compile(r"[^\w.\- ]+")


@dataclass
class StoredMedia:
    id: str
    name: str
    url: str
    type: str
    size: int
    uploadedAt: str
    blobFilename: str

    @property
    def stored_name(self) -> str:
        return self.blobFilename


class LocalMediaStore:
    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._last_ts = 0

    def put(self, name: str, data: bytes, content_type: str) -> StoredMedia:
        safe_name = _UNSAFE_NAME_RE.sub("_", Path(name).name).strip() or "upload"
        if not content_type:
            raise InvalidMedia("Missing content type")
        with self._lock:
            ts = max(now_ms(), self._last_ts + 1)
            self._last_ts = ts
        blob_name = f"{ts}_{safe_name}"
        blob_path = self._root / blob_name
        blob_path.write_bytes(data)

        record = StoredMedia(
            id=f"{safe_name}_{ts}",
            name=safe_name,
            url=blob_path.resolve().as_uri(),
            type=content_type,
            size=len(data),
            uploadedAt=utc_iso(),
            blobFilename=blob_name,
        )
        sidecar = self._root / f"metadata_{ts}_{safe_name}.json"
        sidecar.write_text(json.dumps(asdict(record), ensure_ascii=False, indent=2), encoding="utf-8")
        logger.info("stored media %s (%d bytes)", record.id, record.size)
        return record

    def delete(self, file_id: str) -> None:
        match = _ID_TIMESTAMP_RE.search(file_id or "")
        if not match:
            raise InvalidMedia("Invalid file ID format")
        timestamp = match.group(1)
        sidecar = next(iter(sorted(self._root.glob(f"metadata_{timestamp}_*.json"))), None)
        if sidecar is None:
            raise NotFound()

        try:
            metadata = json.loads(sidecar.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            metadata = {}
        blob_name = metadata.get("blobFilename")
        if blob_name:
            blob_path = self._root / Path(blob_name).name
            if blob_path.exists():
                blob_path.unlink()
        sidecar.unlink()
        logger.info("deleted media %s", metadata.get("name", file_id))

    def list_records(self) -> list[StoredMedia]:
        records = []
        for sidecar in sorted(self._root.glob("metadata_*.json")):
            try:
                records.append(StoredMedia(**json.loads(sidecar.read_text(encoding="utf-8"))))
            except (json.JSONDecodeError, OSError, TypeError):
                logger.warning("unreadable sidecar %s", sidecar.name)
        return records

    def read(self, record: StoredMedia) -> bytes:
        return (self._root / Path(record.blobFilename).name).read_bytes()

    def clear(self) -> int:
        """Delete every stored record; one bad record does not stop the rest."""
        removed = 0
        for record in self.list_records():
            try:
                self.delete(record.id)
            except AppError as exc:
                logger.warning("could not delete stored media %s: %s", record.id, exc.message)
                continue
            removed += 1
        return removed

from __future__ import annotations
import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from datastore.base import ReadingStore, StoreWriteError
from models.records import Reading, RowChange


class MemoryReadingStore(ReadingStore):
    """List-backed store, optionally mirrored to a JSON-lines file.

    A row's LSN is its position in the list, starting at 1.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        super().__init__(name)
        self._rows: List[Reading] = []
        self.persistence_path = persistence_path
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()
            self._lsn = len(self._rows)

    def _write(self, reading: Reading) -> int:
        if self.persistence_path:
            line = json.dumps(
                {
                    "name": reading.name,
                    "timestamp": reading.timestamp.isoformat(),
                    "temperature": reading.temperature,
                }
            )
            try:
                with self.persistence_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                raise StoreWriteError(f"Could not append to {self.persistence_path}: {exc}") from exc
        self._rows.append(reading)
        return len(self._rows)

    def _scan(self) -> List[Reading]:
        return list(self._rows)

    def _changes_since(self, lsn: int) -> List[RowChange]:
        return [
            RowChange(lsn=index, reading=reading)
            for index, reading in enumerate(self._rows[lsn:], start=lsn + 1)
        ]

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        with self.persistence_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                payload = json.loads(line)
                self._rows.append(
                    Reading(
                        name=payload["name"],
                        timestamp=datetime.fromisoformat(payload["timestamp"]),
                        temperature=float(payload["temperature"]),
                    )
                )

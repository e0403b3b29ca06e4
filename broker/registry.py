"""Schema registry used to resolve the schema id carried by every sink message."""

from __future__ import annotations

import json
from functools import lru_cache
from itertools import count
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from settings import get_settings


class SchemaNotFoundError(KeyError):
    """Raised when a schema id or subject is unknown to the registry."""


class SchemaRegistry:
    """Subjects and their schema versions, optionally mirrored to a JSON-lines file.

    Ids survive a restart when ``persistence_path`` is set, so messages
    already written keep resolving to the schema they were framed with.
    """

    def __init__(self, persistence_path: Optional[Path] = None) -> None:
        self._schemas: Dict[int, Dict[str, Any]] = {}
        self._ids_by_fingerprint: Dict[Tuple[str, str], int] = {}
        self._subjects: Dict[str, List[int]] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()
        self._ids = count(max(self._schemas, default=0) + 1)

    def register(self, subject: str, schema: Dict[str, Any]) -> int:
        """Register ``schema`` under ``subject``; identical schemas keep their id."""
        fingerprint = (subject, json.dumps(schema, sort_keys=True))
        with self._lock:
            existing = self._ids_by_fingerprint.get(fingerprint)
            if existing is not None:
                return existing
            schema_id = next(self._ids)
            if self.persistence_path:
                record = {"id": schema_id, "subject": subject, "schema": json.loads(fingerprint[1])}
                with self.persistence_path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(record, sort_keys=True) + "\n")
            self._remember(schema_id, subject, fingerprint[1])
            return schema_id

    def get(self, schema_id: int) -> Dict[str, Any]:
        with self._lock:
            schema = self._schemas.get(schema_id)
        if schema is None:
            raise SchemaNotFoundError(f"Schema id {schema_id} is not registered.")
        return schema

    def latest(self, subject: str) -> Tuple[int, Dict[str, Any]]:
        with self._lock:
            versions = self._subjects.get(subject)
            if not versions:
                raise SchemaNotFoundError(f"Subject {subject!r} is not registered.")
            schema_id = versions[-1]
            return schema_id, self._schemas[schema_id]

    def subjects(self) -> List[str]:
        with self._lock:
            return sorted(self._subjects)

    def _remember(self, schema_id: int, subject: str, canonical: str) -> None:
        self._schemas[schema_id] = json.loads(canonical)
        self._ids_by_fingerprint[(subject, canonical)] = schema_id
        self._subjects.setdefault(subject, []).append(schema_id)

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        with self.persistence_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                record = json.loads(line)
                canonical = json.dumps(record["schema"], sort_keys=True)
                self._remember(int(record["id"]), record["subject"], canonical)


@lru_cache
def build_default_registry() -> SchemaRegistry:
    root = get_settings().broker_root_path
    return SchemaRegistry(persistence_path=Path(root) / "schemas.jsonl" if root else None)

from __future__ import annotations
import struct
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from settings import get_settings

_FRAME_HEADER = struct.Struct(">iI")


@dataclass(frozen=True, slots=True)
class Message:
    topic: str
    offset: int
    key: Optional[bytes]
    value: bytes


class TopicBroker:
    """Named append-only logs, optionally persisted one file per topic.

    On disk each record is framed as a signed key length (-1 for no key),
    an unsigned value length, then the key and value bytes.
    """

    def __init__(self, root_path: Optional[Path] = None) -> None:
        self._logs: Dict[str, List[Message]] = {}
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)
            self._load_existing_topics()

    def create_topic(self, topic: str) -> None:
        with self._lock:
            if topic in self._logs:
                return
            self._logs[topic] = []
            if self.root_path:
                self._topic_path(topic).touch()

    def produce(self, topic: str, value: bytes, key: Optional[bytes] = None) -> int:
        with self._lock:
            log = self._logs.get(topic)
            if log is None:
                raise KeyError(f"Topic {topic!r} does not exist.")
            message = Message(topic=topic, offset=len(log), key=key, value=value)
            if self.root_path:
                with self._topic_path(topic).open("ab") as handle:
                    handle.write(_encode_frame(key, value))
            log.append(message)
            return message.offset

    def consume(self, topic: str, offset: int = 0, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            log = self._logs.get(topic)
            if log is None:
                raise KeyError(f"Topic {topic!r} does not exist.")
            end = len(log) if limit is None else offset + limit
            return log[max(offset, 0):end]

    def topics(self) -> List[str]:
        with self._lock:
            return sorted(self._logs)

    def _topic_path(self, topic: str) -> Path:
        assert self.root_path is not None
        return self.root_path / f"{topic}.log"

    def _load_existing_topics(self) -> None:
        assert self.root_path is not None
        for path in sorted(self.root_path.glob("*.log")):
            topic = path.stem
            self._logs[topic] = [
                Message(topic=topic, offset=offset, key=key, value=value)
                for offset, (key, value) in enumerate(_decode_frames(path.read_bytes()))
            ]


def _encode_frame(key: Optional[bytes], value: bytes) -> bytes:
    key_length = -1 if key is None else len(key)
    return _FRAME_HEADER.pack(key_length, len(value)) + (key or b"") + value


def _decode_frames(data: bytes):
    position = 0
    while position + _FRAME_HEADER.size <= len(data):
        key_length, value_length = _FRAME_HEADER.unpack_from(data, position)
        position += _FRAME_HEADER.size
        if position + max(key_length, 0) + value_length > len(data):
            # torn write at the tail
            return
        key = None
        if key_length >= 0:
            key = data[position:position + key_length]
            position += key_length
        value = data[position:position + value_length]
        position += value_length
        yield key, value


@lru_cache
def build_default_broker(root_path: Optional[str] = None) -> TopicBroker:
    settings = get_settings()
    broker_root = settings.broker_root_path if root_path is None else root_path
    return TopicBroker(root_path=Path(broker_root) if broker_root else None)

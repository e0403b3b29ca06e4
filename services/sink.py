"""Continuous export of view changes to broker topics."""

from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, Iterable, List, Optional
from uuid import uuid4

from app.schemas import TopicMessage, ViewChangeMessage
from broker import codec
from broker.registry import SchemaRegistry
from broker.topics import TopicBroker
from models.records import ChangeOp, ViewChange

if TYPE_CHECKING:
    from services.materializer import View

logger = logging.getLogger(__name__)


def generate_topic_name(sink_name: str) -> str:
    return f"{sink_name}-{uuid4().hex[:16]}"


class TopicSink:
    """Publishes every change of one view to a freshly named topic.

    Messages carry the schema id of :class:`ViewChangeMessage` registered
    under ``<topic>-value``; keys are the view row key. A change the broker
    fails to store stays queued and is written, in order, before the next one.
    """

    def __init__(
        self,
        name: str,
        view: "View",
        broker: TopicBroker,
        registry: SchemaRegistry,
        topic: Optional[str] = None,
    ) -> None:
        self.name = name
        self.view = view
        self.broker = broker
        self.registry = registry
        self.topic = topic or generate_topic_name(name)
        self.schema_id: Optional[int] = None
        self.messages_written = 0
        self._pending: Deque[ViewChange] = deque()
        self._lock = Lock()
        self._detach: Optional[Callable[[], None]] = None

    @property
    def subject(self) -> str:
        return f"{self.topic}-value"

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self, snapshot: bool = True) -> None:
        """Attach to the view; with ``snapshot`` its current rows are written first."""
        if self._detach is not None:
            return
        self.broker.create_topic(self.topic)
        self.schema_id = self.registry.register(self.subject, ViewChangeMessage.model_json_schema())
        self._detach = self.view.attach(self.publish, snapshot=snapshot)

    def stop(self) -> None:
        if self._detach is None:
            return
        self._detach()
        self._detach = None

    def publish(self, change: ViewChange) -> None:
        with self._lock:
            self._pending.append(change)
        self.flush()

    def flush(self) -> int:
        """Write queued changes in order; stops at the first broker failure."""
        assert self.schema_id is not None, "sink must be started before publishing"
        written = 0
        with self._lock:
            while self._pending:
                change = self._pending[0]
                try:
                    self._produce(change)
                except OSError as exc:
                    logger.warning(
                        "Sink write failed, change kept for retry",
                        extra={
                            "sink": self.name,
                            "topic": self.topic,
                            "lsn": change.lsn,
                            "pending": len(self._pending),
                            "reason": str(exc),
                        },
                    )
                    break
                self._pending.popleft()
                written += 1
        return written

    def _produce(self, change: ViewChange) -> int:
        payload = ViewChangeMessage.from_change(change).model_dump_json().encode("utf-8")
        key = None if change.key is None else change.key.encode("utf-8")
        offset = self.broker.produce(self.topic, codec.encode(self.schema_id, payload), key=key)
        self.messages_written += 1
        logger.debug(
            "Sink message written",
            extra={"sink": self.name, "topic": self.topic, "lsn": change.lsn},
        )
        return offset


def read_changes(
    broker: TopicBroker,
    registry: SchemaRegistry,
    topic: str,
    offset: int = 0,
    limit: Optional[int] = None,
) -> List[TopicMessage]:
    """Decode messages of ``topic``, resolving each schema id through ``registry``."""
    decoded: List[TopicMessage] = []
    for message in broker.consume(topic, offset=offset, limit=limit):
        schema_id, payload = codec.decode(message.value)
        schema = registry.get(schema_id)
        if schema.get("title") != ViewChangeMessage.__name__:
            raise codec.DecodeError(
                f"Schema {schema_id} on {topic!r} does not describe view changes."
            )
        decoded.append(
            TopicMessage(
                topic=topic,
                offset=message.offset,
                schema_id=schema_id,
                change=ViewChangeMessage.model_validate_json(payload),
            )
        )
    return decoded


def collapse_changes(changes: Iterable[ViewChangeMessage]) -> Dict[Optional[str], Dict[str, Any]]:
    """Fold view changes, in topic order, into the keyed rows they describe."""
    state: Dict[Optional[str], Dict[str, Any]] = {}
    for change in changes:
        if change.op is ChangeOp.delete:
            state.pop(change.key, None)
        elif change.after is not None:
            state[change.key] = change.after
    return state


def replay_topic(
    broker: TopicBroker, registry: SchemaRegistry, topic: str
) -> Dict[Optional[str], Dict[str, Any]]:
    """Collapse a sink topic back into the keyed rows it describes."""
    return collapse_changes(message.change for message in read_changes(broker, registry, topic))

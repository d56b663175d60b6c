"""Message listener: feeds stream records to the orchestrator in order.

The listener owns no stream connection; any consumer client (or the
JSON-lines replay reader below) supplies ``InboundMessage`` objects.
Messages are processed one at a time.  Once a message on a partition
has its acknowledgment withheld, later messages on that partition are
deferred rather than processed, so they are redelivered after it and
per-partition ordering holds.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from busbridge.core.orchestrator import DispatchOrchestrator, PartialDispatchFailure
from busbridge.models.messages import InboundMessage
from busbridge.models.outcomes import DispatchResult

logger = logging.getLogger(__name__)


class ListenerReport(BaseModel):
    """What happened to each message of one listener run."""

    model_config = ConfigDict(frozen=True)

    results: tuple[tuple[InboundMessage, DispatchResult], ...] = ()
    deferred: tuple[InboundMessage, ...] = ()

    @property
    def acknowledged(self) -> int:
        return sum(1 for _, result in self.results if result.acknowledged)

    @property
    def withheld(self) -> int:
        return sum(1 for _, result in self.results if not result.acknowledged)


class MessageListener:
    """Runs messages through a ``DispatchOrchestrator`` with partition ordering."""

    def __init__(self, orchestrator: DispatchOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._blocked: set[tuple[str, int]] = set()

    def is_blocked(self, topic: str, partition: int) -> bool:
        return (topic, partition) in self._blocked

    def release(self, topic: str, partition: int) -> None:
        """Resume processing a partition, e.g. after the consumer seeks back."""
        self._blocked.discard((topic, partition))

    def handle(self, message: InboundMessage) -> DispatchResult | None:
        """Process one message; ``None`` means it was deferred."""
        if self.is_blocked(message.topic, message.partition):
            logger.info("Deferring %s behind an unacknowledged message", message.coordinates)
            return None
        try:
            return self._orchestrator.process(message)
        except PartialDispatchFailure as exc:
            logger.error("%s; acknowledgment withheld", exc)
            self._blocked.add((message.topic, message.partition))
            return exc.result

    def run(self, messages: Iterable[InboundMessage]) -> ListenerReport:
        results: list[tuple[InboundMessage, DispatchResult]] = []
        deferred: list[InboundMessage] = []
        for message in messages:
            result = self.handle(message)
            if result is None:
                deferred.append(message)
            else:
                results.append((message, result))
        return ListenerReport(results=tuple(results), deferred=tuple(deferred))


def load_messages(path: Path | str) -> Iterator[InboundMessage]:
    """Read JSON-lines replay records.

    Each line is ``{"payload": ..., "topic": ..., "partition": ...,
    "offset": ...}``.  A ``payload`` that is an object is re-serialised
    to JSON text.  Blank lines are ignored.

    Raises
    ------
    ValueError
        On a line that is not a valid replay record (with its line number).
    """
    with Path(path).open(encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                if isinstance(data, dict) and not isinstance(data.get("payload"), (str, type(None))):
                    data["payload"] = json.dumps(data["payload"])
                yield InboundMessage.model_validate(data)
            except (json.JSONDecodeError, ValidationError) as exc:
                raise ValueError(f"{path}:{lineno}: invalid replay record: {exc}") from exc

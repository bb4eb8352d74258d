"""Batch queue contract.

Delivery is at-least-once: a batch received but never acked is delivered
again, so everything downstream must tolerate redelivery.
"""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True)
class TokenBatch:
    """A bounded group of mints processed together."""

    mints: tuple[str, ...]
    attempt: int = 1
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return json.dumps(
            {
                "id": self.id,
                "mints": list(self.mints),
                "attempt": self.attempt,
                "enqueued_at": self.enqueued_at.isoformat(),
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenBatch:
        enqueued_at = datetime.now(UTC)
        raw_ts = data.get("enqueued_at")
        if isinstance(raw_ts, str):
            try:
                enqueued_at = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
            except ValueError:
                pass
        return cls(
            mints=tuple(str(m) for m in data.get("mints", [])),
            attempt=int(data.get("attempt", 1)),
            id=str(data.get("id") or uuid.uuid4().hex),
            enqueued_at=enqueued_at,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> TokenBatch:
        return cls.from_dict(json.loads(raw))

    def next_attempt(self) -> TokenBatch:
        return replace(self, attempt=self.attempt + 1, enqueued_at=datetime.now(UTC))

    def with_mints(self, mints: Sequence[str]) -> TokenBatch:
        """Same delivery attempt for a subset of mints, as a new message."""
        return TokenBatch(mints=tuple(mints), attempt=self.attempt)


@dataclass(frozen=True)
class Delivery:
    """A received batch plus the transport handle needed to ack it."""

    batch: TokenBatch
    receipt: Any = None


class Queue(ABC):
    """Transport-agnostic batch queue."""

    @abstractmethod
    async def enqueue(self, batch: TokenBatch) -> None: ...

    async def enqueue_many(self, batches: Sequence[TokenBatch]) -> None:
        for batch in batches:
            await self.enqueue(batch)

    @abstractmethod
    async def receive(self, timeout: float) -> Delivery | None:
        """Wait up to `timeout` seconds for a batch; None when nothing arrived."""

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Mark a delivery done so it is never redelivered."""

    @abstractmethod
    async def requeue(self, delivery: Delivery, delay_seconds: float) -> None:
        """Ack the delivery and schedule its next attempt after a delay."""

    @abstractmethod
    async def pending_count(self) -> int:
        """Batches waiting to be received, including delayed ones."""

    async def close(self) -> None:
        return None

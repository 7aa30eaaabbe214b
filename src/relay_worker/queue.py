# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Redis Streams consumer-group client.

Wraps the handful of stream commands the worker needs:

- ``XGROUP CREATE <stream> <group> 0 MKSTREAM`` (BUSYGROUP counts as success)
- ``XREADGROUP GROUP <group> <consumer> COUNT n BLOCK ms STREAMS <stream> >``
- ``XACK`` for every processed entry
- ``XADD <stream> * messageId <id>`` to enqueue
- ``XPENDING`` / ``XCLAIM`` to take over entries left by dead consumers

Example:
    Reading one batch::

        queue = StreamQueue.from_url("redis://localhost:6379/0", consumer="w1")
        await queue.ping()
        await queue.ensure_group()
        for entry in await queue.read(count=10, block_ms=5000):
            ...
            await queue.acknowledge(entry.stream_id)
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from .config import DEFAULT_CONSUMER_GROUP, DEFAULT_STREAM, MESSAGE_ID_FIELD
from .logger import get_logger
from .result import Err, Ok, Result


@dataclass(frozen=True)
class StreamEntry:
    """One stream entry as delivered to this consumer."""

    stream_id: str
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def message_id(self) -> str | None:
        value = self.fields.get(MESSAGE_ID_FIELD)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value or None


def _iter_raw_entries(items: Any) -> Iterator[tuple[Any, Any]]:
    """Yield ``(id, fields)`` pairs from RESP2 or RESP3 shaped replies."""
    for item in items or ():
        if isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[0], (str, bytes)):
            yield item[0], item[1]
        elif isinstance(item, (list, tuple)):
            yield from _iter_raw_entries(item)


def _to_entry(raw_id: Any, fields: Any) -> StreamEntry:
    stream_id = raw_id.decode("utf-8") if isinstance(raw_id, bytes) else str(raw_id)
    return StreamEntry(stream_id=stream_id, fields=dict(fields or {}))


def parse_read_response(response: Any) -> list[StreamEntry]:
    """Normalise an XREADGROUP reply into entries; empty or timed-out reads give ``[]``."""
    if not response:
        return []
    if isinstance(response, dict):
        groups = list(response.values())
    else:
        groups = [item[1] for item in response]
    return [_to_entry(raw_id, fields) for messages in groups for raw_id, fields in _iter_raw_entries(messages)]


class StreamQueue:
    """Consumer-group view of one stream for one named consumer."""

    def __init__(
        self,
        client: Redis,
        *,
        stream: str = DEFAULT_STREAM,
        group: str = DEFAULT_CONSUMER_GROUP,
        consumer: str,
        logger=None,
    ):
        self.client = client
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.logger = logger or get_logger("relay_worker.queue")

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> StreamQueue:
        return cls(Redis.from_url(url, decode_responses=True), **kwargs)

    async def ping(self) -> bool:
        """Check the backend answers; raises ``RedisError`` when unreachable."""
        return bool(await self.client.ping())

    async def ensure_group(self) -> bool:
        """Create the consumer group at the start of the stream.

        Returns:
            True when the group was created, False when it already existed.

        Raises:
            RedisError: For any failure other than BUSYGROUP.
        """
        try:
            await self.client.xgroup_create(self.stream, self.group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" in str(exc):
                self.logger.info("Consumer group %s already exists on %s", self.group, self.stream)
                return False
            raise
        self.logger.info("Created consumer group %s on %s", self.group, self.stream)
        return True

    async def read(self, count: int, block_ms: int) -> list[StreamEntry]:
        """Read up to ``count`` entries never delivered to this group."""
        response = await self.client.xreadgroup(
            self.group,
            self.consumer,
            {self.stream: ">"},
            count=count,
            block=block_ms,
        )
        return parse_read_response(response)

    async def acknowledge(self, stream_id: str, group: str | None = None) -> Result[int, RedisError]:
        try:
            return Ok(int(await self.client.xack(self.stream, group or self.group, stream_id)))
        except RedisError as exc:
            return Err(exc)

    async def enqueue(self, message_id: str) -> Result[str, RedisError]:
        """Append ``{messageId: <id>}`` to the stream and return the entry id."""
        try:
            entry_id = await self.client.xadd(self.stream, {MESSAGE_ID_FIELD: message_id})
        except RedisError as exc:
            return Err(exc)
        return Ok(entry_id.decode("utf-8") if isinstance(entry_id, bytes) else str(entry_id))

    async def pending_summary(self) -> dict[str, Any]:
        """Return the XPENDING summary: total, id range and per-consumer counts."""
        summary = await self.client.xpending(self.stream, self.group)
        consumers = []
        for consumer in summary.get("consumers") or []:
            name = consumer.get("name")
            consumers.append(
                {
                    "name": name.decode("utf-8") if isinstance(name, bytes) else name,
                    "pending": int(consumer.get("pending", 0)),
                }
            )
        return {
            "pending": int(summary.get("pending") or 0),
            "min": summary.get("min"),
            "max": summary.get("max"),
            "consumers": consumers,
        }

    async def claim_idle(self, min_idle_ms: int, count: int) -> list[StreamEntry]:
        """Claim up to ``count`` pending entries idle for at least ``min_idle_ms``."""
        pending = await self.client.xpending_range(
            self.stream,
            self.group,
            min="-",
            max="+",
            count=count,
            idle=min_idle_ms,
        )
        ids = [item["message_id"] for item in pending]
        if not ids:
            return []
        claimed = await self.client.xclaim(self.stream, self.group, self.consumer, min_idle_ms, ids)
        return [_to_entry(raw_id, fields) for raw_id, fields in _iter_raw_entries(claimed)]

    async def close(self) -> None:
        await self.client.aclose()

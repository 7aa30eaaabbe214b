# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Queue consumer loop for the relay worker.

The worker reads batches from the stream consumer group, hands every entry
to the :class:`~relay_worker.processor.MessageProcessor` concurrently and
waits for the whole batch to settle before reading again. A background
task periodically claims entries left pending by consumers that died.

Shutdown is driven by an ``asyncio.Event`` passed to :meth:`MessageWorker.run`;
it is checked before and after every blocking read. A batch already read is
always finished, and the Redis connection is closed last.

Example:
    Running the worker::

        worker = build_worker(load_settings())
        await worker.startup()
        stop = asyncio.Event()
        await worker.run(stop)
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

from .config import RecoveryConfig, WorkerSettings
from .errors import WorkerStartupError
from .logger import get_logger
from .processor import MessageProcessor
from .prometheus import WorkerMetrics
from .providers.registry import build_default_registry
from .queue import StreamEntry, StreamQueue
from .result import Err
from .store import MessageStore


class MessageWorker:
    """Sequential read loop with per-batch concurrency."""

    def __init__(
        self,
        queue: StreamQueue,
        processor: MessageProcessor,
        *,
        store: MessageStore | None = None,
        read_count: int = 10,
        block_timeout_ms: int = 5000,
        recovery: RecoveryConfig | None = None,
        loop_error_delay: float = 1.0,
        metrics: WorkerMetrics | None = None,
        logger=None,
    ):
        self.queue = queue
        self.processor = processor
        self.store = store
        self.read_count = max(1, int(read_count))
        self.block_timeout_ms = max(1, int(block_timeout_ms))
        self.recovery = recovery or RecoveryConfig()
        self.loop_error_delay = max(0.0, float(loop_error_delay))
        self.metrics = metrics or WorkerMetrics()
        self.logger = logger or get_logger("relay_worker.worker")
        self.processed_count = 0
        self.batch_count = 0
        self._stop: asyncio.Event | None = None
        self._task_recovery: asyncio.Task | None = None

    @property
    def consumer(self) -> str:
        return self.queue.consumer

    @property
    def stopping(self) -> bool:
        return self._stop is not None and self._stop.is_set()

    # ----------------------------------------------------------------- lifecycle
    async def startup(self) -> None:
        """Verify Redis, prepare the consumer group and open the store.

        Raises:
            WorkerStartupError: If any of the three steps fails.
        """
        try:
            await self.queue.ping()
        except Exception as exc:
            raise WorkerStartupError(f"Cannot reach Redis: {exc}") from exc
        self.logger.info("Connected to Redis")

        try:
            await self.queue.ensure_group()
        except Exception as exc:
            raise WorkerStartupError(
                f"Cannot create consumer group {self.queue.group} on {self.queue.stream}: {exc}"
            ) from exc

        if self.store is not None:
            try:
                await self.store.init_db()
            except Exception as exc:
                raise WorkerStartupError(f"Cannot open message store: {exc}") from exc

    async def run(self, stop: asyncio.Event) -> None:
        """Consume the stream until ``stop`` is set."""
        self._stop = stop
        self.logger.info(
            "Worker %s consuming %s as group %s", self.queue.consumer, self.queue.stream, self.queue.group
        )
        if self.recovery.enabled:
            self._task_recovery = asyncio.create_task(self._recovery_loop(stop), name="pending-recovery-loop")
        try:
            while not stop.is_set():
                try:
                    entries = await self.queue.read(self.read_count, self.block_timeout_ms)
                except Exception as exc:
                    if stop.is_set():
                        break
                    self.logger.error("Error reading from stream %s: %s", self.queue.stream, exc)
                    await self._pause(stop, self.loop_error_delay)
                    continue
                if not entries:
                    continue
                await self.process_batch(entries)
                if stop.is_set():
                    self.logger.info("Shutdown requested, batch finished")
        finally:
            await self._shutdown()

    async def _shutdown(self) -> None:
        if self._task_recovery is not None:
            # A claimed batch in flight finishes like a regular one; cancel only when run() exits abnormally.
            if not self.stopping:
                self._task_recovery.cancel()
            await asyncio.gather(self._task_recovery, return_exceptions=True)
            self._task_recovery = None
        if self.store is not None:
            try:
                await self.store.close()
            except Exception as exc:
                self.logger.error("Error closing message store: %s", exc)
        try:
            await self.queue.close()
        except Exception as exc:
            self.logger.error("Error closing Redis connection: %s", exc)
        self.logger.info(
            "Worker stopped after %s message(s) in %s batch(es)", self.processed_count, self.batch_count
        )

    @staticmethod
    async def _pause(stop: asyncio.Event, delay: float) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    # ---------------------------------------------------------------- batches
    async def process_batch(self, entries: Sequence[StreamEntry]) -> tuple[int, int]:
        """Process every entry concurrently; returns ``(fulfilled, rejected)``."""
        results = await asyncio.gather(*(self._handle_entry(entry) for entry in entries), return_exceptions=True)
        fulfilled = rejected = 0
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                rejected += 1
                self.logger.error("Processing of entry %s failed: %r", entry.stream_id, result)
            else:
                fulfilled += 1
        self.processed_count += len(entries)
        self.batch_count += 1
        self.metrics.inc_batch(rejected)
        self.logger.debug("Batch of %s entries: %s fulfilled, %s rejected", len(entries), fulfilled, rejected)
        return fulfilled, rejected

    async def _handle_entry(self, entry: StreamEntry) -> None:
        message_id = entry.message_id
        if message_id is None:
            self.logger.warning("Entry %s has no messageId, acknowledging without processing", entry.stream_id)
            match await self.queue.acknowledge(entry.stream_id, self.queue.group):
                case Err(error):
                    self.metrics.inc_ack_failure()
                    self.logger.critical("Failed to acknowledge malformed entry %s: %s", entry.stream_id, error)
                case _:
                    self.metrics.inc_ack()
            return
        await self.processor.handle_message(message_id, entry.stream_id, self.queue.group)

    # --------------------------------------------------------------- recovery
    async def recover_pending(self) -> int:
        """Claim idle pending entries and process them like a fresh batch."""
        entries = await self.queue.claim_idle(self.recovery.min_idle_time_ms, self.recovery.max_claim_count)
        if not entries:
            return 0
        self.logger.info("Claimed %s idle pending entries", len(entries))
        self.metrics.inc_claimed(len(entries))
        await self.process_batch(entries)
        return len(entries)

    async def _recovery_loop(self, stop: asyncio.Event) -> None:
        interval = self.recovery.check_interval_ms / 1000.0
        while not stop.is_set():
            try:
                await self.recover_pending()
            except Exception as exc:
                self.logger.exception("Pending entry recovery failed: %s", exc)
            await self._pause(stop, interval)


def build_worker(settings: WorkerSettings, metrics: WorkerMetrics | None = None) -> MessageWorker:
    """Wire queue, store, adapters and processor from ``settings``.

    Raises:
        CryptoError: If the credential encryption key is missing or invalid.
    """
    metrics = metrics or WorkerMetrics()
    queue = StreamQueue.from_url(
        settings.queue.redis_url,
        stream=settings.queue.stream,
        group=settings.queue.consumer_group,
        consumer=settings.queue.consumer_name,
    )
    store = MessageStore(settings.db_url)
    registry = build_default_registry(settings, metrics=metrics)
    processor = MessageProcessor(store, registry, queue, metrics=metrics)
    return MessageWorker(
        queue,
        processor,
        store=store,
        read_count=settings.queue.read_count,
        block_timeout_ms=settings.queue.block_timeout_ms,
        recovery=settings.recovery,
        loop_error_delay=settings.loop_error_delay,
        metrics=metrics,
    )

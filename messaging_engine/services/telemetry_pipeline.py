"""Call-telemetry bridge for dispatcher calls.

Every generation call produces one ``LLMCallRecord``.  Records go into a
bounded in-memory queue that a background task drains into a sink (the
storage layer's call log in production, structlog by default).  Recording
never blocks the caller: when the queue is full the oldest record is
dropped to make room.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import structlog

from messaging_engine.core import config
from messaging_engine.models.llm import LLMCallRecord

logger = structlog.get_logger(__name__)


class CallTelemetrySink(Protocol):
    async def write(self, record: LLMCallRecord) -> None: ...


class StructlogCallSink:
    """Default sink: one structured log line per call."""

    async def write(self, record: LLMCallRecord) -> None:
        logger.info("llm_call", **record.model_dump(mode="json", exclude={"metadata"}))


class TelemetryPipeline:
    """Bounded drop-oldest queue with a lazily started drain task."""

    def __init__(
        self,
        sink: Optional[CallTelemetrySink] = None,
        maxsize: Optional[int] = None,
        *,
        enabled: Optional[bool] = None,
    ) -> None:
        self._sink: CallTelemetrySink = sink or StructlogCallSink()
        self._maxsize = max(1, maxsize or config.TELEMETRY_QUEUE_MAXSIZE)
        self._enabled = config.TELEMETRY_ENABLED if enabled is None else enabled
        self._queue: Optional[asyncio.Queue] = None
        self._drain_task: Optional[asyncio.Task] = None
        self.dropped = 0

    def bind_sink(self, sink: CallTelemetrySink) -> None:
        self._sink = sink

    def _ensure_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._maxsize)
        return self._queue

    def _ensure_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller); records wait until one drains them
            return
        self._drain_task = loop.create_task(self._drain())

    def record_call(self, record: LLMCallRecord) -> None:
        """Enqueue without blocking, evicting the oldest record when full."""
        if not self._enabled:
            return
        queue = self._ensure_queue()
        if queue.full():
            try:
                queue.get_nowait()
                queue.task_done()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        queue.put_nowait(record)
        self._ensure_drain()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def _drain(self) -> None:
        queue = self._ensure_queue()
        while True:
            record = await queue.get()
            try:
                await self._sink.write(record)
            except Exception:
                logger.warning("telemetry_sink_write_failed", exc_info=True)
            finally:
                queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued record has been written."""
        if self._queue is None:
            return
        self._ensure_drain()
        await self._queue.join()

    async def aclose(self) -> None:
        await self.flush()
        if self._drain_task is not None:
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
            self._drain_task = None


telemetry_pipeline = TelemetryPipeline()

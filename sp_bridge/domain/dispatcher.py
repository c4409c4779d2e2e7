"""Dispatcher: drives the gateway stream into the publish pipeline.

Messages are queued per source channel. One drain task owns each channel's
queue, so a channel publishes in arrival order; a semaphore bounds how many
channels publish at the same time.
"""

import asyncio
import sys
from collections import deque
from typing import Any, AsyncIterator, Deque, Dict, Optional, Tuple

from sp_bridge.domain.formatter import MAX_TEXT_LENGTH, build_record
from sp_bridge.domain.mapping import MappingTable
from sp_bridge.domain.pipeline import PublishPipeline
from sp_bridge.errors import ProtocolError, SessionFailedError
from sp_bridge.ports.inbound import InboundMessage


def _log(msg: str):
    print(msg, file=sys.stderr)


class Dispatcher:
    """Consumes gateway events until the stream ends or stop() is called."""

    def __init__(
        self,
        mapping: MappingTable,
        pipeline: PublishPipeline,
        max_workers: int = 8,
        shutdown_timeout: float = 10.0,
        max_text_length: int = MAX_TEXT_LENGTH,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._mapping = mapping
        self._pipeline = pipeline
        self._shutdown_timeout = shutdown_timeout
        self._max_text_length = max_text_length
        self._slots = asyncio.Semaphore(max_workers)
        self._queues: Dict[str, Deque[Tuple[InboundMessage, str]]] = {}
        self._drainers: Dict[str, asyncio.Task] = {}
        self._stop = asyncio.Event()
        self._fatal: Optional[BaseException] = None
        self.forwarded = 0
        self.dropped = 0

    @property
    def pending_count(self) -> int:
        """Messages queued or in flight across all channels."""
        return sum(len(q) for q in self._queues.values())

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def stop(self):
        """Stop accepting events. run() then drains and returns."""
        if not self._stop.is_set():
            _log("[dispatcher] stop requested")
        self._stop.set()

    async def run(self, stream: AsyncIterator[Any]):
        """Consume ``stream`` until it ends, fails, or stop() is called.

        Errors raised by the stream itself (gateway gone for good) propagate
        after queued messages are drained. A SessionFailedError from any
        worker stops the loop and is re-raised.
        """
        consumer = asyncio.create_task(self._consume(stream))
        stopper = asyncio.create_task(self._stop.wait())
        try:
            await asyncio.wait({consumer, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (consumer, stopper):
                if not task.done():
                    task.cancel()
            await asyncio.gather(consumer, stopper, return_exceptions=True)

        await self.drain(self._shutdown_timeout)

        if self._fatal is not None:
            raise self._fatal
        if consumer.done() and not consumer.cancelled() and consumer.exception() is not None:
            raise consumer.exception()

    async def _consume(self, stream: AsyncIterator[Any]):
        async for event in stream:
            if self._stop.is_set():
                break
            self.accept(event)
        _log("[dispatcher] gateway stream ended")

    def accept(self, event: Any) -> bool:
        """Route one gateway event. Returns True if it was queued for publishing."""
        try:
            message = self._decode(event)
        except ProtocolError as e:
            _log(f"[dispatcher] skipping malformed event: {e}")
            return False

        account = self._mapping.resolve(message.source_channel_id)
        if account is None:
            return False

        if self._stop.is_set():
            _log(
                f"[dispatcher] shutting down, not forwarding "
                f"ch={message.source_channel_id} msg={message.source_message_id}"
            )
            return False

        channel = message.source_channel_id
        queue = self._queues.setdefault(channel, deque())
        queue.append((message, account))
        if channel not in self._drainers:
            self._drainers[channel] = asyncio.create_task(self._drain_channel(channel))
        return True

    @staticmethod
    def _decode(event: Any) -> InboundMessage:
        if isinstance(event, InboundMessage):
            if not event.source_channel_id or not event.source_message_id:
                raise ProtocolError("message without channel or message id")
            return event
        if isinstance(event, dict):
            return InboundMessage.from_payload(event)
        raise ProtocolError(f"unexpected event type {type(event).__name__}")

    async def _drain_channel(self, channel: str):
        queue = self._queues[channel]
        try:
            while queue:
                message, account = queue[0]
                try:
                    async with self._slots:
                        await self._forward(message, account)
                finally:
                    queue.popleft()
        except asyncio.CancelledError:
            queue.clear()
            raise
        finally:
            self._drainers.pop(channel, None)
            if not queue:
                self._queues.pop(channel, None)

    async def _forward(self, message: InboundMessage, account: str):
        try:
            record = build_record(message, account, limit=self._max_text_length)
            result = await self._pipeline.publish(record, message)
        except SessionFailedError as e:
            if self._fatal is None:
                self._fatal = e
            self.dropped += 1
            self.stop()
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.dropped += 1
            _log(
                f"[dispatcher] unexpected error forwarding ch={message.source_channel_id} "
                f"msg={message.source_message_id}: {type(e).__name__}: {e}"
            )
            return

        if result.success:
            self.forwarded += 1
        else:
            self.dropped += 1

    async def drain(self, timeout: Optional[float] = None):
        """Wait for queued publishes, then cancel whatever is left at the deadline."""
        tasks = list(self._drainers.values())
        if not tasks:
            return
        _log(f"[dispatcher] waiting for {self.pending_count} pending message(s)")
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            abandoned = self.pending_count
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            _log(f"[dispatcher] shutdown deadline reached, abandoned {abandoned} message(s)")

"""
Queue consumers: one asyncio task per queue.

Each task reserves a message, runs the handler in a worker thread and acks
only once the handler has returned or failed. ``stop()`` lets the message in
flight finish before the task exits.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .errors import QueueUnavailable
from .event_queue import Delivery

logger = logging.getLogger(__name__)


class QueueConsumer:
    def __init__(
        self,
        queue,
        queue_name: str,
        handler: Callable[[Any], Any],
        poll_timeout: float = 1.0,
        requeue_on_error: bool = False,
    ) -> None:
        self.queue = queue
        self.queue_name = queue_name
        self.handler = handler
        self.poll_timeout = poll_timeout
        self.requeue_on_error = requeue_on_error
        self.processed = 0
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=f"consumer:{self.queue_name}")

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        try:
            moved = await asyncio.to_thread(self.queue.requeue_unacked, self.queue_name)
        except QueueUnavailable as exc:
            logger.error("could not recover unacked messages on %s: %s", self.queue_name, exc)
        else:
            if moved:
                logger.warning("requeued %d unacked message(s) on %s", moved, self.queue_name)
        logger.info("consuming %s", self.queue_name)

        while not self._stopping.is_set():
            try:
                delivery = await asyncio.to_thread(
                    self.queue.reserve, self.queue_name, self.poll_timeout
                )
            except QueueUnavailable as exc:
                logger.error("reserve on %s failed: %s", self.queue_name, exc)
                await asyncio.sleep(self.poll_timeout)
                continue
            if delivery is None:
                continue
            try:
                await self.process(delivery)
            except QueueUnavailable as exc:
                # The message stays in the processing list and is recovered on restart.
                logger.error("ack on %s failed: %s", self.queue_name, exc)
            except Exception:
                logger.exception("dropping message on %s after unexpected error", self.queue_name)
                await self._discard(delivery)

        logger.info("stopped consuming %s", self.queue_name)

    async def _discard(self, delivery: Delivery) -> None:
        try:
            await asyncio.to_thread(self.queue.ack, delivery)
        except QueueUnavailable as exc:
            logger.error("ack on %s failed: %s", self.queue_name, exc)
        self.processed += 1

    async def process(self, delivery: Delivery) -> None:
        try:
            message = delivery.json()
        except (ValueError, RecursionError):
            logger.warning("dropping undecodable message on %s: %.200s", self.queue_name, delivery.body)
            await asyncio.to_thread(self.queue.ack, delivery)
            self.processed += 1
            return

        failed = False
        try:
            await asyncio.to_thread(self.handler, message)
        except Exception:
            logger.exception(
                "handler failed for message on %s", self.queue_name,
                extra={"data": {"queue": self.queue_name, "message": message}},
            )
            failed = True

        if failed and self.requeue_on_error:
            await asyncio.to_thread(self.queue.nack, delivery)
            self.processed += 1
            # A nacked message is the next one reserved; wait before retrying it.
            await asyncio.sleep(self.poll_timeout)
            return
        await asyncio.to_thread(self.queue.ack, delivery)
        self.processed += 1

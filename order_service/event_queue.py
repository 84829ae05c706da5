"""
Thin Redis wrapper — durable lists with at-least-once delivery.

Producers LPUSH onto the queue list. A consumer BLMOVEs the oldest message onto
``<queue>:processing`` and removes it from there on ack, so a message that was
taken but never acked is still in Redis and can be put back with
``requeue_unacked``.
"""

import json
from dataclasses import dataclass
from typing import Optional

import redis as _redis

from .errors import QueueUnavailable


def processing_list(queue: str) -> str:
    return f"{queue}:processing"


@dataclass(frozen=True)
class Delivery:
    queue: str
    body: str

    def json(self):
        return json.loads(self.body)


class RedisQueue:
    def __init__(self, url: str):
        self.url = url
        self._client = None

    def _get(self):
        if self._client is None:
            if not self.url:
                raise QueueUnavailable("QUEUE_URL is not set")
            self._client = _redis.from_url(self.url, decode_responses=True)
        return self._client

    def _call(self, fn, *args, **kwargs):
        r = self._get()
        try:
            return fn(r, *args, **kwargs)
        except _redis.RedisError as exc:
            raise QueueUnavailable(f"redis error: {exc}") from exc

    def connect(self) -> None:
        self._call(lambda r: r.ping())

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None

    def publish(self, queue: str, payload: dict) -> None:
        self._call(lambda r: r.lpush(queue, json.dumps(payload)))

    def reserve(self, queue: str, timeout: float) -> Optional[Delivery]:
        """Block up to ``timeout`` seconds for the next message."""
        body = self._call(
            lambda r: r.blmove(queue, processing_list(queue), timeout, "RIGHT", "LEFT")
        )
        if body is None:
            return None
        return Delivery(queue=queue, body=body)

    def ack(self, delivery: Delivery) -> None:
        self._call(lambda r: r.lrem(processing_list(delivery.queue), 1, delivery.body))

    def nack(self, delivery: Delivery) -> None:
        """Give the message back; it becomes the next one delivered."""
        def _requeue(r):
            pipe = r.pipeline()
            pipe.lrem(processing_list(delivery.queue), 1, delivery.body)
            pipe.rpush(delivery.queue, delivery.body)
            pipe.execute()

        self._call(_requeue)

    def requeue_unacked(self, queue: str) -> int:
        """Move everything left in the processing list back onto the queue."""
        moved = 0
        while self._call(lambda r: r.lmove(processing_list(queue), queue, "LEFT", "RIGHT")) is not None:
            moved += 1
        return moved

    def status(self) -> str:
        if not self.url:
            return "not configured (QUEUE_URL unset)"
        try:
            self._call(lambda r: r.ping())
            return "connected"
        except QueueUnavailable as exc:
            return f"error: {exc}"

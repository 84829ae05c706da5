"""Service wiring: one explicitly built holder for the store, queue and services."""

from dataclasses import dataclass

from .config import LOGS_QUEUE, ORDER_DONE_QUEUE, ORDERS_QUEUE, Settings
from .consumer import QueueConsumer
from .db import OrderStore
from .event_queue import RedisQueue
from .logsink import LogSink
from .orders import OrderService


@dataclass
class ServiceContext:
    settings: Settings
    store: OrderStore
    queue: RedisQueue
    orders: OrderService
    logs: LogSink

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContext":
        store = OrderStore(settings.PG_DSN)
        queue = RedisQueue(settings.QUEUE_URL)
        return cls(
            settings=settings,
            store=store,
            queue=queue,
            orders=OrderService(store, queue, work_queue=ORDERS_QUEUE),
            logs=LogSink(store, settings.SERVICE_NAME),
        )

    def connect(self) -> None:
        """Fail fast if either backend is unreachable."""
        self.store.connect()
        self.queue.connect()

    def close(self) -> None:
        self.queue.close()
        self.store.close()

    def consumers(self) -> list[QueueConsumer]:
        poll = self.settings.CONSUMER_POLL_SECONDS
        return [
            QueueConsumer(
                self.queue, ORDER_DONE_QUEUE, self.orders.handle_completion,
                poll_timeout=poll, requeue_on_error=self.settings.REQUEUE_ON_ERROR,
            ),
            QueueConsumer(self.queue, LOGS_QUEUE, self.logs.mirror, poll_timeout=poll),
        ]

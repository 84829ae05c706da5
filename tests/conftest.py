# tests/conftest.py
from __future__ import annotations

import json
import threading
import time
from collections import defaultdict, deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from order_service.config import Settings
from order_service.context import ServiceContext
from order_service.db import new_order_id
from order_service.domain import Order, OrderStatus
from order_service.errors import QueueUnavailable, StoreUnavailable
from order_service.event_queue import Delivery
from order_service.logsink import LogSink
from order_service.orders import OrderService

T0 = datetime(2026, 1, 30, 10, 0, 0, tzinfo=timezone.utc)


# -------------------------
# Fakes with the same surface as OrderStore / RedisQueue
# -------------------------

class FakeStore:
    """In-memory OrderStore. ``fail`` names methods that raise StoreUnavailable."""

    def __init__(self):
        self.orders: Dict[str, Order] = {}
        self.logs: List[dict] = []
        self.calls: List[str] = []
        self.fail: set = set()
        self._lock = threading.Lock()

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail:
            raise StoreUnavailable(f"{name} failed")

    def connect(self) -> None:
        self._enter("connect")

    def close(self) -> None:
        pass

    def insert_order(self, created_at: datetime) -> Order:
        self._enter("insert_order")
        order = Order(id=new_order_id(), status=OrderStatus.IN_PROGRESS, created_at=created_at)
        with self._lock:
            self.orders[order.id] = order
        return order

    def find_order(self, order_id: str) -> Optional[Order]:
        self._enter("find_order")
        return self.orders.get(order_id)

    def list_orders(self) -> List[Order]:
        self._enter("list_orders")
        return sorted(self.orders.values(), key=lambda o: o.created_at, reverse=True)

    def complete_order(self, order_id, dish, image, description, finished_at) -> bool:
        self._enter("complete_order")
        with self._lock:
            current = self.orders.get(order_id)
            if current is None:
                return False
            self.orders[order_id] = replace(
                current,
                status=OrderStatus.COMPLETED,
                dish=dish,
                image=image,
                description=description,
                finished_at=current.finished_at or finished_at,
            )
        return True

    def insert_log(self, entry: dict) -> None:
        if "insert_log" in self.fail:
            raise StoreUnavailable("insert_log failed")
        with self._lock:
            self.logs.append(entry)

    def find_logs(self, service=None, level=None, start=None, end=None, limit=100, skip=0):
        self._enter("find_logs")
        rows = [
            e for e in self.logs
            if (not service or e["service"] == service)
            and (not level or e["level"] == level)
            and (start is None or e["timestamp"] >= start)
            and (end is None or e["timestamp"] <= end)
        ]
        rows.sort(key=lambda e: e["timestamp"], reverse=True)
        return [dict(r, timestamp=r["timestamp"].isoformat()) for r in rows[skip:skip + limit]]

    def status(self) -> str:
        return "connected"


class FakeQueue:
    """In-memory RedisQueue with the same reserve/ack/nack bookkeeping."""

    def __init__(self):
        self.lists: Dict[str, deque] = defaultdict(deque)
        self.processing: Dict[str, List[str]] = defaultdict(list)
        self.acked: List[Delivery] = []
        self.nacked: List[Delivery] = []
        self.fail_publish = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def publish(self, queue: str, payload: Any) -> None:
        if self.fail_publish:
            raise QueueUnavailable("broker down")
        self.push_raw(queue, json.dumps(payload))

    def push_raw(self, queue: str, body: str) -> None:
        with self._lock:
            self.lists[queue].appendleft(body)

    def messages(self, queue: str) -> List[Any]:
        with self._lock:
            return [json.loads(b) for b in reversed(self.lists[queue])]

    def reserve(self, queue: str, timeout: float) -> Optional[Delivery]:
        with self._lock:
            if self.lists[queue]:
                body = self.lists[queue].pop()
                self.processing[queue].append(body)
                return Delivery(queue=queue, body=body)
        time.sleep(min(timeout, 0.01))
        return None

    def ack(self, delivery: Delivery) -> None:
        with self._lock:
            self.processing[delivery.queue].remove(delivery.body)
            self.acked.append(delivery)

    def nack(self, delivery: Delivery) -> None:
        with self._lock:
            self.processing[delivery.queue].remove(delivery.body)
            self.lists[delivery.queue].append(delivery.body)
            self.nacked.append(delivery)

    def requeue_unacked(self, queue: str) -> int:
        with self._lock:
            moved = len(self.processing[queue])
            while self.processing[queue]:
                self.lists[queue].append(self.processing[queue].pop())
        return moved

    def status(self) -> str:
        return "connected"


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# -------------------------
# Fixtures
# -------------------------

@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(store, queue, clock) -> OrderService:
    return OrderService(store, queue, clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    s = Settings()
    s.CONSUMER_POLL_SECONDS = 0.01
    s.REQUEUE_ON_ERROR = False
    s.SERVICE_NAME = "orders-service"
    return s


@pytest.fixture
def ctx(test_settings, store, queue, service) -> ServiceContext:
    return ServiceContext(
        settings=test_settings,
        store=store,
        queue=queue,
        orders=service,
        logs=LogSink(store, test_settings.SERVICE_NAME),
    )

"""
Order lifecycle: creation, completion and the read side.

The service owns the in-progress -> completed transition. Creation persists
the order before the work message is published so the worker never sees an id
that does not exist yet.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import ORDERS_QUEUE
from .domain import Order, is_valid_order_id
from .errors import InvalidOrderId, OrderNotFound, QueueUnavailable

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _optional_str(value) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    return value


class OrderService:
    def __init__(self, store, queue, work_queue: str = ORDERS_QUEUE,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.queue = queue
        self.work_queue = work_queue
        self._clock = clock

    # ── Commands ─────────────────────────────────────────────────

    def create_order(self) -> Order:
        order = self.store.insert_order(created_at=self._clock())
        logger.info("new order received: %s", order.id, extra={"data": {"orderId": order.id}})
        try:
            self.queue.publish(self.work_queue, {"orderId": order.id})
        except QueueUnavailable as exc:
            logger.error(
                "order %s was stored but its work message was not published; "
                "it will stay in progress: %s",
                order.id, exc,
                extra={"data": {"orderId": order.id}},
            )
            raise
        return order

    def handle_completion(self, message) -> bool:
        """Apply one ``order_done`` message. Returns True if an order was completed.

        Malformed or unknown references are logged and dropped; only store
        failures raise.
        """
        order_id = message.get("orderId") if isinstance(message, dict) else None
        if not is_valid_order_id(order_id):
            logger.warning(
                "discarding completion with invalid order id %r", order_id,
                extra={"data": {"orderId": order_id}},
            )
            return False

        dish = message.get("dish")
        try:
            image = _optional_str(message.get("image"))
            description = _optional_str(message.get("description"))
        except ValueError as exc:
            logger.warning("discarding malformed completion for %s: %s", order_id, exc,
                           extra={"data": {"orderId": order_id}})
            return False
        if not isinstance(dish, str) or not dish:
            logger.warning("discarding completion for %s without a dish", order_id,
                           extra={"data": {"orderId": order_id}})
            return False

        matched = self.store.complete_order(
            order_id,
            dish=dish,
            image=image,
            description=description,
            finished_at=self._clock(),
        )
        if not matched:
            logger.warning(
                "completion for unknown order %s discarded", order_id,
                extra={"data": {"orderId": order_id}},
            )
            return False

        logger.info("order %s completed (dish: %s)", order_id, dish,
                    extra={"data": {"orderId": order_id, "dish": dish}})
        return True

    # ── Queries ──────────────────────────────────────────────────

    def get_order(self, order_id: str) -> Order:
        if not is_valid_order_id(order_id):
            raise InvalidOrderId(order_id)
        order = self.store.find_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def list_orders(self) -> list[Order]:
        return self.store.list_orders()

    def get_order_details(self, order_id: str) -> dict:
        return self.get_order(order_id).details()

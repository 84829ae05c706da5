"""Errors raised by the order lifecycle and its gateways."""


class OrderServiceError(Exception):
    """Base class. Anything not more specific is an internal failure."""

    status_code = 500
    reason = "unable_to_process"


class InvalidOrderId(OrderServiceError):
    status_code = 400
    reason = "invalid_order_id"

    def __init__(self, order_id):
        super().__init__(f"{order_id!r} is not a valid order id")
        self.order_id = order_id


class OrderNotFound(OrderServiceError):
    status_code = 404
    reason = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__(f"order {order_id} not found")
        self.order_id = order_id


class StoreUnavailable(OrderServiceError):
    pass


class QueueUnavailable(OrderServiceError):
    pass

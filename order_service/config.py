"""
Runtime settings — read once at import time.

PG_DSN should be a full postgres:// connection string.
QUEUE_URL points at the Redis instance holding the work, completion and log lists.
"""

import os

ORDERS_QUEUE = "orders"
ORDER_DONE_QUEUE = "order_done"
LOGS_QUEUE = "system_logs"


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    APP_PORT: int = int(os.getenv("APP_PORT", "5000"))
    PG_DSN: str = os.getenv("PG_DSN", "")
    QUEUE_URL: str = os.getenv("QUEUE_URL", "")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info")
    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "orders-service")
    CONSUMER_POLL_SECONDS: float = float(os.getenv("CONSUMER_POLL_SECONDS", "1.0"))
    # Requeue completion messages whose store write failed instead of dropping them.
    REQUEUE_ON_ERROR: bool = _flag("REQUEUE_ON_ERROR")


settings = Settings()

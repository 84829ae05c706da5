"""Orders service: order lifecycle over Postgres and Redis queues."""

__version__ = "1.0.0"

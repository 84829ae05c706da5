"""Postgres helpers — schema init, order reads/writes and the log table."""

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import psycopg2
import psycopg2.extras

from .domain import Order, OrderStatus
from .errors import StoreUnavailable

ORDER_COLUMNS = "id, status, dish, image, description, created_at, finished_at"


def new_order_id() -> str:
    return uuid.uuid4().hex[:24]


class OrderStore:
    """Access to the ``orders`` and ``system_logs`` tables. No business rules."""

    def __init__(self, dsn: str):
        self.dsn = dsn
        self._conn = None

    def _get_conn(self):
        if self._conn is None or self._conn.closed:
            if not self.dsn:
                raise StoreUnavailable("PG_DSN is not set")
            try:
                conn = psycopg2.connect(self.dsn)
                conn.autocommit = True
                _bootstrap(conn)
            except psycopg2.Error as exc:
                raise StoreUnavailable(f"cannot reach postgres: {exc}") from exc
            self._conn = conn
        return self._conn

    @contextmanager
    def _cursor(self, dict_rows: bool = False):
        conn = self._get_conn()
        factory = psycopg2.extras.RealDictCursor if dict_rows else None
        try:
            with conn.cursor(cursor_factory=factory) as cur:
                yield cur
        except psycopg2.Error as exc:
            raise StoreUnavailable(f"postgres error: {exc}") from exc

    def connect(self) -> None:
        self._get_conn()

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    # ── Orders ───────────────────────────────────────────────────

    def insert_order(self, created_at: datetime) -> Order:
        order = Order(id=new_order_id(), status=OrderStatus.IN_PROGRESS, created_at=created_at)
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO orders (id, status, created_at) VALUES (%s, %s, %s)",
                (order.id, order.status.value, order.created_at),
            )
        return order

    def find_order(self, order_id: str) -> Optional[Order]:
        with self._cursor(dict_rows=True) as cur:
            cur.execute(f"SELECT {ORDER_COLUMNS} FROM orders WHERE id = %s", (order_id,))
            row = cur.fetchone()
        return Order.from_row(row) if row else None

    def list_orders(self) -> list[Order]:
        with self._cursor(dict_rows=True) as cur:
            cur.execute(f"SELECT {ORDER_COLUMNS} FROM orders ORDER BY created_at DESC")
            rows = cur.fetchall()
        return [Order.from_row(r) for r in rows]

    def complete_order(
        self,
        order_id: str,
        dish: str,
        image: Optional[str],
        description: Optional[str],
        finished_at: datetime,
    ) -> bool:
        """Single-row transition to completed. Returns False if no row matched.

        finished_at keeps its first value when the same completion is replayed.
        """
        with self._cursor() as cur:
            cur.execute(
                "UPDATE orders SET status = %s, dish = %s, image = %s, description = %s, "
                "finished_at = COALESCE(finished_at, %s) WHERE id = %s",
                (OrderStatus.COMPLETED.value, dish, image, description, finished_at, order_id),
            )
            return cur.rowcount == 1

    # ── Logs ─────────────────────────────────────────────────────

    def insert_log(self, entry: dict) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT INTO system_logs (timestamp, service, level, message, data) "
                "VALUES (%s, %s, %s, %s, %s)",
                (
                    entry["timestamp"],
                    entry["service"],
                    entry["level"],
                    entry["message"],
                    psycopg2.extras.Json(entry.get("data") or {}),
                ),
            )

    def find_logs(
        self,
        service: Optional[str] = None,
        level: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0,
    ) -> list[dict]:
        clauses, params = [], []
        if service:
            clauses.append("service = %s")
            params.append(service)
        if level:
            clauses.append("level = %s")
            params.append(level)
        if start is not None:
            clauses.append("timestamp >= %s")
            params.append(start)
        if end is not None:
            clauses.append("timestamp <= %s")
            params.append(end)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        with self._cursor(dict_rows=True) as cur:
            cur.execute(
                "SELECT timestamp, service, level, message, data FROM system_logs "
                f"{where}ORDER BY timestamp DESC LIMIT %s OFFSET %s",
                (*params, limit, skip),
            )
            rows = cur.fetchall()
        for r in rows:
            if r.get("timestamp"):
                r["timestamp"] = r["timestamp"].isoformat()
        return rows

    def status(self) -> str:
        if not self.dsn:
            return "not configured (PG_DSN unset)"
        try:
            with self._cursor() as cur:
                cur.execute("SELECT 1")
            return "connected"
        except StoreUnavailable as exc:
            return f"error: {exc}"


def _bootstrap(conn):
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id          TEXT PRIMARY KEY,
                status      TEXT NOT NULL DEFAULT 'in-progress',
                dish        TEXT,
                image       TEXT,
                description TEXT,
                created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                finished_at TIMESTAMPTZ
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS system_logs (
                id        BIGSERIAL PRIMARY KEY,
                timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                service   TEXT NOT NULL,
                level     TEXT NOT NULL,
                message   TEXT NOT NULL,
                data      JSONB NOT NULL DEFAULT '{}'::jsonb
            )
        """)
        cur.execute(
            "CREATE INDEX IF NOT EXISTS system_logs_timestamp_idx "
            "ON system_logs (timestamp DESC)"
        )

"""
Domain model: the Order entity and its read projections.

Order is defined only here; the store, the service and the API import it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

ORDER_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

IN_PREPARATION_MESSAGE = "still in preparation"


class OrderStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


def is_valid_order_id(value: Any) -> bool:
    """True when value has the shape of a store-assigned id (24 hex chars)."""
    return isinstance(value, str) and ORDER_ID_RE.match(value) is not None


@dataclass
class Order:
    """An order as persisted.

    - status only ever moves IN_PROGRESS -> COMPLETED
    - dish / image / description / finished_at stay None until completion
    """

    id: str
    status: OrderStatus
    created_at: datetime
    dish: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    finished_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "Order":
        return cls(
            id=row["id"],
            status=OrderStatus(row["status"]),
            created_at=row["created_at"],
            dish=row.get("dish"),
            image=row.get("image"),
            description=row.get("description"),
            finished_at=row.get("finished_at"),
        )

    @property
    def is_completed(self) -> bool:
        return self.status is OrderStatus.COMPLETED

    @property
    def processing_seconds(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.created_at).total_seconds())

    def summary(self) -> dict:
        return {
            "orderId": self.id,
            "status": self.status.value,
            "dish": self.dish,
            "image": self.image,
            "description": self.description,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
        }

    def details(self) -> dict:
        if not self.is_completed:
            return {
                "orderId": self.id,
                "status": self.status.value,
                "createdAt": self.created_at,
                "message": IN_PREPARATION_MESSAGE,
            }
        return {
            "orderId": self.id,
            "status": self.status.value,
            "createdAt": self.created_at,
            "finishedAt": self.finished_at,
            "dish": {
                "name": self.dish,
                "image": self.image,
                "description": self.description,
            },
            "processingTime": self.processing_seconds,
        }

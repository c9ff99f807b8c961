import logging
from datetime import datetime

from orderdesk.errors import InvalidRequest, OrderNotFound
from orderdesk.models import ORDER_STATUSES
from orderdesk.stores import RecordStore

logger = logging.getLogger(__name__)


class OrderAdmin:
    """Admin-side reads and edits of orders created by reconciliation."""

    def __init__(self, orders: RecordStore):
        self._orders = orders

    def get_order(self, order_number: str) -> dict:
        order = self._orders.find_one({"order_number": order_number})
        if order is None:
            raise OrderNotFound(f"No order {order_number}")
        return order

    def update_status(self, order_number: str, status: str) -> dict:
        if status not in ORDER_STATUSES:
            raise InvalidRequest(f"status must be one of: {', '.join(ORDER_STATUSES)}")
        order = self.get_order(order_number)
        updated = self._orders.update_one(order["id"], {"status": status})
        if updated is None:
            raise OrderNotFound(f"No order {order_number}")
        logger.info("Order %s %s -> %s", order_number, order["status"], status)
        return updated

    def add_note(self, order_number: str, note: str, added_by: str | None = None) -> dict:
        if not (note or "").strip():
            raise InvalidRequest("note is required")
        order = self.get_order(order_number)
        notes = list(order.get("admin_notes") or [])
        notes.append({
            "note": note.strip(),
            "added_by": added_by or "System",
            "added_at": datetime.now().isoformat(),
        })
        updated = self._orders.update_one(order["id"], {"admin_notes": notes})
        if updated is None:
            raise OrderNotFound(f"No order {order_number}")
        return updated

import logging
import re
import time
from datetime import date, datetime, timedelta

from orderdesk.stores import Between, CounterStore, RecordStore, StoreError

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "SN"
ORDER_NUMBER_RE = re.compile(r"^SN-(\d{8})-(\d{4,})$")
FALLBACK_ORDER_NUMBER_RE = re.compile(r"^SN-(\d{8})-T(\d+)$")


def format_order_number(day: date, sequence: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}-{day:%Y%m%d}-{sequence:04d}"


def fallback_order_number(day: date) -> str:
    """Unique but non-sequential number, used when the daily counter is unavailable."""
    return f"{ORDER_NUMBER_PREFIX}-{day:%Y%m%d}-T{time.time_ns() // 1_000_000}"


def day_window(day: date) -> Between:
    start = datetime.combine(day, datetime.min.time())
    return Between(start, start + timedelta(days=1))


class OrderNumberService:
    """Hands out ``SN-YYYYMMDD-NNNN`` order numbers.

    The NNNN part comes from a per-day counter which is seeded, the first time
    it is used on a given day, from the number of orders already created that
    day.
    """

    def __init__(self, orders: RecordStore, counters: CounterStore):
        self._orders = orders
        self._counters = counters

    def next_order_number(self, today: date | datetime) -> str:
        day = today.date() if isinstance(today, datetime) else today

        def seed():
            return self._orders.count({"created_at": day_window(day)})

        try:
            sequence = self._counters.increment(f"order-number:{day:%Y%m%d}", seed=seed)
        except StoreError:
            logger.exception("Order number counter unavailable for %s, using fallback numbering", day)
            return fallback_order_number(day)
        return format_order_number(day, sequence)

"""Lifecycle tracking for conditional (stop-style) orders.

PENDING moves to TRIGGERED or CANCELLED exactly once. Late or duplicated
notifications for a record that already left PENDING are ignored.
"""

import dataclasses
import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from .exceptions import ValidationError, ValidationReason
from .models import (
    ConditionalOrderRecord,
    ConditionalOrderStatus,
    OrderCategory,
    OrderSide,
    to_decimal,
)

logger = logging.getLogger(__name__)

# Exchange order status -> conditional order status (None: still pending)
EXCHANGE_STATUS_MAP = {
    "NEW": None,
    "PARTIALLY_FILLED": None,
    "FILLED": ConditionalOrderStatus.TRIGGERED,
    "CANCELED": ConditionalOrderStatus.CANCELLED,
    "EXPIRED": ConditionalOrderStatus.CANCELLED,
    "REJECTED": ConditionalOrderStatus.CANCELLED,
}


class _Entry:
    """A record plus the lock guarding its transitions."""

    __slots__ = ("record", "lock")

    def __init__(self, record: ConditionalOrderRecord):
        self.record = record
        self.lock = threading.Lock()


class ConditionalOrderRegistry:
    """
    Thread-safe registry of conditional orders.

    Records are keyed by a locally generated client id, since the exchange
    order id only exists after submission. Callers always receive copies;
    the registry owns the live records.
    """

    def __init__(self):
        self._entries: Dict[str, _Entry] = {}
        self._by_order_id: Dict[int, str] = {}
        self._lock = threading.Lock()

    def register(
        self,
        symbol: str,
        order_type: str,
        side,
        stop_price,
        quantity,
        price=None,
        reduce_only: bool = False,
        working_type: str = "CONTRACT_PRICE",
        description: str = ""
    ) -> ConditionalOrderRecord:
        """
        Start tracking a new conditional order in PENDING state.

        Args:
            symbol: Instrument
            order_type: STOP, STOP_MARKET, TAKE_PROFIT, TAKE_PROFIT_MARKET, ...
            side: BUY or SELL
            stop_price: Trigger price
            quantity: Order quantity
            price: Limit price for limit-style conditional orders
            reduce_only: True for orders that close a position
            working_type: Trigger price source
            description: Free text shown to the user

        Returns:
            Copy of the new record
        """
        quantity = to_decimal(quantity)
        if quantity <= 0:
            raise ValidationError(
                ValidationReason.NON_POSITIVE_QUANTITY,
                f"Conditional order quantity must be positive, got {quantity}"
            )

        record = ConditionalOrderRecord(
            client_id=uuid.uuid4().hex,
            symbol=symbol.upper(),
            order_type=order_type.upper(),
            side=OrderSide(str(getattr(side, 'value', side)).upper()),
            stop_price=to_decimal(stop_price),
            quantity=quantity,
            price=to_decimal(price) if price is not None else None,
            working_type=working_type,
            category=OrderCategory.CLOSE if reduce_only else OrderCategory.OPEN,
            description=description,
        )

        with self._lock:
            self._entries[record.client_id] = _Entry(record)

        logger.info(
            f"Registered conditional order {record.client_id}: {record.symbol} "
            f"{record.side.value} {record.order_type} @{record.stop_price} x{record.quantity}"
        )
        return dataclasses.replace(record)

    def _entry(self, client_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(client_id)
        if entry is None:
            raise KeyError(f"Unknown conditional order: {client_id}")
        return entry

    def assign_order_id(self, client_id: str, order_id: int) -> None:
        """Record the id the exchange assigned on submission.

        Re-assigning the same id is a no-op.

        Raises:
            KeyError: Unknown client id
            ValidationError: A different id was already assigned
        """
        entry = self._entry(client_id)
        with entry.lock:
            current = entry.record.order_id
            if current is not None:
                if current == order_id:
                    return
                raise ValidationError(
                    ValidationReason.ORDER_ID_ALREADY_ASSIGNED,
                    f"{client_id} already has order id {current}, refusing {order_id}"
                )
            entry.record.order_id = order_id

        with self._lock:
            self._by_order_id[order_id] = client_id

        logger.debug(f"Conditional order {client_id} assigned exchange id {order_id}")

    def _transition(self, client_id: str, target: ConditionalOrderStatus) -> bool:
        entry = self._entry(client_id)
        with entry.lock:
            record = entry.record
            if record.status is not ConditionalOrderStatus.PENDING:
                logger.debug(
                    f"Ignoring {target.value} for {client_id}: already {record.status.value}"
                )
                return False
            record.status = target
            record.closed_at = datetime.now()

        logger.info(f"Conditional order {client_id} ({record.symbol}) {target.value}")
        return True

    def mark_triggered(self, client_id: str) -> bool:
        """Move a pending order to TRIGGERED. Returns False if it was already terminal."""
        return self._transition(client_id, ConditionalOrderStatus.TRIGGERED)

    def mark_cancelled(self, client_id: str) -> bool:
        """Move a pending order to CANCELLED. Returns False if it was already terminal."""
        return self._transition(client_id, ConditionalOrderStatus.CANCELLED)

    def apply_exchange_status(self, order_id: int, exchange_status: str) -> bool:
        """Apply an order status reported by the exchange.

        Returns:
            True if the record changed state
        """
        with self._lock:
            client_id = self._by_order_id.get(order_id)
        if client_id is None:
            logger.warning(f"Status {exchange_status} for untracked order id {order_id}")
            return False

        status = str(exchange_status).upper()
        if status not in EXCHANGE_STATUS_MAP:
            logger.warning(f"Unknown exchange status {exchange_status!r} for order id {order_id}")
            return False

        target = EXCHANGE_STATUS_MAP[status]
        if target is None:
            return False
        return self._transition(client_id, target)

    def get(self, client_id: str) -> ConditionalOrderRecord:
        entry = self._entry(client_id)
        with entry.lock:
            return dataclasses.replace(entry.record)

    def find_by_order_id(self, order_id: int) -> Optional[ConditionalOrderRecord]:
        with self._lock:
            client_id = self._by_order_id.get(order_id)
        if client_id is None:
            return None
        return self.get(client_id)

    def records(self) -> List[ConditionalOrderRecord]:
        """Copies of all records in registration order."""
        with self._lock:
            client_ids = list(self._entries)
        return [self.get(client_id) for client_id in client_ids]

    def pending(self) -> List[ConditionalOrderRecord]:
        return [r for r in self.records() if r.status is ConditionalOrderStatus.PENDING]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, client_id) -> bool:
        with self._lock:
            return client_id in self._entries

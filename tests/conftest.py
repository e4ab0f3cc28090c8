from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, List, Optional

import pytest

from order_lifecycle.domain.models import (
    ItemizedSummary,
    Order,
    OrderItem,
    OrderRefId,
    OrderStatus,
    Recipient,
    ShippingLog,
    ShippingStatus,
)
from order_lifecycle.domain.exceptions import NotFound
from order_lifecycle.domain.shipping_history import ShippingHistory
from order_lifecycle.domain.shipping_status import parse_shipping_status
from order_lifecycle.application.interfaces import NotificationsService, OrdersGateway, ShippingLogsGateway
from order_lifecycle.application.order_state import OrderState, OrderTracker

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_order(order_id: str = "order-1", status: OrderStatus = OrderStatus.PENDING, **overrides) -> Order:
    fields = dict(
        id=order_id,
        status=status,
        total_amount=Decimal("59.90"),
        items=[
            OrderItem(product_id="p-1", product_name="Vitamin C Serum", quantity=2, price=Decimal("19.95")),
            OrderItem(product_id="p-2", product_name="Sunscreen SPF50", quantity=1, price=Decimal("20.00")),
        ],
        user_id="user-1",
        recipient_name="Anna Petrova",
        recipient_phone="+7 900 000 00 00",
        shipping_address="Moscow, Tverskaya 1",
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )
    fields.update(overrides)
    return Order(**fields)


def make_log(
    log_id: str = "log-1",
    order_id: str = "order-1",
    status: Optional[ShippingStatus] = ShippingStatus.PROCESSING,
    minutes: int = 0,
    **overrides,
) -> ShippingLog:
    fields = dict(
        id=log_id,
        order_ref=OrderRefId(id=order_id),
        status=status,
        raw_status=status.value if status else "",
        recipient=Recipient(name="Anna Petrova", phone="+7 900 000 00 00", address="Moscow, Tverskaya 1"),
        created_at=BASE_TIME + timedelta(minutes=minutes),
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )
    fields.update(overrides)
    return ShippingLog(**fields)


def make_tracker(order: Order, logs: tuple = ()) -> OrderTracker:
    return OrderTracker(OrderState.build(order, ShippingHistory.from_logs(order.id, logs)))


class FakeOrdersGateway(OrdersGateway):
    """Backend заказов в памяти; ``calls`` считает каждый сетевой вызов"""

    def __init__(self, *orders: Order):
        self.orders = {order.id: order for order in orders}
        self.calls: list[tuple] = []
        self.errors: dict[str, Exception] = {}
        self.unparseable = False

    def _fail(self, method: str) -> None:
        error = self.errors.get(method)
        if error is not None:
            raise error

    def _store(self, order_id: str, **updates) -> Optional[Order]:
        if order_id not in self.orders:
            raise NotFound("Order not found")
        self.orders[order_id] = self.orders[order_id].model_copy(update=updates)
        return None if self.unparseable else self.orders[order_id]

    async def get_order(self, order_id: str) -> Order:
        self.calls.append(("get_order", order_id))
        self._fail("get_order")
        if order_id not in self.orders:
            raise NotFound("Order not found")
        return self.orders[order_id]

    async def update_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        self.calls.append(("update_status", order_id, status))
        self._fail("update_status")
        return self._store(order_id, status=status)

    async def reject(self, order_id: str, rejection_reason: str, note: Optional[str] = None) -> Optional[Order]:
        self.calls.append(("reject", order_id, rejection_reason, note))
        self._fail("reject")
        return self._store(order_id, status=OrderStatus.REJECTED, rejection_reason=rejection_reason)

    async def refund(self, order_id: str, refund_reason: Optional[str] = None, note: Optional[str] = None) -> Optional[Order]:
        self.calls.append(("refund", order_id, refund_reason, note))
        self._fail("refund")
        return self._store(order_id, status=OrderStatus.REFUNDED, refund_reason=refund_reason)


class FakeShippingLogsGateway(ShippingLogsGateway):
    def __init__(self, *logs: ShippingLog):
        self.logs: list[ShippingLog] = list(logs)
        self.calls: list[tuple] = []
        self.payloads: list[dict] = []
        self.errors: dict[str, Exception] = {}
        self.order_items: dict[str, ItemizedSummary] = {}

    def _fail(self, method: str) -> None:
        error = self.errors.get(method)
        if error is not None:
            raise error

    async def list(self, params: Optional[dict[str, Any]] = None) -> List[ShippingLog]:
        self.calls.append(("list", params))
        self._fail("list")
        return list(self.logs)

    async def get_by_id(self, log_id: str) -> ShippingLog:
        self.calls.append(("get_by_id", log_id))
        self._fail("get_by_id")
        for log in self.logs:
            if log.id == log_id:
                return log
        raise NotFound("Shipping log not found")

    async def get_by_order_id(self, order_id: str) -> List[ShippingLog]:
        self.calls.append(("get_by_order_id", order_id))
        self._fail("get_by_order_id")
        return [log for log in self.logs if log.order_id == order_id]

    async def get_order_items(self, order_id: str) -> ItemizedSummary:
        self.calls.append(("get_order_items", order_id))
        self._fail("get_order_items")
        return self.order_items.get(order_id, ItemizedSummary())

    async def create(self, payload: dict) -> ShippingLog:
        self.calls.append(("create", payload.get("orderId")))
        self.payloads.append(payload)
        self._fail("create")
        log = make_log(
            log_id=f"log-{len(self.logs) + 1}",
            order_id=payload["orderId"],
            status=parse_shipping_status(payload["status"]),
            minutes=60 + len(self.logs),
            recipient=Recipient(),
        )
        self.logs.append(log)
        return log

    async def update(self, log_id: str, payload: dict) -> ShippingLog:
        self.calls.append(("update", log_id))
        self.payloads.append(payload)
        self._fail("update")
        fields = {
            "tracking_number": payload.get("trackingNumber"),
            "carrier": payload.get("carrier"),
            "notes": payload.get("notes"),
        }
        for index, log in enumerate(self.logs):
            if log.id == log_id:
                updated = log.model_copy(update={key: value for key, value in fields.items() if value is not None})
                self.logs[index] = updated
                return updated
        raise NotFound("Shipping log not found")

    async def update_status(self, log_id: str, payload: dict) -> ShippingLog:
        self.calls.append(("update_status", log_id))
        self.payloads.append(payload)
        self._fail("update_status")
        for index, log in enumerate(self.logs):
            if log.id == log_id:
                status = parse_shipping_status(payload["status"])
                updated = log.model_copy(update={"status": status, "raw_status": payload["status"]})
                self.logs[index] = updated
                return updated
        raise NotFound("Shipping log not found")

    async def delete(self, log_id: str) -> None:
        self.calls.append(("delete", log_id))
        self._fail("delete")
        self.logs = [log for log in self.logs if log.id != log_id]


class FakeNotifications(NotificationsService):
    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.sent: list[dict] = []
        self._result = result
        self._error = error

    async def send(self, message: str, reference_id: str, idempotency_key: str, user_id: Optional[str] = None) -> bool:
        self.sent.append({
            "message": message,
            "reference_id": reference_id,
            "idempotency_key": idempotency_key,
            "user_id": user_id,
        })
        if self._error is not None:
            raise self._error
        return self._result


@pytest.fixture
def orders():
    return FakeOrdersGateway(make_order())


@pytest.fixture
def shipping_logs():
    return FakeShippingLogsGateway()


@pytest.fixture
def notifications():
    return FakeNotifications()

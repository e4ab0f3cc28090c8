"""Сведение статуса заказа и статуса доставки в один статус для отображения.

У заказа и shipping log разные словари статусов. После подтверждения заказа
этапы исполнения точнее показывает shipping log, а rejected/refunded заказа
всегда побеждают.
"""
from collections.abc import Mapping
from enum import Enum
from functools import lru_cache
from typing import Any, NamedTuple, Optional, Union

from order_lifecycle.domain.models import (
    BadgeColor,
    OrderStatus,
    ShippingLog,
    ShippingStatus,
    UnifiedStatus,
)
from order_lifecycle.domain.order_status import parse_order_status
from order_lifecycle.domain.shipping_status import SIDE_BRANCHES, parse_shipping_status

TOTAL_STAGES = 7
NEGATIVE_STAGE = -1


class Audience(str, Enum):
    STAFF = "staff"
    CUSTOMER = "customer"


class _Stage(NamedTuple):
    key: str
    stage: int
    staff_text: str
    customer_text: str
    color: BadgeColor
    description: str
    terminal: bool = False


ORDER_STAGES: dict[OrderStatus, _Stage] = {
    OrderStatus.PENDING: _Stage(
        "pending", 0, "Awaiting confirmation", "Processing", BadgeColor.YELLOW,
        "Order is waiting for staff confirmation",
    ),
    OrderStatus.APPROVED: _Stage(
        "approved", 1, "Confirmed", "Confirmed", BadgeColor.BLUE,
        "Order confirmed and queued for fulfilment",
    ),
    OrderStatus.REJECTED: _Stage(
        "rejected", NEGATIVE_STAGE, "Rejected", "Rejected", BadgeColor.RED,
        "Order was rejected", terminal=True,
    ),
    OrderStatus.REFUNDED: _Stage(
        "refunded", NEGATIVE_STAGE, "Refunded", "Refunded", BadgeColor.EMERALD,
        "Payment was refunded", terminal=True,
    ),
    OrderStatus.DELIVERED: _Stage(
        "delivered", TOTAL_STAGES, "Delivered", "Delivered", BadgeColor.GREEN,
        "Order was delivered", terminal=True,
    ),
}

SHIPPING_STAGES: dict[ShippingStatus, _Stage] = {
    ShippingStatus.PENDING: _Stage(
        "awaiting_shipment", 2, "Awaiting shipment", "Confirmed", BadgeColor.BLUE,
        "Shipment record created, waiting to be processed",
    ),
    ShippingStatus.PROCESSING: _Stage(
        "processing", 3, "Preparing shipment", "Shipping", BadgeColor.BLUE,
        "Items are being packed",
    ),
    ShippingStatus.SHIPPED: _Stage(
        "shipped", 4, "Shipped", "Shipping", BadgeColor.INDIGO,
        "Parcel handed over to the carrier",
    ),
    ShippingStatus.IN_TRANSIT: _Stage(
        "in_transit", 5, "In transit", "Shipping", BadgeColor.PURPLE,
        "Parcel is on its way",
    ),
    ShippingStatus.DELIVERED: _Stage(
        "delivered", 6, "Delivered", "Delivered", BadgeColor.GREEN,
        "Parcel was delivered",
    ),
    ShippingStatus.RECEIVED: _Stage(
        "received", TOTAL_STAGES, "Received", "Delivered", BadgeColor.EMERALD,
        "Customer confirmed receipt", terminal=True,
    ),
    ShippingStatus.CANCELLED: _Stage(
        "shipment_cancelled", NEGATIVE_STAGE, "Shipment cancelled", "Cancelled", BadgeColor.GRAY,
        "Shipment was cancelled", terminal=True,
    ),
    ShippingStatus.RETURNED: _Stage(
        "returned", NEGATIVE_STAGE, "Returned", "Returned", BadgeColor.ORANGE,
        "Parcel was returned to the shop", terminal=True,
    ),
}

UNKNOWN_STAGE = _Stage("unknown", 0, "Unknown", "Unknown", BadgeColor.GRAY, "Status is not recognised")


def progress_for(stage: int) -> int:
    percent = round(stage / TOTAL_STAGES * 100)
    return max(0, min(100, percent))


def _build(definition: _Stage, source: str, audience: Audience, stage: Optional[int] = None) -> UnifiedStatus:
    ordinal = definition.stage if stage is None else stage
    return UnifiedStatus(
        key=definition.key,
        stage_ordinal=ordinal,
        display_text=definition.customer_text if audience == Audience.CUSTOMER else definition.staff_text,
        badge_color=definition.color,
        progress_percent=progress_for(ordinal),
        source=source,
        description=definition.description,
        is_terminal=definition.terminal,
    )


@lru_cache(maxsize=256)
def _reconcile(order_key: str, shipping_key: Optional[str], audience: Audience) -> UnifiedStatus:
    order_status = parse_order_status(order_key)
    if order_status is None:
        return _build(UNKNOWN_STAGE, "unknown", audience)

    order_stage = ORDER_STAGES[order_status]
    # Без отгрузки, до подтверждения или после отказа решает заказ
    if shipping_key is None or order_status in (
        OrderStatus.PENDING, OrderStatus.REJECTED, OrderStatus.REFUNDED
    ):
        return _build(order_stage, "order", audience)

    shipping_status = parse_shipping_status(shipping_key)
    if shipping_status is None:
        return _build(UNKNOWN_STAGE, "unknown", audience, stage=order_stage.stage)
    if shipping_status in SIDE_BRANCHES:
        return _build(SHIPPING_STAGES[shipping_status], "shipping", audience)

    shipping_stage = SHIPPING_STAGES[shipping_status]
    if shipping_stage.stage >= order_stage.stage:
        return _build(shipping_stage, "shipping", audience)
    return _build(order_stage, "order", audience)


def _shipping_key(shipping_log: Union[ShippingLog, Mapping, None]) -> Optional[str]:
    if shipping_log is None:
        return None
    if isinstance(shipping_log, ShippingLog):
        if shipping_log.status is not None:
            return shipping_log.status.value
        return shipping_log.raw_status
    if isinstance(shipping_log, Mapping):
        raw = shipping_log.get("status")
        return raw if isinstance(raw, str) else ""
    return ""


def _order_key(order_status: Any) -> str:
    if isinstance(order_status, OrderStatus):
        return order_status.value
    if isinstance(order_status, str):
        return order_status.strip().lower()
    return ""


def reconcile(
    order_status: Union[OrderStatus, str, None],
    shipping_log: Union[ShippingLog, Mapping, None] = None,
    audience: Audience = Audience.STAFF,
) -> UnifiedStatus:
    """Единый статус заказа.

    Чистая функция с кэшем по нормализованной паре (статус заказа, статус доставки):
    одинаковые входы дают один и тот же объект. Исключений не бросает, пустые и
    нераспознанные значения дают статус ``unknown``.
    """
    return _reconcile(_order_key(order_status), _shipping_key(shipping_log), Audience(audience))


def display_label(unified: UnifiedStatus, context: str = "badge") -> str:
    """Подпись для бейджа; в админке видно, откуда взят статус."""
    if context == "admin":
        suffix = "(Shipping)" if unified.source == "shipping" else "(Order)"
        return f"{unified.display_text} {suffix}"
    return unified.display_text

"""Нормализация разнородных ответов backend.

Бэкенд отдаёт одни и те же сущности в разной форме: ``orderId`` бывает строкой
или встроенным заказом, ``productSummary`` строкой или объектом, а данные
получателя лежат то в самом логе, то в ``customer``, то в заказе. Всё это
разбирается здесь один раз, дальше по коду ходят только канонические модели.
"""
import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from datetime import datetime
from typing import Any, Callable, Optional, Sequence
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from order_lifecycle.domain.models import (
    EmbeddedOrder,
    ItemizedSummary,
    Order,
    OrderRef,
    OrderRefId,
    OrderSnapshot,
    ProductSummary,
    Recipient,
    ShippingLog,
    SummaryItem,
    TextSummary,
)
from order_lifecycle.domain.shipping_status import parse_shipping_status

logger = logging.getLogger(__name__)

_ID_KEYS = ("id", "_id", "orderId", "orderID")
_MAX_DEPTH = 4
_datetime_adapter = TypeAdapter(datetime)

RecipientResolver = Callable[[Any, str], str]


def _field(source: Any, key: str) -> Any:
    if isinstance(source, Mapping):
        return source.get(key)
    try:
        return getattr(source, key, None)
    except Exception:
        return None


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return str(value)
    return ""


def _first_text(source: Any, keys: Sequence[str]) -> str:
    if source is None:
        return ""
    for key in keys:
        value = _text(_field(source, key))
        if value:
            return value
    return ""


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return _datetime_adapter.validate_python(value)
    except PydanticValidationError:
        logger.warning(f"Не удалось разобрать дату: {value!r}")
        return None


def resolve_order_id(value: Any, _depth: int = 0) -> str:
    """Достаёт id заказа из строки, объекта с id/_id/orderId/orderID или order.{id|_id}.

    Не бросает исключений; если ничего не нашлось, возвращает "".
    """
    if _depth > _MAX_DEPTH or value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (bytes, bool, int, float)):
        return ""
    for key in _ID_KEYS:
        candidate = _field(value, key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
        if candidate is not None and not isinstance(candidate, str):
            nested = resolve_order_id(candidate, _depth + 1)
            if nested:
                return nested
    order = _field(value, "order")
    if order is not None:
        return resolve_order_id(order, _depth + 1)
    return ""


def _snapshot(value: Any) -> Optional[OrderSnapshot]:
    order_id = resolve_order_id(value)
    if not order_id:
        return None
    return OrderSnapshot(
        id=order_id,
        status=_first_text(value, ("status",)) or None,
        total_amount=_to_decimal(_field(value, "totalAmount")),
        order_number=_first_text(value, ("orderNumber",)) or None,
        contact_name=_first_text(value, ("contactName",)) or None,
        contact_phone=_first_text(value, ("contactPhone",)) or None,
        contact_address=_first_text(value, ("contactAddress",)) or None,
    )


def parse_order_ref(value: Any) -> Optional[OrderRef]:
    """Строка → OrderRefId, объект → EmbeddedOrder. None, если id не нашёлся."""
    if isinstance(value, (OrderRefId, EmbeddedOrder)):
        return value
    if isinstance(value, str):
        return OrderRefId(id=value.strip()) if value.strip() else None
    snapshot = _snapshot(value)
    return EmbeddedOrder(snapshot=snapshot) if snapshot else None


# --- Получатель -------------------------------------------------------------

_DIRECT_KEYS = {
    "name": ("recipientName",),
    "phone": ("recipientPhone",),
    "address": ("shippingAddress",),
}

_CUSTOMER_KEYS = {
    "name": ("name", "fullName"),
    "phone": ("phone", "phoneNumber"),
    "address": ("address", "shippingAddress"),
}

_CONTACT_KEYS = {
    "name": ("contactName",),
    "phone": ("contactPhone",),
    "address": ("contactAddress",),
}

_ORDER_DIRECT_KEYS = {
    "name": ("recipientName",),
    "phone": ("recipientPhone", "phone"),
    "address": ("shippingAddress", "deliveryAddress"),
}


def _from_log_fields(log: Any, field: str) -> str:
    return _first_text(log, _DIRECT_KEYS[field])


def _from_customer(source: Any, field: str) -> str:
    for key in ("customer", "customerInfo"):
        value = _first_text(_field(source, key), _CUSTOMER_KEYS[field])
        if value:
            return value
    return ""


_ORDER_CUSTOMER_KEYS = {
    "name": ("fullName", "name"),
    "phone": ("phone", "phoneNumber"),
    "address": ("address", "shippingAddress"),
}


def _from_order_customer(order: Any, field: str) -> str:
    """Покупатель заказа: ``customer`` или встроенный пользователь из ``userId``."""
    for key in ("customer", "userId"):
        customer = _field(order, key)
        if customer is None or isinstance(customer, str):
            continue
        value = _first_text(customer, _ORDER_CUSTOMER_KEYS[field])
        if not value and field == "name":
            value = " ".join(
                part for part in (_text(_field(customer, "firstName")), _text(_field(customer, "lastName"))) if part
            )
        if value:
            return value
    return ""


def _from_embedded_order_contact(log: Any, field: str) -> str:
    for key in ("order", "orderId"):
        embedded = _field(log, key)
        if embedded is not None and not isinstance(embedded, str):
            value = _first_text(embedded, _CONTACT_KEYS[field])
            if value:
                return value
    return ""


def _from_order_fields(order: Any, field: str) -> str:
    return _first_text(order, _ORDER_DIRECT_KEYS[field])


def _from_order_contact(order: Any, field: str) -> str:
    return _first_text(order, _CONTACT_KEYS[field])


# Порядок резолверов задаёт приоритет источников
SHIPPING_LOG_RECIPIENT_RESOLVERS: tuple[RecipientResolver, ...] = (
    _from_log_fields,
    _from_customer,
    _from_embedded_order_contact,
)

ORDER_RECIPIENT_RESOLVERS: tuple[RecipientResolver, ...] = (
    _from_order_fields,
    _from_order_customer,
    _from_order_contact,
)


def _resolve_with(source: Any, resolvers: Sequence[RecipientResolver]) -> Recipient:
    values = {}
    for field in ("name", "phone", "address"):
        values[field] = ""
        for resolver in resolvers:
            value = resolver(source, field)
            if value:
                values[field] = value
                break
    return Recipient(**values)


def resolve_recipient(shipping_log: Any) -> Recipient:
    if isinstance(shipping_log, ShippingLog):
        return shipping_log.recipient
    return _resolve_with(shipping_log, SHIPPING_LOG_RECIPIENT_RESOLVERS)


def resolve_order_recipient(order: Any) -> Recipient:
    if isinstance(order, Order):
        order = order.model_dump(by_alias=True)
    return _resolve_with(order, ORDER_RECIPIENT_RESOLVERS)


# --- Состав отправления -----------------------------------------------------

def _summary_items(raw_items: Any) -> tuple[SummaryItem, ...]:
    if not isinstance(raw_items, (list, tuple)):
        return ()
    items = []
    for raw in raw_items:
        if raw is None or isinstance(raw, str):
            continue
        items.append(SummaryItem(
            product_id=_first_text(raw, ("productId", "id", "_id")) or None,
            product_name=_first_text(raw, ("productName", "name")) or None,
            quantity=_to_int(_field(raw, "quantity")) or 0,
            price=_to_decimal(_field(raw, "price")),
        ))
    return tuple(items)


def _itemized(items: tuple[SummaryItem, ...], count: Any, total_quantity: Any) -> ItemizedSummary:
    resolved_count = _to_int(count)
    resolved_quantity = _to_int(total_quantity)
    return ItemizedSummary(
        count=resolved_count if resolved_count is not None else len(items),
        total_quantity=(
            resolved_quantity if resolved_quantity is not None
            else sum(item.quantity for item in items)
        ),
        items=items,
    )


def resolve_product_summary(shipping_log: Any) -> Optional[ProductSummary]:
    """Строка показывается как есть; у объекта недостающие поля берутся из itemCount/totalQuantity лога."""
    if isinstance(shipping_log, ShippingLog):
        return shipping_log.product_summary

    summary = _field(shipping_log, "productSummary")
    log_count = _field(shipping_log, "itemCount")
    log_quantity = _field(shipping_log, "totalQuantity")

    if isinstance(summary, str) and summary:
        return TextSummary(text=summary)
    if summary is not None and not isinstance(summary, str):
        count = _field(summary, "count")
        quantity = _field(summary, "totalQuantity")
        return _itemized(
            _summary_items(_field(summary, "items")),
            count if count is not None else log_count,
            quantity if quantity is not None else log_quantity,
        )

    items = _summary_items(_field(shipping_log, "items"))
    if items or log_count is not None or log_quantity is not None:
        return _itemized(items, log_count, log_quantity)
    return None


def parse_order_items(raw: Any) -> ItemizedSummary:
    """Ответ ``/shipping-logs/order-items``: {items, count, totalQuantity}; мусор → пустой состав."""
    return _itemized(_summary_items(_field(raw, "items")), _field(raw, "count"), _field(raw, "totalQuantity"))


def summarize_items(items: Sequence[Any], limit: int = 3) -> str:
    """Первые ``limit`` позиций заказа: '2x Serum, 1x Sunscreen...'"""
    parts = []
    for item in items[:limit]:
        quantity = _to_int(_field(item, "quantity")) or 1
        name = (
            _first_text(item, ("product_name", "productName", "name"))
            or "Product"
        )
        parts.append(f"{quantity}x {name}")
    text = ", ".join(parts)
    if len(items) > limit:
        text += "..."
    return text


# --- Shipping log -----------------------------------------------------------

def parse_shipping_log(raw: Any) -> Optional[ShippingLog]:
    """Сырой payload → ShippingLog. None для не-объектов и объектов без id и статуса."""
    if isinstance(raw, ShippingLog):
        return raw
    if raw is None or isinstance(raw, (str, bytes, int, float, bool, list, tuple)):
        return None

    order_ref = parse_order_ref(_field(raw, "orderId"))
    embedded = _field(raw, "order")
    if embedded is not None and not isinstance(embedded, str):
        snapshot = _snapshot(embedded)
        if snapshot and (order_ref is None or (isinstance(order_ref, OrderRefId) and order_ref.id == snapshot.id)):
            order_ref = EmbeddedOrder(snapshot=snapshot)
        elif order_ref is None:
            order_ref = parse_order_ref(embedded)

    raw_status = _text(_field(raw, "status"))
    log_id = _first_text(raw, ("id", "_id"))
    if not log_id and not raw_status:
        # Например, конверт ошибки {"success": false, "message": ...}
        return None
    return ShippingLog(
        id=log_id,
        order_ref=order_ref,
        status=parse_shipping_status(raw_status),
        raw_status=raw_status,
        tracking_number=_first_text(raw, ("trackingNumber",)) or None,
        carrier=_first_text(raw, ("carrier",)) or None,
        current_location=_first_text(raw, ("currentLocation",)) or None,
        notes=_first_text(raw, ("notes",)) or None,
        recipient=resolve_recipient(raw),
        product_summary=resolve_product_summary(raw),
        total_amount=_to_decimal(_field(raw, "totalAmount")),
        estimated_delivery=_to_datetime(_field(raw, "estimatedDelivery")),
        actual_delivery=_to_datetime(_field(raw, "actualDelivery")),
        created_at=_to_datetime(_field(raw, "createdAt")),
        updated_at=_to_datetime(_field(raw, "updatedAt")),
    )


def parse_shipping_logs(raw_items: Sequence[Any]) -> list[ShippingLog]:
    logs = []
    for raw in raw_items:
        log = parse_shipping_log(raw)
        if log is None:
            logger.warning(f"Пропущен shipping log неожиданного формата: {raw!r}")
            continue
        logs.append(log)
    return logs

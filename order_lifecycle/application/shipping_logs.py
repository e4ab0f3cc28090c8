import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel

from order_lifecycle.domain.models import (
    EmbeddedOrder,
    ItemizedSummary,
    Order,
    OrderRefId,
    OrderSnapshot,
    Recipient,
    ShippingLog,
    ShippingStatus,
    TextSummary,
)
from order_lifecycle.domain.exceptions import BackendError, InvalidTransition, NotFound, ValidationError
from order_lifecycle.domain.normalization import resolve_order_recipient, summarize_items
from order_lifecycle.domain.shipping_history import ShippingHistory
from order_lifecycle.domain.shipping_status import marks_delivery, parse_shipping_status
from order_lifecycle.application.interfaces import OrdersGateway, ShippingLogsGateway

logger = logging.getLogger(__name__)

DEFAULT_RECIPIENT_NAME = "Customer"
DEFAULT_RECIPIENT_PHONE = "Phone not provided"
DEFAULT_SHIPPING_ADDRESS = "Address not provided"


class CreateShippingLogDTO(BaseModel):
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    shipping_address: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    current_location: Optional[str] = None
    notes: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class UpdateShippingStatusDTO(BaseModel):
    status: str
    current_location: Optional[str] = None
    notes: Optional[str] = None
    actual_delivery: Optional[datetime] = None


class UpdateShippingLogDTO(BaseModel):
    """Правка реквизитов отгрузки; статус меняется только через UpdateShippingStatusUseCase"""
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    current_location: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


def _json_amount(amount: Decimal) -> int | float:
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _parse_status(value: Optional[str], default: ShippingStatus) -> ShippingStatus:
    if value is None or not value.strip():
        return default
    status = parse_shipping_status(value)
    if status is None:
        allowed = ", ".join(s.value for s in ShippingStatus)
        raise ValidationError(f"Unknown shipping status '{value}'. Allowed: {allowed}", field="status")
    return status


def _with_order_details(log: ShippingLog, order: Order, recipient: Recipient) -> ShippingLog:
    """Дополняет ответ backend тем, что мы уже знаем о заказе."""
    updates: dict[str, Any] = {}
    if not any((log.recipient.name, log.recipient.phone, log.recipient.address)):
        updates["recipient"] = recipient
    if log.product_summary is None and order.items:
        updates["product_summary"] = TextSummary(text=summarize_items(order.items))
    if not log.order_id:
        updates["order_ref"] = OrderRefId(id=order.id)
    return log.model_copy(update=updates) if updates else log


def _with_order(log: ShippingLog, order: Order) -> ShippingLog:
    """Встраивает снимок заказа и добирает пустые поля получателя из заказа."""
    found = resolve_order_recipient(order)
    updates: dict[str, Any] = {
        "order_ref": EmbeddedOrder(snapshot=OrderSnapshot(
            id=order.id,
            status=order.status_text,
            total_amount=order.total_amount,
            contact_name=order.contact_name,
            contact_phone=order.contact_phone,
            contact_address=order.contact_address,
        )),
        "recipient": Recipient(
            name=log.recipient.name or found.name,
            phone=log.recipient.phone or found.phone,
            address=log.recipient.address or found.address,
        ),
    }
    if log.total_amount is None:
        updates["total_amount"] = order.total_amount
    if log.product_summary is None and order.items:
        updates["product_summary"] = TextSummary(text=summarize_items(order.items))
    return log.model_copy(update=updates)


def _ensure_shippable(order: Order) -> None:
    if not order.can_be_shipped():
        raise InvalidTransition(
            order.status_text, "shipment",
            f"Shipping logs can only be created for approved orders (order is '{order.status_text}')",
        )


class ProvisionShipmentUseCase:
    """Создание shipping log из только что подтверждённого заказа."""

    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(self, order: Order) -> ShippingLog:
        _ensure_shippable(order)

        found = resolve_order_recipient(order)
        recipient = Recipient(
            name=found.name or DEFAULT_RECIPIENT_NAME,
            phone=found.phone or DEFAULT_RECIPIENT_PHONE,
            address=found.address or DEFAULT_SHIPPING_ADDRESS,
        )
        payload = {
            "orderId": order.id,
            "status": ShippingStatus.PROCESSING.value,
            "totalAmount": _json_amount(order.total_amount),
            "shippingAddress": recipient.address,
            "recipientName": recipient.name,
            "recipientPhone": recipient.phone,
            "notes": f"Automatically created shipping log for approved order {order.id}",
        }
        logger.info(f"Создание shipping log для подтверждённого заказа {order.id}")
        log = await self._shipping_logs.create(payload)
        logger.info(f"Shipping log {log.id} создан для заказа {order.id}")
        return _with_order_details(log, order, recipient)


class CreateShippingLogUseCase:
    """Ручное создание отгрузки сотрудником. До подтверждения заказа запрещено."""

    def __init__(self, orders: OrdersGateway, shipping_logs: ShippingLogsGateway):
        self._orders = orders
        self._shipping_logs = shipping_logs

    async def __call__(self, order_id: str, dto: CreateShippingLogDTO) -> ShippingLog:
        order = await self._orders.get_order(order_id)
        _ensure_shippable(order)
        status = _parse_status(dto.status, ShippingStatus.PENDING)
        found = resolve_order_recipient(order)
        recipient = Recipient(
            name=dto.recipient_name or found.name or DEFAULT_RECIPIENT_NAME,
            phone=dto.recipient_phone or found.phone or DEFAULT_RECIPIENT_PHONE,
            address=dto.shipping_address or found.address or DEFAULT_SHIPPING_ADDRESS,
        )
        payload: dict[str, Any] = {
            "orderId": order.id,
            "status": status.value,
            "totalAmount": _json_amount(order.total_amount),
            "shippingAddress": recipient.address,
            "recipientName": recipient.name,
            "recipientPhone": recipient.phone,
        }
        optional = {
            "trackingNumber": dto.tracking_number,
            "carrier": dto.carrier,
            "currentLocation": dto.current_location,
            "notes": dto.notes,
            "estimatedDelivery": dto.estimated_delivery.isoformat() if dto.estimated_delivery else None,
        }
        payload.update({key: value for key, value in optional.items() if value})

        log = await self._shipping_logs.create(payload)
        logger.info(f"Shipping log {log.id} создан вручную для заказа {order.id}")
        return _with_order_details(log, order, recipient)


class UpdateShippingStatusUseCase:
    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(self, log_id: str, dto: UpdateShippingStatusDTO) -> ShippingLog:
        if not log_id or not log_id.strip():
            raise ValidationError("Invalid shipping log ID", field="id")
        if not dto.status.strip():
            raise ValidationError("Shipping status is required", field="status")
        status = _parse_status(dto.status, ShippingStatus.PENDING)

        payload: dict[str, Any] = {"status": status.value}
        if dto.current_location:
            payload["currentLocation"] = dto.current_location
        if dto.notes:
            payload["notes"] = dto.notes
        if marks_delivery(status):
            delivered_at = dto.actual_delivery or datetime.now(timezone.utc)
            payload["actualDelivery"] = delivered_at.isoformat()
        elif dto.actual_delivery is not None:
            raise ValidationError(
                "actualDelivery can only be set once the shipment is Delivered or Received",
                field="actual_delivery",
            )

        log = await self._shipping_logs.update_status(log_id.strip(), payload)
        logger.info(f"Статус shipping log {log_id} обновлён: {status.value}")
        return log


class UpdateShippingLogUseCase:
    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(self, log_id: str, dto: UpdateShippingLogDTO) -> ShippingLog:
        if not log_id or not log_id.strip():
            raise ValidationError("Invalid shipping log ID", field="id")
        fields = {
            "trackingNumber": dto.tracking_number,
            "carrier": dto.carrier,
            "currentLocation": dto.current_location,
            "notes": dto.notes,
            "shippingAddress": dto.shipping_address,
            "recipientName": dto.recipient_name,
            "recipientPhone": dto.recipient_phone,
            "estimatedDelivery": dto.estimated_delivery.isoformat() if dto.estimated_delivery else None,
        }
        payload = {key: value for key, value in fields.items() if value is not None}
        if not payload:
            raise ValidationError("Nothing to update")

        log = await self._shipping_logs.update(log_id.strip(), payload)
        logger.info(f"Shipping log {log_id} обновлён: {', '.join(payload)}")
        return log


class GetShippingLogUseCase:
    """Один shipping log. Если backend не встроил заказ, подтягиваем его сами."""

    def __init__(self, orders: OrdersGateway, shipping_logs: ShippingLogsGateway):
        self._orders = orders
        self._shipping_logs = shipping_logs

    async def __call__(self, log_id: str) -> ShippingLog:
        if not log_id or not log_id.strip():
            raise ValidationError("Invalid shipping log ID", field="id")
        log = await self._shipping_logs.get_by_id(log_id.strip())
        if not isinstance(log.order_ref, OrderRefId) or not log.order_id:
            return log

        try:
            order = await self._orders.get_order(log.order_id)
        except (NotFound, BackendError) as e:
            # Лог показываем и без заказа
            logger.warning(f"Не удалось получить заказ {log.order_id} для shipping log {log.id}: {e}")
            return log
        return _with_order(log, order)


class GetOrderItemsUseCase:
    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(self, order_id: str) -> ItemizedSummary:
        if not order_id or not order_id.strip():
            raise ValidationError("Invalid order ID", field="order_id")
        return await self._shipping_logs.get_order_items(order_id.strip())


class DeleteShippingLogUseCase:
    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(self, log_id: str) -> None:
        if not log_id or not log_id.strip():
            raise ValidationError("Invalid shipping log ID", field="id")
        await self._shipping_logs.delete(log_id.strip())
        logger.info(f"Shipping log {log_id} удалён")


class GetShippingHistoryUseCase:
    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(self, order_id: str) -> ShippingHistory:
        if not order_id or not order_id.strip():
            return ShippingHistory(order_id="")
        logs = await self._shipping_logs.get_by_order_id(order_id.strip())
        return ShippingHistory.from_logs(order_id.strip(), logs)


class ListShippingLogsUseCase:
    """Список отгрузок для back-office с фильтрами backend."""

    def __init__(self, shipping_logs: ShippingLogsGateway):
        self._shipping_logs = shipping_logs

    async def __call__(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[ShippingLog]:
        params: dict[str, Any] = {}
        if status and status.strip():
            params["status"] = _parse_status(status, ShippingStatus.PENDING).value
        if search and search.strip():
            params["search"] = search.strip()
        if page is not None:
            params["page"] = page
        if limit is not None:
            params["limit"] = limit
        return await self._shipping_logs.list(params or None)

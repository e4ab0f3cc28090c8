from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional

from order_lifecycle.domain.models import (
    BadgeColor,
    EmbeddedOrder,
    ItemizedSummary,
    OrderSnapshot,
    OrderStatus,
    ProductSummary,
    Recipient,
    ShippingLog,
    SummaryItem,
    UnifiedStatus,
)
from order_lifecycle.domain.reconciliation import display_label
from order_lifecycle.domain.shipping_history import ShippingHistory
from order_lifecycle.domain.shipping_status import next_shipping_statuses
from order_lifecycle.application.order_state import OrderState
from order_lifecycle.application.change_status import TransitionOutcome


class ChangeStatusRequest(BaseModel):
    status: str
    rejection_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    note: Optional[str] = None


class CreateShippingLogRequest(BaseModel):
    status: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    shipping_address: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    current_location: Optional[str] = None
    notes: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class UpdateShippingStatusRequest(BaseModel):
    status: str
    current_location: Optional[str] = None
    notes: Optional[str] = None
    actual_delivery: Optional[datetime] = None


class UpdateShippingLogRequest(BaseModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    current_location: Optional[str] = None
    notes: Optional[str] = None
    shipping_address: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


class OrderItemsResponse(BaseModel):
    order_id: str
    count: int
    total_quantity: int
    items: list[SummaryItem]

    @classmethod
    def from_domain(cls, order_id: str, summary: ItemizedSummary):
        return cls(
            order_id=order_id,
            count=summary.count,
            total_quantity=summary.total_quantity,
            items=list(summary.items),
        )


class UnifiedStatusResponse(BaseModel):
    key: str
    stage_ordinal: int
    display_text: str
    admin_label: str
    badge_color: BadgeColor
    progress_percent: int
    source: str
    description: str
    is_terminal: bool

    @classmethod
    def from_domain(cls, unified: UnifiedStatus):
        return cls(
            key=unified.key,
            stage_ordinal=unified.stage_ordinal,
            display_text=unified.display_text,
            admin_label=display_label(unified, "admin"),
            badge_color=unified.badge_color,
            progress_percent=unified.progress_percent,
            source=unified.source,
            description=unified.description,
            is_terminal=unified.is_terminal,
        )


class ShippingLogResponse(BaseModel):
    id: str
    order_id: str
    order: Optional[OrderSnapshot] = None
    status: Optional[str] = None
    raw_status: str
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    current_location: Optional[str] = None
    notes: Optional[str] = None
    recipient: Recipient
    product_summary: Optional[ProductSummary] = None
    product_summary_text: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    next_statuses: list[str]

    @classmethod
    def from_domain(cls, log: ShippingLog):
        return cls(
            id=log.id,
            order_id=log.order_id,
            order=log.order_ref.snapshot if isinstance(log.order_ref, EmbeddedOrder) else None,
            status=log.status.value if log.status else None,
            raw_status=log.raw_status,
            tracking_number=log.tracking_number,
            carrier=log.carrier,
            current_location=log.current_location,
            notes=log.notes,
            recipient=log.recipient,
            product_summary=log.product_summary,
            product_summary_text=log.product_summary.display() if log.product_summary else None,
            estimated_delivery=log.estimated_delivery,
            actual_delivery=log.actual_delivery,
            updated_at=log.updated_at,
            next_statuses=[status.value for status in next_shipping_statuses(log.status)],
        )


class ShippingHistoryResponse(BaseModel):
    order_id: str
    current: Optional[ShippingLogResponse] = None
    logs: list[ShippingLogResponse]

    @classmethod
    def from_domain(cls, history: ShippingHistory):
        logs = [ShippingLogResponse.from_domain(log) for log in history.logs]
        return cls(order_id=history.order_id, current=logs[-1] if logs else None, logs=logs)


class OrderStatusResponse(BaseModel):
    id: str
    status: str
    total_amount: Decimal
    rejection_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    updated_at: Optional[datetime] = None
    unified_status: UnifiedStatusResponse
    customer_status: UnifiedStatusResponse
    shipping_log: Optional[ShippingLogResponse] = None
    available_transitions: list[OrderStatus]

    @classmethod
    def from_domain(cls, state: OrderState):
        order = state.order
        return cls(
            id=order.id,
            status=order.status_text,
            total_amount=order.total_amount,
            rejection_reason=order.rejection_reason,
            refund_reason=order.refund_reason,
            updated_at=order.updated_at,
            unified_status=UnifiedStatusResponse.from_domain(state.unified_status),
            customer_status=UnifiedStatusResponse.from_domain(state.customer_status()),
            shipping_log=ShippingLogResponse.from_domain(state.shipping_log) if state.shipping_log else None,
            available_transitions=state.available_transitions(),
        )


class TransitionResponse(BaseModel):
    changed: bool
    message: str
    warnings: list[str]
    order: OrderStatusResponse

    @classmethod
    def from_domain(cls, outcome: TransitionOutcome):
        return cls(
            changed=outcome.changed,
            message=outcome.message,
            warnings=[str(warning) for warning in outcome.warnings],
            order=OrderStatusResponse.from_domain(outcome.state),
        )


class ErrorResponse(BaseModel):
    detail: str

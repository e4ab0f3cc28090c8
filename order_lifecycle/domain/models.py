from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    DELIVERED = "delivered"


class ShippingStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    RECEIVED = "Received"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class BadgeColor(str, Enum):
    YELLOW = "yellow"
    BLUE = "blue"
    INDIGO = "indigo"
    PURPLE = "purple"
    GREEN = "green"
    EMERALD = "emerald"
    RED = "red"
    ORANGE = "orange"
    GRAY = "gray"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderItem(BaseModel):
    """Value Object — позиция заказа"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_id: str = Field(alias="productId")
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    product_name: Optional[str] = Field(default=None, alias="productName")


class Order(BaseModel):
    """Domain Entity — заказ, как его отдаёт backend"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    # None: backend прислал статус, которого мы не знаем (исходное значение в raw_status)
    status: Optional[OrderStatus] = None
    raw_status: str = ""
    total_amount: Decimal = Field(default=Decimal("0"), ge=0, alias="totalAmount")
    items: list[OrderItem] = Field(default_factory=list)
    user_id: Optional[str] = Field(default=None, alias="userId")
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")
    refund_reason: Optional[str] = Field(default=None, alias="refundReason")
    notes: Optional[str] = None
    processed_by: Optional[str] = Field(default=None, alias="processedBy")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    # Контакты для создания отгрузки
    recipient_name: Optional[str] = Field(default=None, alias="recipientName")
    recipient_phone: Optional[str] = Field(default=None, alias="recipientPhone")
    shipping_address: Optional[str] = Field(default=None, alias="shippingAddress")
    delivery_address: Optional[str] = Field(default=None, alias="deliveryAddress")
    phone: Optional[str] = None
    contact_name: Optional[str] = Field(default=None, alias="contactName")
    contact_phone: Optional[str] = Field(default=None, alias="contactPhone")
    contact_address: Optional[str] = Field(default=None, alias="contactAddress")
    customer: Optional[dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _tolerant_status(cls, data: Any) -> Any:
        if not isinstance(data, dict) or isinstance(data.get("status"), OrderStatus):
            return data
        raw = data.get("status")
        raw_status = raw.strip() if isinstance(raw, str) else ""
        status = next((s for s in OrderStatus if s.value == raw_status.lower()), None)
        return {**data, "status": status, "raw_status": raw_status}

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_tz(cls, value):
        return _as_utc(value)

    @property
    def status_text(self) -> str:
        if self.status is not None:
            return self.status.value
        return self.raw_status or "unknown"

    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.REJECTED, OrderStatus.REFUNDED, OrderStatus.DELIVERED)

    def can_be_refunded(self) -> bool:
        """Бизнес-правило: вернуть деньги можно только за отклонённый заказ"""
        return self.status == OrderStatus.REJECTED

    def can_be_shipped(self) -> bool:
        """Бизнес-правило: отгрузку создаём только для подтверждённого заказа"""
        return self.status in (OrderStatus.APPROVED, OrderStatus.DELIVERED)


class OrderSnapshot(BaseModel):
    """Value Object — снимок заказа, встроенный в shipping log"""
    model_config = ConfigDict(frozen=True)

    id: str
    status: Optional[str] = None
    total_amount: Optional[Decimal] = None
    order_number: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_address: Optional[str] = None


class OrderRefId(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["id"] = "id"
    id: str


class EmbeddedOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["embedded"] = "embedded"
    snapshot: OrderSnapshot

    @property
    def id(self) -> str:
        return self.snapshot.id


OrderRef = Union[OrderRefId, EmbeddedOrder]


class Recipient(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    phone: str = ""
    address: str = ""


class SummaryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: Optional[str] = None
    product_name: Optional[str] = None
    quantity: int = 0
    price: Optional[Decimal] = None


class TextSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str

    def display(self) -> str:
        return self.text


class ItemizedSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["itemized"] = "itemized"
    count: int = 0
    total_quantity: int = 0
    items: tuple[SummaryItem, ...] = ()

    def display(self) -> str:
        return f"{self.count} items ({self.total_quantity} pcs)"


ProductSummary = Union[TextSummary, ItemizedSummary]


class ShippingLog(BaseModel):
    """Domain Entity — запись о физической доставке заказа"""
    model_config = ConfigDict(frozen=True)

    id: str
    order_ref: Optional[OrderRef] = None
    status: Optional[ShippingStatus] = None
    raw_status: str = ""
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    current_location: Optional[str] = None
    notes: Optional[str] = None
    recipient: Recipient = Recipient()
    product_summary: Optional[ProductSummary] = None
    total_amount: Optional[Decimal] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("estimated_delivery", "actual_delivery", "created_at", "updated_at")
    @classmethod
    def _normalize_tz(cls, value):
        return _as_utc(value)

    @property
    def order_id(self) -> str:
        return self.order_ref.id if self.order_ref else ""


class UnifiedStatus(BaseModel):
    """Value Object — единый статус для клиента (заказ + текущая доставка)"""
    model_config = ConfigDict(frozen=True)

    key: str
    stage_ordinal: int
    display_text: str
    badge_color: BadgeColor
    progress_percent: int = Field(ge=0, le=100)
    source: Literal["order", "shipping", "unknown"]
    description: str = ""
    is_terminal: bool = False

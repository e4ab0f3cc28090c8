from abc import ABC, abstractmethod
from typing import Any, Optional, List

from order_lifecycle.domain.models import ItemizedSummary, Order, OrderStatus, ShippingLog


class OrdersGateway(ABC):
    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        pass

    @abstractmethod
    async def update_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        pass

    @abstractmethod
    async def reject(self, order_id: str, rejection_reason: str, note: Optional[str] = None) -> Optional[Order]:
        pass

    @abstractmethod
    async def refund(self, order_id: str, refund_reason: Optional[str] = None, note: Optional[str] = None) -> Optional[Order]:
        pass


class ShippingLogsGateway(ABC):
    @abstractmethod
    async def list(self, params: Optional[dict[str, Any]] = None) -> List[ShippingLog]:
        pass

    @abstractmethod
    async def get_by_id(self, log_id: str) -> ShippingLog:
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> List[ShippingLog]:
        pass

    @abstractmethod
    async def get_order_items(self, order_id: str) -> ItemizedSummary:
        pass

    @abstractmethod
    async def create(self, payload: dict) -> ShippingLog:
        pass

    @abstractmethod
    async def update(self, log_id: str, payload: dict) -> ShippingLog:
        pass

    @abstractmethod
    async def update_status(self, log_id: str, payload: dict) -> ShippingLog:
        pass

    @abstractmethod
    async def delete(self, log_id: str) -> None:
        pass


class NotificationsService(ABC):
    @abstractmethod
    async def send(self, message: str, reference_id: str, idempotency_key: str, user_id: Optional[str]) -> bool:
        pass

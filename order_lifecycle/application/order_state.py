import logging
from contextlib import asynccontextmanager
from typing import Optional
from pydantic import BaseModel, ConfigDict

from order_lifecycle.domain.models import Order, OrderStatus, ShippingLog, UnifiedStatus
from order_lifecycle.domain.order_status import available_transitions
from order_lifecycle.domain.reconciliation import Audience, reconcile
from order_lifecycle.domain.shipping_history import ShippingHistory
from order_lifecycle.domain.exceptions import TransitionInProgress
from order_lifecycle.application.interfaces import OrdersGateway, ShippingLogsGateway

logger = logging.getLogger(__name__)


class OrderState(BaseModel):
    """Value Object — последнее известное состояние заказа и его отгрузок"""
    model_config = ConfigDict(frozen=True)

    order: Order
    shipping: ShippingHistory
    unified_status: UnifiedStatus

    @classmethod
    def build(cls, order: Order, shipping: Optional[ShippingHistory] = None) -> "OrderState":
        shipping = shipping or ShippingHistory(order_id=order.id)
        return cls(
            order=order,
            shipping=shipping,
            unified_status=reconcile(order.status, shipping.current),
        )

    @property
    def shipping_log(self) -> Optional[ShippingLog]:
        return self.shipping.current

    def customer_status(self) -> UnifiedStatus:
        return reconcile(self.order.status, self.shipping.current, Audience.CUSTOMER)

    def available_transitions(self) -> list[OrderStatus]:
        return available_transitions(self.order.status)


class OrderTracker:
    """Состояние одного заказа и флаг занятости на время смены статуса.

    Состояние заменяется только целиком и только после завершения запроса.
    """

    def __init__(self, state: OrderState):
        self._state = state
        self._busy = False

    @property
    def order_id(self) -> str:
        return self._state.order.id

    @property
    def state(self) -> OrderState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @asynccontextmanager
    async def in_flight(self):
        if self._busy:
            raise TransitionInProgress(self.order_id)
        self._busy = True
        try:
            yield self
        finally:
            self._busy = False

    def commit(self, state: OrderState) -> None:
        if state.order.id != self.order_id:
            raise ValueError(f"State for order {state.order.id} committed to tracker {self.order_id}")
        self._state = state


class LoadOrderStateUseCase:
    def __init__(self, orders: OrdersGateway, shipping_logs: ShippingLogsGateway):
        self._orders = orders
        self._shipping_logs = shipping_logs

    async def __call__(self, order_id: str) -> OrderState:
        order = await self._orders.get_order(order_id)
        logs = await self._shipping_logs.get_by_order_id(order.id)
        logger.info(f"Загружен заказ {order.id} ({order.status_text}), отгрузок: {len(logs)}")
        return OrderState.build(order, ShippingHistory.from_logs(order.id, logs))


class OrderTrackerRegistry:
    """Трекеры заказов, с которыми сейчас работают запросы.

    Трекер живёт, пока его держит хотя бы один запрос, и удаляется после
    последнего: на каждый заказ, который когда-либо открывали, память не тратится.
    """

    def __init__(self):
        self._trackers: dict[str, OrderTracker] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._trackers)

    @asynccontextmanager
    async def open(self, order_id: str, loader: LoadOrderStateUseCase):
        """Трекер заказа на время запроса; параллельные запросы получают один и тот же трекер."""
        self._holders[order_id] = self._holders.get(order_id, 0) + 1
        try:
            yield await self._load(order_id, loader)
        finally:
            self._holders[order_id] -= 1
            if not self._holders[order_id]:
                del self._holders[order_id]
                self._trackers.pop(order_id, None)

    async def _load(self, order_id: str, loader: LoadOrderStateUseCase) -> OrderTracker:
        tracker = self._trackers.get(order_id)
        if tracker is not None and tracker.busy:
            return tracker
        state = await loader(order_id)
        # Пока грузили, трекер мог создать или занять другой запрос
        tracker = self._trackers.get(order_id)
        if tracker is None:
            tracker = OrderTracker(state)
            self._trackers[order_id] = tracker
        elif not tracker.busy:
            tracker.commit(state)
        return tracker

    def peek(self, order_id: str) -> Optional[OrderTracker]:
        return self._trackers.get(order_id)

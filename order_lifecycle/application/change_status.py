import logging
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from order_lifecycle.domain.models import Order, OrderStatus, ShippingLog
from order_lifecycle.domain.order_status import ensure_transition, parse_order_status
from order_lifecycle.domain.exceptions import (
    Conflict,
    DomainException,
    InvalidTransition,
    PreconditionFailed,
    ReasonRequired,
    SecondaryEffectFailure,
    ValidationError,
)
from order_lifecycle.application.interfaces import NotificationsService, OrdersGateway
from order_lifecycle.application.order_state import OrderState, OrderTracker
from order_lifecycle.application.result import Err, Ok, Result
from order_lifecycle.application.shipping_logs import ProvisionShipmentUseCase

logger = logging.getLogger(__name__)

REFUND_CONFLICT_MESSAGE = "Order is no longer rejected, so it cannot be refunded. Reload the order and try again."

NOTIFICATION_MESSAGES = {
    OrderStatus.APPROVED: "Your order has been confirmed and is being prepared for shipping",
    OrderStatus.REJECTED: "Your order has been rejected. Reason: {reason}",
    OrderStatus.REFUNDED: "Your payment for the order has been refunded",
}


class TransitionContext(BaseModel):
    rejection_reason: Optional[str] = None
    refund_reason: Optional[str] = None
    note: Optional[str] = None


class TransitionOutcome(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: OrderState
    changed: bool
    shipping_log: Optional[ShippingLog] = None
    warnings: list[SecondaryEffectFailure] = Field(default_factory=list)
    message: str = ""


class ChangeOrderStatusUseCase:
    """Смена статуса заказа со всеми побочными эффектами.

    Заказ обновляется до любых действий с shipping logs. Если после подтверждения
    не удалось создать отгрузку, подтверждение не откатывается: ошибка попадает
    в warnings результата.
    """

    def __init__(
        self,
        orders: OrdersGateway,
        provision_shipment: ProvisionShipmentUseCase,
        notifications: Optional[NotificationsService] = None,
    ):
        self._orders = orders
        self._provision_shipment = provision_shipment
        self._notifications = notifications

    async def __call__(
        self,
        tracker: OrderTracker,
        requested_status,
        context: Optional[TransitionContext] = None,
    ) -> TransitionOutcome:
        context = context or TransitionContext()
        requested = parse_order_status(requested_status)
        if requested is None:
            raise ValidationError(f"Unknown order status '{requested_status}'", field="status")

        # 1. Локальные проверки, без сетевых вызовов
        current = tracker.state.order.status
        ensure_transition(current, requested, tracker.state.order.raw_status)
        if requested == current:
            logger.info(f"Заказ {tracker.order_id} уже в статусе {current.value}, запрос пропущен")
            return TransitionOutcome(
                state=tracker.state,
                changed=False,
                shipping_log=tracker.state.shipping_log,
                message=f"Order is already {current.value}",
            )
        if requested == OrderStatus.REJECTED and not (context.rejection_reason or "").strip():
            raise ReasonRequired()

        async with tracker.in_flight():
            # 2. Обновление заказа
            order_result = await self._update_order(tracker, requested, context)
            if isinstance(order_result, Err):
                raise self._translate(order_result.error, current, requested)
            order = order_result.value
            logger.info(f"Заказ {order.id}: {current.value} -> {order.status_text}")

            # 3. Отгрузка только после успешного подтверждения
            shipping_result = None
            if requested == OrderStatus.APPROVED:
                shipping_result = await self._provision(order)

            outcome = self._classify(tracker.state, order, shipping_result)
            tracker.commit(outcome.state)

        await self._notify(order, requested, context)
        return outcome

    async def _update_order(
        self, tracker: OrderTracker, requested: OrderStatus, context: TransitionContext
    ) -> Result[Order, DomainException]:
        order_id = tracker.order_id
        try:
            if requested == OrderStatus.REJECTED:
                updated = await self._orders.reject(order_id, context.rejection_reason.strip(), context.note)
            elif requested == OrderStatus.REFUNDED:
                updated = await self._orders.refund(order_id, context.refund_reason, context.note)
            else:
                updated = await self._orders.update_status(order_id, requested)
        except DomainException as e:
            logger.error(f"Ошибка смены статуса заказа {order_id} на {requested.value}: {e}")
            return Err(e)

        if updated is None:
            updated = await self._reload(tracker, requested)
        return Ok(updated)

    async def _reload(self, tracker: OrderTracker, requested: OrderStatus) -> Order:
        """Тело ответа не разобралось, перечитываем заказ."""
        try:
            return await self._orders.get_order(tracker.order_id)
        except DomainException as e:
            # Backend подтвердил изменение (2xx), так что статус известен
            logger.warning(f"Не удалось перечитать заказ {tracker.order_id} после смены статуса: {e}")
            return tracker.state.order.model_copy(update={"status": requested})

    async def _provision(self, order: Order) -> Result[ShippingLog, Exception]:
        try:
            return Ok(await self._provision_shipment(order))
        except Exception as e:
            logger.error(f"Ошибка создания shipping log для заказа {order.id}: {e}")
            # Не блокируем подтверждение заказа
            return Err(e)

    def _classify(
        self,
        previous: OrderState,
        order: Order,
        shipping_result: Optional[Result[ShippingLog, Exception]],
    ) -> TransitionOutcome:
        history = previous.shipping
        warnings = []
        shipping_log = None

        if isinstance(shipping_result, Ok):
            shipping_log = shipping_result.value
            history = history.with_log(shipping_log)
        elif isinstance(shipping_result, Err):
            warning = SecondaryEffectFailure(order.id, shipping_result.error)
            logger.warning(str(warning))
            warnings.append(warning)

        state = OrderState.build(order, history)
        message = str(warnings[0]) if warnings else f"Order status updated to {order.status_text}"
        return TransitionOutcome(
            state=state,
            changed=True,
            shipping_log=shipping_log or state.shipping_log,
            warnings=warnings,
            message=message,
        )

    def _translate(self, error: DomainException, current: OrderStatus, requested: OrderStatus) -> DomainException:
        if isinstance(error, Conflict):
            if requested == OrderStatus.REFUNDED:
                return PreconditionFailed(current.value, requested.value, REFUND_CONFLICT_MESSAGE)
            return InvalidTransition(current.value, requested.value, str(error))
        return error

    async def _notify(self, order: Order, status: OrderStatus, context: TransitionContext) -> None:
        template = NOTIFICATION_MESSAGES.get(status)
        if self._notifications is None or template is None:
            return
        message = template.format(reason=(context.rejection_reason or "").strip())
        try:
            sent = await self._notifications.send(
                message=message,
                reference_id=order.id,
                idempotency_key=f"order_{status.value}_{order.id}",
                user_id=order.user_id,
            )
        except Exception as e:
            logger.error(f"Ошибка отправки уведомления для заказа {order.id}: {e}")
            return
        if sent:
            logger.info(f"Отправлено уведомление '{status.value}' для заказа {order.id}")
        else:
            logger.warning(f"Не отправлено уведомление '{status.value}' для заказа {order.id}")

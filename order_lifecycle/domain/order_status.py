from typing import Optional

from order_lifecycle.domain.models import OrderStatus
from order_lifecycle.domain.exceptions import InvalidTransition, PreconditionFailed


# Разрешённые переходы для обычной записи статуса (PATCH /orders/:id/status, /reject)
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.REJECTED}),
    OrderStatus.APPROVED: frozenset({OrderStatus.APPROVED, OrderStatus.REJECTED}),
    OrderStatus.REJECTED: frozenset({OrderStatus.REJECTED}),
    OrderStatus.REFUNDED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.DELIVERED}),
}

# refunded достигается только отдельной операцией возврата
REFUND_FROM = OrderStatus.REJECTED

TERMINAL_STATUSES = frozenset({OrderStatus.REJECTED, OrderStatus.REFUNDED, OrderStatus.DELIVERED})


def parse_order_status(value) -> Optional[OrderStatus]:
    if isinstance(value, OrderStatus):
        return value
    if not isinstance(value, str):
        return None
    try:
        return OrderStatus(value.strip().lower())
    except ValueError:
        return None


def is_allowed(current: OrderStatus, requested: OrderStatus) -> bool:
    if requested == OrderStatus.REFUNDED and current == REFUND_FROM:
        return True
    return requested in ORDER_TRANSITIONS[current]


def available_transitions(current: Optional[OrderStatus]) -> list[OrderStatus]:
    """Варианты для выпадающего списка статусов у сотрудника, текущий статус первым.

    Для нераспознанного статуса вариантов нет.
    """
    if current is None:
        return []
    allowed = set(ORDER_TRANSITIONS[current])
    if current == REFUND_FROM:
        allowed.add(OrderStatus.REFUNDED)
    ordered = [status for status in OrderStatus if status in allowed and status != current]
    return [current] + ordered


def ensure_transition(current: Optional[OrderStatus], requested: OrderStatus, raw_current: str = "") -> None:
    """Бросает исключение, если из ``current`` нельзя перейти в ``requested``. Без сетевых вызовов."""
    if current is None:
        raise InvalidTransition(
            raw_current or "unknown",
            requested.value,
            f"Order status '{raw_current or 'unknown'}' is not recognised; no transitions are available",
        )
    if requested == OrderStatus.REFUNDED and current not in (REFUND_FROM, OrderStatus.REFUNDED):
        raise PreconditionFailed(
            current.value,
            requested.value,
            f"Only rejected orders can be refunded (order is '{current.value}')",
        )
    if not is_allowed(current, requested):
        raise InvalidTransition(current.value, requested.value)

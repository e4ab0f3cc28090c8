import re
from typing import Optional

from order_lifecycle.domain.models import ShippingStatus


PROGRESSION: tuple[ShippingStatus, ...] = (
    ShippingStatus.PENDING,
    ShippingStatus.PROCESSING,
    ShippingStatus.SHIPPED,
    ShippingStatus.IN_TRANSIT,
    ShippingStatus.DELIVERED,
    ShippingStatus.RECEIVED,
)

SIDE_BRANCHES: tuple[ShippingStatus, ...] = (ShippingStatus.CANCELLED, ShippingStatus.RETURNED)

TERMINAL_STATUSES = frozenset({ShippingStatus.RECEIVED, *SIDE_BRANCHES})

DELIVERY_STATUSES = frozenset({ShippingStatus.DELIVERED, ShippingStatus.RECEIVED})


def canonical_key(value: str) -> str:
    return re.sub(r"[\s_\-]+", " ", value.strip().lower())


_LOOKUP = {canonical_key(status.value): status for status in ShippingStatus}
# Бэкенд иногда присылает "canceled" с одной l
_LOOKUP["canceled"] = ShippingStatus.CANCELLED


def parse_shipping_status(value) -> Optional[ShippingStatus]:
    """Поиск без учёта регистра: ``in_transit``, ``IN-TRANSIT`` и ``In Transit`` совпадают.

    Для нераспознанного значения возвращает None, исключений не бросает.
    """
    if isinstance(value, ShippingStatus):
        return value
    if not isinstance(value, str):
        return None
    return _LOOKUP.get(canonical_key(value))


def is_linear(status: Optional[ShippingStatus]) -> bool:
    return status in PROGRESSION


def is_terminal(status: Optional[ShippingStatus]) -> bool:
    return status in TERMINAL_STATUSES


def marks_delivery(status: Optional[ShippingStatus]) -> bool:
    return status in DELIVERY_STATUSES


def next_shipping_statuses(status: Optional[ShippingStatus]) -> list[ShippingStatus]:
    """Подсказка для сотрудника: следующий шаг + боковые ветки. Порядок не навязывается."""
    if status is None:
        return [ShippingStatus.PENDING, ShippingStatus.PROCESSING]
    if is_terminal(status):
        return [status]
    position = PROGRESSION.index(status)
    suggestions = [status, PROGRESSION[position + 1]]
    return suggestions + list(SIDE_BRANCHES)

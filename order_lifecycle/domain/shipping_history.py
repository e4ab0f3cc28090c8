from datetime import datetime
from typing import Iterable, Optional
from pydantic import BaseModel, ConfigDict

from order_lifecycle.domain.models import ShippingLog


class ShippingHistory(BaseModel):
    """Упорядоченная история отгрузок заказа.

    У заказа может быть несколько логов; *текущий* тот, что обновлялся последним.
    При равных временах решает порядок получения; если хотя бы у одного лога нет
    дат, порядок получения используется как есть.
    """
    model_config = ConfigDict(frozen=True)

    order_id: str
    logs: tuple[ShippingLog, ...] = ()

    @classmethod
    def from_logs(cls, order_id: str, logs: Iterable[ShippingLog]) -> "ShippingHistory":
        indexed = list(enumerate(logs))
        if all(_timestamp(log) is not None for _, log in indexed):
            indexed.sort(key=lambda pair: (_timestamp(pair[1]), pair[0]))
        return cls(order_id=order_id, logs=tuple(log for _, log in indexed))

    @property
    def current(self) -> Optional[ShippingLog]:
        return self.logs[-1] if self.logs else None

    def with_log(self, log: ShippingLog) -> "ShippingHistory":
        """Новая история с добавленной или заменённой (по id) записью."""
        others = [existing for existing in self.logs if not log.id or existing.id != log.id]
        return ShippingHistory.from_logs(self.order_id, [*others, log])

    def without(self, log_id: str) -> "ShippingHistory":
        return ShippingHistory(
            order_id=self.order_id,
            logs=tuple(log for log in self.logs if log.id != log_id),
        )


def _timestamp(log: ShippingLog) -> Optional[datetime]:
    return log.updated_at or log.created_at

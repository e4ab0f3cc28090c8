import httpx
import logging
from collections.abc import Mapping
from typing import Any, Optional, List
import asyncio
from pydantic import ValidationError as PydanticValidationError

from order_lifecycle.domain.models import ItemizedSummary, Order, OrderStatus, ShippingLog
from order_lifecycle.domain.exceptions import BackendError, BackendUnavailable, NotFound
from order_lifecycle.domain.normalization import parse_order_items, parse_shipping_log, parse_shipping_logs, resolve_order_id
from order_lifecycle.infrastructure.envelope import MALFORMED, as_entity, as_sequence, raise_for_status, read_json, unwrap
from order_lifecycle.application.interfaces import NotificationsService, OrdersGateway, ShippingLogsGateway

logger = logging.getLogger(__name__)


class _BackendClient:
    resource = "Backend"

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        resource: Optional[str] = None,
    ) -> Any:
        resource = resource or self.resource
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    json=json,
                    params=params,
                    headers=self._headers(),
                    timeout=self._timeout,
                )
        except httpx.RequestError as e:
            logger.error(f"{resource} service ошибка подключения: {e}")
            raise BackendUnavailable(f"{resource} service is not available: {str(e)}")

        raise_for_status(response, resource)
        return unwrap(read_json(response))


def _order_from_payload(data: Any) -> Optional[Order]:
    entity = as_entity(data)
    if entity is None:
        logger.warning(f"Ответ не содержит заказ: {data!r}")
        return None
    payload = dict(entity)
    payload["id"] = resolve_order_id(entity)
    if not payload["id"]:
        logger.warning(f"В ответе нет id заказа: {data!r}")
        return None
    # Встроенный пользователь заменяет покупателя, если backend не прислал customer
    if isinstance(payload.get("userId"), Mapping) and not isinstance(payload.get("customer"), Mapping):
        payload["customer"] = dict(payload["userId"])
    for key in ("userId", "processedBy"):
        if isinstance(payload.get(key), Mapping):
            payload[key] = resolve_order_id(payload[key]) or None
    try:
        return Order.model_validate(payload)
    except PydanticValidationError as e:
        logger.warning(f"Не удалось разобрать заказ {payload.get('id')!r}: {e}")
        return None


class HTTPOrdersClient(_BackendClient, OrdersGateway):
    resource = "Order"

    async def get_order(self, order_id: str) -> Order:
        data = await self._request("GET", f"/orders/{order_id}")
        order = _order_from_payload(data)
        if order is None:
            raise BackendError(f"Order {order_id} response could not be read")
        return order

    async def get_order_payload(self, order_id: str) -> Any:
        return await self._request("GET", f"/orders/{order_id}")

    async def update_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        data = await self._request("PATCH", f"/orders/{order_id}/status", json={"status": status.value})
        return _order_from_payload(data)

    async def reject(self, order_id: str, rejection_reason: str, note: Optional[str] = None) -> Optional[Order]:
        body = {"rejectionReason": rejection_reason}
        if note:
            body["note"] = note
        data = await self._request("PATCH", f"/orders/{order_id}/reject", json=body)
        return _order_from_payload(data)

    async def refund(self, order_id: str, refund_reason: Optional[str] = None, note: Optional[str] = None) -> Optional[Order]:
        body = {}
        if refund_reason:
            body["refundReason"] = refund_reason
        if note:
            body["note"] = note
        data = await self._request("PATCH", f"/orders/{order_id}/refund", json=body)
        return _order_from_payload(data)


class HTTPShippingLogsClient(_BackendClient, ShippingLogsGateway):
    resource = "Shipping log"

    def __init__(self, base_url: str, api_token: str, orders: HTTPOrdersClient, **kwargs):
        super().__init__(base_url, api_token, **kwargs)
        self._orders = orders

    async def list(self, params: Optional[dict[str, Any]] = None) -> List[ShippingLog]:
        data = await self._request("GET", "/shipping-logs", params=params)
        if data is MALFORMED:
            return []
        return parse_shipping_logs(as_sequence(data, "shipping logs"))

    async def get_by_order_id(self, order_id: str) -> List[ShippingLog]:
        clean_id = (order_id or "").strip()
        if not clean_id:
            logger.error(f"get_by_order_id вызван с пустым orderId: {order_id!r}")
            return []

        try:
            data = await self._request("GET", f"/shipping-logs/order/{clean_id}")
            if data is MALFORMED:
                return []
            return parse_shipping_logs(as_sequence(data, f"shipping logs of order {clean_id}"))
        except (NotFound, BackendError) as e:
            logger.warning(f"Основной endpoint shipping logs не ответил для заказа {clean_id}: {e}")

        return await self._from_order(clean_id)

    async def _from_order(self, order_id: str) -> List[ShippingLog]:
        """Запасной путь: отгрузки, встроенные в сам заказ."""
        try:
            data = await self._orders.get_order_payload(order_id)
        except BackendError as e:
            logger.error(f"Оба endpoint'а отгрузок недоступны для заказа {order_id}: {e}")
            return []

        order = as_entity(data)
        if order is None:
            return []
        if isinstance(order.get("shipping"), Mapping):
            return parse_shipping_logs([order["shipping"]])
        if isinstance(order.get("shippingLogs"), list):
            return parse_shipping_logs(order["shippingLogs"])
        logger.info(f"В заказе {order_id} нет информации об отгрузке")
        return []

    def _single(self, data: Any, action: str) -> ShippingLog:
        log = parse_shipping_log(as_entity(data))
        if log is None:
            raise BackendError(f"Invalid or empty response from the shipping logs service ({action})")
        return log

    async def get_by_id(self, log_id: str) -> ShippingLog:
        data = await self._request("GET", f"/shipping-logs/{log_id}")
        return self._single(data, "get")

    async def get_order_items(self, order_id: str) -> ItemizedSummary:
        """Состав заказа для отгрузки; при ошибке backend пустой состав."""
        try:
            data = await self._request("GET", f"/shipping-logs/order-items/{order_id}")
        except (NotFound, BackendError) as e:
            logger.warning(f"Не удалось получить состав заказа {order_id}: {e}")
            return ItemizedSummary()
        if data is MALFORMED:
            return ItemizedSummary()
        return parse_order_items(data)

    async def create(self, payload: dict) -> ShippingLog:
        data = await self._request("POST", "/shipping-logs", json=payload)
        return self._single(data, "create")

    async def update(self, log_id: str, payload: dict) -> ShippingLog:
        data = await self._request("PATCH", f"/shipping-logs/{log_id}", json=payload)
        return self._single(data, "update")

    async def update_status(self, log_id: str, payload: dict) -> ShippingLog:
        data = await self._request("PATCH", f"/shipping-logs/{log_id}/status", json=payload)
        return self._single(data, "update status")

    async def delete(self, log_id: str) -> None:
        await self._request("DELETE", f"/shipping-logs/{log_id}")


class HTTPNotificationsClient(NotificationsService):
    def __init__(
        self,
        base_url: str,
        api_token: str,
        max_retries: int = 10,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._transport = transport

    async def send(self, message: str, reference_id: str, idempotency_key: str, user_id: Optional[str] = None) -> bool:
        """Отправка уведомления с повторными попытками"""
        payload = {
            "message": message,
            "reference_id": reference_id,
            "idempotency_key": idempotency_key,
        }
        if user_id:
            payload["user_id"] = user_id

        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    response = await client.post(
                        f"{self._base_url}/api/notifications",
                        json=payload,
                        headers={"X-API-Key": self._api_token},
                        timeout=10.0
                    )

                    if response.status_code in (200, 201):
                        logger.info(f"Уведомление отправлено (попытка {attempt + 1})")
                        return True
                    else:
                        logger.warning(f"Уведомление вернуло статус {response.status_code}")

            except Exception as e:
                logger.warning(f"Ошибка отправки уведомления (попытка {attempt + 1}/{self._max_retries}): {e}")

            # Ждем перед следующей попыткой (кроме последней)
            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_delay)

        logger.error(f"Не удалось отправить уведомление после {self._max_retries} попыток")
        return False

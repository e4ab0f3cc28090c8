"""Разбор ответов backend в конверте ``{success, data, message?}``."""
import logging
from collections.abc import Mapping
from typing import Any, Optional

import httpx

from order_lifecycle.domain.exceptions import (
    BackendError,
    BackendUnavailable,
    Conflict,
    NotFound,
    PermissionDenied,
    SessionExpired,
    ValidationError,
)

logger = logging.getLogger(__name__)


class Malformed:
    """Маркер тела ответа, которое не удалось разобрать как JSON."""

    def __repr__(self) -> str:
        return "MALFORMED"


MALFORMED = Malformed()


def read_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        logger.warning(f"Ответ {response.request.method} {response.request.url} не является JSON: {e}")
        return MALFORMED


def unwrap(payload: Any) -> Any:
    """Достаёт ``data`` из конверта; голая сущность/массив возвращаются как есть.

    Конверт с ``success: false`` или без ``data`` означает, что данных нет.
    """
    if not isinstance(payload, Mapping):
        return payload
    if payload.get("success") is False:
        logger.warning(f"Backend вернул success=false: {payload.get('message')!r}")
        return None
    if "data" in payload:
        return payload["data"]
    if "success" in payload:
        return None
    return payload


def as_sequence(data: Any, what: str = "items") -> list:
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        # Одиночный объект вместо массива
        return [data]
    if data is not None:
        logger.warning(f"Неожиданный формат ответа для {what}: {data!r}")
    return []


def as_entity(data: Any) -> Optional[Mapping]:
    if isinstance(data, Mapping):
        return data
    if isinstance(data, list) and len(data) == 1 and isinstance(data[0], Mapping):
        return data[0]
    return None


def _backend_message(response: httpx.Response) -> str:
    payload = read_json(response)
    if isinstance(payload, Mapping):
        message = payload.get("message") or payload.get("detail") or payload.get("error")
        if isinstance(message, list):
            return "; ".join(str(part) for part in message)
        if message:
            return str(message)
    return f"HTTP Error {response.status_code}"


def raise_for_status(response: httpx.Response, resource: str) -> None:
    """Переводит HTTP статус в таксономию доменных ошибок."""
    code = response.status_code
    if code < 400:
        return
    message = _backend_message(response)
    logger.warning(f"{resource}: {response.request.method} {response.request.url} -> {code}: {message}")

    if code in (400, 422):
        raise ValidationError(message)
    if code == 401:
        raise SessionExpired()
    if code == 403:
        raise PermissionDenied()
    if code == 404:
        raise NotFound(f"{resource} not found")
    if code == 409:
        raise Conflict(message, status_code=code)
    if code >= 500:
        raise BackendUnavailable(f"{resource} service error: {code}", status_code=code)
    raise BackendError(f"{resource} request failed ({code}): {message}", status_code=code)

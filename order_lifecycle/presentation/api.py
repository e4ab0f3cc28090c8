import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from order_lifecycle.presentation.schemas import (
    ChangeStatusRequest,
    CreateShippingLogRequest,
    ErrorResponse,
    OrderItemsResponse,
    OrderStatusResponse,
    ShippingHistoryResponse,
    ShippingLogResponse,
    TransitionResponse,
    UpdateShippingLogRequest,
    UpdateShippingStatusRequest,
)
from order_lifecycle.application.interfaces import NotificationsService, OrdersGateway, ShippingLogsGateway
from order_lifecycle.application.order_state import LoadOrderStateUseCase, OrderTrackerRegistry
from order_lifecycle.application.change_status import ChangeOrderStatusUseCase, TransitionContext
from order_lifecycle.application.shipping_logs import (
    CreateShippingLogDTO,
    CreateShippingLogUseCase,
    DeleteShippingLogUseCase,
    GetOrderItemsUseCase,
    GetShippingHistoryUseCase,
    GetShippingLogUseCase,
    ListShippingLogsUseCase,
    ProvisionShipmentUseCase,
    UpdateShippingLogDTO,
    UpdateShippingLogUseCase,
    UpdateShippingStatusDTO,
    UpdateShippingStatusUseCase,
)
from order_lifecycle.domain.exceptions import (
    BackendError,
    BackendUnavailable,
    DomainException,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ReasonRequired,
    SessionExpired,
    TransitionInProgress,
    ValidationError,
)
from order_lifecycle.infrastructure.http_clients import (
    HTTPNotificationsClient,
    HTTPOrdersClient,
    HTTPShippingLogsClient,
)
from order_lifecycle.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


# Фабрики клиентов backend
def get_orders_gateway() -> OrdersGateway:
    return HTTPOrdersClient(settings.API_BASE_URL, settings.API_TOKEN, timeout=settings.REQUEST_TIMEOUT)


def get_shipping_logs_gateway(orders: OrdersGateway = Depends(get_orders_gateway)) -> ShippingLogsGateway:
    return HTTPShippingLogsClient(
        settings.API_BASE_URL, settings.API_TOKEN, orders=orders, timeout=settings.REQUEST_TIMEOUT
    )


def get_notifications_service() -> Optional[NotificationsService]:
    if not settings.NOTIFICATIONS_ENABLED:
        return None
    return HTTPNotificationsClient(
        settings.NOTIFICATIONS_BASE_URL,
        settings.API_TOKEN,
        max_retries=settings.NOTIFICATION_MAX_RETRIES,
        retry_delay=settings.NOTIFICATION_RETRY_DELAY,
    )


def get_tracker_registry(request: Request) -> OrderTrackerRegistry:
    return request.app.state.trackers


# Фабрики для создания use cases
def get_load_order_state_use_case(
    orders: OrdersGateway = Depends(get_orders_gateway),
    shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway),
):
    return LoadOrderStateUseCase(orders, shipping_logs)


def get_change_status_use_case(
    orders: OrdersGateway = Depends(get_orders_gateway),
    shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway),
    notifications: Optional[NotificationsService] = Depends(get_notifications_service),
):
    return ChangeOrderStatusUseCase(orders, ProvisionShipmentUseCase(shipping_logs), notifications)


def get_shipping_history_use_case(shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway)):
    return GetShippingHistoryUseCase(shipping_logs)


def get_create_shipping_log_use_case(
    orders: OrdersGateway = Depends(get_orders_gateway),
    shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway),
):
    return CreateShippingLogUseCase(orders, shipping_logs)


def get_list_shipping_logs_use_case(shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway)):
    return ListShippingLogsUseCase(shipping_logs)


def get_update_shipping_status_use_case(shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway)):
    return UpdateShippingStatusUseCase(shipping_logs)


def get_shipping_log_use_case(
    orders: OrdersGateway = Depends(get_orders_gateway),
    shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway),
):
    return GetShippingLogUseCase(orders, shipping_logs)


def get_update_shipping_log_use_case(shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway)):
    return UpdateShippingLogUseCase(shipping_logs)


def get_order_items_use_case(shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway)):
    return GetOrderItemsUseCase(shipping_logs)


def get_delete_shipping_log_use_case(shipping_logs: ShippingLogsGateway = Depends(get_shipping_logs_gateway)):
    return DeleteShippingLogUseCase(shipping_logs)


def to_http_exception(error: DomainException) -> HTTPException:
    """Доменная ошибка -> HTTP ответ для back-office клиента"""
    if isinstance(error, ReasonRequired):
        # Клиент должен запросить причину у сотрудника
        return HTTPException(status_code=422, detail=str(error), headers={"X-Prompt": error.field})
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, InvalidTransition):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, SessionExpired):
        return HTTPException(status_code=401, detail=str(error))
    if isinstance(error, PermissionDenied):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, NotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, TransitionInProgress):
        return HTTPException(status_code=423, detail=str(error))
    if isinstance(error, BackendUnavailable):
        return HTTPException(status_code=503, detail=f"Service unavailable: {str(error)}")
    if isinstance(error, BackendError):
        return HTTPException(status_code=502, detail=str(error))
    logger.error(f"Необработанная доменная ошибка: {error!r}")
    return HTTPException(status_code=500, detail=str(error))


@router.get(
    "/orders/{order_id}/status",
    response_model=OrderStatusResponse,
    responses=ERROR_RESPONSES,
)
async def get_order_status(
    order_id: str,
    registry: OrderTrackerRegistry = Depends(get_tracker_registry),
    loader: LoadOrderStateUseCase = Depends(get_load_order_state_use_case),
):
    """Заказ, его текущая отгрузка и единый статус"""
    try:
        async with registry.open(order_id, loader) as tracker:
            return OrderStatusResponse.from_domain(tracker.state)
    except DomainException as e:
        raise to_http_exception(e)


@router.post(
    "/orders/{order_id}/status",
    response_model=TransitionResponse,
    responses={**ERROR_RESPONSES, 423: {"model": ErrorResponse}},
)
async def change_order_status(
    order_id: str,
    request: ChangeStatusRequest,
    registry: OrderTrackerRegistry = Depends(get_tracker_registry),
    loader: LoadOrderStateUseCase = Depends(get_load_order_state_use_case),
    use_case: ChangeOrderStatusUseCase = Depends(get_change_status_use_case),
):
    """Сменить статус заказа (approve / reject / refund / deliver)"""
    try:
        context = TransitionContext(
            rejection_reason=request.rejection_reason,
            refund_reason=request.refund_reason,
            note=request.note,
        )
        async with registry.open(order_id, loader) as tracker:
            outcome = await use_case(tracker, request.status, context)
        return TransitionResponse.from_domain(outcome)
    except DomainException as e:
        raise to_http_exception(e)


@router.get(
    "/orders/{order_id}/shipping-logs",
    response_model=ShippingHistoryResponse,
    responses=ERROR_RESPONSES,
)
async def get_shipping_history(
    order_id: str,
    use_case: GetShippingHistoryUseCase = Depends(get_shipping_history_use_case),
):
    """История отгрузок заказа"""
    try:
        history = await use_case(order_id)
        return ShippingHistoryResponse.from_domain(history)
    except DomainException as e:
        raise to_http_exception(e)


@router.post(
    "/orders/{order_id}/shipping-logs",
    response_model=ShippingLogResponse,
    responses=ERROR_RESPONSES,
    status_code=status.HTTP_201_CREATED,
)
async def create_shipping_log(
    order_id: str,
    request: CreateShippingLogRequest,
    use_case: CreateShippingLogUseCase = Depends(get_create_shipping_log_use_case),
):
    """Создать отгрузку вручную"""
    try:
        log = await use_case(order_id, CreateShippingLogDTO(**request.model_dump()))
        return ShippingLogResponse.from_domain(log)
    except DomainException as e:
        raise to_http_exception(e)


@router.get(
    "/orders/{order_id}/items",
    response_model=OrderItemsResponse,
    responses=ERROR_RESPONSES,
)
async def get_order_items(
    order_id: str,
    use_case: GetOrderItemsUseCase = Depends(get_order_items_use_case),
):
    """Состав заказа для упаковки отгрузки"""
    try:
        summary = await use_case(order_id)
        return OrderItemsResponse.from_domain(order_id.strip(), summary)
    except DomainException as e:
        raise to_http_exception(e)


@router.get(
    "/shipping-logs",
    response_model=list[ShippingLogResponse],
    responses=ERROR_RESPONSES,
)
async def list_shipping_logs(
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: Optional[int] = Query(default=None, ge=1),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    use_case: ListShippingLogsUseCase = Depends(get_list_shipping_logs_use_case),
):
    """Отгрузки по всем заказам"""
    try:
        logs = await use_case(status=status, search=search, page=page, limit=limit)
        return [ShippingLogResponse.from_domain(log) for log in logs]
    except DomainException as e:
        raise to_http_exception(e)


@router.get(
    "/shipping-logs/{log_id}",
    response_model=ShippingLogResponse,
    responses=ERROR_RESPONSES,
)
async def get_shipping_log(
    log_id: str,
    use_case: GetShippingLogUseCase = Depends(get_shipping_log_use_case),
):
    """Отгрузка вместе с данными заказа и получателя"""
    try:
        log = await use_case(log_id)
        return ShippingLogResponse.from_domain(log)
    except DomainException as e:
        raise to_http_exception(e)


@router.patch(
    "/shipping-logs/{log_id}",
    response_model=ShippingLogResponse,
    responses=ERROR_RESPONSES,
)
async def update_shipping_log(
    log_id: str,
    request: UpdateShippingLogRequest,
    use_case: UpdateShippingLogUseCase = Depends(get_update_shipping_log_use_case),
):
    """Изменить трек-номер, перевозчика, адрес и другие реквизиты отгрузки"""
    try:
        log = await use_case(log_id, UpdateShippingLogDTO(**request.model_dump()))
        return ShippingLogResponse.from_domain(log)
    except DomainException as e:
        raise to_http_exception(e)


@router.patch(
    "/shipping-logs/{log_id}/status",
    response_model=ShippingLogResponse,
    responses=ERROR_RESPONSES,
)
async def update_shipping_status(
    log_id: str,
    request: UpdateShippingStatusRequest,
    use_case: UpdateShippingStatusUseCase = Depends(get_update_shipping_status_use_case),
):
    """Продвинуть отгрузку по этапам доставки"""
    try:
        log = await use_case(log_id, UpdateShippingStatusDTO(**request.model_dump()))
        return ShippingLogResponse.from_domain(log)
    except DomainException as e:
        raise to_http_exception(e)


@router.delete(
    "/shipping-logs/{log_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_shipping_log(
    log_id: str,
    use_case: DeleteShippingLogUseCase = Depends(get_delete_shipping_log_use_case),
):
    """Удалить отгрузку"""
    try:
        await use_case(log_id)
    except DomainException as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

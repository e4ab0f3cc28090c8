class DomainException(Exception):
    pass


class InvalidTransition(DomainException):
    def __init__(self, current: str, requested: str, message: str | None = None):
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change order status from '{current}' to '{requested}'")


class PreconditionFailed(InvalidTransition):
    """Возврат денег возможен только для заказа в статусе rejected"""
    pass


class ValidationError(DomainException):
    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ReasonRequired(ValidationError):
    def __init__(self, field: str = "rejection_reason"):
        super().__init__("A rejection reason is required to reject an order", field=field)


class AuthError(DomainException):
    pass


class SessionExpired(AuthError):
    def __init__(self, message: str = "Session expired, please log in again"):
        super().__init__(message)


class PermissionDenied(AuthError):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(message)


class NotFound(DomainException):
    pass


class BackendError(DomainException):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class BackendUnavailable(BackendError):
    pass


class Conflict(BackendError):
    """409 от backend: состояние на сервере не совпадает с ожидаемым"""
    pass


class TransitionInProgress(DomainException):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"A status change for order {order_id} is already in progress")


class SecondaryEffectFailure(DomainException):
    """Не фатальная ошибка побочного эффекта: основной переход уже зафиксирован"""

    def __init__(self, order_id: str, cause: Exception | None = None):
        self.order_id = order_id
        self.cause = cause
        super().__init__(
            f"Order {order_id} approved, but shipment record failed; create manually"
        )

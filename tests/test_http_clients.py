import json

import httpx
import pytest

from order_lifecycle.domain.models import OrderStatus, ShippingStatus
from order_lifecycle.domain.normalization import resolve_order_recipient
from order_lifecycle.domain.exceptions import (
    BackendError,
    BackendUnavailable,
    Conflict,
    NotFound,
    PermissionDenied,
    SessionExpired,
    ValidationError,
)
from order_lifecycle.infrastructure.http_clients import (
    HTTPNotificationsClient,
    HTTPOrdersClient,
    HTTPShippingLogsClient,
)

BASE_URL = "http://backend.test/api"

ORDER_PAYLOAD = {
    "_id": "o-1",
    "status": "Pending",
    "totalAmount": 42,
    "items": [{"productId": "p-1", "productName": "Serum", "quantity": 1, "price": 42}],
    "userId": {"_id": "u-1", "name": "Anna"},
    "recipientName": "Anna",
}


class Backend:
    """Маршруты MockTransport: (method, path) -> (status, body)"""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"success": False, "message": "No route"})
        status_code, body = route
        if isinstance(body, (bytes, str)):
            return httpx.Response(status_code, content=body)
        return httpx.Response(status_code, json=body)


def clients(routes: dict):
    backend = Backend(routes)
    transport = httpx.MockTransport(backend)
    orders = HTTPOrdersClient(BASE_URL, "token", transport=transport)
    shipping_logs = HTTPShippingLogsClient(BASE_URL, "token", orders=orders, transport=transport)
    return backend, orders, shipping_logs


class TestOrdersClient:
    async def test_get_order_unwraps_envelope(self):
        backend, orders, _ = clients({("GET", "/api/orders/o-1"): (200, {"success": True, "data": ORDER_PAYLOAD})})

        order = await orders.get_order("o-1")

        assert order.id == "o-1"
        assert order.status == OrderStatus.PENDING
        assert order.user_id == "u-1"
        assert order.items[0].product_name == "Serum"
        assert backend.requests[0].headers["Authorization"] == "Bearer token"

    async def test_embedded_user_becomes_customer(self):
        payload = {
            "_id": "o-2",
            "status": "approved",
            "totalAmount": 10,
            "userId": {"_id": "u-2", "name": "ivan", "fullName": "Ivan Petrov", "phoneNumber": "+7 999"},
        }
        _, orders, _ = clients({("GET", "/api/orders/o-2"): (200, {"success": True, "data": payload})})

        order = await orders.get_order("o-2")

        assert order.user_id == "u-2"
        assert resolve_order_recipient(order).name == "Ivan Petrov"
        assert resolve_order_recipient(order).phone == "+7 999"

    async def test_unknown_status_is_kept_raw(self):
        payload = {**ORDER_PAYLOAD, "status": "Cancelled"}
        _, orders, _ = clients({("GET", "/api/orders/o-1"): (200, {"data": payload})})

        order = await orders.get_order("o-1")

        assert order.status is None
        assert order.raw_status == "Cancelled"

    async def test_get_order_malformed_body_is_backend_error(self):
        _, orders, _ = clients({("GET", "/api/orders/o-1"): (200, b"<html>oops</html>")})
        with pytest.raises(BackendError):
            await orders.get_order("o-1")

    async def test_reject_body(self):
        rejected = {**ORDER_PAYLOAD, "status": "rejected", "rejectionReason": "Out of stock"}
        backend, orders, _ = clients({("PATCH", "/api/orders/o-1/reject"): (200, {"success": True, "data": rejected})})

        order = await orders.reject("o-1", "Out of stock")

        assert json.loads(backend.requests[0].content) == {"rejectionReason": "Out of stock"}
        assert order.rejection_reason == "Out of stock"

    async def test_refund_omits_missing_fields(self):
        refunded = {**ORDER_PAYLOAD, "status": "refunded"}
        backend, orders, _ = clients({("PATCH", "/api/orders/o-1/refund"): (200, {"data": refunded})})

        await orders.refund("o-1", note="manual")

        assert json.loads(backend.requests[0].content) == {"note": "manual"}

    async def test_unparseable_mutation_returns_none(self):
        _, orders, _ = clients({("PATCH", "/api/orders/o-1/status"): (200, {"success": True})})
        assert await orders.update_status("o-1", OrderStatus.APPROVED) is None

    @pytest.mark.parametrize("status_code, error", [
        (400, ValidationError),
        (422, ValidationError),
        (401, SessionExpired),
        (403, PermissionDenied),
        (404, NotFound),
        (409, Conflict),
        (500, BackendUnavailable),
        (502, BackendUnavailable),
        (418, BackendError),
    ])
    async def test_status_mapping(self, status_code, error):
        _, orders, _ = clients({
            ("PATCH", "/api/orders/o-1/status"): (status_code, {"success": False, "message": "Nope"}),
        })
        with pytest.raises(error):
            await orders.update_status("o-1", OrderStatus.APPROVED)

    async def test_validation_message_is_verbatim(self):
        _, orders, _ = clients({
            ("PATCH", "/api/orders/o-1/reject"): (400, {"message": ["rejectionReason too long", "note invalid"]}),
        })
        with pytest.raises(ValidationError) as exc_info:
            await orders.reject("o-1", "x" * 1000)
        assert str(exc_info.value) == "rejectionReason too long; note invalid"

    async def test_connection_error_is_unavailable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        orders = HTTPOrdersClient(BASE_URL, "token", transport=httpx.MockTransport(refuse))
        with pytest.raises(BackendUnavailable):
            await orders.get_order("o-1")


class TestShippingLogsClient:
    async def test_bare_entity_is_coerced_to_list(self):
        _, _, shipping_logs = clients({
            ("GET", "/api/shipping-logs/order/o-1"): (200, {"success": True, "data": {"_id": "l-1", "orderId": "o-1", "status": "Shipped"}}),
        })

        logs = await shipping_logs.get_by_order_id("o-1")

        assert [log.id for log in logs] == ["l-1"]
        assert logs[0].status == ShippingStatus.SHIPPED

    async def test_malformed_list_degrades_to_empty(self):
        _, _, shipping_logs = clients({("GET", "/api/shipping-logs"): (200, b"not json")})
        assert await shipping_logs.list({"status": "Shipped"}) == []

    @pytest.mark.parametrize("body", [
        {"success": False, "message": "No shipping logs"},
        {"success": True},
    ])
    async def test_envelope_without_data_gives_no_logs(self, body):
        _, _, shipping_logs = clients({
            ("GET", "/api/shipping-logs"): (200, body),
            ("GET", "/api/shipping-logs/order/o-1"): (200, body),
        })
        assert await shipping_logs.list() == []
        assert await shipping_logs.get_by_order_id("o-1") == []

    async def test_list_passes_params(self):
        backend, _, shipping_logs = clients({
            ("GET", "/api/shipping-logs"): (200, {"data": [{"_id": "l-1", "orderId": "o-1"}, "junk"]}),
        })

        logs = await shipping_logs.list({"status": "Shipped", "page": 2})

        assert len(logs) == 1
        assert backend.requests[0].url.params["page"] == "2"

    async def test_fallback_to_embedded_shipping(self):
        order = {**ORDER_PAYLOAD, "shippingLogs": [{"_id": "l-9", "orderId": "o-1", "status": "Processing"}]}
        backend, _, shipping_logs = clients({
            ("GET", "/api/shipping-logs/order/o-1"): (500, {"message": "boom"}),
            ("GET", "/api/orders/o-1"): (200, {"data": order}),
        })

        logs = await shipping_logs.get_by_order_id("o-1")

        assert [log.id for log in logs] == ["l-9"]
        assert [request.url.path for request in backend.requests] == [
            "/api/shipping-logs/order/o-1",
            "/api/orders/o-1",
        ]

    async def test_fallback_with_single_shipping_object(self):
        order = {**ORDER_PAYLOAD, "shipping": {"_id": "l-3", "status": "Delivered"}}
        _, _, shipping_logs = clients({("GET", "/api/orders/o-1"): (200, {"data": order})})

        logs = await shipping_logs.get_by_order_id("o-1")

        assert logs[0].id == "l-3"
        assert logs[0].status == ShippingStatus.DELIVERED

    async def test_missing_order_in_fallback_is_not_found(self):
        _, _, shipping_logs = clients({})
        with pytest.raises(NotFound):
            await shipping_logs.get_by_order_id("o-404")

    async def test_auth_error_is_not_swallowed(self):
        _, _, shipping_logs = clients({("GET", "/api/shipping-logs/order/o-1"): (401, {})})
        with pytest.raises(SessionExpired):
            await shipping_logs.get_by_order_id("o-1")

    async def test_both_endpoints_down_gives_empty_history(self):
        _, _, shipping_logs = clients({
            ("GET", "/api/shipping-logs/order/o-1"): (503, {}),
            ("GET", "/api/orders/o-1"): (503, {}),
        })
        assert await shipping_logs.get_by_order_id("o-1") == []

    async def test_blank_order_id_makes_no_request(self):
        backend, _, shipping_logs = clients({})
        assert await shipping_logs.get_by_order_id("   ") == []
        assert backend.requests == []

    async def test_create_returns_parsed_log(self):
        created = {"_id": "l-5", "orderId": {"_id": "o-1", "contactName": "Anna"}, "status": "Processing"}
        backend, _, shipping_logs = clients({("POST", "/api/shipping-logs"): (201, {"success": True, "data": created})})

        log = await shipping_logs.create({"orderId": "o-1", "status": "Processing"})

        assert log.order_id == "o-1"
        assert log.recipient.name == "Anna"
        assert json.loads(backend.requests[0].content)["orderId"] == "o-1"

    async def test_empty_create_response_is_backend_error(self):
        _, _, shipping_logs = clients({("POST", "/api/shipping-logs"): (201, {"success": True, "data": None})})
        with pytest.raises(BackendError):
            await shipping_logs.create({"orderId": "o-1"})

    async def test_get_by_id(self):
        _, _, shipping_logs = clients({
            ("GET", "/api/shipping-logs/l-1"): (200, {"success": True, "data": {"_id": "l-1", "orderId": "o-1", "status": "Shipped"}}),
        })

        log = await shipping_logs.get_by_id("l-1")

        assert log.id == "l-1"
        assert log.order_id == "o-1"

    async def test_update_patches_log(self):
        updated = {"_id": "l-1", "orderId": "o-1", "status": "Shipped", "trackingNumber": "TRK-1"}
        backend, _, shipping_logs = clients({("PATCH", "/api/shipping-logs/l-1"): (200, {"data": updated})})

        log = await shipping_logs.update("l-1", {"trackingNumber": "TRK-1"})

        assert log.tracking_number == "TRK-1"
        assert json.loads(backend.requests[0].content) == {"trackingNumber": "TRK-1"}

    async def test_get_order_items(self):
        body = {"success": True, "data": {
            "items": [{"id": "i-1", "productId": "p-1", "productName": "Serum", "quantity": 3, "price": 5}],
            "count": 1,
            "totalQuantity": 3,
        }}
        _, _, shipping_logs = clients({("GET", "/api/shipping-logs/order-items/o-1"): (200, body)})

        summary = await shipping_logs.get_order_items("o-1")

        assert summary.total_quantity == 3
        assert summary.items[0].product_id == "p-1"

    async def test_order_items_degrade_to_empty(self):
        _, _, shipping_logs = clients({("GET", "/api/shipping-logs/order-items/o-1"): (500, {})})
        summary = await shipping_logs.get_order_items("o-1")
        assert (summary.count, summary.total_quantity, summary.items) == (0, 0, ())

    async def test_delete(self):
        backend, _, shipping_logs = clients({("DELETE", "/api/shipping-logs/l-1"): (204, b"")})
        await shipping_logs.delete("l-1")
        assert backend.requests[0].method == "DELETE"


class TestNotificationsClient:
    async def test_retries_until_success(self):
        responses = iter([503, 500, 201])
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(next(responses))

        client = HTTPNotificationsClient(
            "http://notify.test", "key", max_retries=3, retry_delay=0, transport=httpx.MockTransport(handler),
        )

        assert await client.send("hello", "o-1", "order_approved_o-1", user_id="u-1") is True
        assert len(seen) == 3
        assert seen[0]["user_id"] == "u-1"

    async def test_gives_up_after_max_retries(self):
        client = HTTPNotificationsClient(
            "http://notify.test", "key", max_retries=2, retry_delay=0,
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        assert await client.send("hello", "o-1", "key-1") is False

"""Pakasir QRIS client against a mocked transport."""

import json
from decimal import Decimal

import httpx
import pytest

from config import PaymentConfig
from models import PaymentStatus
from services.errors import GatewayUnavailable, GatewayRejected
from services.pakasir import PakasirService

CONFIG = PaymentConfig(base_url="https://pakasir.test/api", project="pteroshop", api_key="secret-key")


def _service(handler) -> PakasirService:
    return PakasirService(CONFIG, transport=httpx.MockTransport(handler))


class TestCreatePayment:
    """QRIS creation."""

    async def test_success(self) -> None:
        """The payment handle is parsed and the request carries the order identity."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"payment": {
                "payment_number": "00020101021226QRISDATA",
                "fee": 105,
                "total_payment": 15105,
            }})

        handle = await _service(handler).create_payment(Decimal("15000"), "PANEL-1-AB")

        assert seen["url"] == "https://pakasir.test/api/transactioncreate/qris"
        assert seen["body"] == {
            "project": "pteroshop",
            "order_id": "PANEL-1-AB",
            "amount": 15000,
            "api_key": "secret-key",
        }
        assert handle.payment_number == "00020101021226QRISDATA"
        assert handle.fee == Decimal("105")
        assert handle.total_payment == Decimal("15105")

    async def test_http_error(self) -> None:
        """Non-2xx responses mean the gateway is unavailable."""
        service = _service(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(GatewayUnavailable):
            await service.create_payment(Decimal("15000"), "PANEL-1-AB")

    async def test_network_error(self) -> None:
        """Transport failures mean the gateway is unavailable."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayUnavailable):
            await _service(handler).create_payment(Decimal("15000"), "PANEL-1-AB")

    @pytest.mark.parametrize("body", [{}, {"payment": {}}, {"payment": {"fee": 1}}])
    async def test_missing_payment_handle(self, body) -> None:
        """A 2xx answer without a payment number is a rejection."""
        service = _service(lambda request: httpx.Response(200, json=body))
        with pytest.raises(GatewayRejected):
            await service.create_payment(Decimal("15000"), "PANEL-1-AB")

    async def test_non_json_body(self) -> None:
        """A 2xx answer that is not JSON is a rejection."""
        service = _service(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(GatewayRejected):
            await service.create_payment(Decimal("15000"), "PANEL-1-AB")


class TestQueryPaymentStatus:
    """Settlement status lookups."""

    async def test_completed(self) -> None:
        """status=completed maps to COMPLETED and the identity goes in the query string."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"transaction": {"status": "Completed"}})

        status = await _service(handler).query_payment_status("PANEL-1-AB", Decimal("15000"))

        assert status == PaymentStatus.COMPLETED
        assert seen["path"] == "/api/transactiondetail"
        assert seen["params"]["order_id"] == "PANEL-1-AB"
        assert seen["params"]["amount"] == "15000"

    async def test_unpaid(self) -> None:
        """Any other transaction status is UNPAID."""
        service = _service(lambda request: httpx.Response(200, json={"transaction": {"status": "pending"}}))
        assert await service.query_payment_status("PANEL-1-AB", Decimal("15000")) == PaymentStatus.UNPAID

    @pytest.mark.parametrize("response", [
        httpx.Response(500),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"transaction": None}),
        httpx.Response(200, json={}),
    ])
    async def test_unknown(self, response) -> None:
        """Unclear answers are UNKNOWN, never an exception."""
        service = _service(lambda request: response)
        assert await service.query_payment_status("PANEL-1-AB", Decimal("15000")) == PaymentStatus.UNKNOWN

    async def test_network_error_is_unknown(self) -> None:
        """Transport failures are UNKNOWN."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert await _service(handler).query_payment_status("PANEL-1-AB", Decimal("15000")) == PaymentStatus.UNKNOWN

    def test_is_available(self) -> None:
        """Credentials are required."""
        assert PakasirService(CONFIG).is_available()
        assert not PakasirService(PaymentConfig()).is_available()

"""Pterodactyl provisioning client against a mocked transport."""

import json
from datetime import timedelta

import httpx
import pytest

from config import PanelConfig
from conftest import START
from models import NotificationEvent, OrderStatus, PaymentStatus
from pricing_utils import PlanCatalog, DEFAULT_PRICES
from services.errors import ProvisioningFailed, PanelNotFound
from services.pterodactyl import PterodactylService, EGG_ENVIRONMENT
from services.panel_order_orchestrator import PanelOrderOrchestrator

CONFIG = PanelConfig(domain="https://panel.test", api_key="ptla_key", nest_id=5, egg_id=15, location_id=2)


class FakePanel:
    """Routes the three provisioning calls and records request bodies"""

    def __init__(self):
        self.requests = []
        self.user_response = httpx.Response(201, json={"attributes": {"id": 7, "username": "budi"}})
        self.server_response = httpx.Response(201, json={"attributes": {
            "id": 42, "uuid": "a1b2c3d4-0000", "identifier": "a1b2c3d4",
        }})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body, request.headers.get("authorization")))
        if request.method == "POST" and request.url.path == "/api/application/users":
            return self.user_response
        if request.method == "GET" and request.url.path == "/api/application/nests/5/eggs/15":
            return httpx.Response(200, json={"attributes": {"startup": "npm start"}})
        if request.method == "POST" and request.url.path == "/api/application/servers":
            return self.server_response
        return httpx.Response(404)


def _service(handler) -> PterodactylService:
    return PterodactylService(
        CONFIG,
        catalog=PlanCatalog(prices=dict(DEFAULT_PRICES)),
        transport=httpx.MockTransport(handler),
        clock=lambda: START,
    )


class TestCreateAccount:
    """User + server provisioning."""

    async def test_success(self) -> None:
        """Creates the user, reads the egg, then creates a server with plan limits."""
        panel = FakePanel()

        account = await _service(panel).create_account("2gb", "budi", "rahasia")

        assert [(m, p) for m, p, _, _ in panel.requests] == [
            ("POST", "/api/application/users"),
            ("GET", "/api/application/nests/5/eggs/15"),
            ("POST", "/api/application/servers"),
        ]
        assert all(auth == "Bearer ptla_key" for _, _, _, auth in panel.requests)

        user_body = panel.requests[0][2]
        assert user_body["username"] == "budi"
        assert user_body["email"] == "budi@gmail.com"
        assert user_body["password"] == "rahasia"

        server_body = panel.requests[2][2]
        assert server_body["name"] == "Budi Server"
        assert server_body["user"] == 7
        assert server_body["startup"] == "npm start"
        assert server_body["environment"] == EGG_ENVIRONMENT
        assert server_body["limits"] == {"memory": 2000, "swap": 0, "disk": 1000, "io": 500, "cpu": 60}
        assert server_body["deploy"] == {"locations": [2], "dedicated_ip": False, "port_range": []}

        assert account.external_user_id == 7
        assert account.external_server_id == 42
        assert account.server_identifier == "a1b2c3d4"
        assert account.login_url == "https://panel.test"
        assert account.specs == {"ram": "2GB", "cpu": "60%", "disk": "1GB"}
        assert account.created_at == START
        assert account.expires_at == START + timedelta(days=30)

    async def test_default_password(self) -> None:
        """Without a password the panel gets <username>01."""
        panel = FakePanel()
        account = await _service(panel).create_account("1gb", "Budi")
        assert account.username == "budi"
        assert account.password == "budi01"
        assert panel.requests[0][2]["password"] == "budi01"

    async def test_errors_array_fails(self) -> None:
        """A response carrying an errors array fails provisioning."""
        panel = FakePanel()
        panel.user_response = httpx.Response(422, json={"errors": [{"code": "ValidationException", "detail": "The username has already been taken."}]})

        with pytest.raises(ProvisioningFailed) as exc_info:
            await _service(panel).create_account("1gb", "budi")
        assert "already been taken" in exc_info.value.reason
        assert len(panel.requests) == 1

    async def test_server_step_failure(self) -> None:
        """A failing server step fails provisioning after the user exists."""
        panel = FakePanel()
        panel.server_response = httpx.Response(500, text="Server Error")

        with pytest.raises(ProvisioningFailed) as exc_info:
            await _service(panel).create_account("1gb", "budi")
        assert exc_info.value.reason.startswith("create server")

    async def test_created_user_without_id_fails(self) -> None:
        """A 2xx user reply with no id fails provisioning before the server step."""
        panel = FakePanel()
        panel.user_response = httpx.Response(201, json={"attributes": {"username": "budi"}})

        with pytest.raises(ProvisioningFailed) as exc_info:
            await _service(panel).create_account("1gb", "budi")
        assert exc_info.value.reason == "create user: response has no id"
        assert len(panel.requests) == 1

    async def test_created_server_without_id_fails(self) -> None:
        """A 2xx server reply with no id fails provisioning."""
        panel = FakePanel()
        panel.server_response = httpx.Response(201, json={"attributes": {"uuid": "a1b2c3d4-0000"}})

        with pytest.raises(ProvisioningFailed) as exc_info:
            await _service(panel).create_account("1gb", "budi")
        assert exc_info.value.reason == "create server: response has no id"

    async def test_null_attributes_fails(self) -> None:
        """attributes must be an object."""
        panel = FakePanel()
        panel.user_response = httpx.Response(201, json={"attributes": None})

        with pytest.raises(ProvisioningFailed) as exc_info:
            await _service(panel).create_account("1gb", "budi")
        assert exc_info.value.reason == "create user: unexpected response body"

    async def test_network_failure(self) -> None:
        """Transport errors fail provisioning."""
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        with pytest.raises(ProvisioningFailed):
            await _service(handler).create_account("1gb", "budi")


class TestPaidOrderFulfilment:
    """Panel replies seen through a paid order poll."""

    async def test_reply_without_id_is_error_result(self, order_store, account_store, gateway, notifier, catalog, clock) -> None:
        """A malformed panel reply turns into the error poll result and an operator alert."""
        panel = FakePanel()
        panel.user_response = httpx.Response(201, json={"attributes": {"username": "budi"}})
        orchestrator = PanelOrderOrchestrator(
            order_store, account_store, gateway, _service(panel), notifier, catalog=catalog, clock=clock,
        )
        created = await orchestrator.create_order("u1", "1gb", "budi", "rahasia")
        gateway.status = PaymentStatus.COMPLETED

        result = await orchestrator.check_status(created.order_id)

        assert result.status == OrderStatus.ERROR
        assert (await order_store.get(created.order_id)).status == OrderStatus.COMPLETED
        event, payload = notifier.events[-1]
        assert event == NotificationEvent.PROVISIONING_FAILED
        assert payload["reason"] == "create user: response has no id"


class TestDeleteAccount:
    """Server deletion."""

    async def test_204_is_success(self) -> None:
        """Only 204 No Content counts as deleted."""
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(204)

        await _service(handler).delete_account(42)
        assert seen == [("DELETE", "/api/application/servers/42")]

    async def test_404_is_panel_not_found(self) -> None:
        """A missing server raises PanelNotFound."""
        with pytest.raises(PanelNotFound):
            await _service(lambda request: httpx.Response(404)).delete_account(42)

    @pytest.mark.parametrize("status_code", [200, 500])
    async def test_other_status_fails(self, status_code) -> None:
        """Anything else is a provisioning failure."""
        with pytest.raises(ProvisioningFailed):
            await _service(lambda request: httpx.Response(status_code)).delete_account(42)

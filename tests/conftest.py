"""Shared fixtures: controllable clock, fake gateway/provisioner, in-memory stores."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple, Dict, Any

import pytest

from models import PaymentHandle, PaymentStatus, ProvisionedAccount, NotificationEvent
from pricing_utils import PlanCatalog, DEFAULT_PRICES, format_specs
from services.errors import ProvisioningFailed
from services.order_store import InMemoryOrderStore, InMemoryAccountStore
from services.panel_order_orchestrator import PanelOrderOrchestrator

# 10:00 in Asia/Jakarta
START = datetime(2026, 1, 15, 3, 0, 0, tzinfo=timezone.utc)
GATEWAY_FEE = Decimal("105")


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """Pakasir stand-in; `status` is what every status query answers"""

    def __init__(self):
        self.status = PaymentStatus.UNPAID
        self.create_error: Optional[Exception] = None
        self.created: List[Tuple[Decimal, str]] = []
        self.queries: List[str] = []

    async def create_payment(self, amount: Decimal, order_id: str) -> PaymentHandle:
        if self.create_error is not None:
            raise self.create_error
        self.created.append((amount, order_id))
        return PaymentHandle(
            payment_number=f"00020101021226QRIS{order_id}",
            fee=GATEWAY_FEE,
            total_payment=amount + GATEWAY_FEE,
        )

    async def query_payment_status(self, order_id: str, amount: Decimal) -> PaymentStatus:
        self.queries.append(order_id)
        # let concurrent pollers interleave here
        await asyncio.sleep(0)
        return self.status


class FakeProvisioner:
    """Pterodactyl stand-in that counts calls"""

    def __init__(self, catalog: PlanCatalog, clock: FakeClock):
        self.catalog = catalog
        self.clock = clock
        self.fail_reason: Optional[str] = None
        self.delete_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.created: List[Tuple[str, str, Optional[str]]] = []
        self.deleted: List[int] = []
        self._next_server_id = 100

    async def create_account(self, plan: str, username: str, password: Optional[str] = None, email: Optional[str] = None) -> ProvisionedAccount:
        self.created.append((plan, username, password))
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail_reason:
            raise ProvisioningFailed(self.fail_reason)
        plan_info = self.catalog.resolve(plan)
        self._next_server_id += 1
        now = self.clock()
        return ProvisionedAccount(
            external_user_id=self._next_server_id + 1000,
            external_server_id=self._next_server_id,
            username=username,
            password=password or f"{username}01",
            email=email or f"{username}@gmail.com",
            login_url="https://panel.example.com",
            plan=plan_info.plan_id,
            specs=format_specs(plan_info),
            created_at=now,
            expires_at=now + timedelta(days=30),
        )

    async def delete_account(self, external_server_id: int) -> None:
        self.deleted.append(external_server_id)
        if self.delete_error is not None:
            raise self.delete_error


class RecordingNotifier:
    def __init__(self):
        self.events: List[Tuple[NotificationEvent, Dict[str, Any]]] = []

    def notify(self, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    def kinds(self) -> List[NotificationEvent]:
        return [event for event, _ in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog(prices=dict(DEFAULT_PRICES))


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def provisioner(catalog, clock) -> FakeProvisioner:
    return FakeProvisioner(catalog, clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def account_store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def orchestrator(order_store, account_store, gateway, provisioner, notifier, catalog, clock) -> PanelOrderOrchestrator:
    return PanelOrderOrchestrator(
        order_store=order_store,
        account_store=account_store,
        gateway=gateway,
        provisioner=provisioner,
        notifier=notifier,
        catalog=catalog,
        clock=clock,
        payment_window_minutes=5,
    )

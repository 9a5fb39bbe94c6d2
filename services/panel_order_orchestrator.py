"""
Panel Order Orchestrator - order lifecycle for Pterodactyl panel purchases

Architecture:
- Status state machine: pending → completed | pending → expired (both terminal)
- Every status change goes through the order store's atomic transition(),
  so concurrent pollers can never provision the same order twice
- Orders are marked completed before provisioning starts
- Creating the panel needs a provisioning claim on the order, so the poll
  that confirmed payment and an operator retry never both create a server
- Provisioning failures leave the order completed; an operator finishes it
  through provision_completed_order()
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Callable

from models import (
    Order, OrderStatus, PaymentStatus, NotificationEvent,
    OrderCreated, OrderStatusResult, ProvisionedAccount,
)
from monitoring.production_logging import log_business_event, log_error_with_context
from pricing_utils import PlanCatalog, get_plan_catalog, format_money
from services.errors import (
    GatewayError, PaymentCreationFailed, InvalidOrderRequest, InvalidOrderState,
    ProvisioningFailed, OrderNotFound, AccountNotFound, PanelNotFound,
)
from utils.timezone_utils import utc_now, format_local_time, DEFAULT_DISPLAY_TIMEZONE

logger = logging.getLogger(__name__)

PANEL_USERNAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9._-]{2,31}$')
MIN_PASSWORD_LENGTH = 5

PROVISIONING_FAILED_MESSAGE = "Payment received but panel setup failed. Please contact the admin."


def generate_order_id(now: datetime) -> str:
    """PANEL-<epoch ms>-<random hex>"""
    return f"PANEL-{int(now.timestamp() * 1000)}-{secrets.token_hex(6).upper()}"


class PanelOrderOrchestrator:
    """Single entry point for creating, polling, expiring and fulfilling panel orders"""

    def __init__(
        self,
        order_store,
        account_store,
        gateway,
        provisioner,
        notifier,
        catalog: Optional[PlanCatalog] = None,
        clock: Callable[[], datetime] = utc_now,
        payment_window_minutes: int = 5,
        provisioning_claim_minutes: int = 15,
        display_timezone: str = DEFAULT_DISPLAY_TIMEZONE,
    ):
        self.orders = order_store
        self.accounts = account_store
        self.gateway = gateway
        self.provisioner = provisioner
        self.notifier = notifier
        self.catalog = catalog or get_plan_catalog()
        self.clock = clock
        self.payment_window = timedelta(minutes=payment_window_minutes)
        self.display_timezone = display_timezone
        self.provisioning_claim = timedelta(minutes=provisioning_claim_minutes)

    # ─── Order creation ──────────────────────────────────────────────────────

    async def create_order(
        self,
        user_id: str,
        plan: str,
        panel_username: str,
        panel_password: Optional[str] = None,
        username: Optional[str] = None,
    ) -> OrderCreated:
        """
        Validate the request, open a QRIS payment and persist a pending order

        Raises:
            UnknownPlan / InvalidOrderRequest: rejected before any external call
            PaymentCreationFailed: the gateway could not create the payment
        """
        if not user_id:
            raise InvalidOrderRequest("A logged-in user is required to order a panel")

        plan_info = self.catalog.resolve(plan)
        panel_username = (panel_username or '').strip().lower()
        if not PANEL_USERNAME_PATTERN.match(panel_username):
            raise InvalidOrderRequest(
                "Panel username must be 3-32 characters of a-z, 0-9, '.', '_' or '-' "
                "and start with a letter or digit"
            )
        if panel_password and len(panel_password) < MIN_PASSWORD_LENGTH:
            raise InvalidOrderRequest(f"Panel password must be at least {MIN_PASSWORD_LENGTH} characters")
        if await self.accounts.get(panel_username) is not None:
            raise InvalidOrderRequest(f"Panel username '{panel_username}' is already taken")

        now = self.clock()
        for existing in await self.orders.list(panel_username=panel_username):
            if existing.reserves_panel_username(now):
                raise InvalidOrderRequest(f"Panel username '{panel_username}' is reserved by order {existing.id}")

        order_id = generate_order_id(now)
        logger.info(f"🛒 ORDER: Creating {plan_info.plan_id} order {order_id} for user {user_id} ({format_money(plan_info.price)})")

        try:
            handle = await self.gateway.create_payment(plan_info.price, order_id)
        except GatewayError as e:
            log_error_with_context('panel_orders', e, {'plan': plan_info.plan_id}, user_id=user_id, order_id=order_id)
            raise PaymentCreationFailed(f"Could not create QRIS payment: {e}") from e

        order = Order(
            id=order_id,
            user_id=user_id,
            username=username,
            plan=plan_info.plan_id,
            panel_username=panel_username,
            panel_password=panel_password or None,
            amount=plan_info.price,
            fee=handle.fee,
            total=handle.total_payment,
            payment_number=handle.payment_number,
            status=OrderStatus.PENDING,
            created_at=now,
            expires_at=now + self.payment_window,
        )
        await self.orders.upsert(order)

        log_business_event('panel_orders', 'order_created', {
            'plan': order.plan,
            'amount': str(order.amount),
            'total': str(order.total),
            'panel_username': order.panel_username,
        }, user_id=user_id, order_id=order_id)

        return OrderCreated(
            order_id=order.id,
            amount=order.amount,
            fee=order.fee,
            total=order.total,
            payment_number=order.payment_number,
            expires_at=order.expires_at,
            expired_time=format_local_time(order.expires_at, self.display_timezone),
        )

    # ─── Polling ─────────────────────────────────────────────────────────────

    async def check_status(self, order_id: str) -> OrderStatusResult:
        """
        Answer a payment poll, fulfilling the order the first time payment is seen

        Expiry is decided before the gateway is queried. Only the caller that
        wins the pending → completed transition provisions the account.
        """
        order = await self._load(order_id)

        if order.status == OrderStatus.PENDING and order.is_past_window(self.clock()):
            if await self.orders.transition(order.id, OrderStatus.PENDING, OrderStatus.EXPIRED):
                logger.info(f"⏰ ORDER: {order.id} expired before payment")
                log_business_event('panel_orders', 'order_expired', {'plan': order.plan}, user_id=order.user_id, order_id=order.id)
                order.status = OrderStatus.EXPIRED
                return OrderStatusResult(status=OrderStatus.EXPIRED, order=order)
            order = await self._load(order_id)

        if order.status != OrderStatus.PENDING:
            return await self._answer_from_state(order)

        payment_status = await self.gateway.query_payment_status(order.id, order.amount)
        if payment_status != PaymentStatus.COMPLETED:
            return OrderStatusResult(status=OrderStatus.PENDING, order=order)

        completed_at = self.clock()
        claimed = await self.orders.transition(
            order.id, OrderStatus.PENDING, OrderStatus.COMPLETED, completed_at=completed_at
        )
        if not claimed:
            logger.info(f"🔒 ORDER: {order.id} already claimed by another poll")
            return await self._answer_from_state(await self._load(order_id))

        order.status = OrderStatus.COMPLETED
        order.completed_at = completed_at
        logger.info(f"💰 ORDER: Payment confirmed for {order.id}, provisioning panel")
        self._notify(NotificationEvent.ORDER_PAID, self._order_payload(order))

        if not await self._claim_provisioning(order):
            logger.info(f"🔒 ORDER: {order.id} is already being provisioned")
            return await self._answer_from_state(order)
        return await self._provision(order, failure_message=PROVISIONING_FAILED_MESSAGE)

    async def _load(self, order_id: str) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _account_for(self, order: Order) -> Optional[ProvisionedAccount]:
        account = await self.accounts.get(order.panel_username)
        if account is not None and account.order_id not in (None, order.id):
            return None
        return account

    async def _answer_from_state(self, order: Order) -> OrderStatusResult:
        if order.status == OrderStatus.COMPLETED:
            return OrderStatusResult(status=OrderStatus.COMPLETED, account=await self._account_for(order), order=order)
        return OrderStatusResult(status=order.status, order=order)

    async def _claim_provisioning(self, order: Order) -> bool:
        now = self.clock()
        return await self.orders.claim_provisioning(order.id, now, now - self.provisioning_claim)

    async def _provision(self, order: Order, failure_message: Optional[str] = None) -> OrderStatusResult:
        """
        Create and persist the panel account for a completed order

        The caller holds the provisioning claim. A ProvisioningFailed releases
        it so an operator can retry; a server that was created but could not
        be recorded keeps it, because a retry would create a second server.
        """
        try:
            account = await self.provisioner.create_account(
                order.plan, order.panel_username, order.panel_password
            )
        except ProvisioningFailed as e:
            log_error_with_context('panel_orders', e, {'stage': 'provisioning', 'plan': order.plan},
                                   user_id=order.user_id, order_id=order.id)
            logger.error(f"🚨 ORDER: {order.id} paid but provisioning failed: {e.reason}")
            self._notify(NotificationEvent.PROVISIONING_FAILED, {**self._order_payload(order), 'reason': e.reason})
            await self.orders.finish_provisioning(order.id)
            return OrderStatusResult(status=OrderStatus.ERROR, message=failure_message or e.reason, order=order)

        account.order_id = order.id
        account.owner_id = order.user_id
        try:
            await self.accounts.upsert(account)
        except Exception as e:
            reason = f"server {account.external_server_id} was created but its account record could not be saved: {e}"
            log_error_with_context('panel_orders', e, {'stage': 'save_account', 'server_id': account.external_server_id},
                                   user_id=order.user_id, order_id=order.id)
            logger.error(f"🚨 ORDER: {order.id} {reason}")
            self._notify(NotificationEvent.PROVISIONING_FAILED, {
                **self._order_payload(order),
                'reason': reason,
                'server_id': account.external_server_id,
            })
            return OrderStatusResult(status=OrderStatus.ERROR, message=failure_message or reason, order=order)

        order.provisioned_at = self.clock()
        order.provisioning_started_at = None
        await self.orders.finish_provisioning(order.id, provisioned_at=order.provisioned_at)

        log_business_event('panel_orders', 'panel_provisioned', {
            'plan': account.plan,
            'panel_username': account.username,
            'server_id': account.external_server_id,
        }, user_id=order.user_id, order_id=order.id)
        self._notify(NotificationEvent.ACCOUNT_REGISTERED, self._account_payload(order, account))
        return OrderStatusResult(status=OrderStatus.COMPLETED, account=account, order=order)

    # ─── Expiry sweep ────────────────────────────────────────────────────────

    async def expire_stale(self) -> int:
        """Expire every pending order past its payment window; returns how many changed"""
        now = self.clock()
        expired = 0
        for order in await self.orders.list(status=OrderStatus.PENDING):
            if not order.is_past_window(now):
                continue
            if await self.orders.transition(order.id, OrderStatus.PENDING, OrderStatus.EXPIRED):
                expired += 1

        if expired:
            logger.info(f"⏰ EXPIRY SWEEP: {expired} pending order(s) expired")
            log_business_event('panel_orders', 'orders_expired', {'count': expired})
        else:
            logger.debug("⏰ EXPIRY SWEEP: nothing to expire")
        return expired

    # ─── Administration ──────────────────────────────────────────────────────

    async def delete_account(self, server_id: int, actor: str) -> ProvisionedAccount:
        """
        Delete a panel server and its account record

        A server the panel no longer knows is treated as stale: its record is
        removed and PanelNotFound is re-raised to tell the operator.
        """
        account = await self.accounts.get_by_server_id(server_id)
        if account is None:
            raise AccountNotFound(str(server_id))

        try:
            await self.provisioner.delete_account(server_id)
        except PanelNotFound:
            await self.accounts.delete(account.username)
            logger.warning(f"⚠️ ADMIN: server {server_id} was already gone from the panel, removed stale record {account.username}")
            raise

        await self.accounts.delete(account.username)
        logger.info(f"🗑️ ADMIN: {actor} deleted panel {account.username} (server {server_id})")
        log_business_event('panel_admin', 'panel_deleted', {
            'panel_username': account.username,
            'server_id': server_id,
            'actor': actor,
        }, order_id=account.order_id)
        self._notify(NotificationEvent.PANEL_DELETED, {
            'panel_username': account.username,
            'server_id': server_id,
            'plan': account.plan,
            'actor': actor,
        })
        return account

    async def get_order(self, order_id: str) -> Order:
        return await self._load(order_id)

    async def list_orders(self, user_id: Optional[str] = None) -> List[Order]:
        return await self.orders.list(user_id=user_id)

    async def list_accounts(self, owner_id: Optional[str] = None) -> List[ProvisionedAccount]:
        return await self.accounts.list(owner_id=owner_id)

    async def provision_completed_order(self, order_id: str) -> OrderStatusResult:
        """
        Operator retry for a paid order whose provisioning failed

        Payment is not checked again; the order is already completed. The
        retry has to win the provisioning claim, so it cannot run while a
        poll is still creating the panel.
        """
        order = await self._load(order_id)
        if order.status != OrderStatus.COMPLETED:
            raise InvalidOrderState(f"Order {order_id} is {order.status.value}, only completed orders can be provisioned")
        if order.provisioned_at is not None or await self._account_for(order) is not None:
            raise InvalidOrderState(f"Order {order_id} already has a panel account")
        if not await self._claim_provisioning(order):
            raise InvalidOrderState(f"Order {order_id} is already being provisioned")

        logger.info(f"🔧 ADMIN: Manually provisioning panel for completed order {order_id}")
        return await self._provision(order)

    # ─── Notifications ───────────────────────────────────────────────────────

    @staticmethod
    def _order_payload(order: Order) -> Dict[str, Any]:
        return {
            'order_id': order.id,
            'user_id': order.user_id,
            'username': order.username,
            'plan': order.plan,
            'panel_username': order.panel_username,
            'amount': order.amount,
            'total': order.total,
        }

    @classmethod
    def _account_payload(cls, order: Order, account: ProvisionedAccount) -> Dict[str, Any]:
        return {
            **cls._order_payload(order),
            'email': account.email,
            'login_url': account.login_url,
            'server_id': account.external_server_id,
            'specs': account.specs,
            'account_expires_at': account.expires_at,
        }

    def _notify(self, event: NotificationEvent, payload: Dict[str, Any]) -> None:
        try:
            self.notifier.notify(event, payload)
        except Exception as e:
            logger.warning(f"⚠️ Failed to schedule {event.value} notification: {e}")

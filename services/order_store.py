"""
Order and panel account persistence

Two backends share one interface: an in-process store used by tests and
single-worker deployments, and the PostgreSQL store used in production.
The order store's transition() is the only way a status changes and is
atomic in both backends: it succeeds only if the stored status still
equals the expected one. claim_provisioning() works the same way for
the right to create the panel of a completed order.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Any

from psycopg2.extras import Json

from database import execute_query, execute_update
from models import Order, OrderStatus, ProvisionedAccount
from utils.credential_cipher import CredentialCipher

logger = logging.getLogger(__name__)


class OrderStore(ABC):

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    async def list(
        self,
        status: Optional[OrderStatus] = None,
        user_id: Optional[str] = None,
        panel_username: Optional[str] = None,
    ) -> List[Order]:
        """Orders newest first, optionally filtered"""

    @abstractmethod
    async def upsert(self, order: Order) -> None:
        ...

    @abstractmethod
    async def transition(
        self,
        order_id: str,
        expected: OrderStatus,
        new: OrderStatus,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Atomically move an order from `expected` to `new`

        Returns True only for the caller whose update was applied; a
        concurrent caller with the same expectation gets False.
        """

    @abstractmethod
    async def claim_provisioning(self, order_id: str, started_at: datetime, stale_before: datetime) -> bool:
        """
        Take the right to provision a completed, not yet provisioned order

        Succeeds if nobody holds the claim or the holder started before
        `stale_before`. Exactly one concurrent caller gets True.
        """

    @abstractmethod
    async def finish_provisioning(self, order_id: str, provisioned_at: Optional[datetime] = None) -> None:
        """Drop the claim; a provisioned_at marks the order as fulfilled"""


class AccountStore(ABC):

    @abstractmethod
    async def get(self, username: str) -> Optional[ProvisionedAccount]:
        ...

    @abstractmethod
    async def get_by_server_id(self, external_server_id: int) -> Optional[ProvisionedAccount]:
        ...

    @abstractmethod
    async def list(self, owner_id: Optional[str] = None) -> List[ProvisionedAccount]:
        """Accounts newest first, optionally filtered by owner"""

    @abstractmethod
    async def upsert(self, account: ProvisionedAccount) -> None:
        ...

    @abstractmethod
    async def delete(self, username: str) -> bool:
        ...


# ─── In-memory backend ───────────────────────────────────────────────────────

class InMemoryOrderStore(OrderStore):
    """Dict-backed store; records are copied in and out so callers never share state"""

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    async def list(self, status=None, user_id=None, panel_username=None) -> List[Order]:
        async with self._lock:
            orders = [
                copy.deepcopy(o) for o in self._orders.values()
                if (status is None or o.status == status)
                and (user_id is None or o.user_id == user_id)
                and (panel_username is None or o.panel_username == panel_username)
            ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    async def upsert(self, order: Order) -> None:
        async with self._lock:
            self._orders[order.id] = copy.deepcopy(order)

    async def transition(self, order_id, expected, new, completed_at=None) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != expected:
                return False
            order.status = new
            if completed_at is not None:
                order.completed_at = completed_at
            return True

    async def claim_provisioning(self, order_id, started_at, stale_before) -> bool:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != OrderStatus.COMPLETED or order.provisioned_at is not None:
                return False
            if order.provisioning_started_at is not None and order.provisioning_started_at >= stale_before:
                return False
            order.provisioning_started_at = started_at
            return True

    async def finish_provisioning(self, order_id, provisioned_at=None) -> None:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                return
            order.provisioning_started_at = None
            if provisioned_at is not None:
                order.provisioned_at = provisioned_at


class InMemoryAccountStore(AccountStore):

    def __init__(self):
        self._accounts: Dict[str, ProvisionedAccount] = {}
        self._lock = asyncio.Lock()

    async def _find(self, predicate) -> Optional[ProvisionedAccount]:
        async with self._lock:
            for account in self._accounts.values():
                if predicate(account):
                    return copy.deepcopy(account)
        return None

    async def get(self, username: str) -> Optional[ProvisionedAccount]:
        async with self._lock:
            account = self._accounts.get(username.lower())
            return copy.deepcopy(account) if account else None

    async def get_by_server_id(self, external_server_id: int) -> Optional[ProvisionedAccount]:
        return await self._find(lambda a: a.external_server_id == external_server_id)

    async def list(self, owner_id: Optional[str] = None) -> List[ProvisionedAccount]:
        async with self._lock:
            accounts = [
                copy.deepcopy(a) for a in self._accounts.values()
                if owner_id is None or a.owner_id == owner_id
            ]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    async def upsert(self, account: ProvisionedAccount) -> None:
        async with self._lock:
            self._accounts[account.username.lower()] = copy.deepcopy(account)

    async def delete(self, username: str) -> bool:
        async with self._lock:
            return self._accounts.pop(username.lower(), None) is not None


# ─── PostgreSQL backend ──────────────────────────────────────────────────────

ORDER_COLUMNS = """
    id, user_id, username, plan, panel_username, panel_password, amount, fee, total,
    payment_number, status, created_at, expires_at, completed_at, provisioning_started_at, provisioned_at
"""

ACCOUNT_COLUMNS = """
    username, external_user_id, external_server_id, server_uuid, server_identifier,
    password, email, login_url, plan, specs, order_id, owner_id, created_at, expires_at
"""


class PostgresOrderStore(OrderStore):
    """panel_orders table; the pending panel password is stored encrypted"""

    def __init__(self, cipher: Optional[CredentialCipher] = None):
        self.cipher = cipher or CredentialCipher()

    def _row_to_order(self, row: Dict[str, Any]) -> Order:
        return Order(
            id=row['id'],
            user_id=row['user_id'],
            username=row.get('username'),
            plan=row['plan'],
            panel_username=row['panel_username'],
            panel_password=self.cipher.decrypt(row.get('panel_password')),
            amount=Decimal(row['amount']),
            fee=Decimal(row['fee']),
            total=Decimal(row['total']),
            payment_number=row['payment_number'],
            status=OrderStatus(row['status']),
            created_at=row['created_at'],
            expires_at=row['expires_at'],
            completed_at=row.get('completed_at'),
            provisioning_started_at=row.get('provisioning_started_at'),
            provisioned_at=row.get('provisioned_at'),
        )

    async def get(self, order_id: str) -> Optional[Order]:
        rows = await execute_query(f"SELECT {ORDER_COLUMNS} FROM panel_orders WHERE id = %s", (order_id,))
        return self._row_to_order(rows[0]) if rows else None

    async def list(self, status=None, user_id=None, panel_username=None) -> List[Order]:
        conditions = []
        params: List[Any] = []
        if status is not None:
            conditions.append("status = %s")
            params.append(status.value)
        if user_id is not None:
            conditions.append("user_id = %s")
            params.append(user_id)
        if panel_username is not None:
            conditions.append("panel_username = %s")
            params.append(panel_username)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await execute_query(
            f"SELECT {ORDER_COLUMNS} FROM panel_orders {where} ORDER BY created_at DESC",
            tuple(params),
        )
        return [self._row_to_order(row) for row in rows]

    async def upsert(self, order: Order) -> None:
        await execute_update(f"""
            INSERT INTO panel_orders ({ORDER_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                username = EXCLUDED.username,
                plan = EXCLUDED.plan,
                panel_username = EXCLUDED.panel_username,
                panel_password = EXCLUDED.panel_password,
                amount = EXCLUDED.amount,
                fee = EXCLUDED.fee,
                total = EXCLUDED.total,
                payment_number = EXCLUDED.payment_number,
                status = EXCLUDED.status,
                expires_at = EXCLUDED.expires_at,
                completed_at = EXCLUDED.completed_at,
                provisioning_started_at = EXCLUDED.provisioning_started_at,
                provisioned_at = EXCLUDED.provisioned_at
        """, (
            order.id, order.user_id, order.username, order.plan, order.panel_username,
            self.cipher.encrypt(order.panel_password), order.amount, order.fee, order.total,
            order.payment_number, order.status.value, order.created_at, order.expires_at,
            order.completed_at, order.provisioning_started_at, order.provisioned_at,
        ))

    async def transition(self, order_id, expected, new, completed_at=None) -> bool:
        rows_updated = await execute_update("""
            UPDATE panel_orders
            SET status = %s,
                completed_at = COALESCE(%s, completed_at)
            WHERE id = %s
            AND status = %s
        """, (new.value, completed_at, order_id, expected.value))

        if rows_updated == 1:
            logger.debug(f"🔒 Order {order_id}: {expected.value} -> {new.value}")
            return True
        return False

    async def claim_provisioning(self, order_id, started_at, stale_before) -> bool:
        rows_updated = await execute_update("""
            UPDATE panel_orders
            SET provisioning_started_at = %s
            WHERE id = %s
            AND status = 'completed'
            AND provisioned_at IS NULL
            AND (provisioning_started_at IS NULL OR provisioning_started_at < %s)
        """, (started_at, order_id, stale_before))

        if rows_updated == 1:
            logger.debug(f"🔒 Order {order_id}: provisioning claimed")
            return True
        return False

    async def finish_provisioning(self, order_id, provisioned_at=None) -> None:
        await execute_update("""
            UPDATE panel_orders
            SET provisioning_started_at = NULL,
                provisioned_at = COALESCE(%s, provisioned_at)
            WHERE id = %s
        """, (provisioned_at, order_id))


class PostgresAccountStore(AccountStore):
    """panels table; panel passwords are stored encrypted"""

    def __init__(self, cipher: Optional[CredentialCipher] = None):
        self.cipher = cipher or CredentialCipher()

    def _row_to_account(self, row: Dict[str, Any]) -> ProvisionedAccount:
        return ProvisionedAccount(
            external_user_id=row['external_user_id'],
            external_server_id=row['external_server_id'],
            server_uuid=row.get('server_uuid'),
            server_identifier=row.get('server_identifier'),
            username=row['username'],
            password=self.cipher.decrypt(row['password']),
            email=row['email'],
            login_url=row['login_url'],
            plan=row['plan'],
            specs=dict(row.get('specs') or {}),
            order_id=row.get('order_id'),
            owner_id=row.get('owner_id'),
            created_at=row['created_at'],
            expires_at=row['expires_at'],
        )

    async def _select_one(self, where: str, value: Any) -> Optional[ProvisionedAccount]:
        rows = await execute_query(f"SELECT {ACCOUNT_COLUMNS} FROM panels WHERE {where} = %s", (value,))
        return self._row_to_account(rows[0]) if rows else None

    async def get(self, username: str) -> Optional[ProvisionedAccount]:
        return await self._select_one("username", username.lower())

    async def get_by_server_id(self, external_server_id: int) -> Optional[ProvisionedAccount]:
        return await self._select_one("external_server_id", external_server_id)

    async def list(self, owner_id: Optional[str] = None) -> List[ProvisionedAccount]:
        if owner_id is None:
            rows = await execute_query(f"SELECT {ACCOUNT_COLUMNS} FROM panels ORDER BY created_at DESC")
        else:
            rows = await execute_query(
                f"SELECT {ACCOUNT_COLUMNS} FROM panels WHERE owner_id = %s ORDER BY created_at DESC",
                (owner_id,),
            )
        return [self._row_to_account(row) for row in rows]

    async def upsert(self, account: ProvisionedAccount) -> None:
        await execute_update(f"""
            INSERT INTO panels ({ACCOUNT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (username) DO UPDATE SET
                external_user_id = EXCLUDED.external_user_id,
                external_server_id = EXCLUDED.external_server_id,
                server_uuid = EXCLUDED.server_uuid,
                server_identifier = EXCLUDED.server_identifier,
                password = EXCLUDED.password,
                email = EXCLUDED.email,
                login_url = EXCLUDED.login_url,
                plan = EXCLUDED.plan,
                specs = EXCLUDED.specs,
                order_id = EXCLUDED.order_id,
                owner_id = EXCLUDED.owner_id,
                expires_at = EXCLUDED.expires_at
        """, (
            account.username.lower(), account.external_user_id, account.external_server_id,
            account.server_uuid, account.server_identifier, self.cipher.encrypt(account.password),
            account.email, account.login_url, account.plan, Json(account.specs), account.order_id,
            account.owner_id, account.created_at, account.expires_at,
        ))

    async def delete(self, username: str) -> bool:
        rows_deleted = await execute_update("DELETE FROM panels WHERE username = %s", (username.lower(),))
        return rows_deleted > 0

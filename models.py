"""
Domain records for panel orders and provisioned panel accounts
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Optional


class OrderStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    ERROR = "error"


class PaymentStatus(Enum):
    UNPAID = "unpaid"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


class NotificationEvent(Enum):
    ACCOUNT_REGISTERED = "account_registered"
    ORDER_PAID = "order_paid"
    PANEL_DELETED = "panel_deleted"
    PROVISIONING_FAILED = "provisioning_failed"


@dataclass(frozen=True)
class Plan:
    plan_id: str
    memory: int   # MB, 0 = unlimited
    disk: int     # MB, 0 = unlimited
    cpu: int      # percent, 0 = unlimited
    price: Decimal


@dataclass(frozen=True)
class PaymentHandle:
    """QRIS payment returned by the gateway"""
    payment_number: str
    fee: Decimal
    total_payment: Decimal


@dataclass
class Order:
    id: str
    user_id: str
    plan: str
    panel_username: str
    panel_password: Optional[str]
    amount: Decimal
    fee: Decimal
    total: Decimal
    payment_number: str
    status: OrderStatus
    created_at: datetime
    expires_at: datetime
    username: Optional[str] = None
    completed_at: Optional[datetime] = None
    provisioning_started_at: Optional[datetime] = None
    provisioned_at: Optional[datetime] = None

    def is_past_window(self, now: datetime) -> bool:
        return now > self.expires_at

    def reserves_panel_username(self, now: datetime) -> bool:
        """Open orders and paid orders still waiting for their panel keep the username"""
        if self.status == OrderStatus.PENDING:
            return not self.is_past_window(now)
        return self.status == OrderStatus.COMPLETED and self.provisioned_at is None

    def to_public_dict(self) -> Dict[str, Any]:
        """Order as shown to customers and admins (no credentials)"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'username': self.username,
            'plan': self.plan,
            'panel_username': self.panel_username,
            'amount': self.amount,
            'fee': self.fee,
            'total': self.total,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'provisioned_at': self.provisioned_at.isoformat() if self.provisioned_at else None,
        }


@dataclass
class ProvisionedAccount:
    external_user_id: int
    external_server_id: int
    username: str
    password: str
    email: str
    login_url: str
    plan: str
    specs: Dict[str, str]
    created_at: datetime
    expires_at: datetime
    server_uuid: Optional[str] = None
    server_identifier: Optional[str] = None
    order_id: Optional[str] = None
    owner_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['expires_at'] = self.expires_at.isoformat()
        return data


@dataclass(frozen=True)
class OrderCreated:
    """What the buyer needs to render the QRIS payment screen"""
    order_id: str
    amount: Decimal
    fee: Decimal
    total: Decimal
    payment_number: str
    expires_at: datetime
    expired_time: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'order_id': self.order_id,
            'amount': self.amount,
            'fee': self.fee,
            'total': self.total,
            'payment_number': self.payment_number,
            'expires_at': self.expires_at.isoformat(),
            'expired_time': self.expired_time,
        }


@dataclass
class OrderStatusResult:
    status: OrderStatus
    account: Optional[ProvisionedAccount] = None
    message: Optional[str] = None
    order: Optional[Order] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'status': self.status.value}
        if self.account is not None:
            data['panel'] = self.account.to_dict()
        if self.message:
            data['message'] = self.message
        return data

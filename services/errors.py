"""
Exception hierarchy for the panel order lifecycle
"""


class PanelShopError(Exception):
    """Base class for all storefront errors"""
    pass


# ─── Validation ───────────────────────────────────────────────────────────────

class ValidationError(PanelShopError):
    """Request rejected before any external call"""
    pass


class UnknownPlan(ValidationError):
    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Unknown plan: {plan_id!r}")


class InvalidOrderRequest(ValidationError):
    pass


class InvalidOrderState(ValidationError):
    """Operation not allowed for the order's current status"""
    pass


# ─── Payment gateway ─────────────────────────────────────────────────────────

class GatewayError(PanelShopError):
    pass


class GatewayUnavailable(GatewayError):
    """Network failure or non-2xx response from the gateway"""
    pass


class GatewayRejected(GatewayError):
    """Gateway answered but did not return a payment handle"""
    pass


class PaymentCreationFailed(GatewayError):
    """Order creation aborted because no payment could be created"""
    pass


# ─── Provisioning ────────────────────────────────────────────────────────────

class ProvisioningError(PanelShopError):
    pass


class ProvisioningFailed(ProvisioningError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# ─── Not found ───────────────────────────────────────────────────────────────

class NotFoundError(PanelShopError):
    pass


class OrderNotFound(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class AccountNotFound(NotFoundError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Panel account {key} not found")


class PanelNotFound(NotFoundError):
    """The remote panel reports the server does not exist"""

    def __init__(self, server_id):
        self.server_id = server_id
        super().__init__(f"Server {server_id} not found on panel")

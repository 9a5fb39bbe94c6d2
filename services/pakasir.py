"""
Pakasir QRIS payment gateway client
Creates QRIS payments and reports their settlement status by order id
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Any

import httpx

from config import PaymentConfig, get_config
from models import PaymentHandle, PaymentStatus
from monitoring.production_logging import log_performance_metric
from services.errors import GatewayUnavailable, GatewayRejected

logger = logging.getLogger(__name__)


def _to_decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise GatewayRejected(f"Pakasir returned invalid {field_name}: {value!r}") from e


class PakasirService:
    """Pakasir QRIS payment service"""

    def __init__(self, config: Optional[PaymentConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.config = config or get_config().payment
        self.base_url = self.config.base_url.rstrip('/')
        self._transport = transport
        if self.is_available():
            logger.info(f"🔧 Pakasir service initialized for project {self.config.project}")
        else:
            logger.info("🔧 Pakasir service initialized (missing credentials)")

    def is_available(self) -> bool:
        """Check if Pakasir credentials are configured"""
        return bool(self.config.project and self.config.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self.config.timeout_seconds)

    def _identity(self, order_id: str, amount: Decimal) -> Dict[str, Any]:
        # Pakasir expects whole rupiah
        return {
            'project': self.config.project,
            'order_id': order_id,
            'amount': int(amount),
            'api_key': self.config.api_key,
        }

    async def create_payment(self, amount: Decimal, order_id: str) -> PaymentHandle:
        """
        Create a QRIS payment for an order

        Raises:
            GatewayUnavailable: network failure or non-2xx response
            GatewayRejected: response has no payment handle
        """
        operation_start = time.time()
        logger.info(f"💳 Pakasir: creating QRIS payment for order {order_id}, amount {amount}")

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/transactioncreate/qris",
                    json=self._identity(order_id, amount),
                    headers={'Content-Type': 'application/json'},
                )
        except httpx.HTTPError as e:
            log_performance_metric('pakasir', 'create_payment', (time.time() - operation_start) * 1000, success=False)
            logger.error(f"❌ Pakasir create payment failed for order {order_id}: {e}")
            raise GatewayUnavailable(f"Pakasir unreachable: {e}") from e

        duration_ms = (time.time() - operation_start) * 1000

        if not response.is_success:
            log_performance_metric('pakasir', 'create_payment', duration_ms, success=False)
            logger.error(f"❌ Pakasir API error: {response.status_code} - {response.text}")
            raise GatewayUnavailable(f"Pakasir returned HTTP {response.status_code}")

        try:
            result = response.json()
        except ValueError as e:
            log_performance_metric('pakasir', 'create_payment', duration_ms, success=False)
            raise GatewayRejected("Pakasir returned a non-JSON body") from e

        payment = result.get('payment') if isinstance(result, dict) else None
        if not payment or not payment.get('payment_number'):
            log_performance_metric('pakasir', 'create_payment', duration_ms, success=False)
            logger.error(f"❌ Pakasir response for order {order_id} has no payment handle: {result}")
            raise GatewayRejected("Pakasir did not return a QRIS payment")

        handle = PaymentHandle(
            payment_number=str(payment['payment_number']),
            fee=_to_decimal(payment.get('fee', 0), 'fee'),
            total_payment=_to_decimal(payment.get('total_payment', amount), 'total_payment'),
        )
        log_performance_metric('pakasir', 'create_payment', duration_ms, success=True)
        logger.info(f"✅ Pakasir QRIS created for order {order_id}: fee {handle.fee}, total {handle.total_payment}")
        return handle

    async def query_payment_status(self, order_id: str, amount: Decimal) -> PaymentStatus:
        """
        Check settlement status of an order's payment

        Never raises: anything that is not a clear answer from the gateway
        is reported as UNKNOWN.
        """
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/transactiondetail",
                    params=self._identity(order_id, amount),
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Pakasir status check failed for order {order_id}: {e}")
            return PaymentStatus.UNKNOWN

        if not response.is_success:
            logger.warning(f"⚠️ Pakasir status check error for order {order_id}: HTTP {response.status_code}")
            return PaymentStatus.UNKNOWN

        try:
            result = response.json()
        except ValueError:
            logger.warning(f"⚠️ Pakasir status check for order {order_id} returned a non-JSON body")
            return PaymentStatus.UNKNOWN

        transaction = result.get('transaction') if isinstance(result, dict) else None
        if not isinstance(transaction, dict):
            logger.debug(f"Pakasir has no transaction details for order {order_id}")
            return PaymentStatus.UNKNOWN

        status = str(transaction.get('status', '')).lower()
        if status == 'completed':
            logger.info(f"✅ Pakasir reports order {order_id} paid")
            return PaymentStatus.COMPLETED

        logger.debug(f"Pakasir status for order {order_id}: {status or 'n/a'}")
        return PaymentStatus.UNPAID

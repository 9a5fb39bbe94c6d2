"""
Pterodactyl Application API Service
Creates panel users + server instances for purchased plans and deletes servers
"""

import logging
import time
from typing import Dict, Optional, Any, Callable
from datetime import datetime, timedelta

import httpx

from config import PanelConfig, get_config
from models import ProvisionedAccount
from monitoring.production_logging import log_performance_metric
from pricing_utils import PlanCatalog, get_plan_catalog, format_specs
from services.errors import ProvisioningFailed, PanelNotFound
from utils.timezone_utils import utc_now, format_local_datetime

logger = logging.getLogger(__name__)

# Node.js egg defaults used for every storefront server
EGG_ENVIRONMENT = {
    'INST': 'npm',
    'USER_UPLOAD': '0',
    'AUTO_UPDATE': '0',
    'CMD_RUN': 'npm start',
}
FEATURE_LIMITS = {
    'databases': 5,
    'backups': 5,
    'allocations': 5,
}
IO_WEIGHT = 500


def _first_error(body: Any) -> Optional[str]:
    """Pterodactyl can answer 2xx with an `errors` array; return the first one"""
    if isinstance(body, dict) and body.get('errors'):
        errors = body['errors']
        first = errors[0] if isinstance(errors, list) and errors else errors
        if isinstance(first, dict):
            return first.get('detail') or first.get('code') or str(first)
        return str(first)
    return None


class PterodactylService:
    """Pterodactyl application API wrapper for panel account management"""

    def __init__(
        self,
        config: Optional[PanelConfig] = None,
        catalog: Optional[PlanCatalog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config or get_config().panel
        self.catalog = catalog or get_plan_catalog()
        self.clock = clock
        self._transport = transport

        if not self.config.api_key:
            logger.warning("PTERODACTYL_API_KEY not set - panel provisioning will fail")

        self.base_url = f"{self.config.domain.rstrip('/')}/api/application"
        self.headers = {
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {self.config.api_key}',
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            headers=self.headers,
            timeout=self.config.timeout_seconds,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, step: str, **kwargs) -> Dict[str, Any]:
        """Perform one API step; raise ProvisioningFailed on any kind of failure"""
        try:
            response = await client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ Pterodactyl {step}: network error: {e}")
            raise ProvisioningFailed(f"{step}: panel unreachable ({e})") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        error = _first_error(body)
        if error:
            logger.error(f"❌ Pterodactyl {step}: API error: {error}")
            raise ProvisioningFailed(f"{step}: {error}")

        if not response.is_success:
            logger.error(f"❌ Pterodactyl {step}: HTTP {response.status_code} - {response.text}")
            raise ProvisioningFailed(f"{step}: HTTP {response.status_code}")

        if not isinstance(body, dict) or not isinstance(body.get('attributes'), dict):
            raise ProvisioningFailed(f"{step}: unexpected response body")

        return body['attributes']

    @staticmethod
    def _require_id(attributes: Dict[str, Any], step: str) -> int:
        """Created objects must come back with their panel id"""
        object_id = attributes.get('id')
        if object_id is None:
            logger.error(f"❌ Pterodactyl {step}: response has no id")
            raise ProvisioningFailed(f"{step}: response has no id")
        return object_id

    async def create_account(self, plan: str, username: str, password: Optional[str] = None, email: Optional[str] = None) -> ProvisionedAccount:
        """
        Create a panel user and a server bound to it

        Steps: create user -> fetch egg startup command -> create server.
        A user created before a failing server step is not rolled back.

        Args:
            plan: Catalog plan id
            username: Desired panel username (lower-cased)
            password: Panel password, defaults to '<username>01'
            email: Panel email, defaults to '<username>@gmail.com'

        Returns:
            The provisioned account (not yet persisted)
        """
        plan_info = self.catalog.resolve(plan)
        panel_username = username.lower()
        panel_email = email or f"{panel_username}@gmail.com"
        panel_password = password or f"{panel_username}01"
        panel_name = f"{username[:1].upper()}{username[1:]} Server"
        operation_start = time.time()

        logger.info(f"🖥️ Pterodactyl: provisioning {plan_info.plan_id} panel for {panel_username}")

        try:
            async with self._client() as client:
                user = await self._request(client, 'POST', '/users', 'create user', json={
                    'email': panel_email,
                    'username': panel_username,
                    'first_name': panel_name,
                    'last_name': 'Server',
                    'language': 'en',
                    'password': panel_password,
                })
                external_user_id = self._require_id(user, 'create user')
                logger.info(f"✅ Pterodactyl user {panel_username} created (id {external_user_id})")

                egg = await self._request(
                    client, 'GET',
                    f"/nests/{self.config.nest_id}/eggs/{self.config.egg_id}",
                    'fetch egg',
                )
                startup_cmd = egg.get('startup', '')

                now = self.clock()
                server = await self._request(client, 'POST', '/servers', 'create server', json={
                    'name': panel_name,
                    'description': format_local_datetime(now),
                    'user': external_user_id,
                    'egg': int(self.config.egg_id),
                    'docker_image': self.config.docker_image,
                    'startup': startup_cmd,
                    'environment': dict(EGG_ENVIRONMENT),
                    'limits': {
                        'memory': plan_info.memory,
                        'swap': 0,
                        'disk': plan_info.disk,
                        'io': IO_WEIGHT,
                        'cpu': plan_info.cpu,
                    },
                    'feature_limits': dict(FEATURE_LIMITS),
                    'deploy': {
                        'locations': [int(self.config.location_id)],
                        'dedicated_ip': False,
                        'port_range': [],
                    },
                })
                external_server_id = self._require_id(server, 'create server')
        except ProvisioningFailed:
            log_performance_metric('pterodactyl', 'create_account', (time.time() - operation_start) * 1000, success=False)
            raise

        log_performance_metric('pterodactyl', 'create_account', (time.time() - operation_start) * 1000, success=True)
        logger.info(f"✅ Pterodactyl server {external_server_id} created for {panel_username}")

        return ProvisionedAccount(
            external_user_id=external_user_id,
            external_server_id=external_server_id,
            server_uuid=server.get('uuid'),
            server_identifier=server.get('identifier'),
            username=panel_username,
            password=panel_password,
            email=panel_email,
            login_url=self.config.domain,
            plan=plan_info.plan_id,
            specs=format_specs(plan_info),
            created_at=now,
            expires_at=now + timedelta(days=self.config.account_validity_days),
        )

    async def delete_account(self, external_server_id: int) -> None:
        """
        Delete a server instance

        Only HTTP 204 counts as success.

        Raises:
            PanelNotFound: the panel has no such server (404)
            ProvisioningFailed: any other response or network failure
        """
        try:
            async with self._client() as client:
                response = await client.delete(f"{self.base_url}/servers/{external_server_id}")
        except httpx.HTTPError as e:
            logger.error(f"❌ Failed to delete Pterodactyl server {external_server_id}: {e}")
            raise ProvisioningFailed(f"delete server: panel unreachable ({e})") from e

        if response.status_code == 204:
            logger.info(f"✅ Deleted Pterodactyl server: {external_server_id}")
            return
        if response.status_code == 404:
            logger.info(f"Pterodactyl server {external_server_id} not found (404)")
            raise PanelNotFound(external_server_id)

        logger.warning(f"⚠️ Unexpected response deleting server {external_server_id}: {response.status_code}")
        raise ProvisioningFailed(f"delete server: HTTP {response.status_code}")

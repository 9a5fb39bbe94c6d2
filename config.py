"""
Centralized configuration for the PteroShop panel storefront
All settings come from environment variables (loaded from .env at startup)
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid integer for {name}={raw!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"⚠️ Invalid number for {name}={raw!r}, using default {default}")
        return default


@dataclass
class PaymentConfig:
    """Pakasir QRIS gateway settings"""
    base_url: str = 'https://app.pakasir.com/api'
    project: str = ''
    api_key: str = ''
    timeout_seconds: float = 30.0


@dataclass
class PanelConfig:
    """Pterodactyl application API settings"""
    domain: str = ''
    api_key: str = ''
    nest_id: int = 5
    egg_id: int = 15
    location_id: int = 1
    docker_image: str = 'ghcr.io/parkervcp/yolks:nodejs_20'
    timeout_seconds: float = 30.0
    account_validity_days: int = 30


@dataclass
class OrderConfig:
    """Order lifecycle settings"""
    payment_window_minutes: int = 5
    display_timezone: str = 'Asia/Jakarta'
    expiry_cron_minute: int = 0
    provisioning_claim_minutes: int = 15


@dataclass
class TelegramConfig:
    """Owner notification settings"""
    bot_token: str = ''
    owner_chat_id: Optional[int] = None
    notify_group_id: Optional[int] = None


@dataclass
class DatabaseConfig:
    url: str = ''
    min_connections: int = 2
    max_connections: int = 10
    encryption_key: str = ''


@dataclass
class SecurityConfig:
    admin_api_key: str = ''


@dataclass
class Config:
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    panel: PanelConfig = field(default_factory=PanelConfig)
    orders: OrderConfig = field(default_factory=OrderConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)

    @classmethod
    def from_env(cls) -> 'Config':
        """Build configuration from the current process environment"""
        owner_id = os.getenv('TELEGRAM_OWNER_ID', '').strip()
        group_id = os.getenv('TELEGRAM_NOTIFY_GROUP_ID', '').strip()

        return cls(
            payment=PaymentConfig(
                base_url=os.getenv('PAKASIR_BASE_URL', 'https://app.pakasir.com/api').rstrip('/'),
                project=os.getenv('PAKASIR_SLUG', ''),
                api_key=os.getenv('PAKASIR_API_KEY', ''),
                timeout_seconds=_env_float('PAKASIR_TIMEOUT_SECONDS', 30.0),
            ),
            panel=PanelConfig(
                domain=os.getenv('PTERODACTYL_DOMAIN', '').rstrip('/'),
                api_key=os.getenv('PTERODACTYL_API_KEY', ''),
                nest_id=_env_int('PTERODACTYL_NEST_ID', 5),
                egg_id=_env_int('PTERODACTYL_EGG_ID', 15),
                location_id=_env_int('PTERODACTYL_LOCATION_ID', 1),
                docker_image=os.getenv('PTERODACTYL_DOCKER_IMAGE', 'ghcr.io/parkervcp/yolks:nodejs_20'),
                timeout_seconds=_env_float('PTERODACTYL_TIMEOUT_SECONDS', 30.0),
                account_validity_days=_env_int('PANEL_VALIDITY_DAYS', 30),
            ),
            orders=OrderConfig(
                payment_window_minutes=_env_int('ORDER_PAYMENT_WINDOW_MINUTES', 5),
                display_timezone=os.getenv('DISPLAY_TIMEZONE', 'Asia/Jakarta'),
                expiry_cron_minute=_env_int('ORDER_EXPIRY_CRON_MINUTE', 0),
                provisioning_claim_minutes=_env_int('ORDER_PROVISIONING_CLAIM_MINUTES', 15),
            ),
            telegram=TelegramConfig(
                bot_token=os.getenv('TELEGRAM_BOT_TOKEN', ''),
                owner_chat_id=int(owner_id) if owner_id.lstrip('-').isdigit() else None,
                notify_group_id=int(group_id) if group_id.lstrip('-').isdigit() else None,
            ),
            database=DatabaseConfig(
                url=os.getenv('DATABASE_URL', ''),
                min_connections=_env_int('DATABASE_POOL_MIN', 2),
                max_connections=_env_int('DATABASE_POOL_MAX', 10),
                encryption_key=os.getenv('DATABASE_ENCRYPTION_KEY', ''),
            ),
            security=SecurityConfig(
                admin_api_key=os.getenv('ADMIN_API_KEY', ''),
            ),
        )

    def validate(self) -> Dict[str, Any]:
        """Check for missing settings; never raises"""
        issues: List[str] = []

        if not self.payment.project or not self.payment.api_key:
            issues.append('PAKASIR_SLUG and PAKASIR_API_KEY are required for QRIS payments')
        if not self.panel.domain or not self.panel.api_key:
            issues.append('PTERODACTYL_DOMAIN and PTERODACTYL_API_KEY are required for provisioning')
        if not self.database.url:
            issues.append('DATABASE_URL is not set')
        if not self.database.encryption_key:
            issues.append('DATABASE_ENCRYPTION_KEY is not set - stored panel passwords use the fallback key')
        if not self.security.admin_api_key:
            issues.append('ADMIN_API_KEY is not set - admin endpoints are disabled')
        if self.orders.payment_window_minutes <= 0:
            issues.append('ORDER_PAYMENT_WINDOW_MINUTES must be positive')
        if self.orders.provisioning_claim_minutes <= 0:
            issues.append('ORDER_PROVISIONING_CLAIM_MINUTES must be positive')
        if self.telegram.bot_token and self.telegram.owner_chat_id is None:
            issues.append('TELEGRAM_BOT_TOKEN is set but TELEGRAM_OWNER_ID is missing')

        return {'valid': not issues, 'issues': issues}


_config: Optional[Config] = None


def get_config() -> Config:
    """Get global configuration instance"""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment"""
    global _config
    _config = None

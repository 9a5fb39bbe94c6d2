"""
Timezone utilities
All stored timestamps are timezone-aware UTC; local time is only used for display
"""

import logging
from datetime import datetime, timezone
from typing import Optional
import pytz

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_TIMEZONE = 'Asia/Jakarta'


class TimezoneManager:
    """Centralized timezone handling"""

    def __init__(self):
        self.utc = timezone.utc

    def now(self) -> datetime:
        """Get current time in UTC"""
        return datetime.now(self.utc)

    def to_local(self, dt: datetime, tz_name: str = DEFAULT_DISPLAY_TIMEZONE) -> datetime:
        """Convert a datetime to the given display timezone; naive values are taken as UTC"""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=self.utc)
        return dt.astimezone(pytz.timezone(tz_name))

    def format_local(self, dt: datetime, tz_name: str = DEFAULT_DISPLAY_TIMEZONE, fmt: str = '%H:%M') -> str:
        """Format a datetime in the display timezone (24h clock by default)"""
        return self.to_local(dt, tz_name).strftime(fmt)


_timezone_manager: Optional[TimezoneManager] = None


def get_timezone_manager() -> TimezoneManager:
    """Get global timezone manager instance"""
    global _timezone_manager
    if _timezone_manager is None:
        _timezone_manager = TimezoneManager()
    return _timezone_manager


def utc_now() -> datetime:
    """Get current UTC time"""
    return get_timezone_manager().now()


def format_local_time(dt: datetime, tz_name: str = DEFAULT_DISPLAY_TIMEZONE, fmt: str = '%H:%M') -> str:
    """Format datetime for customer-facing display, e.g. the QRIS expiry clock"""
    return get_timezone_manager().format_local(dt, tz_name, fmt)


def format_local_datetime(dt: datetime, tz_name: str = DEFAULT_DISPLAY_TIMEZONE) -> str:
    return get_timezone_manager().format_local(dt, tz_name, '%d/%m/%Y %H:%M:%S')

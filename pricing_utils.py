"""
Plan catalog and pricing helpers for Pterodactyl panel plans
Resource presets are fixed; prices can be overridden per plan from the environment
"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Any

from models import Plan
from services.errors import UnknownPlan

logger = logging.getLogger(__name__)

# plan_id -> (memory MB, disk MB, cpu %); 0 means unlimited
PLAN_PRESETS: Dict[str, tuple] = {
    '1gb': (1000, 1000, 40),
    '2gb': (2000, 1000, 60),
    '3gb': (3000, 2000, 80),
    '4gb': (4000, 2000, 100),
    '5gb': (5000, 3000, 120),
    '6gb': (6000, 3000, 140),
    '7gb': (7000, 4000, 160),
    '8gb': (8000, 4000, 180),
    '9gb': (9000, 5000, 200),
    '10gb': (10000, 5000, 220),
    'unlimited': (0, 0, 0),
}

# Default prices in whole rupiah
DEFAULT_PRICES: Dict[str, Decimal] = {
    '1gb': Decimal('15000'),
    '2gb': Decimal('20000'),
    '3gb': Decimal('25000'),
    '4gb': Decimal('30000'),
    '5gb': Decimal('35000'),
    '6gb': Decimal('40000'),
    '7gb': Decimal('45000'),
    '8gb': Decimal('50000'),
    '9gb': Decimal('55000'),
    '10gb': Decimal('60000'),
    'unlimited': Decimal('75000'),
}


def get_plan_prices() -> Dict[str, Decimal]:
    """Get plan prices, honouring PANEL_PRICE_<PLAN> environment overrides"""
    prices = dict(DEFAULT_PRICES)
    for plan_id in PLAN_PRESETS:
        raw = os.environ.get(f'PANEL_PRICE_{plan_id.upper()}')
        if not raw:
            continue
        try:
            price = Decimal(raw)
        except InvalidOperation:
            logger.warning(f"⚠️ Ignoring invalid price override PANEL_PRICE_{plan_id.upper()}={raw!r}")
            continue
        if price <= 0:
            logger.warning(f"⚠️ Ignoring non-positive price override for {plan_id}: {price}")
            continue
        prices[plan_id] = price
    return prices


class PlanCatalog:
    """Static mapping of plan id to resources and price"""

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        prices = prices if prices is not None else get_plan_prices()
        self._plans: Dict[str, Plan] = {}
        for plan_id, (memory, disk, cpu) in PLAN_PRESETS.items():
            if plan_id not in prices:
                continue
            self._plans[plan_id] = Plan(
                plan_id=plan_id,
                memory=memory,
                disk=disk,
                cpu=cpu,
                price=prices[plan_id],
            )

    def resolve(self, plan_id: str) -> Plan:
        """Return the plan or raise UnknownPlan"""
        key = (plan_id or '').strip().lower()
        plan = self._plans.get(key)
        if plan is None:
            raise UnknownPlan(plan_id)
        return plan

    def list_plans(self) -> List[Plan]:
        return list(self._plans.values())

    def __contains__(self, plan_id: str) -> bool:
        return (plan_id or '').strip().lower() in self._plans


_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    """Get global plan catalog instance"""
    global _catalog
    if _catalog is None:
        _catalog = PlanCatalog()
    return _catalog


def format_spec_size(megabytes: int) -> str:
    """1000 -> '1GB', 1500 -> '1.5GB', 0 -> 'Unlimited'"""
    if megabytes == 0:
        return 'Unlimited'
    gigabytes = Decimal(megabytes) / Decimal(1000)
    return f"{gigabytes.normalize():f}GB"


def format_cpu(cpu: int) -> str:
    return 'Unlimited' if cpu == 0 else f"{cpu}%"


def format_specs(plan: Plan) -> Dict[str, str]:
    """Human-readable resource summary stored with each panel account"""
    return {
        'ram': format_spec_size(plan.memory),
        'cpu': format_cpu(plan.cpu),
        'disk': format_spec_size(plan.disk),
    }


def format_money(amount: Decimal) -> str:
    """Rupiah display: no minor unit, '.' as thousands separator (Rp15.000)"""
    whole = int(Decimal(amount).to_integral_value())
    return f"Rp{whole:,}".replace(',', '.')


def plan_to_dict(plan: Plan) -> Dict[str, Any]:
    """Pricing listing entry"""
    return {
        'plan': plan.plan_id,
        'price': plan.price,
        'price_display': format_money(plan.price),
        'specs': format_specs(plan),
        'limits': {'memory': plan.memory, 'disk': plan.disk, 'cpu': plan.cpu},
    }

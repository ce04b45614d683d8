from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Callable, Iterable, List, Mapping, Optional

from flask import current_app

from app.extensions import db
from app.utils.helpers import round_currency

FREE_PLAN = "free"
ALL_ROLES = "all"


@dataclass(frozen=True)
class Plan:
    name: str
    display_name: str
    price: Decimal
    duration_days: int  # 0 = lifetime
    features: tuple = ()
    max_listings: int = -1
    boost_credits: int = 0
    allowed_roles: tuple = (ALL_ROLES,)
    is_active: bool = True
    visible: bool = True
    sort_order: int = 0
    description: str = ""

    @property
    def is_free(self) -> bool:
        return self.price <= 0

    @property
    def is_lifetime(self) -> bool:
        return self.duration_days <= 0

    def allows_role(self, role: str | None) -> bool:
        if not self.allowed_roles or ALL_ROLES in self.allowed_roles:
            return True
        return (role or "user") in self.allowed_roles

    def to_dict(self):
        return dict(
            name=self.display_name,
            price=str(self.price),
            duration=self.duration_days,
            features=list(self.features),
            maxListings=self.max_listings,
            boostCredits=self.boost_credits,
        )


# Static fallback. Never mutated at runtime; admin-managed PlanDefinition rows win.
DEFAULT_PLANS: Mapping[str, Plan] = MappingProxyType({
    "free": Plan(
        name="free",
        display_name="Free",
        price=Decimal("0.00"),
        duration_days=0,
        features=("Unlimited listings", "Standard support"),
        sort_order=0,
    ),
    "basic": Plan(
        name="basic",
        display_name="Basic",
        price=Decimal("29.99"),
        duration_days=30,
        features=(
            "Unlimited listings",
            "Priority support",
            "5 boost credits/month",
            "Featured listing badge",
        ),
        boost_credits=5,
        sort_order=1,
    ),
    "premium": Plan(
        name="premium",
        display_name="Premium",
        price=Decimal("59.99"),
        duration_days=30,
        features=(
            "Unlimited listings",
            "Priority support",
            "20 boost credits/month",
            "Featured listing badge",
            "Analytics dashboard",
            "Advanced search filters",
        ),
        boost_credits=20,
        sort_order=2,
    ),
    "dealer": Plan(
        name="dealer",
        display_name="Dealer",
        price=Decimal("149.99"),
        duration_days=30,
        features=(
            "Unlimited listings",
            "24/7 priority support",
            "50 boost credits/month",
            "Featured listing badge",
            "Analytics dashboard",
            "Advanced search filters",
            "Dealer verification badge",
            "Bulk listing tools",
        ),
        boost_credits=50,
        sort_order=3,
    ),
})


def plan_from_row(row) -> Plan:
    return Plan(
        name=row.name,
        display_name=row.display_name,
        price=round_currency(row.price),
        duration_days=int(row.duration_days or 0),
        features=tuple(row.features or ()),
        max_listings=row.max_listings if row.max_listings is not None else -1,
        boost_credits=int(row.boost_credits or 0),
        allowed_roles=tuple(row.allowed_roles or (ALL_ROLES,)),
        is_active=bool(row.is_active),
        visible=bool(row.visible),
        sort_order=int(row.sort_order or 0),
        description=row.description or "",
    )


def _query_plan_definitions(name: Optional[str] = None) -> List[Plan]:
    from app.models import PlanDefinition

    q = db.session.query(PlanDefinition)
    if name is not None:
        q = q.filter(PlanDefinition.name == name)
    return [plan_from_row(r) for r in q.order_by(PlanDefinition.sort_order, PlanDefinition.id).all()]


@dataclass
class PlanStore:
    """
    Plan lookup queried per request. `source` returns stored plan rows
    (optionally filtered by name); `defaults` backs it when nothing is stored.
    """
    source: Callable[[Optional[str]], List[Plan]] = _query_plan_definitions
    defaults: Mapping[str, Plan] = field(default_factory=lambda: DEFAULT_PLANS)

    def get(self, name: str | None) -> Optional[Plan]:
        """Stored definition first (even if inactive), then the static table."""
        if not name:
            return None
        stored = self.source(name)
        if stored:
            return stored[0]
        return self.defaults.get(name)

    def get_active(self, name: str | None) -> Optional[Plan]:
        plan = self.get(name)
        if plan is None or not plan.is_active:
            return None
        return plan

    def available_for(self, role: str | None) -> List[Plan]:
        """Active, visible plans the role may buy; static table only when nothing is stored."""
        stored = self.source(None)
        plans: Iterable[Plan] = stored if stored else self.defaults.values()
        out = [p for p in plans if p.is_active and p.visible and p.allows_role(role)]
        return sorted(out, key=lambda p: (p.sort_order, p.name))


def get_plan_store() -> PlanStore:
    store = current_app.extensions.get("plan_store")
    if store is None:
        store = PlanStore()
        current_app.extensions["plan_store"] = store
    return store

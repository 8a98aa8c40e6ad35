"""Plan catalog: tier definitions and limit resolution."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import InvalidPlanTier, UnsupportedCurrency
from src.db.models.enums import BillingCycle, PlanTier, ResourceKind
from src.db.models.plan import PlanConfig
from src.repositories.plan_repo import PlanRepo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixedLimit:
    value: int

    def resolve(self) -> int:
        return self.value

    def to_json(self) -> Any:
        return self.value


@dataclass(frozen=True)
class RangeLimit:
    """Advertised as ``min``-``max``; enforcement uses the maximum."""

    min: int
    max: int

    def resolve(self) -> int:
        return self.max

    def to_json(self) -> Any:
        return {"min": self.min, "max": self.max}


Limit = Union[FixedLimit, RangeLimit]


def parse_limit(raw: Any) -> Limit:
    if isinstance(raw, (FixedLimit, RangeLimit)):
        return raw
    if isinstance(raw, int) and not isinstance(raw, bool):
        return FixedLimit(raw)
    if isinstance(raw, Mapping) and "min" in raw and "max" in raw:
        return RangeLimit(int(raw["min"]), int(raw["max"]))
    raise ValueError(f"Unrecognised plan limit: {raw!r}")


@dataclass(frozen=True)
class Plan:
    tier: str
    name: str
    price_by_currency: Mapping[str, Decimal]
    subject_limit: Limit
    student_limit: Limit
    features: Tuple[str, ...] = ()
    billing_cycle: str = BillingCycle.MONTHLY.value

    @property
    def is_free(self) -> bool:
        return self.tier == PlanTier.FREE.value

    @property
    def subject_cap(self) -> int:
        return self.subject_limit.resolve()

    @property
    def student_cap(self) -> int:
        return self.student_limit.resolve()

    def limit_for(self, kind: ResourceKind) -> int:
        if ResourceKind(kind) == ResourceKind.SUBJECT:
            return self.subject_cap
        return self.student_cap

    def price(self, currency: str) -> Decimal:
        try:
            return self.price_by_currency[currency.upper()]
        except KeyError:
            raise UnsupportedCurrency(
                f"Plan {self.tier} is not sold in {currency}",
                tier=self.tier,
                currency=currency,
            ) from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "name": self.name,
            "price_by_currency": {k: str(v) for k, v in self.price_by_currency.items()},
            "subject_limit": self.subject_limit.to_json(),
            "student_limit": self.student_limit.to_json(),
            "features": list(self.features),
            "billing_cycle": self.billing_cycle,
        }

    @classmethod
    def from_row(cls, row: PlanConfig) -> "Plan":
        return cls(
            tier=row.tier,
            name=row.name,
            price_by_currency={
                currency.upper(): Decimal(str(amount))
                for currency, amount in (row.price_by_currency or {}).items()
            },
            subject_limit=parse_limit(row.subject_limit),
            student_limit=parse_limit(row.student_limit),
            features=tuple(row.features or ()),
            billing_cycle=row.billing_cycle or BillingCycle.NONE.value,
        )


DEFAULT_PLANS: Tuple[Plan, ...] = (
    Plan(
        tier=PlanTier.FREE.value,
        name="Free Plan",
        price_by_currency={"NGN": Decimal("0"), "USD": Decimal("0")},
        subject_limit=FixedLimit(3),
        student_limit=FixedLimit(10),
        features=(
            "3 subjects shared by the whole school",
            "10 students in total",
            "Community support",
        ),
        billing_cycle=BillingCycle.NONE.value,
    ),
    Plan(
        tier=PlanTier.PREMIUM.value,
        name="Premium Plan",
        price_by_currency={"NGN": Decimal("1500"), "USD": Decimal("1")},
        subject_limit=FixedLimit(6),
        student_limit=RangeLimit(15, 20),
        features=(
            "6 subjects shared by the whole school",
            "15-20 students in total",
            "Priority support",
            "Advanced analytics",
        ),
        billing_cycle=BillingCycle.MONTHLY.value,
    ),
    Plan(
        tier=PlanTier.VIP.value,
        name="VIP Plan",
        price_by_currency={"NGN": Decimal("4500"), "USD": Decimal("3")},
        subject_limit=RangeLimit(6, 10),
        student_limit=FixedLimit(30),
        features=(
            "6-10 subjects shared by the whole school",
            "30 students in total",
            "24/7 support",
            "Priority processing",
        ),
        billing_cycle=BillingCycle.MONTHLY.value,
    ),
)


@dataclass
class PlanCatalog:
    """Immutable tier -> plan lookup."""

    plans: Dict[str, Plan] = field(default_factory=dict)

    @classmethod
    def of(cls, plans: Iterable[Plan]) -> "PlanCatalog":
        return cls({plan.tier: plan for plan in plans})

    def resolve(self, tier: str) -> Plan:
        plan = self.plans.get(str(tier).lower()) if tier else None
        if plan is None:
            raise InvalidPlanTier("Invalid plan tier", tier=tier)
        return plan

    @property
    def free(self) -> Plan:
        return self.resolve(PlanTier.FREE.value)

    def all(self) -> List[Plan]:
        return list(self.plans.values())


_catalog: PlanCatalog | None = None


async def load_catalog(session: AsyncSession, *, refresh: bool = False) -> PlanCatalog:
    """Return the process-wide catalog, reading the ``plans`` table once."""

    global _catalog
    if _catalog is None or refresh:
        rows = await PlanRepo(session).list_all()
        if rows:
            _catalog = PlanCatalog.of(Plan.from_row(row) for row in rows)
        else:
            logger.warning("Plan table is empty; using built-in default catalog")
            _catalog = PlanCatalog.of(DEFAULT_PLANS)
        logger.info(f"Loaded plan catalog with tiers {sorted(_catalog.plans)}")
    return _catalog


def reset_catalog_cache() -> None:
    global _catalog
    _catalog = None


def plan_to_row(plan: Plan, position: int = 0) -> Dict[str, Any]:
    """Serialise a plan into ``plans`` table column values."""

    data = plan.to_dict()
    data["position"] = position
    return data

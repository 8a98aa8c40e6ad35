"""Database models package exports."""

from src.db.models.member import MemberUsage
from src.db.models.notification import OutboundNotification
from src.db.models.organization import Organization
from src.db.models.plan import PlanConfig
from src.db.models.promo_code import PromoCode
from src.db.models.subscription import Subscription
from src.db.models.subscription_event import SubscriptionEvent
from src.db.models.transaction import Transaction

__all__ = [
    "MemberUsage",
    "Organization",
    "OutboundNotification",
    "PlanConfig",
    "PromoCode",
    "Subscription",
    "SubscriptionEvent",
    "Transaction",
]

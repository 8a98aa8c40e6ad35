"""Repository layer package."""

from src.repositories.event_repo import SubscriptionEventRepo
from src.repositories.member_repo import MemberRepo
from src.repositories.notification_repo import NotificationRepo
from src.repositories.organization_repo import OrganizationRepo
from src.repositories.plan_repo import PlanRepo
from src.repositories.promo_repo import PromoCodeRepo
from src.repositories.subscription_repo import SubscriptionRepo
from src.repositories.transaction_repo import TransactionRepo
from src.repositories.usage_repo import UsageRepo

__all__ = [
    "MemberRepo",
    "NotificationRepo",
    "OrganizationRepo",
    "PlanRepo",
    "PromoCodeRepo",
    "SubscriptionEventRepo",
    "SubscriptionRepo",
    "TransactionRepo",
    "UsageRepo",
]

"""String enums persisted in plain ``String`` columns."""
from __future__ import annotations

from enum import Enum


class PlanTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    VIP = "vip"


PAID_TIERS = (PlanTier.PREMIUM.value, PlanTier.VIP.value)


class BillingCycle(str, Enum):
    NONE = "none"
    MONTHLY = "monthly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    # Reserved for records parked by operators; no automatic transition enters it.
    EXPIRED_INTERNAL = "expired_internal"


class MemberRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class ResourceKind(str, Enum):
    SUBJECT = "subject"
    STUDENT = "student"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class NotificationTemplate(str, Enum):
    RENEWAL_REMINDER = "renewal-reminder"
    RENEWAL_SUCCESS = "renewal-success"
    GRACE_PERIOD = "grace-period"
    DOWNGRADE = "downgrade"


class SubscriptionEventType(str, Enum):
    UPGRADE = "upgrade"
    CANCELLATION = "cancellation"
    RENEWAL = "renewal"
    GRACE_PERIOD = "grace_period"
    DOWNGRADE = "downgrade"
    PAYMENT = "payment"
    PAYMENT_FAILED = "payment_failed"

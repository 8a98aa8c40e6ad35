"""Plan changes paid through the gateway.

``request_plan_change`` only prices the change. ``complete_payment`` verifies
the gateway reference, writes the ledger and upgrades the subscription. The
ledger is written before anything can fail, so every attempt is auditable,
and a reference already recorded as successful is re-applied without
contacting the gateway again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import (
    AlreadyOnPlan,
    AmountMismatch,
    InvalidPlanTier,
    InvalidTransition,
    NotFound,
    PaymentError,
    PermissionDenied,
    PromoCodeInvalid,
)
from src.core.timeutil import utcnow
from src.db.models.enums import SubscriptionEventType, SubscriptionStatus, TransactionStatus
from src.db.models.subscription import Subscription
from src.db.models.transaction import Transaction
from src.services import subscriptions as lifecycle
from src.services.event_log import log_event
from src.services.events import EventBus
from src.services.ledger import TransactionLedger
from src.services.organizations import OrganizationService
from src.services.payments import PaymentVerifier, reconcile
from src.services.plans import Plan, load_catalog
from src.services.promos import PriceQuote, PromoService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanChangeQuote:
    tier: str
    name: str
    amount: Decimal
    currency: str
    features: List[str]
    subject_limit: int
    student_limit: int
    original_amount: Decimal
    discount: Decimal = Decimal("0")
    promo_code: Optional[str] = None


@dataclass(frozen=True)
class PaymentOutcome:
    success: bool
    transaction_id: str
    plan_tier: Optional[str] = None
    already_applied: bool = False
    subscription: Dict[str, Any] = field(default_factory=dict)


class BillingService:
    def __init__(
        self,
        session: AsyncSession,
        verifier: PaymentVerifier,
        events: Optional[EventBus] = None,
    ) -> None:
        self.session = session
        self.verifier = verifier
        self.events = events
        self.organizations = OrganizationService(session, events)
        self.ledger = TransactionLedger(session)
        self.promos = PromoService(session)

    async def validate_plan_change(
        self, org_id: UUID, member_id: str, target_tier: str
    ) -> Tuple[Subscription, Plan]:
        await self.organizations.require_admin(org_id, member_id)
        catalog = await load_catalog(self.session)
        plan = catalog.resolve(target_tier)
        subscription = await self.organizations.get_subscription(org_id)
        if subscription.plan_tier == plan.tier:
            raise AlreadyOnPlan("Already on this plan", tier=plan.tier)
        if plan.is_free:
            raise InvalidPlanTier("The free plan cannot be purchased", tier=plan.tier)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise InvalidTransition(
                "Plan changes are unavailable while the subscription is in its grace period",
                status=subscription.status,
            )
        return subscription, plan

    async def _price(
        self, plan: Plan, currency: str, promo_code: Optional[str]
    ) -> PriceQuote:
        return await self.promos.quote(plan.price(currency), currency, promo_code)

    async def request_plan_change(
        self,
        org_id: UUID,
        member_id: str,
        target_tier: str,
        currency: Optional[str] = None,
        promo_code: Optional[str] = None,
    ) -> PlanChangeQuote:
        currency = (currency or settings.billing.default_currency).upper()
        _, plan = await self.validate_plan_change(org_id, member_id, target_tier)
        quote = await self._price(plan, currency, promo_code)
        return PlanChangeQuote(
            tier=plan.tier,
            name=plan.name,
            amount=quote.amount,
            currency=currency,
            features=list(plan.features),
            subject_limit=plan.subject_cap,
            student_limit=plan.student_cap,
            original_amount=quote.original_amount,
            discount=quote.discount,
            promo_code=quote.promo_code,
        )

    async def complete_payment(
        self,
        *,
        reference: str,
        org_id: UUID,
        member_id: str,
        target_tier: str,
        amount_claimed: Decimal,
        currency: str,
        promo_code: Optional[str] = None,
    ) -> PaymentOutcome:
        currency = currency.upper()
        existing = await self.ledger.get(reference)
        if existing is not None and existing.status == TransactionStatus.SUCCESS.value:
            return await self._reapply(existing, org_id)

        _, plan = await self.validate_plan_change(org_id, member_id, target_tier)
        quote = await self._price(plan, currency, promo_code)
        amount_claimed = Decimal(str(amount_claimed))

        await self.ledger.record(
            reference=reference,
            org_id=org_id,
            initiated_by=member_id,
            plan_tier=plan.tier,
            amount=amount_claimed,
            currency=currency,
            status=TransactionStatus.PENDING,
            promo_code=quote.promo_code,
            discount_amount=quote.discount,
        )

        try:
            if abs(amount_claimed - quote.amount) > settings.billing.amount_epsilon:
                raise AmountMismatch(
                    f"Claimed amount {amount_claimed} does not match plan price {quote.amount}",
                    expected=str(quote.amount),
                    paid=str(amount_claimed),
                )
            verified = await self.verifier.verify(reference)
            reconcile(quote.amount, currency, verified)
        except PaymentError as exc:
            response = getattr(exc, "gateway_response", None) or {}
            await self.ledger.record(
                reference=reference,
                org_id=org_id,
                initiated_by=member_id,
                plan_tier=plan.tier,
                amount=amount_claimed,
                currency=currency,
                status=TransactionStatus.FAILED,
                gateway_response={**response, "error": exc.message, "code": exc.code},
            )
            await log_event(
                self.session,
                org_id,
                SubscriptionEventType.PAYMENT_FAILED,
                plan_tier=plan.tier,
                amount=amount_claimed,
                currency=currency,
                reference=reference,
                error=exc.message,
            )
            logger.warning(f"Payment {reference} for org {org_id} failed: {exc.message}")
            raise

        now = utcnow()
        transaction = await self.ledger.record(
            reference=reference,
            org_id=org_id,
            initiated_by=member_id,
            plan_tier=plan.tier,
            amount=amount_claimed,
            currency=currency,
            status=TransactionStatus.SUCCESS,
            gateway_response=verified.raw,
            now=now,
        )
        await log_event(
            self.session,
            org_id,
            SubscriptionEventType.PAYMENT,
            plan_tier=plan.tier,
            amount=verified.amount_paid,
            currency=currency,
            reference=reference,
        )
        if quote.promo_code:
            try:
                await self.promos.redeem(quote.promo_code, now)
            except PromoCodeInvalid:
                # The payment already cleared at the discounted price.
                logger.warning(
                    f"Promo code {quote.promo_code} exhausted before payment {reference} was recorded"
                )
        return await self._reapply(transaction, org_id)

    async def _reapply(self, transaction: Transaction, org_id: UUID) -> PaymentOutcome:
        """Bring the subscription in line with a successful ledger entry."""

        if transaction.org_id != org_id:
            raise PermissionDenied("Transaction belongs to another organization")
        catalog = await load_catalog(self.session)
        plan = catalog.resolve(transaction.plan_tier)
        subscription = await self.organizations.get_subscription(org_id)
        previous_tier = subscription.plan_tier
        superseded = (
            subscription.last_payment_date is not None
            and transaction.completed_at is not None
            and subscription.last_payment_date > transaction.completed_at
        )
        applied = not superseded and lifecycle.apply_upgrade(
            subscription,
            plan,
            amount=transaction.amount,
            currency=transaction.currency,
            transaction_ref=transaction.id,
            now=transaction.completed_at or utcnow(),
        )
        if applied:
            await self.session.flush()
            await log_event(
                self.session,
                org_id,
                SubscriptionEventType.UPGRADE,
                plan_tier=plan.tier,
                previous_tier=previous_tier,
                amount=transaction.amount,
                currency=transaction.currency,
                reference=transaction.id,
            )
            lifecycle.publish_change(self.session, self.events, subscription)
        else:
            logger.info(f"Payment {transaction.id} was already applied to org {org_id}")
        return PaymentOutcome(
            success=True,
            transaction_id=transaction.id,
            plan_tier=subscription.plan_tier,
            already_applied=not applied,
            subscription=lifecycle.snapshot(subscription),
        )

    async def receipt(self, org_id: UUID, reference: str) -> Dict[str, Any]:
        """Receipt for a successful payment, built from its ledger entry."""

        organization = await self.organizations.get(org_id)
        transaction = await self.ledger.get(reference)
        owners = {str(org_id), organization.admin_member_id}
        filed_under = {
            str(transaction.org_id) if transaction and transaction.org_id else None,
            transaction.legacy_member_id if transaction else None,
        }
        if (
            transaction is None
            or transaction.status != TransactionStatus.SUCCESS.value
            or not owners & filed_under
        ):
            raise NotFound("Receipt not found", reference=reference)

        catalog = await load_catalog(self.session)
        plan = catalog.resolve(transaction.plan_tier)
        paid_at = transaction.completed_at or transaction.created_at
        return {
            "transaction_id": transaction.id,
            "organization": organization.name,
            "plan_tier": plan.tier,
            "plan_name": plan.name,
            "description": f"{plan.name} - {plan.billing_cycle.title()} Subscription",
            "amount": str(transaction.amount),
            "discount": str(transaction.discount_amount or Decimal("0")),
            "promo_code": transaction.promo_code,
            "currency": transaction.currency,
            "payment_date": paid_at.isoformat(),
            "payment_method": "Monnify",
            "status": "paid",
        }

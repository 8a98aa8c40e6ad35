"""Gateway webhooks confirming payments made outside the member's session.

Monnify signs each notification with an HMAC-SHA512 of the raw body keyed by
the merchant secret. A ``SUCCESSFUL_TRANSACTION`` event is fed through the
same completion flow as the UI callback, keyed by the gateway's transaction
reference, so a webhook racing or repeating a completion is applied once.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.exceptions import InvalidWebhook, WebhookSignatureInvalid
from src.services.billing import BillingService
from src.services.events import EventBus
from src.services.organizations import OrganizationService
from src.services.payments import PaymentVerifier


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "monnify-signature"
SUCCESSFUL_TRANSACTION = "SUCCESSFUL_TRANSACTION"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    secret = secret if secret is not None else settings.payments.secret_key
    if not secret:
        logger.warning("Rejecting payment webhook: no gateway secret key configured")
        raise WebhookSignatureInvalid("Webhook signing is not configured")
    if not signature or not hmac.compare_digest(
        compute_signature(body, secret), signature.strip().lower()
    ):
        raise WebhookSignatureInvalid("Invalid webhook signature")


@dataclass(frozen=True)
class PaymentWebhookEvent:
    event_type: str
    transaction_reference: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    currency: Optional[str] = None
    org_id: Optional[UUID] = None
    plan_tier: Optional[str] = None
    promo_code: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_successful_transaction(self) -> bool:
        return self.event_type == SUCCESSFUL_TRANSACTION


def parse_event(body: bytes) -> PaymentWebhookEvent:
    try:
        payload = json.loads(body)
    except ValueError:
        raise InvalidWebhook("Webhook body is not valid JSON") from None
    if not isinstance(payload, dict) or not payload.get("eventType"):
        raise InvalidWebhook("Webhook body has no eventType")

    data = payload.get("eventData") or {}
    meta = data.get("metaData") or {}
    org_ref = meta.get("org_id") or meta.get("school_id")
    try:
        org_id = UUID(str(org_ref)) if org_ref else None
    except ValueError:
        raise InvalidWebhook("Webhook metadata carries an invalid organization id") from None
    amount = data.get("amountPaid")
    try:
        amount_paid = Decimal(str(amount)) if amount is not None else None
    except InvalidOperation:
        raise InvalidWebhook(f"Webhook amount is unreadable: {amount!r}") from None

    return PaymentWebhookEvent(
        event_type=str(payload["eventType"]),
        transaction_reference=data.get("transactionReference"),
        amount_paid=amount_paid,
        currency=data.get("currency"),
        org_id=org_id,
        plan_tier=meta.get("plan_tier"),
        promo_code=meta.get("promo_code"),
        data=data,
    )


@dataclass(frozen=True)
class WebhookOutcome:
    processed: bool
    reason: Optional[str] = None
    transaction_id: Optional[str] = None
    plan_tier: Optional[str] = None
    already_applied: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "reason": self.reason,
            "transaction_id": self.transaction_id,
            "plan_tier": self.plan_tier,
            "already_applied": self.already_applied,
        }


class PaymentWebhookProcessor:
    def __init__(
        self,
        session: AsyncSession,
        verifier: PaymentVerifier,
        events: Optional[EventBus] = None,
    ) -> None:
        self.organizations = OrganizationService(session, events)
        self.billing = BillingService(session, verifier, events)

    async def handle(self, event: PaymentWebhookEvent) -> WebhookOutcome:
        """Apply a successful transaction event on behalf of the school admin.

        Other event types are acknowledged and ignored. Payment errors
        propagate after the failed attempt has been written to the ledger.
        """

        if not event.is_successful_transaction:
            logger.info(f"Ignoring payment webhook event {event.event_type}")
            return WebhookOutcome(processed=False, reason="ignored_event")
        if not (event.transaction_reference and event.org_id and event.plan_tier):
            raise InvalidWebhook("Missing required metadata")
        if event.amount_paid is None:
            raise InvalidWebhook("Webhook has no amountPaid")

        organization = await self.organizations.get(event.org_id)
        outcome = await self.billing.complete_payment(
            reference=event.transaction_reference,
            org_id=organization.id,
            member_id=organization.admin_member_id,
            target_tier=event.plan_tier,
            amount_claimed=event.amount_paid,
            currency=event.currency or settings.billing.default_currency,
            promo_code=event.promo_code,
        )
        logger.info(
            f"Webhook {event.transaction_reference} for org {organization.id} "
            f"(already_applied={outcome.already_applied})"
        )
        return WebhookOutcome(
            processed=True,
            transaction_id=outcome.transaction_id,
            plan_tier=outcome.plan_tier,
            already_applied=outcome.already_applied,
        )

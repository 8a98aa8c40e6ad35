"""Endpoints for plan changes, payment completion and billing history."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_event_bus, get_payment_verifier
from src.auth.jwt import ensure_org_access, require_auth
from src.core.exceptions import PaymentError
from src.schemas.billing import (
    PaymentCompletion,
    PaymentResult,
    PlanChangeQuoteRead,
    PlanChangeRequest,
    TransactionRead,
)
from src.schemas.promo import PromoCodeValidate
from src.services import subscriptions as lifecycle
from src.services.billing import BillingService
from src.services.events import EventBus
from src.services.ledger import TransactionLedger
from src.services.limits import check_rate_limit
from src.services.organizations import OrganizationService
from src.services.payments import PaymentVerifier
from src.services.plans import load_catalog
from src.services.promos import PromoService
from src.services.webhooks import PaymentWebhookProcessor, parse_event, verify_signature


router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/plan-change", response_model=PlanChangeQuoteRead)
async def request_plan_change(
    payload: PlanChangeRequest,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    ensure_org_access(auth, payload.org_id)
    await check_rate_limit(str(payload.org_id), scope="billing")
    quote = await BillingService(db, verifier).request_plan_change(
        payload.org_id,
        auth["member_id"],
        payload.target_tier,
        payload.currency,
        payload.promo_code,
    )
    return PlanChangeQuoteRead.model_validate(quote)


@router.post("/payments/complete", response_model=PaymentResult)
async def complete_payment(
    payload: PaymentCompletion,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    """Verify a gateway payment and apply the upgrade it paid for.

    Payment failures are answered with ``success: false`` instead of an error
    so the failed ledger entry is committed with the request.
    """

    ensure_org_access(auth, payload.org_id)
    await check_rate_limit(str(payload.org_id), scope="billing")
    service = BillingService(db, verifier, events)
    try:
        outcome = await service.complete_payment(
            reference=payload.transaction_ref,
            org_id=payload.org_id,
            member_id=auth["member_id"],
            target_tier=payload.target_tier,
            amount_claimed=payload.amount_claimed,
            currency=payload.currency,
            promo_code=payload.promo_code,
        )
    except PaymentError as exc:
        result = PaymentResult(
            success=False,
            transaction_id=payload.transaction_ref,
            error=exc.message,
            code=exc.code,
        )
        return JSONResponse(status_code=exc.status_code, content=result.model_dump())
    return PaymentResult(
        success=True,
        transaction_id=outcome.transaction_id,
        plan_tier=outcome.plan_tier,
        already_applied=outcome.already_applied,
    )


@router.post("/webhooks/monnify")
async def monnify_webhook(
    request: Request,
    monnify_signature: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    """Gateway notification of a completed transaction.

    Authenticated by the body signature rather than a member token. A failed
    payment is acknowledged with ``processed: false`` so the gateway stops
    retrying; the failed attempt is already in the ledger.
    """

    body = await request.body()
    verify_signature(body, monnify_signature)
    event = parse_event(body)
    try:
        outcome = await PaymentWebhookProcessor(db, verifier, events).handle(event)
    except PaymentError as exc:
        return {
            "processed": False,
            "reason": exc.code,
            "transaction_id": event.transaction_reference,
            "error": exc.message,
        }
    return outcome.to_dict()


@router.post("/organizations/{org_id}/cancel")
async def cancel_subscription(
    org_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    events: EventBus = Depends(get_event_bus),
):
    subscription = await OrganizationService(db, events).cancel(org_id, auth["member_id"])
    return lifecycle.snapshot(subscription)


@router.get("/organizations/{org_id}/transactions")
async def transaction_history(
    org_id: UUID,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    ensure_org_access(auth, org_id)
    organization = await OrganizationService(db).get(org_id)
    transactions = await TransactionLedger(db).history(
        org_id, aliases=[organization.admin_member_id]
    )
    return {
        "transactions": [
            TransactionRead.model_validate(tx).model_dump(mode="json") for tx in transactions
        ]
    }


@router.get("/organizations/{org_id}/transactions/{reference}/receipt")
async def transaction_receipt(
    org_id: UUID,
    reference: str,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
    verifier: PaymentVerifier = Depends(get_payment_verifier),
):
    ensure_org_access(auth, org_id)
    return await BillingService(db, verifier).receipt(org_id, reference)


@router.post("/promo-codes/validate")
async def validate_promo_code(
    payload: PromoCodeValidate,
    auth=Depends(require_auth),
    db: AsyncSession = Depends(get_db_session),
):
    catalog = await load_catalog(db)
    plan = catalog.resolve(payload.target_tier)
    currency = payload.currency.upper()
    quote = await PromoService(db).quote(plan.price(currency), currency, payload.code)
    return {
        "valid": True,
        "code": quote.promo_code,
        "original_amount": str(quote.original_amount),
        "discount": str(quote.discount),
        "amount": str(quote.amount),
        "currency": currency,
    }

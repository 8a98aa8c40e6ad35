"""Payment gateway access: verification, reconciliation and renewal charges."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from src.core.config import settings
from src.core.exceptions import AmountMismatch, VerificationError
from src.db.models.subscription import Subscription


logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"PAID", "SUCCESS"})


class GatewayError(Exception):
    """The gateway refused a request or could not be reached."""

    def __init__(self, message: str, response: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.response = response


@dataclass(frozen=True)
class VerifiedPayment:
    reference: str
    amount_paid: Decimal
    currency: str
    status: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    reference: str
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _to_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise VerificationError(f"Gateway returned an unreadable amount: {value!r}") from None


class MonnifyClient:
    """Thin async client for the Monnify merchant API.

    Every public call opens one ``httpx.AsyncClient`` with a bounded timeout
    and never retries. Access tokens are cached until shortly before expiry.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        contract_code: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        config = settings.payments
        self.base_url = (base_url or config.base_url).rstrip("/")
        self.api_key = api_key or config.api_key
        self.secret_key = secret_key or config.secret_key
        self.contract_code = contract_code or config.contract_code
        self.timeout = timeout if timeout is not None else config.timeout_seconds
        self._transport = transport
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    @staticmethod
    def _body(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = {"responseMessage": response.text}
        if response.is_error:
            message = payload.get("responseMessage") or f"HTTP {response.status_code}"
            raise GatewayError(f"Gateway error: {message}", payload)
        if payload.get("requestSuccessful") is False:
            raise GatewayError(
                f"Gateway error: {payload.get('responseMessage', 'request failed')}", payload
            )
        return payload.get("responseBody") or {}

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token
        if not (self.api_key and self.secret_key):
            raise GatewayError("Payment gateway credentials are not configured")
        response = await client.post(
            "/api/v1/auth/login", auth=(self.api_key, self.secret_key)
        )
        body = self._body(response)
        token = body.get("accessToken")
        if not token:
            raise GatewayError("Gateway login returned no access token", body)
        self._token = token
        self._token_expires_at = time.monotonic() + max(int(body.get("expiresIn", 0)) - 60, 0)
        return token

    async def get_transaction(self, reference: str) -> Dict[str, Any]:
        async with self._client() as client:
            token = await self._access_token(client)
            response = await client.get(
                f"/api/v2/transactions/{quote(reference, safe='')}",
                headers={"Authorization": f"Bearer {token}"},
            )
            return self._body(response)

    async def charge_card(
        self,
        *,
        card_token: str,
        amount: Decimal,
        currency: str,
        customer_email: Optional[str],
        reference: str,
    ) -> Dict[str, Any]:
        async with self._client() as client:
            token = await self._access_token(client)
            response = await client.post(
                "/api/v1/merchant/cards/charge",
                headers={"Authorization": f"Bearer {token}"},
                json={
                    "cardToken": card_token,
                    "amount": str(amount),
                    "currencyCode": currency,
                    "customerEmail": customer_email,
                    "paymentReference": reference,
                    "contractCode": self.contract_code,
                    "paymentDescription": "Subscription renewal",
                },
            )
            return self._body(response)


class PaymentVerifier:
    """Confirms a claimed payment with the gateway."""

    def __init__(self, gateway: MonnifyClient) -> None:
        self.gateway = gateway

    async def verify(self, reference: str) -> VerifiedPayment:
        try:
            body = await self.gateway.get_transaction(reference)
        except httpx.TimeoutException as exc:
            raise VerificationError(f"Payment gateway timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise VerificationError(f"Payment gateway unreachable: {exc}") from exc
        except GatewayError as exc:
            raise VerificationError(exc.message, gateway_response=exc.response) from exc

        status = str(body.get("paymentStatus") or body.get("status") or "UNKNOWN").upper()
        if status not in SUCCESS_STATUSES:
            raise VerificationError(
                f"Payment status is {status}, expected PAID", gateway_response=body
            )

        amount = body.get("amountPaid", body.get("amount"))
        currency = body.get("currency") or body.get("currencyCode") or ""
        verified = VerifiedPayment(
            reference=reference,
            amount_paid=_to_decimal(amount),
            currency=str(currency).upper(),
            status=status,
            raw=body,
        )
        logger.info(
            f"Verified payment {reference}: {verified.amount_paid} {verified.currency}"
        )
        return verified


def reconcile(
    expected: Decimal,
    currency: str,
    verified: VerifiedPayment,
    epsilon: Optional[Decimal] = None,
) -> None:
    """Raise :class:`AmountMismatch` unless ``verified`` covers ``expected``."""

    if epsilon is None:
        epsilon = settings.billing.amount_epsilon
    if verified.currency and verified.currency != currency.upper():
        raise AmountMismatch(
            f"Payment was made in {verified.currency}, expected {currency.upper()}",
            expected=str(expected),
            paid=str(verified.amount_paid),
        )
    if abs(verified.amount_paid - Decimal(expected)) > epsilon:
        raise AmountMismatch(
            f"Paid amount {verified.amount_paid} does not match expected {expected}",
            expected=str(expected),
            paid=str(verified.amount_paid),
        )


def has_payment_method(subscription: Subscription) -> bool:
    return bool(subscription.external_subscription_ref)


class RenewalCharger:
    """Charges the stored card of a subscription for one more period."""

    def __init__(self, gateway: MonnifyClient) -> None:
        self.gateway = gateway

    async def charge(
        self,
        subscription: Subscription,
        amount: Decimal,
        reference: str,
        customer_email: Optional[str] = None,
    ) -> ChargeResult:
        body = await self.gateway.charge_card(
            card_token=subscription.external_subscription_ref,
            amount=amount,
            currency=subscription.currency,
            customer_email=customer_email or subscription.external_customer_ref,
            reference=reference,
        )
        status = str(body.get("status") or body.get("paymentStatus") or "").upper()
        return ChargeResult(
            success=status in SUCCESS_STATUSES,
            reference=reference,
            message=body.get("message") or status or None,
            raw=body,
        )

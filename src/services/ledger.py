"""Transaction ledger keyed by the gateway's transaction reference."""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import InvalidTransition
from src.core.timeutil import utcnow
from src.db.models.enums import TransactionStatus
from src.db.models.transaction import Transaction
from src.repositories.transaction_repo import TransactionRepo


logger = logging.getLogger(__name__)


class TransactionLedger:
    """Upsert-only store of payment attempts.

    A reference is written once; later writes may only amend its status,
    gateway response and completion time. A successful entry is final.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.repo = TransactionRepo(session)

    async def get(self, reference: str) -> Transaction | None:
        return await self.repo.get(reference)

    async def record(
        self,
        *,
        reference: str,
        org_id: Optional[UUID],
        plan_tier: str,
        amount: Decimal,
        currency: str,
        status: TransactionStatus,
        initiated_by: Optional[str] = None,
        gateway_response: Optional[Dict[str, Any]] = None,
        promo_code: Optional[str] = None,
        discount_amount: Decimal = Decimal("0"),
        now: Optional[datetime] = None,
    ) -> Transaction:
        status = TransactionStatus(status)
        now = now or utcnow()
        existing = await self.repo.get(reference)

        if existing is None:
            transaction = Transaction(
                id=reference,
                org_id=org_id,
                initiated_by=initiated_by,
                plan_tier=plan_tier,
                amount=Decimal(amount),
                currency=currency.upper(),
                status=status.value,
                promo_code=promo_code,
                discount_amount=Decimal(discount_amount),
                gateway_response=gateway_response,
                created_at=now,
                completed_at=None if status == TransactionStatus.PENDING else now,
            )
            await self.repo.add(transaction)
            logger.info(f"Recorded transaction {reference} as {status.value}")
            return transaction

        if existing.status == status.value and (
            gateway_response is None or existing.gateway_response == gateway_response
        ):
            return existing

        if existing.status == TransactionStatus.SUCCESS.value:
            raise InvalidTransition(
                f"Transaction {reference} already succeeded", reference=reference
            )

        existing.status = status.value
        if gateway_response is not None:
            existing.gateway_response = gateway_response
        if status != TransactionStatus.PENDING and existing.completed_at is None:
            existing.completed_at = now
        await self.repo.session.flush()
        logger.info(f"Transaction {reference} amended to {status.value}")
        return existing

    async def history(
        self, org_id: UUID, aliases: Iterable[str] = ()
    ) -> List[Transaction]:
        """All transactions of an organization, newest first.

        Rows written before billing moved to organizations were filed under a
        member id or a paid-by id; ``aliases`` lists those legacy keys in
        addition to the organization id itself.
        """

        keys = {str(org_id), *(str(alias) for alias in aliases if alias)}
        found: Dict[str, Transaction] = {}
        for transaction in await self.repo.for_org(org_id):
            found[transaction.id] = transaction
        for column in ("legacy_member_id", "initiated_by"):
            for key in keys:
                for transaction in await self.repo.filed_under(column, key):
                    found.setdefault(transaction.id, transaction)
        return sorted(found.values(), key=lambda tx: tx.created_at, reverse=True)

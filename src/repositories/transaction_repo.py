"""Repository helpers for payment transactions."""
from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models.enums import TransactionStatus
from src.db.models.transaction import Transaction


class TransactionRepo:
    """Data-access helpers for :class:`Transaction`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, reference: str) -> Transaction | None:
        result = await self.session.execute(
            select(Transaction)
            .where(Transaction.id == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def filed_under(self, column: str, value: Any) -> list[Transaction]:
        """Transactions whose ``column`` equals ``value``."""

        result = await self.session.execute(
            select(Transaction).where(getattr(Transaction, column) == value)
        )
        return list(result.scalars().all())

    async def for_org(self, org_id: UUID) -> list[Transaction]:
        return await self.filed_under("org_id", org_id)

    async def revenue_by_currency(self) -> list[tuple[str, Any, int]]:
        result = await self.session.execute(
            select(Transaction.currency, func.sum(Transaction.amount), func.count())
            .where(Transaction.status == TransactionStatus.SUCCESS.value)
            .group_by(Transaction.currency)
        )
        return [tuple(row) for row in result.all()]

    async def revenue_by_tier(self) -> list[tuple[str, str, Any, int]]:
        result = await self.session.execute(
            select(
                Transaction.plan_tier,
                Transaction.currency,
                func.sum(Transaction.amount),
                func.count(),
            )
            .where(Transaction.status == TransactionStatus.SUCCESS.value)
            .group_by(Transaction.plan_tier, Transaction.currency)
        )
        return [tuple(row) for row in result.all()]

    async def successful_since(self, since: datetime) -> list[Transaction]:
        result = await self.session.execute(
            select(Transaction).where(
                Transaction.status == TransactionStatus.SUCCESS.value,
                Transaction.created_at >= since,
            )
        )
        return list(result.scalars().all())

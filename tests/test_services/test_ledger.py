import datetime as dt
import uuid
from decimal import Decimal

import pytest

from src.core.exceptions import InvalidTransition
from src.db.models import Transaction
from src.db.models.enums import TransactionStatus
from src.services.ledger import TransactionLedger


def _entry(**overrides):
    values = dict(
        reference="tx-1",
        org_id=uuid.uuid4(),
        plan_tier="premium",
        amount=Decimal("1500"),
        currency="NGN",
        status=TransactionStatus.PENDING,
        initiated_by="admin-1",
    )
    values.update(overrides)
    return values


@pytest.mark.asyncio
async def test_record_is_an_idempotent_upsert(test_db):
    ledger = TransactionLedger(test_db)
    entry = _entry(status=TransactionStatus.SUCCESS, gateway_response={"paymentStatus": "PAID"})

    first = await ledger.record(**entry)
    completed_at = first.completed_at
    second = await ledger.record(**entry)
    await test_db.commit()

    assert second is first
    assert second.completed_at == completed_at
    assert len(await ledger.history(entry["org_id"])) == 1


@pytest.mark.asyncio
async def test_pending_entry_can_be_amended_once_final(test_db):
    ledger = TransactionLedger(test_db)
    entry = _entry()

    pending = await ledger.record(**entry)
    assert pending.completed_at is None

    failed = await ledger.record(**{**entry, "status": TransactionStatus.FAILED,
                                    "gateway_response": {"error": "declined"}})
    assert failed.status == "failed"
    assert failed.completed_at is not None
    assert failed.gateway_response == {"error": "declined"}

    succeeded = await ledger.record(**{**entry, "status": TransactionStatus.SUCCESS})
    assert succeeded.status == "success"

    with pytest.raises(InvalidTransition):
        await ledger.record(**{**entry, "status": TransactionStatus.FAILED})


@pytest.mark.asyncio
async def test_history_unions_legacy_keys_newest_first(test_db):
    org_id = uuid.uuid4()
    base = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)

    def _tx(reference, days, **keys):
        return Transaction(
            id=reference,
            plan_tier="premium",
            amount=Decimal("1500"),
            currency="NGN",
            status="success",
            created_at=base + dt.timedelta(days=days),
            **keys,
        )

    test_db.add_all(
        [
            _tx("by-org", 1, org_id=org_id, initiated_by="admin-1"),
            _tx("by-member", 3, legacy_member_id="admin-1"),
            _tx("by-payer", 2, initiated_by="admin-1"),
            _tx("elsewhere", 4, org_id=uuid.uuid4(), initiated_by="someone-else"),
        ]
    )
    await test_db.commit()

    history = await TransactionLedger(test_db).history(org_id, aliases=["admin-1"])

    assert [tx.id for tx in history] == ["by-member", "by-payer", "by-org"]

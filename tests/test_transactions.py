"""Transaction state machine: idempotent completion, no crossover between terminal states."""

import asyncio
from datetime import datetime
from decimal import Decimal

import pytest

from leadmarket.core.exceptions import InsufficientCreditsError, InvalidAmountError, InvalidTransitionError
from leadmarket.models.audit_log import AuditLog
from leadmarket.models.contractor import CreditTransaction

pytestmark = pytest.mark.asyncio


async def test_open_records_pending_without_touching_balance(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))
    assert transaction_id.startswith("txn_")
    transaction = await services.ledger.get_transaction(contractor.id, transaction_id)
    assert transaction.status == "pending"
    assert transaction.amount == Decimal("50.00")
    assert transaction.description == "Credit purchase attempt - 50.00 credits"
    assert await services.ledger.get_balance(contractor.id) == Decimal("0.00")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("0.001")])
async def test_open_rejects_non_positive_amount(services, make_contractor, amount):
    contractor = await make_contractor()
    with pytest.raises(InvalidAmountError):
        await services.transactions.open(contractor.id, "credit_purchase", amount)
    assert await services.ledger.list_transactions(contractor.id) == []


async def test_complete_is_idempotent(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))

    first = await services.transactions.complete(contractor.id, transaction_id, Decimal("50"), {"stripeSessionId": "cs_1"})
    second = await services.transactions.complete(contractor.id, transaction_id, Decimal("50"), {"stripeSessionId": "cs_1"})

    assert first.status == second.status == "completed"
    assert first.completed_at is not None
    assert first.metadata["stripeSessionId"] == "cs_1"
    assert await services.ledger.get_balance(contractor.id) == Decimal("50.00")


async def test_concurrent_completions_credit_once(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("75"))

    results = await asyncio.gather(
        *(services.transactions.complete(contractor.id, transaction_id) for _ in range(5))
    )

    assert all(r.status == "completed" for r in results)
    assert await services.ledger.get_balance(contractor.id) == Decimal("75.00")


async def test_complete_uses_stored_amount_on_mismatch(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))
    await services.transactions.complete(contractor.id, transaction_id, Decimal("500"))
    assert await services.ledger.get_balance(contractor.id) == Decimal("50.00")


async def test_failed_cannot_complete(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))
    await services.transactions.fail(contractor.id, transaction_id, "card_declined")

    with pytest.raises(InvalidTransitionError) as exc_info:
        await services.transactions.complete(contractor.id, transaction_id, Decimal("50"))

    assert exc_info.value.current_status == "failed"
    assert exc_info.value.requested_status == "completed"
    transaction = await services.ledger.get_transaction(contractor.id, transaction_id)
    assert transaction.status == "failed"
    assert await services.ledger.get_balance(contractor.id) == Decimal("0.00")


async def test_completed_cannot_fail(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))
    await services.transactions.complete(contractor.id, transaction_id)

    with pytest.raises(InvalidTransitionError):
        await services.transactions.fail(contractor.id, transaction_id, "late failure")

    assert await services.ledger.get_balance(contractor.id) == Decimal("50.00")


async def test_fail_is_idempotent_and_records_reason(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))

    await services.transactions.fail(contractor.id, transaction_id, "card_declined", {"stripePaymentStatus": "failed"})
    again = await services.transactions.fail(contractor.id, transaction_id, "card_declined")

    assert again.status == "failed"
    assert again.failed_at is not None
    assert again.metadata["error"] == "card_declined"
    assert again.metadata["stripePaymentStatus"] == "failed"


async def test_synchronous_debit_refuses_overdraft_without_record(services, make_contractor):
    contractor = await make_contractor(credits="10")
    with pytest.raises(InsufficientCreditsError):
        await services.transactions.open_and_complete_synchronous(
            contractor.id, "lead_purchase", Decimal("25"), lead_id="lead-1"
        )
    assert await services.ledger.get_balance(contractor.id) == Decimal("10.00")
    assert await services.ledger.list_transactions(contractor.id) == []


async def test_synchronous_path_only_debits(services, make_contractor):
    contractor = await make_contractor(credits="10")
    with pytest.raises(ValueError):
        await services.transactions.open_and_complete_synchronous(contractor.id, "credit_purchase", Decimal("5"))


async def test_record_completed_credit_once_per_session(services, make_contractor):
    contractor = await make_contractor()
    first = await services.transactions.record_completed_credit(contractor.id, Decimal("40"), "cs_legacy")
    second = await services.transactions.record_completed_credit(contractor.id, Decimal("40"), "cs_legacy")

    assert first is not None
    assert first.metadata["source"] == "webhook_fallback"
    assert second is None
    assert await services.ledger.get_balance(contractor.id) == Decimal("40.00")


async def test_balance_equals_completed_credits_minus_debits(services, make_contractor):
    contractor = await make_contractor()
    for amount in ("50", "20", "30.50"):
        await services.transactions.complete(
            contractor.id, await services.transactions.open(contractor.id, "credit_purchase", Decimal(amount))
        )
    failed = await services.transactions.open(contractor.id, "credit_purchase", Decimal("100"))
    await services.transactions.fail(contractor.id, failed, "declined")
    await services.transactions.open(contractor.id, "credit_purchase", Decimal("60"))
    await services.transactions.open_and_complete_synchronous(
        contractor.id, "lead_purchase", Decimal("45.25"), lead_id="lead-1"
    )

    transactions = await services.transactions.list_transactions(contractor.id)
    expected = sum(t.balance_effect_cents for t in transactions if t.status == "completed")
    balance = await services.ledger.get_balance(contractor.id)
    assert balance == Decimal("55.25")
    assert int(balance * 100) == expected


async def test_list_transactions_newest_first(services, make_contractor):
    contractor = await make_contractor()
    older = CreditTransaction(type="credit_purchase", amount_cents=2000, timestamp=datetime(2024, 1, 1))
    newer = CreditTransaction(type="credit_purchase", amount_cents=3000, timestamp=datetime(2024, 2, 1))
    await services.ledger.append_transaction(contractor.id, older)
    await services.ledger.append_transaction(contractor.id, newer)
    ids = [t.id for t in await services.transactions.list_transactions(contractor.id)]
    assert ids == [newer.id, older.id]


async def test_terminal_transitions_are_audited(services, make_contractor):
    contractor = await make_contractor()
    transaction_id = await services.transactions.open(contractor.id, "credit_purchase", Decimal("50"))
    await services.transactions.complete(contractor.id, transaction_id)
    await services.transactions.complete(contractor.id, transaction_id)

    entries = await AuditLog.find(AuditLog.entity_id == transaction_id).to_list()
    assert [e.event_type for e in entries] == ["credit_purchase_completed"]
    assert entries[0].actor_id == contractor.id

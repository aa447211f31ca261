"""
Transaction state machine on top of the ledger store.

    (none) --open()--> pending
    pending --complete()--> completed   balance += amount (credit_purchase)
    pending --fail()--> failed          no balance change
    completed --complete()--> completed  no-op
    failed --fail()--> failed            no-op
    completed --fail()  -> InvalidTransitionError
    failed --complete() -> InvalidTransitionError
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from leadmarket.core.audit import log_event
from leadmarket.core.exceptions import InsufficientCreditsError, InvalidAmountError, InvalidTransitionError
from leadmarket.core.logging import get_logger
from leadmarket.core.money import format_amount, to_cents
from leadmarket.models.contractor import CreditTransaction, TransactionType
from leadmarket.services.ledger import LedgerStore

log = get_logger(__name__)

_DESCRIPTIONS = {
    ("credit_purchase", "pending"): "Credit purchase attempt - {amount} credits",
    ("credit_purchase", "completed"): "Successful credit purchase - {amount} credits",
    ("credit_purchase", "failed"): "Failed credit purchase - {amount} credits",
    ("lead_purchase", "completed"): "Lead purchase - {amount} credits",
    ("lead_purchase", "failed"): "Failed lead purchase - {amount} credits",
}


def describe(transaction_type: str, status: str, amount: Decimal) -> str:
    template = _DESCRIPTIONS.get((transaction_type, status), "{amount} credits")
    return template.format(amount=format_amount(amount))


class TransactionManager:
    def __init__(self, ledger: LedgerStore):
        self.ledger = ledger

    async def open(
        self,
        contractor_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Write a fresh pending transaction and return its id."""
        transaction = CreditTransaction(
            type=transaction_type,
            amount_cents=_positive_cents(amount),
            description=description or describe(transaction_type, "pending", amount),
            metadata=dict(metadata or {}),
        )
        await self.ledger.append_transaction(contractor_id, transaction)
        log.info(
            "transaction_opened",
            contractor_id=contractor_id,
            transaction_id=transaction.id,
            type=transaction_type,
            amount=format_amount(transaction.amount),
        )
        return transaction.id

    async def complete(
        self,
        contractor_id: str,
        transaction_id: str,
        resolved_amount: Decimal | None = None,
        provider_metadata: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        """
        Idempotent finalize-success. The balance moves by the stored amount, in the
        same write that flips the status, and only for the caller that wins the
        pending -> completed compare-and-set.
        """
        transaction = await self.ledger.get_transaction(contractor_id, transaction_id)
        if transaction.status == "completed":
            log.info("transaction_already_completed", contractor_id=contractor_id, transaction_id=transaction_id)
            return transaction
        if transaction.status == "failed":
            raise self._invalid_transition(contractor_id, transaction, "completed")

        if resolved_amount is not None and to_cents(resolved_amount) != transaction.amount_cents:
            log.warning(
                "transaction_amount_mismatch",
                contractor_id=contractor_id,
                transaction_id=transaction_id,
                stored_amount=format_amount(transaction.amount),
                resolved_amount=format_amount(resolved_amount),
            )

        applied = await self.ledger.update_transaction(
            contractor_id,
            transaction_id,
            {
                "status": "completed",
                "completed_at": datetime.utcnow(),
                "description": description or describe(transaction.type, "completed", transaction.amount),
            },
            metadata=provider_metadata,
            credit_delta_cents=transaction.balance_effect_cents,
        )
        if not applied:
            current = await self.ledger.get_transaction(contractor_id, transaction_id)
            if current.status == "completed":
                log.info("transaction_already_completed", contractor_id=contractor_id, transaction_id=transaction_id)
                return current
            if current.status == "pending":
                # only a debit can miss while still pending: the balance guard failed
                available = await self.ledger.get_balance(contractor_id)
                raise InsufficientCreditsError(required=current.amount, available=available)
            raise self._invalid_transition(contractor_id, current, "completed")

        completed = await self.ledger.get_transaction(contractor_id, transaction_id)
        log.info(
            "transaction_completed",
            contractor_id=contractor_id,
            transaction_id=transaction_id,
            type=completed.type,
            amount=format_amount(completed.amount),
        )
        await self._audit(contractor_id, completed)
        return completed

    async def fail(
        self,
        contractor_id: str,
        transaction_id: str,
        reason: str,
        provider_metadata: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        """Idempotent finalize-failure; never touches the balance."""
        transaction = await self.ledger.get_transaction(contractor_id, transaction_id)
        if transaction.status == "failed":
            log.info("transaction_already_failed", contractor_id=contractor_id, transaction_id=transaction_id)
            return transaction
        if transaction.status == "completed":
            raise self._invalid_transition(contractor_id, transaction, "failed")

        metadata = {**(provider_metadata or {}), "error": reason}
        applied = await self.ledger.update_transaction(
            contractor_id,
            transaction_id,
            {
                "status": "failed",
                "failed_at": datetime.utcnow(),
                "description": description or describe(transaction.type, "failed", transaction.amount),
            },
            metadata=metadata,
        )
        if not applied:
            current = await self.ledger.get_transaction(contractor_id, transaction_id)
            if current.status == "failed":
                return current
            raise self._invalid_transition(contractor_id, current, "failed")

        failed = await self.ledger.get_transaction(contractor_id, transaction_id)
        log.info("transaction_failed", contractor_id=contractor_id, transaction_id=transaction_id, reason=reason)
        await self._audit(contractor_id, failed)
        return failed

    async def open_and_complete_synchronous(
        self,
        contractor_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str | None = None,
        lead_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction:
        """
        Debit path with no asynchronous leg. The balance check, the debit and the
        completed record are one write, so InsufficientCreditsError (or
        AlreadyPurchasedError for an owned lead) leaves the ledger untouched.
        """
        if transaction_type != "lead_purchase":
            raise ValueError("Only lead_purchase debits are completed synchronously")
        now = datetime.utcnow()
        transaction = CreditTransaction(
            type=transaction_type,
            amount_cents=_positive_cents(amount),
            status="completed",
            description=description or describe(transaction_type, "completed", amount),
            lead_id=lead_id,
            timestamp=now,
            completed_at=now,
            metadata=dict(metadata or {}),
        )
        await self.ledger.append_completed_debit(contractor_id, transaction, lead_id=lead_id)
        log.info(
            "transaction_completed",
            contractor_id=contractor_id,
            transaction_id=transaction.id,
            type=transaction_type,
            amount=format_amount(transaction.amount),
            lead_id=lead_id,
        )
        await self._audit(contractor_id, transaction)
        return transaction

    async def record_completed_credit(
        self,
        contractor_id: str,
        amount: Decimal,
        session_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction | None:
        """
        Compatibility path for provider confirmations that carry no transaction id:
        credit the balance and append an already-completed credit_purchase, at most
        once per Stripe checkout session. Returns None when the session was already
        recorded.
        """
        now = datetime.utcnow()
        transaction = CreditTransaction(
            type="credit_purchase",
            amount_cents=_positive_cents(amount),
            status="completed",
            description=describe("credit_purchase", "completed", amount),
            timestamp=now,
            completed_at=now,
            metadata={**(metadata or {}), "stripeSessionId": session_id, "source": "webhook_fallback"},
        )
        applied = await self.ledger.append_completed_credit(contractor_id, transaction, dedupe_session_id=session_id)
        if not applied:
            log.info("fallback_credit_already_recorded", contractor_id=contractor_id, stripe_session_id=session_id)
            return None
        log.info(
            "transaction_completed",
            contractor_id=contractor_id,
            transaction_id=transaction.id,
            type=transaction.type,
            amount=format_amount(transaction.amount),
            source="webhook_fallback",
        )
        await self._audit(contractor_id, transaction)
        return transaction

    async def list_transactions(self, contractor_id: str) -> list[CreditTransaction]:
        """Newest first."""
        transactions = await self.ledger.list_transactions(contractor_id)
        return sorted(transactions, key=lambda t: t.timestamp, reverse=True)

    def _invalid_transition(
        self,
        contractor_id: str,
        transaction: CreditTransaction,
        requested_status: str,
    ) -> InvalidTransitionError:
        log.error(
            "invalid_transaction_transition",
            contractor_id=contractor_id,
            transaction_id=transaction.id,
            current_status=transaction.status,
            requested_status=requested_status,
        )
        return InvalidTransitionError(transaction.id, transaction.status, requested_status)

    async def _audit(self, contractor_id: str, transaction: CreditTransaction) -> None:
        await log_event(
            contractor_id,
            f"{transaction.type}_{transaction.status}",
            "transaction",
            transaction.id,
            {"amount": format_amount(transaction.amount), "lead_id": transaction.lead_id},
        )


def _positive_cents(amount: Decimal) -> int:
    cents = to_cents(Decimal(amount))
    if cents <= 0:
        raise InvalidAmountError("Transaction amount must be positive")
    return cents

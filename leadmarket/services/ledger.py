"""
Ledger store: contractor balance and embedded transaction history.

Every mutation is a single `update_one` on the contractor document. The filter
carries the guard (pending status, sufficient balance, lead not yet owned) and
the update carries both the `$inc` on `credits_cents` and the transaction
change, so a balance movement and its transaction record are applied together
or not at all.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from leadmarket.core.exceptions import (
    AlreadyPurchasedError,
    ConflictError,
    InsufficientCreditsError,
    NotFoundError,
)
from leadmarket.core.money import from_cents, to_cents
from leadmarket.models.contractor import Contractor, CreditTransaction

# Set once at creation and never patched afterwards.
IMMUTABLE_TRANSACTION_FIELDS = frozenset({"id", "type", "amount_cents", "timestamp", "lead_id"})

# Re-reads allowed when a metadata enrichment lands between read and write.
METADATA_MERGE_ATTEMPTS = 5


def _dump(transaction: CreditTransaction) -> dict[str, Any]:
    return transaction.model_dump(mode="python")


class LedgerStore:
    """Durable access to `contractors/{id}` credits and `contractors/{id}.transactions[]`."""

    @staticmethod
    def _collection():
        return Contractor.get_motor_collection()

    async def get_contractor(self, contractor_id: str) -> Contractor:
        contractor = await Contractor.get(contractor_id)
        if not contractor:
            raise NotFoundError("Contractor not found")
        return contractor

    async def get_balance(self, contractor_id: str) -> Decimal:
        doc = await self._collection().find_one({"_id": contractor_id}, {"credits_cents": 1})
        if doc is None:
            raise NotFoundError("Contractor not found")
        return from_cents(doc.get("credits_cents", 0))

    async def adjust_balance(self, contractor_id: str, delta: Decimal) -> None:
        """Atomic `$inc`; a debit is only applied while the balance covers it."""
        delta_cents = to_cents(delta)
        query: dict[str, Any] = {"_id": contractor_id}
        if delta_cents < 0:
            query["credits_cents"] = {"$gte": -delta_cents}
        result = await self._collection().update_one(
            query,
            {"$inc": {"credits_cents": delta_cents}, "$set": {"updated_at": datetime.utcnow()}},
        )
        if result.matched_count == 0:
            available = await self.get_balance(contractor_id)
            raise InsufficientCreditsError(required=from_cents(-delta_cents), available=available)

    async def append_transaction(self, contractor_id: str, transaction: CreditTransaction) -> None:
        result = await self._collection().update_one(
            {"_id": contractor_id, "transactions.id": {"$nin": [transaction.id]}},
            {"$push": {"transactions": _dump(transaction)}, "$set": {"updated_at": datetime.utcnow()}},
        )
        if result.matched_count == 0:
            await self.get_contractor(contractor_id)
            raise ConflictError(f"Transaction {transaction.id} already exists", code="DUPLICATE_TRANSACTION")

    async def get_transaction(self, contractor_id: str, transaction_id: str) -> CreditTransaction:
        contractor = await self.get_contractor(contractor_id)
        for transaction in contractor.transactions:
            if transaction.id == transaction_id:
                return transaction
        raise NotFoundError(f"Transaction {transaction_id} not found")

    async def update_transaction(
        self,
        contractor_id: str,
        transaction_id: str,
        patch: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        credit_delta_cents: int = 0,
    ) -> bool:
        """
        Merge `patch` (top-level fields) and `metadata` (keys merged into the
        transaction's metadata map) into a *pending* transaction, applying
        `credit_delta_cents` to the balance in the same write.

        The merged metadata map is written whole, guarded on the snapshot it was
        merged from; when a concurrent `enrich_metadata` changed the map in
        between, the write misses and is retried from a fresh read, so no key
        is lost.

        Returns False when no pending transaction with that id matched, which
        covers both "already terminal" and "lost a race"; the caller re-reads
        to tell them apart.
        """
        illegal = IMMUTABLE_TRANSACTION_FIELDS & patch.keys()
        if illegal:
            raise ValueError(f"Cannot patch immutable transaction fields: {sorted(illegal)}")

        for _ in range(METADATA_MERGE_ATTEMPTS):
            current = await self.get_transaction(contractor_id, transaction_id)
            if current.status != "pending":
                return False
            element: dict[str, Any] = {"id": transaction_id, "status": "pending"}
            set_fields = {f"transactions.$.{key}": value for key, value in patch.items()}
            if metadata:
                element["metadata"] = current.metadata
                set_fields["transactions.$.metadata"] = {**current.metadata, **_clean_metadata(metadata)}
            set_fields["updated_at"] = datetime.utcnow()
            query: dict[str, Any] = {"_id": contractor_id, "transactions": {"$elemMatch": element}}
            update: dict[str, Any] = {"$set": set_fields}
            if credit_delta_cents:
                update["$inc"] = {"credits_cents": credit_delta_cents}
                if credit_delta_cents < 0:
                    query["credits_cents"] = {"$gte": -credit_delta_cents}
            result = await self._collection().update_one(query, update)
            if result.matched_count == 1:
                return True
            latest = await self.get_transaction(contractor_id, transaction_id)
            if latest.status != "pending" or latest.metadata == current.metadata:
                # terminal now, or the balance guard refused the debit
                return False
        return False

    async def enrich_metadata(self, contractor_id: str, transaction_id: str, metadata: dict[str, Any]) -> bool:
        """Merge metadata into a transaction in any state; status, amount and type are untouched."""
        fields = _metadata_fields(metadata)
        if not fields:
            return False
        result = await self._collection().update_one(
            {"_id": contractor_id, "transactions": {"$elemMatch": {"id": transaction_id}}},
            {"$set": fields},
        )
        return result.matched_count == 1

    async def append_completed_debit(
        self,
        contractor_id: str,
        transaction: CreditTransaction,
        lead_id: str | None = None,
    ) -> None:
        """
        Record an already-completed debit: balance decrement, transaction push and
        (for lead purchases) ownership in one guarded write. Nothing is written when
        the guard fails.
        """
        query: dict[str, Any] = {"_id": contractor_id, "credits_cents": {"$gte": transaction.amount_cents}}
        update: dict[str, Any] = {
            "$inc": {"credits_cents": -transaction.amount_cents},
            "$push": {"transactions": _dump(transaction)},
            "$set": {"updated_at": datetime.utcnow()},
        }
        if lead_id:
            query["purchased_leads"] = {"$nin": [lead_id]}
            update["$addToSet"] = {"purchased_leads": lead_id}
        result = await self._collection().update_one(query, update)
        if result.matched_count == 1:
            return
        contractor = await self.get_contractor(contractor_id)
        if lead_id and lead_id in contractor.purchased_leads:
            raise AlreadyPurchasedError(lead_id)
        raise InsufficientCreditsError(required=transaction.amount, available=contractor.credits)

    async def append_completed_credit(
        self,
        contractor_id: str,
        transaction: CreditTransaction,
        dedupe_session_id: str | None = None,
    ) -> bool:
        """
        Record an already-completed credit. When `dedupe_session_id` is given the
        write is skipped if any transaction already carries that Stripe session id.
        Returns whether the credit was applied.
        """
        query: dict[str, Any] = {"_id": contractor_id}
        if dedupe_session_id:
            query["transactions.metadata.stripeSessionId"] = {"$nin": [dedupe_session_id]}
        result = await self._collection().update_one(
            query,
            {
                "$inc": {"credits_cents": transaction.amount_cents},
                "$push": {"transactions": _dump(transaction)},
                "$set": {"updated_at": datetime.utcnow()},
            },
        )
        if result.matched_count == 1:
            return True
        await self.get_contractor(contractor_id)
        return False

    async def list_transactions(self, contractor_id: str) -> list[CreditTransaction]:
        contractor = await self.get_contractor(contractor_id)
        return list(contractor.transactions)


def _clean_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Drop None values and keys MongoDB would read as paths or operators."""
    return {
        key: value
        for key, value in (metadata or {}).items()
        if value is not None and key and "." not in key and not key.startswith("$")
    }


def _metadata_fields(metadata: dict[str, Any] | None) -> dict[str, Any]:
    return {f"transactions.$.metadata.{key}": value for key, value in _clean_metadata(metadata).items()}

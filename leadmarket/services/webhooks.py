"""
Stripe webhook reconciliation.

The only writer driven by the payment processor. After the signature check every
delivery is acknowledged, including ones whose reconciliation fails: those are
logged for an operator instead of being left to Stripe's retry schedule.

Handled event types:
- checkout.session.completed: primary success signal. With a transactionId in
  the metadata the pending transaction is completed; without one the
  compatibility path credits the balance directly (sessions created before
  transactions were tagged).
- charge.succeeded / payment_intent.succeeded: duplicate success signals for the
  same payment; ignored unless they carry our metadata.
- payment_intent.payment_failed: fails the pending transaction.
Anything else is acknowledged without action.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

from pymongo.errors import DuplicateKeyError

from leadmarket.core.exceptions import InvalidTransitionError
from leadmarket.core.logging import get_logger
from leadmarket.core.money import from_cents, parse_amount
from leadmarket.models.webhook_event import WebhookEvent
from leadmarket.services.stripe_gateway import StripeGateway
from leadmarket.services.transactions import TransactionManager

log = get_logger(__name__)

CREDIT_PURCHASE = "credit_purchase"
SETTLED_EVENT_STATUSES = ("processed", "rejected")

Handler = Callable[[str, dict[str, Any]], Awaitable[str]]


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _without_none(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


class WebhookReconciler:
    def __init__(self, gateway: StripeGateway, transactions: TransactionManager):
        self.gateway = gateway
        self.transactions = transactions
        self._handlers: dict[str, Handler] = {
            "checkout.session.completed": self._on_checkout_completed,
            "charge.succeeded": self._on_payment_succeeded,
            "payment_intent.succeeded": self._on_payment_succeeded,
            "payment_intent.payment_failed": self._on_payment_failed,
        }

    async def handle_webhook(self, raw_body: bytes, signature_header: str | None) -> dict[str, Any]:
        """Verify, dedupe, dispatch. Raises only SignatureInvalidError; everything after verification is acknowledged."""
        event = self.gateway.verify_event(raw_body, signature_header)
        event_id = _text(event.get("id"))
        event_type = _text(event.get("type")) or "unknown"
        bound = log.bind(event_id=event_id, event_type=event_type)
        bound.info("webhook_received")

        if event_id:
            try:
                fresh = await self._claim(event_id, event_type)
            except Exception as e:
                # dedupe is bookkeeping; the transaction state machine still refuses a second credit
                bound.exception("webhook_event_claim_failed", error=str(e))
                fresh = True
            if not fresh:
                bound.info("webhook_event_duplicate")
                return {"received": True, "status": "duplicate"}

        try:
            outcome = await self._dispatch(event_type, event)
        except InvalidTransitionError as e:
            bound.error(
                "webhook_invalid_transition",
                transaction_id=e.transaction_id,
                current_status=e.current_status,
                requested_status=e.requested_status,
            )
            await self._settle(event_id, "rejected", e.message)
            return {"received": True, "status": "rejected"}
        except Exception as e:
            bound.exception("webhook_processing_failed", error=str(e))
            await self._settle(event_id, "failed", f"{type(e).__name__}: {str(e)[:500]}")
            return {"received": True, "status": "processed_with_errors"}

        await self._settle(event_id, "processed")
        bound.info("webhook_processed", outcome=outcome)
        return {"received": True, "status": outcome}

    async def _dispatch(self, event_type: str, event: dict[str, Any]) -> str:
        handler = self._handlers.get(event_type)
        if handler is None:
            log.info("webhook_event_unhandled", event_type=event_type)
            return "ignored"
        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            log.warning("webhook_event_without_object", event_type=event_type)
            return "ignored"
        return await handler(event_type, obj)

    async def _on_checkout_completed(self, event_type: str, session: dict[str, Any]) -> str:
        metadata = _metadata(session)
        contractor_id = _text(metadata.get("contractorId")) or _text(metadata.get("contractorUid"))
        transaction_id = _text(metadata.get("transactionId"))
        if not contractor_id:
            log.warning("webhook_missing_contractor", event_type=event_type, stripe_session_id=session.get("id"))
            return "ignored"
        if not transaction_id:
            return await self._credit_untagged_session(contractor_id, metadata, session)

        amount = self._amount(metadata.get("amount"), event_type, transaction_id)
        if amount is None:
            return "ignored"
        amount_received = None
        if isinstance(session.get("amount_total"), int):
            amount_received = str(from_cents(session["amount_total"]))
        await self.transactions.complete(
            contractor_id,
            transaction_id,
            amount,
            _without_none({
                "stripeSessionId": _text(session.get("id")),
                "stripePaymentIntentId": _text(session.get("payment_intent")),
                "stripePaymentStatus": _text(session.get("payment_status")) or "paid",
                "amountReceived": amount_received,
            }),
        )
        return "completed"

    async def _credit_untagged_session(self, contractor_id: str, metadata: dict[str, Any], session: dict[str, Any]) -> str:
        """Compatibility path: no local transaction exists, so record one already completed."""
        amount = self._amount(metadata.get("amount", metadata.get("creditAmount")), "checkout.session.completed", None)
        if amount is None:
            return "ignored"
        session_id = _text(session.get("id"))
        log.warning("webhook_untagged_checkout_session", contractor_id=contractor_id, stripe_session_id=session_id)
        recorded = await self.transactions.record_completed_credit(
            contractor_id,
            amount,
            session_id,
            _without_none({
                "stripePaymentIntentId": _text(session.get("payment_intent")),
                "stripePaymentStatus": "paid",
                "currency": (_text(session.get("currency")) or "").upper() or None,
                "paymentMethod": "card",
            }),
        )
        return "completed_fallback" if recorded else "duplicate"

    async def _on_payment_succeeded(self, event_type: str, obj: dict[str, Any]) -> str:
        metadata = _metadata(obj)
        contractor_id = _text(metadata.get("contractorId"))
        transaction_id = _text(metadata.get("transactionId"))
        if not contractor_id or not transaction_id or metadata.get("type", CREDIT_PURCHASE) != CREDIT_PURCHASE:
            # unrelated payment activity on the same Stripe account
            log.info("webhook_event_without_metadata", event_type=event_type, object_id=obj.get("id"))
            return "ignored"
        amount = self._amount(metadata.get("amount"), event_type, transaction_id)
        if amount is None:
            return "ignored"
        if event_type == "charge.succeeded":
            provider_metadata = {
                "stripeChargeId": _text(obj.get("id")),
                "stripePaymentIntentId": _text(obj.get("payment_intent")),
            }
        else:
            provider_metadata = {"stripePaymentIntentId": _text(obj.get("id"))}
        provider_metadata["stripePaymentStatus"] = "succeeded"
        await self.transactions.complete(contractor_id, transaction_id, amount, _without_none(provider_metadata))
        return "completed"

    async def _on_payment_failed(self, event_type: str, payment_intent: dict[str, Any]) -> str:
        metadata = _metadata(payment_intent)
        contractor_id = _text(metadata.get("contractorId")) or _text(metadata.get("contractorUid"))
        if not contractor_id:
            log.warning("payment_failed_without_contractor", payment_intent_id=payment_intent.get("id"))
            return "ignored"
        transaction_id = _text(metadata.get("transactionId"))
        if not transaction_id:
            log.warning(
                "payment_failed_without_transaction",
                contractor_id=contractor_id,
                payment_intent_id=payment_intent.get("id"),
            )
            return "ignored"
        last_error = payment_intent.get("last_payment_error")
        reason = None
        if isinstance(last_error, dict):
            reason = _text(last_error.get("message"))
        currency = _text(payment_intent.get("currency"))
        await self.transactions.fail(
            contractor_id,
            transaction_id,
            reason or "Payment failed",
            _without_none({
                "stripePaymentIntentId": _text(payment_intent.get("id")),
                "stripePaymentStatus": "failed",
                "failureReason": reason or "Payment failed",
                "currency": currency.upper() if currency else None,
            }),
        )
        return "failed"

    @staticmethod
    def _amount(value: Any, event_type: str, transaction_id: str | None) -> Decimal | None:
        amount = parse_amount(value)
        if amount is None or amount <= 0:
            log.warning(
                "webhook_invalid_amount_metadata",
                event_type=event_type,
                transaction_id=transaction_id,
                amount=value if isinstance(value, (str, int, float)) else None,
            )
            return None
        return amount

    async def _claim(self, event_id: str, event_type: str) -> bool:
        """False when this event id was already settled (or is being inserted concurrently)."""
        existing = await WebhookEvent.find_one(WebhookEvent.event_id == event_id)
        if existing is not None:
            if existing.status in SETTLED_EVENT_STATUSES:
                return False
            existing.status = "processing"
            existing.attempts += 1
            existing.updated_at = datetime.utcnow()
            await existing.save()
            return True
        try:
            await WebhookEvent(event_id=event_id, event_type=event_type).insert()
        except DuplicateKeyError:
            return False
        return True

    async def _settle(self, event_id: str | None, status: str, error: str | None = None) -> None:
        if not event_id:
            return
        try:
            await WebhookEvent.find_one(WebhookEvent.event_id == event_id).update(
                {"$set": {"status": status, "error": error, "updated_at": datetime.utcnow()}}
            )
        except Exception:
            # bookkeeping only; the ledger state machine already guards replays
            log.exception("webhook_event_status_not_saved", event_id=event_id, status=status)

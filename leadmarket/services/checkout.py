"""Turn an "add funds" request into a Stripe-hosted checkout page backed by a pending transaction."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from leadmarket.core.config import Settings
from leadmarket.core.exceptions import InvalidAmountError, ProviderUnavailableError
from leadmarket.core.logging import get_logger
from leadmarket.core.money import format_amount, parse_amount, to_cents
from leadmarket.services.ledger import LedgerStore
from leadmarket.services.stripe_gateway import StripeGateway
from leadmarket.services.transactions import TransactionManager

log = get_logger(__name__)


@dataclass(frozen=True)
class CheckoutSessionResult:
    checkout_url: str
    transaction_id: str
    session_id: str
    amount: Decimal
    currency: str

    def to_public(self) -> dict[str, str]:
        return {
            "checkout_url": self.checkout_url,
            "transaction_id": self.transaction_id,
            "session_id": self.session_id,
            "amount": format_amount(self.amount),
            "currency": self.currency,
        }


class CheckoutService:
    def __init__(
        self,
        ledger: LedgerStore,
        transactions: TransactionManager,
        gateway: StripeGateway,
        settings: Settings,
    ):
        self.ledger = ledger
        self.transactions = transactions
        self.gateway = gateway
        self.settings = settings

    def validate_amount(self, amount: Any) -> Decimal:
        """Positive, at most two decimals, inside the configured inclusive bounds."""
        low = self.settings.credit_purchase_min
        high = self.settings.credit_purchase_max
        parsed = parse_amount(amount)
        if parsed is None or parsed <= 0 or parsed < low or parsed > high:
            raise InvalidAmountError(
                f"Amount must be between ${format_amount(low)} and ${format_amount(high)} "
                f"{self.settings.payment_currency.upper()}",
                details={"min": format_amount(low), "max": format_amount(high)},
            )
        return parsed

    async def create_checkout_session(self, contractor_id: str, amount: Any) -> CheckoutSessionResult:
        amount = self.validate_amount(amount)
        contractor = await self.ledger.get_contractor(contractor_id)
        currency = self.settings.payment_currency.lower()
        log.info("checkout_requested", contractor_id=contractor_id, amount=format_amount(amount))

        transaction_id = await self.transactions.open(
            contractor_id,
            "credit_purchase",
            amount,
            f"Credit purchase attempt - {format_amount(amount)} {currency.upper()}",
            metadata={"stripePaymentStatus": "pending", "currency": currency.upper(), "paymentMethod": "card"},
        )
        # The only channel that ties the asynchronous confirmation back to this transaction.
        metadata = {
            "contractorId": contractor_id,
            "amount": format_amount(amount),
            "transactionId": transaction_id,
            "type": "credit_purchase",
        }

        try:
            session = await self.gateway.create_checkout_session(
                customer_email=contractor.email,
                product_name=f"{format_amount(amount)} Credits Purchase",
                product_description=(
                    f"Purchase {format_amount(amount)} credits for lead marketplace "
                    f"(1 {currency.upper()} = 1 Credit)"
                ),
                unit_amount_cents=to_cents(amount),
                currency=currency,
                metadata=metadata,
                success_url=self.settings.checkout_success_url,
                cancel_url=self.settings.checkout_cancel_url,
                idempotency_key=f"checkout_{transaction_id}",
            )
        except Exception as e:
            log.error(
                "checkout_session_creation_failed",
                contractor_id=contractor_id,
                transaction_id=transaction_id,
                error=str(e),
                exc_info=True,
            )
            await self._fail_transaction(contractor_id, transaction_id, e)
            raise ProviderUnavailableError(details={"transaction_id": transaction_id}) from e

        try:
            await self.ledger.enrich_metadata(contractor_id, transaction_id, {"stripeSessionId": session.id})
        except Exception:
            log.warning(
                "checkout_session_id_not_recorded",
                contractor_id=contractor_id,
                transaction_id=transaction_id,
                stripe_session_id=session.id,
                exc_info=True,
            )

        log.info(
            "checkout_session_created",
            contractor_id=contractor_id,
            transaction_id=transaction_id,
            stripe_session_id=session.id,
        )
        return CheckoutSessionResult(
            checkout_url=session.url,
            transaction_id=transaction_id,
            session_id=session.id,
            amount=amount,
            currency=currency.upper(),
        )

    async def _fail_transaction(self, contractor_id: str, transaction_id: str, error: Exception) -> None:
        try:
            await self.transactions.fail(
                contractor_id,
                transaction_id,
                str(error) or type(error).__name__,
                {"failureReason": "checkout_session_creation_failed", "stripePaymentStatus": "failed"},
            )
        except Exception:
            # the caller still gets ProviderUnavailableError; this needs an operator
            log.exception(
                "checkout_transaction_not_failed",
                contractor_id=contractor_id,
                transaction_id=transaction_id,
            )

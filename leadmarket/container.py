"""Process-wide service graph, built once at startup and kept on `app.state.services`."""

from dataclasses import dataclass

from leadmarket.core.config import Settings
from leadmarket.services.checkout import CheckoutService
from leadmarket.services.leads import LeadPurchaseService
from leadmarket.services.ledger import LedgerStore
from leadmarket.services.stripe_gateway import StripeGateway
from leadmarket.services.transactions import TransactionManager
from leadmarket.services.webhooks import WebhookReconciler


@dataclass(frozen=True)
class Services:
    ledger: LedgerStore
    transactions: TransactionManager
    gateway: StripeGateway
    checkout: CheckoutService
    webhooks: WebhookReconciler
    leads: LeadPurchaseService


def build_services(settings: Settings, gateway: StripeGateway | None = None) -> Services:
    ledger = LedgerStore()
    transactions = TransactionManager(ledger)
    if gateway is None:
        gateway = StripeGateway(
            settings.stripe_secret_key,
            settings.stripe_webhook_secret,
            settings.stripe_webhook_tolerance,
        )
    return Services(
        ledger=ledger,
        transactions=transactions,
        gateway=gateway,
        checkout=CheckoutService(ledger, transactions, gateway, settings),
        webhooks=WebhookReconciler(gateway, transactions),
        leads=LeadPurchaseService(ledger, transactions),
    )

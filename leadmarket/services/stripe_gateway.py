"""Stripe client wrapper: hosted checkout sessions out, signed webhook events in."""

from dataclasses import dataclass
from typing import Any

import orjson
import stripe

from leadmarket.core.exceptions import ProviderUnavailableError, SignatureInvalidError
from leadmarket.core.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class HostedCheckoutSession:
    id: str
    url: str


class StripeGateway:
    """
    Built once at startup with the account's keys and passed to the services that
    need it. The API key is sent per request, so the SDK's global
    `stripe.api_key` is never set.
    """

    def __init__(self, secret_key: str, webhook_secret: str, webhook_tolerance: int = 300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance

    async def create_checkout_session(
        self,
        *,
        customer_email: str,
        product_name: str,
        product_description: str,
        unit_amount_cents: int,
        currency: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        idempotency_key: str,
    ) -> HostedCheckoutSession:
        if not self.secret_key:
            raise ProviderUnavailableError("Payments not configured")
        session = await stripe.checkout.Session.create_async(
            api_key=self.secret_key,
            idempotency_key=idempotency_key,
            mode="payment",
            payment_method_types=["card"],
            customer_email=customer_email,
            client_reference_id=metadata.get("transactionId"),
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": product_name,
                            "description": product_description,
                        },
                        "unit_amount": unit_amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            metadata=metadata,
            # copied so payment_intent.* and charge.* events can be correlated too
            payment_intent_data={"metadata": metadata},
            success_url=success_url,
            cancel_url=cancel_url,
        )
        if not session.url:
            raise ProviderUnavailableError("Checkout session has no redirect URL")
        return HostedCheckoutSession(id=session.id, url=session.url)

    def verify_event(self, payload: bytes, signature_header: str | None) -> dict[str, Any]:
        """
        Check the Stripe-Signature header against the raw body before parsing it.
        Any failure raises SignatureInvalidError.
        """
        if not self.webhook_secret:
            log.error("stripe_webhook_secret_missing")
            raise SignatureInvalidError("Webhook secret not configured")
        if not signature_header:
            raise SignatureInvalidError("Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature_header,
                self.webhook_secret,
                self.webhook_tolerance,
            )
        except UnicodeDecodeError as e:
            raise SignatureInvalidError("Invalid payload encoding") from e
        except stripe.SignatureVerificationError as e:
            log.warning("stripe_webhook_signature_invalid", error=str(e))
            raise SignatureInvalidError() from e
        try:
            event = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise SignatureInvalidError("Invalid payload") from e
        if not isinstance(event, dict):
            raise SignatureInvalidError("Invalid payload")
        return event

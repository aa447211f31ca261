from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from leadmarket.container import Services
from leadmarket.deps import get_services, require_approved_contractor
from leadmarket.models.contractor import Contractor

router = APIRouter()


class PurchaseCreditsRequest(BaseModel):
    amount: Any = None  # major units; validated against the configured bounds by the service


@router.post("/purchase-credits")
async def purchase_credits(
    body: PurchaseCreditsRequest,
    contractor: Contractor = Depends(require_approved_contractor),
    services: Services = Depends(get_services),
):
    """Open a pending credit purchase and return the Stripe-hosted checkout URL."""
    result = await services.checkout.create_checkout_session(contractor.id, body.amount)
    return result.to_public()


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
):
    """Stripe webhook. The raw body is needed for signature verification."""
    body = await request.body()
    return await services.webhooks.handle_webhook(body, stripe_signature)

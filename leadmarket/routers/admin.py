from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from leadmarket.container import Services
from leadmarket.deps import get_services, require_admin

router = APIRouter()


class SetLeadPriceRequest(BaseModel):
    price: Any = None


@router.put("/leads/{lead_id}/price")
async def set_lead_price(
    lead_id: str,
    body: SetLeadPriceRequest,
    admin_uid: str = Depends(require_admin),
    services: Services = Depends(get_services),
):
    """Set the credit price contractors pay to unlock a lead."""
    lead = await services.leads.set_lead_price(lead_id, body.price, admin_uid)
    return {"lead": lead}

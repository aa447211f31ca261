from fastapi import APIRouter, Depends

from leadmarket.container import Services
from leadmarket.deps import get_current_contractor, get_services, require_approved_contractor
from leadmarket.models.contractor import Contractor

router = APIRouter()


@router.get("/purchased")
async def purchased_leads(
    contractor: Contractor = Depends(get_current_contractor),
    services: Services = Depends(get_services),
):
    """Leads the contractor owns, with owner contact details."""
    leads = await services.leads.list_purchased_leads(contractor.id)
    return {"leads": leads}


@router.post("/{lead_id}/purchase")
async def purchase_lead(
    lead_id: str,
    contractor: Contractor = Depends(require_approved_contractor),
    services: Services = Depends(get_services),
):
    """Spend credits to unlock a lead. Buying an owned lead again charges nothing."""
    result = await services.leads.purchase_lead(contractor.id, lead_id)
    return {
        "lead": result.lead,
        "already_owned": result.already_owned,
        "transaction_id": result.transaction_id,
    }


@router.get("/{lead_id}/purchase")
async def lead_purchase_status(
    lead_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    services: Services = Depends(get_services),
):
    return {"has_purchased": await services.leads.has_purchased(contractor.id, lead_id)}

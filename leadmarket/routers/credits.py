from fastapi import APIRouter, Depends, Query

from leadmarket.container import Services
from leadmarket.core.money import format_amount
from leadmarket.core.pagination import slice_page
from leadmarket.deps import get_current_contractor, get_services
from leadmarket.models.contractor import Contractor

router = APIRouter()


@router.get("/balance")
async def credits_balance(
    contractor: Contractor = Depends(get_current_contractor),
    services: Services = Depends(get_services),
):
    """Return current credit balance."""
    balance = await services.ledger.get_balance(contractor.id)
    return {"balance": format_amount(balance)}


@router.get("/transactions")
async def credits_transactions(
    contractor: Contractor = Depends(get_current_contractor),
    services: Services = Depends(get_services),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Return transactions for current contractor (newest first)."""
    transactions = await services.transactions.list_transactions(contractor.id)
    page, total = slice_page(transactions, limit, offset)
    return {
        "transactions": [t.to_public() for t in page],
        "total": total,
        "limit": limit,
        "offset": offset,
    }

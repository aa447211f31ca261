"""Spend credits to unlock a lead's owner contact details."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from beanie.operators import In

from leadmarket.core.audit import log_event
from leadmarket.core.exceptions import (
    AlreadyPurchasedError,
    ForbiddenError,
    InvalidAmountError,
    LeadNotPurchasableError,
    NotFoundError,
)
from leadmarket.core.logging import get_logger
from leadmarket.core.money import format_amount, parse_amount, to_cents
from leadmarket.models.lead import Lead
from leadmarket.models.user import User
from leadmarket.services.ledger import LedgerStore
from leadmarket.services.transactions import TransactionManager

log = get_logger(__name__)


@dataclass(frozen=True)
class LeadPurchaseResult:
    lead: dict[str, Any]
    already_owned: bool
    transaction_id: str | None = None


def _public_lead(lead: Lead) -> dict[str, Any]:
    return {
        "id": lead.id,
        "service_type": lead.service_type,
        "location": lead.location,
        "description": lead.description,
        "budget": lead.budget,
        "urgent": lead.urgent,
        "price": format_amount(lead.price),
        "purchase_count": lead.purchase_count,
        "created_at": lead.created_at.isoformat(),
    }


def _owner_contact(owner: User | None) -> dict[str, Any]:
    if owner is None:
        return {"name": None, "email": None, "phone": None}
    return {"name": owner.display_name, "email": owner.email, "phone": owner.phone}


class LeadPurchaseService:
    """
    Ownership is recorded on the contractor (`purchased_leads`) in the same write as
    the debit; the lead's `purchased_by` set is a follow-up write that is repeated
    harmlessly if an earlier attempt stopped halfway.

    A repeat purchase of an owned lead succeeds without charging again.
    """

    def __init__(self, ledger: LedgerStore, transactions: TransactionManager):
        self.ledger = ledger
        self.transactions = transactions

    async def purchase_lead(self, contractor_id: str, lead_id: str) -> LeadPurchaseResult:
        contractor = await self.ledger.get_contractor(contractor_id)
        if not contractor.is_approved:
            raise ForbiddenError("Contractor account is not approved")
        lead = await Lead.get(lead_id)
        if not lead:
            raise NotFoundError("Lead not found")

        if lead_id in contractor.purchased_leads:
            return await self._already_owned(contractor_id, lead_id)
        if lead.price_cents <= 0:
            raise LeadNotPurchasableError()

        try:
            transaction = await self.transactions.open_and_complete_synchronous(
                contractor_id,
                "lead_purchase",
                lead.price,
                f"Purchased lead: {lead.service_type or 'Service'} - {format_amount(lead.price)} credits",
                lead_id=lead_id,
                metadata={"serviceType": lead.service_type, "location": lead.location, "urgent": lead.urgent},
            )
        except AlreadyPurchasedError:
            # a concurrent request for the same lead won the debit
            return await self._already_owned(contractor_id, lead_id)

        await self._add_purchaser(lead_id, contractor_id)
        log.info(
            "lead_purchased",
            contractor_id=contractor_id,
            lead_id=lead_id,
            transaction_id=transaction.id,
            price=format_amount(lead.price),
        )
        return LeadPurchaseResult(
            lead=await self._protected_view(lead_id),
            already_owned=False,
            transaction_id=transaction.id,
        )

    async def has_purchased(self, contractor_id: str, lead_id: str) -> bool:
        contractor = await self.ledger.get_contractor(contractor_id)
        return lead_id in contractor.purchased_leads

    async def list_purchased_leads(self, contractor_id: str) -> list[dict[str, Any]]:
        """Owned leads with owner contact, most recently purchased first."""
        contractor = await self.ledger.get_contractor(contractor_id)
        if not contractor.purchased_leads:
            return []
        purchased_at: dict[str, datetime] = {}
        for transaction in contractor.transactions:
            if transaction.type == "lead_purchase" and transaction.status == "completed" and transaction.lead_id:
                purchased_at[transaction.lead_id] = transaction.completed_at or transaction.timestamp

        leads = await Lead.find(In(Lead.id, contractor.purchased_leads)).to_list()
        owner_ids = list({lead.owner_uid for lead in leads})
        owners = {user.id: user for user in await User.find(In(User.id, owner_ids)).to_list()}

        out = []
        for lead in leads:
            item = _public_lead(lead)
            item["lead_owner_contact"] = _owner_contact(owners.get(lead.owner_uid))
            bought = purchased_at.get(lead.id)
            item["purchased_at"] = bought.isoformat() if bought else None
            out.append(item)
        out.sort(key=lambda item: item["purchased_at"] or "", reverse=True)
        return out

    async def set_lead_price(self, lead_id: str, price: Any, admin_uid: str) -> dict[str, Any]:
        amount = parse_amount(price)
        if amount is None or amount < 0:
            raise InvalidAmountError("Price must be a non-negative amount with at most two decimals")
        lead = await Lead.get(lead_id)
        if not lead:
            raise NotFoundError("Lead not found")
        lead.price_cents = to_cents(amount)
        lead.updated_at = datetime.utcnow()
        await lead.save()
        await log_event(admin_uid, "lead_price_set", "lead", lead_id, {"price": format_amount(amount)})
        log.info("lead_price_set", lead_id=lead_id, price=format_amount(amount), admin_uid=admin_uid)
        return _public_lead(lead)

    async def _already_owned(self, contractor_id: str, lead_id: str) -> LeadPurchaseResult:
        await self._add_purchaser(lead_id, contractor_id)
        log.info("lead_already_owned", contractor_id=contractor_id, lead_id=lead_id)
        return LeadPurchaseResult(lead=await self._protected_view(lead_id), already_owned=True)

    async def _add_purchaser(self, lead_id: str, contractor_id: str) -> None:
        await Lead.get_motor_collection().update_one(
            {"_id": lead_id, "purchased_by": {"$nin": [contractor_id]}},
            {
                "$addToSet": {"purchased_by": contractor_id},
                "$inc": {"purchase_count": 1},
                "$set": {"updated_at": datetime.utcnow()},
            },
        )

    async def _protected_view(self, lead_id: str) -> dict[str, Any]:
        lead = await Lead.get(lead_id)
        if not lead:
            raise NotFoundError("Lead not found")
        owner = await User.get(lead.owner_uid)
        item = _public_lead(lead)
        item["lead_owner_contact"] = _owner_contact(owner)
        return item

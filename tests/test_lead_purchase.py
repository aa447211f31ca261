"""Spending credits on leads."""

from decimal import Decimal

import pytest

from leadmarket.core.exceptions import (
    ForbiddenError,
    InsufficientCreditsError,
    InvalidAmountError,
    LeadNotPurchasableError,
    NotFoundError,
)
from leadmarket.models.audit_log import AuditLog
from leadmarket.models.lead import Lead

pytestmark = pytest.mark.asyncio


async def test_insufficient_credits_changes_nothing(services, make_contractor, make_lead):
    contractor = await make_contractor(credits="10")
    lead = await make_lead(price="25")

    with pytest.raises(InsufficientCreditsError):
        await services.leads.purchase_lead(contractor.id, lead.id)

    assert await services.ledger.get_balance(contractor.id) == Decimal("10.00")
    assert await services.ledger.list_transactions(contractor.id) == []
    assert not await services.leads.has_purchased(contractor.id, lead.id)
    stored = await Lead.get(lead.id)
    assert stored.purchased_by == []


async def test_purchase_with_exact_balance(services, make_contractor, make_lead):
    contractor = await make_contractor(credits="30")
    lead = await make_lead(price="30")

    result = await services.leads.purchase_lead(contractor.id, lead.id)

    assert result.already_owned is False
    assert result.lead["lead_owner_contact"] == {
        "name": "Jane Homeowner",
        "email": "homeowner-1@example.com",
        "phone": "+1 416 555 0100",
    }
    assert await services.ledger.get_balance(contractor.id) == Decimal("0.00")
    [transaction] = await services.ledger.list_transactions(contractor.id)
    assert transaction.id == result.transaction_id
    assert transaction.type == "lead_purchase"
    assert transaction.status == "completed"
    assert transaction.amount == Decimal("30.00")
    assert transaction.lead_id == lead.id
    assert await services.leads.has_purchased(contractor.id, lead.id)

    stored = await Lead.get(lead.id)
    assert stored.purchased_by == [contractor.id]
    assert stored.purchase_count == 1


async def test_repeat_purchase_charges_once(services, make_contractor, make_lead):
    contractor = await make_contractor(credits="100")
    lead = await make_lead(price="25")

    await services.leads.purchase_lead(contractor.id, lead.id)
    again = await services.leads.purchase_lead(contractor.id, lead.id)

    assert again.already_owned is True
    assert again.transaction_id is None
    assert again.lead["lead_owner_contact"]["email"] == "homeowner-1@example.com"
    assert await services.ledger.get_balance(contractor.id) == Decimal("75.00")
    assert len(await services.ledger.list_transactions(contractor.id)) == 1
    stored = await Lead.get(lead.id)
    assert stored.purchase_count == 1


async def test_other_contractors_are_unaffected(services, make_contractor, make_lead):
    buyer = await make_contractor(credits="50")
    other = await make_contractor(credits="50")
    lead = await make_lead(price="25")

    await services.leads.purchase_lead(buyer.id, lead.id)

    assert not await services.leads.has_purchased(other.id, lead.id)
    assert await services.ledger.get_balance(other.id) == Decimal("50.00")
    assert await services.leads.list_purchased_leads(other.id) == []


async def test_unapproved_contractor_cannot_purchase(services, make_contractor, make_lead):
    contractor = await make_contractor(credits="100", status="pending")
    lead = await make_lead()
    with pytest.raises(ForbiddenError):
        await services.leads.purchase_lead(contractor.id, lead.id)
    assert await services.ledger.get_balance(contractor.id) == Decimal("100.00")


async def test_unknown_lead(services, make_contractor):
    contractor = await make_contractor(credits="100")
    with pytest.raises(NotFoundError):
        await services.leads.purchase_lead(contractor.id, "missing")


async def test_unpriced_lead_is_not_purchasable(services, make_contractor, make_lead):
    contractor = await make_contractor(credits="100")
    lead = await make_lead(price="0")
    with pytest.raises(LeadNotPurchasableError):
        await services.leads.purchase_lead(contractor.id, lead.id)
    assert await services.ledger.get_balance(contractor.id) == Decimal("100.00")


async def test_list_purchased_leads(services, make_contractor, make_lead):
    contractor = await make_contractor(credits="100")
    first = await make_lead(price="10")
    second = await make_lead(price="20")
    await make_lead(price="30")

    await services.leads.purchase_lead(contractor.id, first.id)
    await services.leads.purchase_lead(contractor.id, second.id)

    leads = await services.leads.list_purchased_leads(contractor.id)
    assert {item["id"] for item in leads} == {first.id, second.id}
    assert all(item["lead_owner_contact"]["name"] == "Jane Homeowner" for item in leads)
    assert all(item["purchased_at"] for item in leads)


async def test_set_lead_price(services, make_lead):
    lead = await make_lead(price="0")

    public = await services.leads.set_lead_price(lead.id, "42.50", "admin-1")

    assert public["price"] == "42.50"
    stored = await Lead.get(lead.id)
    assert stored.price_cents == 4250
    [entry] = await AuditLog.find(AuditLog.event_type == "lead_price_set").to_list()
    assert entry.actor_id == "admin-1"
    assert entry.metadata == {"price": "42.50"}


@pytest.mark.parametrize("price", ["-1", "abc", "1.234", None])
async def test_set_lead_price_rejects_invalid(services, make_lead, price):
    lead = await make_lead(price="5")
    with pytest.raises(InvalidAmountError):
        await services.leads.set_lead_price(lead.id, price, "admin-1")
    assert (await Lead.get(lead.id)).price_cents == 500

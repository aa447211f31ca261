"""Contractor account with its credit balance and embedded transaction history."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import uuid4

from beanie import Document
from pydantic import BaseModel, Field

from leadmarket.core.money import format_amount, from_cents

ContractorStatus = Literal["pending", "approved", "rejected", "suspended"]
TransactionType = Literal["credit_purchase", "lead_purchase"]
TransactionStatus = Literal["pending", "completed", "failed"]

TERMINAL_STATUSES = ("completed", "failed")


def new_transaction_id() -> str:
    return f"txn_{uuid4().hex}"


class CreditTransaction(BaseModel):
    """
    One attempted or completed movement of credit.
    amount_cents is always positive; credit_purchase adds, lead_purchase removes.
    """
    id: str = Field(default_factory=new_transaction_id)
    type: TransactionType
    amount_cents: int = Field(gt=0)
    status: TransactionStatus = "pending"
    description: str = ""
    lead_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def balance_effect_cents(self) -> int:
        """Signed change this transaction applies to the balance once completed."""
        return self.amount_cents if self.type == "credit_purchase" else -self.amount_cents

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "amount": format_amount(self.amount),
            "status": self.status,
            "description": self.description,
            "lead_id": self.lead_id,
            "timestamp": self.timestamp.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "failed_at": self.failed_at.isoformat() if self.failed_at else None,
            "metadata": self.metadata,
        }


class Contractor(Document):
    id: str  # uid issued by the identity provider
    email: str
    display_name: str = ""
    phone: str = ""
    business_name: str = ""
    status: ContractorStatus = "pending"
    credits_cents: int = 0
    purchased_leads: list[str] = Field(default_factory=list)
    transactions: list[CreditTransaction] = Field(default_factory=list)
    approved_at: datetime | None = None
    approved_by: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def credits(self) -> Decimal:
        return from_cents(self.credits_cents)

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"

    class Settings:
        name = "contractors"
        indexes = [
            [("status", 1)],
            [("transactions.id", 1)],
        ]

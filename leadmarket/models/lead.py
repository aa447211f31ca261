from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from beanie import Document
from pydantic import Field

from leadmarket.core.money import from_cents


class Lead(Document):
    """Service request submitted by an end user; contact details are sold per contractor."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    owner_uid: str
    service_type: str
    location: str = ""
    description: str = ""
    budget: str | None = None
    urgent: bool = False
    price_cents: int = 0  # 0 = not yet priced by an admin
    purchase_count: int = 0
    purchased_by: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def price(self) -> Decimal:
        return from_cents(self.price_cents)

    class Settings:
        name = "leads"
        indexes = [
            [("owner_uid", 1), ("created_at", -1)],
            [("purchased_by", 1)],
        ]

from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class WebhookEvent(Document):
    """Stripe event id -> processing outcome, so a processed delivery is not replayed."""
    event_id: Indexed(str, unique=True)
    event_type: str
    status: str = "processing"  # processing | processed | rejected | failed
    error: str | None = None
    attempts: int = 1
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "webhook_events"

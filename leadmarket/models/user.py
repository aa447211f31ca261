from datetime import datetime

from beanie import Document
from pydantic import Field


class User(Document):
    id: str  # uid issued by the identity provider
    email: str
    display_name: str = ""
    phone: str | None = None
    role: str = "user"  # "user" | "contractor" | "admin"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"

import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from leadmarket.core.config import get_settings
from leadmarket.models.audit_log import AuditLog
from leadmarket.models.contractor import Contractor
from leadmarket.models.lead import Lead
from leadmarket.models.user import User
from leadmarket.models.webhook_event import WebhookEvent

DOCUMENT_MODELS = [
    User,
    Contractor,
    Lead,
    WebhookEvent,
    AuditLog,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database: AsyncIOMotorDatabase | None = None) -> None:
    """Bind the Beanie documents to `database`, or to the configured MongoDB when omitted."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)

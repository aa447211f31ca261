from leadmarket.models.user import User
from leadmarket.models.contractor import Contractor, CreditTransaction
from leadmarket.models.lead import Lead
from leadmarket.models.audit_log import AuditLog
from leadmarket.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Contractor",
    "CreditTransaction",
    "Lead",
    "AuditLog",
    "WebhookEvent",
]

from signing_desk.models.audit import AuditCategory, AuditLog
from signing_desk.models.envelope import EnvelopeRecord

__all__ = [
    "AuditCategory",
    "AuditLog",
    "EnvelopeRecord",
]

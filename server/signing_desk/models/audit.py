from __future__ import annotations

import uuid
from enum import Enum
from typing import Annotated

from sqlalchemy import Boolean, Enum as SAEnum, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from signing_desk.db.base import Base
from signing_desk.models.mixins import TimestampMixin

Identifier = Annotated[str, mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))]


class AuditCategory(str, Enum):
    ENVELOPE = "envelope"
    SIGNER = "signer"
    WEBHOOK = "webhook"
    AUTHORIZATION = "authorization"
    PROVIDER = "provider"
    SYSTEM = "system"


class AuditLog(TimestampMixin, Base):
    __tablename__ = "signature_audit_logs"

    id: Mapped[Identifier]
    envelope_id: Mapped[str | None] = mapped_column(String(40), nullable=True, index=True)
    actor: Mapped[str] = mapped_column(String(80), nullable=False, default="system")
    action: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[AuditCategory] = mapped_column(SAEnum(AuditCategory), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

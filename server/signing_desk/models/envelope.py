from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, Enum as SAEnum, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from signing_desk.db.base import Base
from signing_desk.domain.envelope import DocumentType, EnvelopeStatus, ProviderType
from signing_desk.models.mixins import TimestampMixin, VersionedMixin

Identifier = Annotated[str, mapped_column(String(40), primary_key=True, default=lambda: f"env_{uuid.uuid4().hex}")]


class EnvelopeRecord(TimestampMixin, VersionedMixin, Base):
    __tablename__ = "signature_envelopes"
    __table_args__ = (UniqueConstraint("provider", "provider_envelope_id", name="uq_envelope_provider_id"),)

    id: Mapped[Identifier]
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    provider: Mapped[ProviderType] = mapped_column(SAEnum(ProviderType), nullable=False)
    provider_envelope_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    document_type: Mapped[DocumentType] = mapped_column(SAEnum(DocumentType), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[EnvelopeStatus] = mapped_column(
        SAEnum(EnvelopeStatus), default=EnvelopeStatus.DRAFT, nullable=False, index=True
    )
    related_entity_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    related_entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    documents: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    signers: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    envelope_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    processed_event_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

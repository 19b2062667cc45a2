from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AnyUrl, EmailStr, Field

from signing_desk.domain.envelope import (
    DocumentRequest,
    DocumentType,
    EnvelopeRequest,
    EnvelopeStatus,
    LeaseSummary,
    ProviderType,
    RelatedEntity,
    SignerRequest,
    SignerRole,
    SignerStatus,
)
from signing_desk.schemas.common import ORMModel


class SignerCreate(ORMModel):
    id: Optional[str] = Field(default=None, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    role: SignerRole = SignerRole.OTHER
    order: int = Field(default=1, ge=1)


class DocumentCreate(ORMModel):
    name: str = Field(min_length=1, max_length=255)
    file_url: AnyUrl


class RelatedEntityPayload(ORMModel):
    type: str = Field(min_length=1, max_length=40)
    id: str = Field(min_length=1, max_length=64)


class EnvelopeCreate(ORMModel):
    document_type: DocumentType
    title: str = Field(min_length=1, max_length=200)
    message: Optional[str] = Field(default=None, max_length=2000)
    provider: Optional[ProviderType] = None
    documents: List[DocumentCreate] = Field(min_length=1)
    signers: List[SignerCreate] = Field(min_length=1)
    related_entity: Optional[RelatedEntityPayload] = None
    expires_in_days: Optional[int] = Field(default=None, ge=1, le=365)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_request(self) -> EnvelopeRequest:
        return EnvelopeRequest(
            document_type=self.document_type,
            title=self.title,
            message=self.message,
            provider=self.provider,
            documents=[DocumentRequest(name=document.name, file_url=str(document.file_url)) for document in self.documents],
            signers=[
                SignerRequest(id=signer.id, name=signer.name, email=str(signer.email), role=signer.role, order=signer.order)
                for signer in self.signers
            ],
            related_entity=RelatedEntity(**self.related_entity.model_dump()) if self.related_entity else None,
            expires_in_days=self.expires_in_days,
            metadata=self.metadata,
        )


class LeaseEnvelopeCreate(ORMModel):
    """Lease details as resolved by the leasing module."""

    property_name: str = Field(min_length=1, max_length=255)
    unit_number: str = Field(min_length=1, max_length=40)
    property_owner_id: Optional[str] = None
    tenant_name: str = Field(min_length=1, max_length=255)
    tenant_email: EmailStr
    landlord_name: Optional[str] = Field(default=None, max_length=255)
    document_url: AnyUrl
    provider: Optional[ProviderType] = None

    def to_summary(self, lease_id: str, *, owner_id: str, landlord_name: str, landlord_email: str) -> LeaseSummary:
        return LeaseSummary(
            lease_id=lease_id,
            owner_id=self.property_owner_id or owner_id,
            property_name=self.property_name,
            unit_number=self.unit_number,
            tenant_name=self.tenant_name,
            tenant_email=str(self.tenant_email),
            landlord_name=self.landlord_name or landlord_name,
            landlord_email=landlord_email,
            document_url=str(self.document_url),
        )


class SignerRead(ORMModel):
    id: str
    name: str
    email: str
    role: SignerRole
    order: int
    status: SignerStatus
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None


class DocumentRead(ORMModel):
    id: str
    name: str
    file_url: str
    sequence: int


class EnvelopeRead(ORMModel):
    id: str
    owner_id: str
    provider: ProviderType
    provider_envelope_id: Optional[str] = None
    document_type: DocumentType
    title: str
    message: Optional[str] = None
    status: EnvelopeStatus
    related_entity: Optional[RelatedEntityPayload] = None
    documents: List[DocumentRead]
    signers: List[SignerRead]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class EnvelopeCreated(ORMModel):
    envelope: EnvelopeRead
    signing_urls: Dict[str, str]


class EnvelopeCollection(ORMModel):
    items: List[EnvelopeRead]
    total: int
    page: int
    page_size: int


class SigningUrlRead(ORMModel):
    signing_url: str
    expires_in: int


class VoidRequest(ORMModel):
    reason: str = Field(min_length=1, max_length=500)


class WebhookAck(ORMModel):
    result: str
    event_id: Optional[str] = None
    envelope_id: Optional[str] = None
    reason: Optional[str] = None

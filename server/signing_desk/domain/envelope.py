"""
Envelope and Signer Domain Model

Value types shared by the orchestrator, the provider adapters and the
persistence layer. Transition rules live in ``services.state_machine``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ProviderType(str, Enum):
    """Closed set of signing providers."""
    MOCK = "mock"
    DOCUSIGN = "docusign"
    HELLOSIGN = "hellosign"


class EnvelopeStatus(str, Enum):
    """Envelope status enumeration."""
    DRAFT = "draft"
    SENT = "sent"
    DELIVERED = "delivered"
    VIEWED = "viewed"
    COMPLETED = "completed"
    DECLINED = "declined"
    VOIDED = "voided"
    EXPIRED = "expired"

    @property
    def rank(self) -> int:
        return ENVELOPE_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ENVELOPE_STATUSES


class SignerStatus(str, Enum):
    """Signer status enumeration."""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"

    @property
    def rank(self) -> int:
        return SIGNER_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (SignerStatus.SIGNED, SignerStatus.DECLINED)


class SignerRole(str, Enum):
    TENANT = "tenant"
    LANDLORD = "landlord"
    AGENT = "agent"
    WITNESS = "witness"
    GUARANTOR = "guarantor"
    OTHER = "other"


class DocumentType(str, Enum):
    LEASE = "lease"
    AMENDMENT = "amendment"
    ADDENDUM = "addendum"
    NOTICE = "notice"
    DISCLOSURE = "disclosure"
    OTHER = "other"


TERMINAL_ENVELOPE_STATUSES = frozenset(
    {EnvelopeStatus.COMPLETED, EnvelopeStatus.DECLINED, EnvelopeStatus.VOIDED, EnvelopeStatus.EXPIRED}
)

# Topological order of the state graph; terminal states share the top rank.
ENVELOPE_RANK: Dict[EnvelopeStatus, int] = {
    EnvelopeStatus.DRAFT: 0,
    EnvelopeStatus.SENT: 1,
    EnvelopeStatus.DELIVERED: 2,
    EnvelopeStatus.VIEWED: 3,
    EnvelopeStatus.COMPLETED: 4,
    EnvelopeStatus.DECLINED: 4,
    EnvelopeStatus.VOIDED: 4,
    EnvelopeStatus.EXPIRED: 4,
}

SIGNER_RANK: Dict[SignerStatus, int] = {
    SignerStatus.PENDING: 0,
    SignerStatus.SENT: 1,
    SignerStatus.DELIVERED: 2,
    SignerStatus.VIEWED: 3,
    SignerStatus.SIGNED: 4,
    SignerStatus.DECLINED: 4,
}


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:20]}"


@dataclass
class Actor:
    """The acting user as resolved by the identity collaborator."""
    id: str
    email: str
    role: Optional[str] = None
    name: Optional[str] = None


@dataclass
class RelatedEntity:
    type: str
    id: str


@dataclass
class EnvelopeDocument:
    """A document to be signed; ``sequence`` is its 1-based position."""
    id: str
    name: str
    file_url: str
    sequence: int = 1


@dataclass
class Signer:
    id: str
    name: str
    email: str
    role: SignerRole
    order: int = 1
    status: SignerStatus = SignerStatus.PENDING
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    ip_address: Optional[str] = None


@dataclass
class Envelope:
    """One signing transaction."""
    id: str
    owner_id: str
    provider: ProviderType
    document_type: DocumentType
    title: str
    documents: List[EnvelopeDocument]
    signers: List[Signer]
    created_at: datetime
    expires_at: datetime
    status: EnvelopeStatus = EnvelopeStatus.DRAFT
    provider_envelope_id: Optional[str] = None
    message: Optional[str] = None
    related_entity: Optional[RelatedEntity] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: int = 0
    processed_event_ids: List[str] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def find_signer(self, signer_id: str) -> Optional[Signer]:
        return next((signer for signer in self.signers if signer.id == signer_id), None)

    def find_signer_by_email(self, email: Optional[str]) -> Optional[Signer]:
        if not email:
            return None
        wanted = email.strip().lower()
        return next((signer for signer in self.signers if signer.email.lower() == wanted), None)

    def find_document(self, document_id: str) -> Optional[EnvelopeDocument]:
        return next((document for document in self.documents if document.id == document_id), None)


@dataclass
class SignerRequest:
    name: str
    email: str
    role: SignerRole = SignerRole.OTHER
    order: int = 1
    id: Optional[str] = None


@dataclass
class DocumentRequest:
    name: str
    file_url: str


@dataclass
class EnvelopeRequest:
    """Input to ``EnvelopeService.create``."""
    document_type: DocumentType
    title: str
    documents: List[DocumentRequest]
    signers: List[SignerRequest]
    provider: Optional[ProviderType] = None
    message: Optional[str] = None
    related_entity: Optional[RelatedEntity] = None
    expires_in_days: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LeaseSummary:
    """The slice of a lease needed to build its signing envelope."""
    lease_id: str
    owner_id: str
    property_name: str
    unit_number: str
    tenant_name: str
    tenant_email: str
    landlord_name: str
    landlord_email: str
    document_url: str


@dataclass
class CreatedEnvelope:
    envelope: Envelope
    signing_urls: Dict[str, str]


@dataclass
class SigningLink:
    url: str
    expires_in: int


@dataclass
class DocumentDownload:
    filename: str
    content: bytes
    content_type: str = "application/pdf"

from .envelope import (
    Actor,
    CreatedEnvelope,
    DocumentDownload,
    DocumentRequest,
    DocumentType,
    Envelope,
    EnvelopeDocument,
    EnvelopeRequest,
    EnvelopeStatus,
    LeaseSummary,
    ProviderType,
    RelatedEntity,
    Signer,
    SignerRequest,
    SignerRole,
    SignerStatus,
    SigningLink,
)

__all__ = [
    "Actor",
    "CreatedEnvelope",
    "DocumentDownload",
    "DocumentRequest",
    "DocumentType",
    "Envelope",
    "EnvelopeDocument",
    "EnvelopeRequest",
    "EnvelopeStatus",
    "LeaseSummary",
    "ProviderType",
    "RelatedEntity",
    "Signer",
    "SignerRequest",
    "SignerRole",
    "SignerStatus",
    "SigningLink",
]

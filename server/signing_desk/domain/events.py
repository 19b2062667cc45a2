from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .envelope import EnvelopeStatus, SignerStatus


class WebhookEventKind(str, Enum):
    """Provider-neutral webhook event kinds."""
    ENVELOPE_SENT = "envelope_sent"
    ENVELOPE_DELIVERED = "envelope_delivered"
    ENVELOPE_VIEWED = "envelope_viewed"
    ENVELOPE_COMPLETED = "envelope_completed"
    ENVELOPE_DECLINED = "envelope_declined"
    ENVELOPE_VOIDED = "envelope_voided"
    ENVELOPE_EXPIRED = "envelope_expired"
    SIGNER_SENT = "signer_sent"
    SIGNER_DELIVERED = "signer_delivered"
    SIGNER_VIEWED = "signer_viewed"
    SIGNER_SIGNED = "signer_signed"
    SIGNER_DECLINED = "signer_declined"
    UNKNOWN = "unknown"


ENVELOPE_EVENT_TARGETS: Dict[WebhookEventKind, EnvelopeStatus] = {
    WebhookEventKind.ENVELOPE_SENT: EnvelopeStatus.SENT,
    WebhookEventKind.ENVELOPE_DELIVERED: EnvelopeStatus.DELIVERED,
    WebhookEventKind.ENVELOPE_VIEWED: EnvelopeStatus.VIEWED,
    WebhookEventKind.ENVELOPE_COMPLETED: EnvelopeStatus.COMPLETED,
    WebhookEventKind.ENVELOPE_DECLINED: EnvelopeStatus.DECLINED,
    WebhookEventKind.ENVELOPE_VOIDED: EnvelopeStatus.VOIDED,
    WebhookEventKind.ENVELOPE_EXPIRED: EnvelopeStatus.EXPIRED,
}

SIGNER_EVENT_TARGETS: Dict[WebhookEventKind, SignerStatus] = {
    WebhookEventKind.SIGNER_SENT: SignerStatus.SENT,
    WebhookEventKind.SIGNER_DELIVERED: SignerStatus.DELIVERED,
    WebhookEventKind.SIGNER_VIEWED: SignerStatus.VIEWED,
    WebhookEventKind.SIGNER_SIGNED: SignerStatus.SIGNED,
    WebhookEventKind.SIGNER_DECLINED: SignerStatus.DECLINED,
}


@dataclass
class WebhookEvent:
    """A vendor notification translated into the universal vocabulary."""
    event_id: str
    kind: WebhookEventKind
    provider_envelope_id: str
    signer_id: Optional[str] = None
    signer_email: Optional[str] = None
    signer_sequence: Optional[int] = None
    occurred_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    raw_type: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_signer_event(self) -> bool:
        return self.kind in SIGNER_EVENT_TARGETS


@dataclass
class ProviderStatus:
    """Result of a status poll, already mapped to universal enumerations."""
    status: EnvelopeStatus
    signer_statuses: Dict[str, SignerStatus] = field(default_factory=dict)


@dataclass
class ProviderEnvelope:
    """Result of creating an envelope at the provider."""
    provider_envelope_id: str
    signing_urls: Dict[str, str] = field(default_factory=dict)

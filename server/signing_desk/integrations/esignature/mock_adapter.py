"""
Mock E-signature Adapter

Deterministic in-memory provider for development, demos and tests. Every call
succeeds synchronously; provider ids come from a counter so test runs are
reproducible.
"""

import itertools
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import quote

from signing_desk.core.logging import get_logger
from signing_desk.domain.envelope import (
    Envelope,
    EnvelopeDocument,
    EnvelopeStatus,
    ProviderType,
    Signer,
    SignerStatus,
)
from signing_desk.domain.events import ProviderEnvelope, ProviderStatus, WebhookEvent, WebhookEventKind

from .base import SignatureProvider, constant_time_equals, hmac_sha256

logger = get_logger(__name__)

MOCK_BASE_URL = "https://mock-esign.example.com"

MOCK_EVENT_KINDS: Dict[str, WebhookEventKind] = {
    "envelope.sent": WebhookEventKind.ENVELOPE_SENT,
    "envelope.delivered": WebhookEventKind.ENVELOPE_DELIVERED,
    "envelope.viewed": WebhookEventKind.ENVELOPE_VIEWED,
    "envelope.completed": WebhookEventKind.ENVELOPE_COMPLETED,
    "envelope.declined": WebhookEventKind.ENVELOPE_DECLINED,
    "envelope.voided": WebhookEventKind.ENVELOPE_VOIDED,
    "envelope.expired": WebhookEventKind.ENVELOPE_EXPIRED,
    "signer.sent": WebhookEventKind.SIGNER_SENT,
    "signer.delivered": WebhookEventKind.SIGNER_DELIVERED,
    "signer.viewed": WebhookEventKind.SIGNER_VIEWED,
    "signer.signed": WebhookEventKind.SIGNER_SIGNED,
    "signer.declined": WebhookEventKind.SIGNER_DECLINED,
}


@dataclass
class _MockEnvelope:
    status: EnvelopeStatus
    signers: Dict[str, SignerStatus] = field(default_factory=dict)
    documents: Dict[str, str] = field(default_factory=dict)
    void_reason: Optional[str] = None


class MockSignatureAdapter(SignatureProvider):
    """In-memory e-signature adapter."""

    idempotent_operations = frozenset({"send_envelope", "void_envelope"})

    def __init__(self, webhook_secret: str = "mock-webhook-secret", **config):
        super().__init__(webhook_secret=webhook_secret, **config)
        self.webhook_secret = webhook_secret
        self._envelopes: Dict[str, _MockEnvelope] = {}
        self._ids = itertools.count(1)
        self._events = itertools.count(1)
        self._lock = threading.Lock()

    def _get_provider_type(self) -> ProviderType:
        return ProviderType.MOCK

    async def create_envelope(self, envelope: Envelope) -> ProviderEnvelope:
        with self._lock:
            provider_envelope_id = f"mock_env_{next(self._ids):06d}"
            self._envelopes[provider_envelope_id] = _MockEnvelope(
                status=EnvelopeStatus.DRAFT,
                signers={signer.id: SignerStatus.PENDING for signer in envelope.signers},
                documents={document.id: document.name for document in envelope.documents},
            )
        signing_urls = {
            signer.id: f"{MOCK_BASE_URL}/sign/{provider_envelope_id}/{signer.id}" for signer in envelope.signers
        }
        logger.info("mock.envelope.created", provider_envelope_id=provider_envelope_id, envelope_id=envelope.id)
        return ProviderEnvelope(provider_envelope_id=provider_envelope_id, signing_urls=signing_urls)

    async def send_envelope(self, provider_envelope_id: str) -> None:
        state = self._envelopes.get(provider_envelope_id)
        if state is None or state.status is not EnvelopeStatus.DRAFT:
            return
        state.status = EnvelopeStatus.SENT
        for signer_id in state.signers:
            state.signers[signer_id] = SignerStatus.SENT

    async def void_envelope(self, provider_envelope_id: str, reason: str) -> None:
        state = self._envelopes.get(provider_envelope_id)
        if state is not None and not state.status.is_terminal:
            state.status = EnvelopeStatus.VOIDED
            state.void_reason = reason

    async def get_envelope_status(self, provider_envelope_id: str) -> ProviderStatus:
        state = self._envelopes.get(provider_envelope_id)
        if state is None:
            return ProviderStatus(status=EnvelopeStatus.DRAFT)
        return ProviderStatus(status=state.status, signer_statuses=dict(state.signers))

    async def get_signing_url(self, provider_envelope_id: str, signer: Signer, return_url: str) -> str:
        return f"{MOCK_BASE_URL}/sign/{provider_envelope_id}/{signer.id}?return={quote(return_url, safe='')}"

    async def download_document(self, provider_envelope_id: str, document: EnvelopeDocument) -> bytes:
        return f"Mock signed document PDF content: {document.name}".encode("utf-8")

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            return False
        return constant_time_equals(self.sign_payload(payload), signature)

    def parse_webhook(self, payload: bytes) -> WebhookEvent:
        try:
            body = json.loads(payload.decode("utf-8"))
            event_type = body["event"]
            return WebhookEvent(
                event_id=body["event_id"],
                kind=MOCK_EVENT_KINDS.get(event_type, WebhookEventKind.UNKNOWN),
                provider_envelope_id=body["envelope_id"],
                signer_id=body.get("signer_id"),
                signer_email=body.get("signer_email"),
                occurred_at=_parse_datetime(body.get("occurred_at")),
                ip_address=body.get("ip_address"),
                raw_type=event_type,
                data=body,
            )
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as exc:
            raise self._error(f"Malformed mock webhook payload: {exc}", retryable=False, operation="parse_webhook")

    # Test helpers

    def sign_payload(self, payload: bytes) -> str:
        return hmac_sha256(self.webhook_secret, payload).hexdigest()

    def build_webhook_payload(
        self,
        event: str,
        provider_envelope_id: str,
        signer_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> bytes:
        body = {
            "event_id": event_id or f"mock_evt_{next(self._events):06d}",
            "event": event,
            "envelope_id": provider_envelope_id,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
        if signer_id is not None:
            body["signer_id"] = signer_id
        return json.dumps(body, sort_keys=True).encode("utf-8")

    def simulate_sign(self, provider_envelope_id: str, signer_id: str) -> None:
        """Mark a signer signed on the mock side, completing the envelope when everyone has signed."""
        state = self._envelopes.get(provider_envelope_id)
        if state is None or signer_id not in state.signers:
            return
        state.signers[signer_id] = SignerStatus.SIGNED
        if all(status is SignerStatus.SIGNED for status in state.signers.values()):
            state.status = EnvelopeStatus.COMPLETED

    def simulate_decline(self, provider_envelope_id: str, signer_id: str) -> None:
        state = self._envelopes.get(provider_envelope_id)
        if state is None or signer_id not in state.signers:
            return
        state.signers[signer_id] = SignerStatus.DECLINED
        state.status = EnvelopeStatus.DECLINED

    def simulate_status(self, provider_envelope_id: str, status: EnvelopeStatus) -> None:
        state = self._envelopes.get(provider_envelope_id)
        if state is not None:
            state.status = status


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None

"""
Webhook ingestion.

Turns ``(provider, raw body, signature header)`` into a universal event. Only
a failed signature is an error; anything else that cannot be used is reported
as ``ignored`` so vendors do not keep redelivering it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from signing_desk.core.errors import ProviderError, WebhookAuthError
from signing_desk.core.logging import get_logger
from signing_desk.domain.events import WebhookEvent, WebhookEventKind
from signing_desk.integrations.esignature.base import SignatureProvider

logger = get_logger(__name__)

# Per-envelope cap on remembered event ids.
MAX_PROCESSED_EVENT_IDS = 500


class WebhookResult(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass
class WebhookOutcome:
    result: WebhookResult
    event_id: Optional[str] = None
    envelope_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ignored(cls, reason: str, event_id: Optional[str] = None, envelope_id: Optional[str] = None) -> "WebhookOutcome":
        return cls(WebhookResult.IGNORED, event_id=event_id, envelope_id=envelope_id, reason=reason)


def verify_signature(adapter: SignatureProvider, payload: bytes, signature: Optional[str]) -> None:
    if not adapter.verify_webhook(payload, signature):
        logger.warning("webhook.signature_invalid", provider=adapter.provider_type.value)
        raise WebhookAuthError(
            "Webhook signature verification failed",
            details={"provider": adapter.provider_type.value},
        )


def parse_event(adapter: SignatureProvider, payload: bytes) -> Optional[WebhookEvent]:
    """Parse an authenticated payload, returning ``None`` when it carries nothing usable."""
    try:
        event = adapter.parse_webhook(payload)
    except ProviderError as exc:
        logger.info("webhook.unparseable", provider=adapter.provider_type.value, error=exc.message)
        return None
    if not event.event_id:
        event.event_id = f"sha256:{hashlib.sha256(payload).hexdigest()}"
    if event.kind is WebhookEventKind.UNKNOWN:
        logger.info(
            "webhook.unhandled_event",
            provider=adapter.provider_type.value,
            raw_type=event.raw_type,
            event_id=event.event_id,
        )
    return event


def remember_event(processed_event_ids: list, event_id: str) -> None:
    processed_event_ids.append(event_id)
    overflow = len(processed_event_ids) - MAX_PROCESSED_EVENT_IDS
    if overflow > 0:
        del processed_event_ids[:overflow]

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from signing_desk.core.errors import InvalidStateError
from signing_desk.domain.envelope import Envelope, EnvelopeStatus, Signer, SignerStatus
from signing_desk.domain.events import (
    ENVELOPE_EVENT_TARGETS,
    SIGNER_EVENT_TARGETS,
    WebhookEvent,
)


ALLOWED_TRANSITIONS: dict[EnvelopeStatus, tuple[EnvelopeStatus, ...]] = {
    EnvelopeStatus.DRAFT: (
        EnvelopeStatus.SENT,
        EnvelopeStatus.DELIVERED,
        EnvelopeStatus.VIEWED,
        EnvelopeStatus.COMPLETED,
        EnvelopeStatus.DECLINED,
        EnvelopeStatus.VOIDED,
        EnvelopeStatus.EXPIRED,
    ),
    EnvelopeStatus.SENT: (
        EnvelopeStatus.DELIVERED,
        EnvelopeStatus.VIEWED,
        EnvelopeStatus.COMPLETED,
        EnvelopeStatus.DECLINED,
        EnvelopeStatus.VOIDED,
        EnvelopeStatus.EXPIRED,
    ),
    EnvelopeStatus.DELIVERED: (
        EnvelopeStatus.VIEWED,
        EnvelopeStatus.COMPLETED,
        EnvelopeStatus.DECLINED,
        EnvelopeStatus.VOIDED,
        EnvelopeStatus.EXPIRED,
    ),
    EnvelopeStatus.VIEWED: (
        EnvelopeStatus.COMPLETED,
        EnvelopeStatus.DECLINED,
        EnvelopeStatus.VOIDED,
        EnvelopeStatus.EXPIRED,
    ),
    EnvelopeStatus.COMPLETED: (),
    EnvelopeStatus.DECLINED: (),
    EnvelopeStatus.VOIDED: (),
    EnvelopeStatus.EXPIRED: (),
}

DELIVERY_STATUSES = frozenset(
    {EnvelopeStatus.SENT, EnvelopeStatus.DELIVERED, EnvelopeStatus.VIEWED, EnvelopeStatus.COMPLETED}
)


@dataclass(slots=True)
class TransitionResult:
    changed: bool
    previous: EnvelopeStatus
    current: EnvelopeStatus
    reason: str | None = None
    signer_changes: List[str] = field(default_factory=list)

    def merge(self, other: "TransitionResult") -> "TransitionResult":
        return TransitionResult(
            changed=self.changed or other.changed,
            previous=self.previous,
            current=other.current,
            reason=other.reason or self.reason,
            signer_changes=self.signer_changes + other.signer_changes,
        )


def _unchanged(envelope: Envelope, reason: str | None = None) -> TransitionResult:
    return TransitionResult(False, envelope.status, envelope.status, reason)


def can_transition(current: EnvelopeStatus, target: EnvelopeStatus) -> bool:
    allowed: Iterable[EnvelopeStatus] | None = ALLOWED_TRANSITIONS.get(current)
    return allowed is not None and target in allowed


def all_signed(signers: Iterable[Signer]) -> bool:
    signers = list(signers)
    return bool(signers) and all(signer.status is SignerStatus.SIGNED for signer in signers)


def advance_envelope(envelope: Envelope, target: EnvelopeStatus, now: datetime) -> TransitionResult:
    """Move the envelope forward to ``target``; stale or illegal targets are a no-op."""
    previous = envelope.status
    if previous == target:
        return _unchanged(envelope)
    if not can_transition(previous, target):
        return _unchanged(envelope, f"envelope transition {previous.value} -> {target.value} discarded")

    signer_changes: List[str] = []
    if previous is EnvelopeStatus.DRAFT and target in DELIVERY_STATUSES:
        # Leaving draft means the provider delivered the envelope to its signers.
        if envelope.sent_at is None:
            envelope.sent_at = now
        for signer in envelope.signers:
            if signer.status is SignerStatus.PENDING:
                signer.status = SignerStatus.SENT
                signer_changes.append(signer.id)

    if target is EnvelopeStatus.COMPLETED:
        for signer in envelope.signers:
            if signer.status is not SignerStatus.SIGNED:
                signer.status = SignerStatus.SIGNED
                signer.signed_at = signer.signed_at or now
                signer_changes.append(signer.id)
        envelope.completed_at = now

    envelope.status = target
    envelope.updated_at = now
    return TransitionResult(True, previous, target, signer_changes=signer_changes)


def ensure_sendable(envelope: Envelope) -> None:
    if envelope.status is not EnvelopeStatus.DRAFT:
        raise InvalidStateError(
            f"Envelope {envelope.id} has already been sent (status: {envelope.status.value})",
            details={"status": envelope.status.value},
        )


def ensure_voidable(envelope: Envelope) -> None:
    if envelope.is_terminal:
        raise InvalidStateError(
            f"Cannot void envelope {envelope.id} in status {envelope.status.value}",
            details={"status": envelope.status.value},
        )


def advance_signer(
    envelope: Envelope,
    signer: Signer,
    target: SignerStatus,
    now: datetime,
    ip_address: Optional[str] = None,
) -> TransitionResult:
    """Apply a signer-level transition plus its envelope consequences."""
    if envelope.is_terminal:
        return _unchanged(envelope, f"envelope is {envelope.status.value}")

    if signer.status.is_terminal or target.rank <= signer.status.rank:
        return _unchanged(envelope, f"signer {signer.id} is already {signer.status.value}")

    result = _unchanged(envelope)
    if envelope.status is EnvelopeStatus.DRAFT:
        result = advance_envelope(envelope, EnvelopeStatus.SENT, now)

    signer.status = target
    if ip_address:
        signer.ip_address = ip_address
    if target is SignerStatus.SIGNED:
        signer.signed_at = now
    elif target is SignerStatus.DECLINED:
        signer.declined_at = now
    envelope.updated_at = now
    result = result.merge(TransitionResult(True, envelope.status, envelope.status, signer_changes=[signer.id]))

    if target is SignerStatus.DECLINED:
        result = result.merge(advance_envelope(envelope, EnvelopeStatus.DECLINED, now))
    elif target is SignerStatus.SIGNED and all_signed(envelope.signers):
        result = result.merge(advance_envelope(envelope, EnvelopeStatus.COMPLETED, now))
    return result


def merge_provider_status(
    envelope: Envelope,
    status: EnvelopeStatus,
    signer_statuses: Dict[str, SignerStatus],
    now: datetime,
) -> TransitionResult:
    """Monotonic merge of a polled provider status into local state.

    ``signer_statuses`` is keyed by signer id, or by signer email for
    providers that never see local signer ids.
    """
    result = _unchanged(envelope)
    for signer_key, signer_status in signer_statuses.items():
        signer = envelope.find_signer(signer_key) or envelope.find_signer_by_email(signer_key)
        if signer is None:
            continue
        result = result.merge(advance_signer(envelope, signer, signer_status, now))
    return result.merge(advance_envelope(envelope, status, now))


def expire_if_overdue(envelope: Envelope, now: datetime) -> TransitionResult:
    if envelope.is_terminal or envelope.expires_at > now:
        return _unchanged(envelope)
    return advance_envelope(envelope, EnvelopeStatus.EXPIRED, now)


def resolve_event_signer(envelope: Envelope, event: WebhookEvent) -> Optional[Signer]:
    if event.signer_id:
        signer = envelope.find_signer(event.signer_id)
        if signer is not None:
            return signer
    signer = envelope.find_signer_by_email(event.signer_email)
    if signer is not None:
        return signer
    if event.signer_sequence and 0 < event.signer_sequence <= len(envelope.signers):
        return envelope.signers[event.signer_sequence - 1]
    return None


def apply_event(envelope: Envelope, event: WebhookEvent, now: datetime) -> TransitionResult:
    """Translate a universal webhook event into the matching transition."""
    if event.is_signer_event:
        signer = resolve_event_signer(envelope, event)
        if signer is None:
            return _unchanged(envelope, "event references an unknown signer")
        return advance_signer(envelope, signer, SIGNER_EVENT_TARGETS[event.kind], now, event.ip_address)
    if event.kind in ENVELOPE_EVENT_TARGETS:
        return advance_envelope(envelope, ENVELOPE_EVENT_TARGETS[event.kind], now)
    return _unchanged(envelope, f"event kind {event.kind.value} carries no transition")

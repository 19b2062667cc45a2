"""
Envelope orchestration.

``EnvelopeService`` is the single entry point for every envelope operation.
It resolves the provider adapter, enforces the authorization predicate and
the state machine, and serialises all mutations of one envelope through a
per-envelope lock. The lock is held only while reading a snapshot and while
applying a mutation, never across a provider call.
"""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Set, Tuple, TypeVar

from signing_desk.core.config import Settings, get_settings
from signing_desk.core.errors import (
    ConcurrentUpdateError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from signing_desk.core.logging import get_logger
from signing_desk.domain.envelope import (
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
    generate_id,
)
from signing_desk.domain.events import WebhookEventKind
from signing_desk.integrations.esignature.base import SignatureProvider
from signing_desk.integrations.esignature.registry import ProviderRegistry, parse_provider_tag
from signing_desk.models.audit import AuditCategory
from signing_desk.services import state_machine
from signing_desk.services.audit import AuditEntry, AuditTrail, InMemoryAuditTrail
from signing_desk.services.authorization import require_can_act, require_owner
from signing_desk.services.locks import EnvelopeLocks
from signing_desk.services.repository import EnvelopePage, EnvelopeRepository
from signing_desk.services.retry import call_provider
from signing_desk.services.webhook_service import (
    WebhookOutcome,
    WebhookResult,
    parse_event,
    remember_event,
    verify_signature,
)

logger = get_logger(__name__)

T = TypeVar("T")

MAX_EXPIRY_DAYS = 365
MAX_PAGE_SIZE = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EnvelopeService:
    def __init__(
        self,
        repository: EnvelopeRepository,
        registry: ProviderRegistry,
        audit: Optional[AuditTrail] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[EnvelopeLocks] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.audit = audit or InMemoryAuditTrail()
        self.settings = settings or get_settings()
        self.clock = clock or _utc_now
        self.locks = locks or EnvelopeLocks()

    # Creation

    async def create(self, request: EnvelopeRequest, actor: Actor) -> CreatedEnvelope:
        """
        Create an envelope at the provider and persist it in ``draft``.

        Signing URLs returned here are point-in-time and never persisted; use
        ``get_signing_url`` to fetch a fresh one later.

        Raises:
            ValidationError: If the request is malformed
            ProviderError: If the provider rejects the envelope
            ProviderUnavailableError: If the provider cannot be reached
        """
        self._validate_request(request)
        provider_type = parse_provider_tag(request.provider or self.settings.default_provider)
        adapter = self.registry.get(provider_type)

        now = self.clock()
        expiry_days = request.expires_in_days or self.settings.default_expiry_days
        envelope = Envelope(
            id=generate_id("env"),
            owner_id=actor.id,
            provider=provider_type,
            document_type=request.document_type,
            title=request.title.strip(),
            message=request.message,
            related_entity=request.related_entity,
            documents=[
                EnvelopeDocument(id=generate_id("doc"), name=document.name, file_url=document.file_url, sequence=index)
                for index, document in enumerate(request.documents, start=1)
            ],
            signers=[
                Signer(
                    id=signer.id or generate_id("sig"),
                    name=signer.name,
                    email=signer.email.strip(),
                    role=signer.role,
                    order=signer.order,
                )
                for signer in request.signers
            ],
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(days=expiry_days),
            metadata=dict(request.metadata),
        )

        provider_envelope = await self._call(
            adapter, "create_envelope", lambda: adapter.create_envelope(envelope), safe=False
        )
        envelope.provider_envelope_id = provider_envelope.provider_envelope_id
        await self.repository.add(envelope)

        await self._record(
            envelope.id,
            actor.id,
            "envelope.created",
            AuditCategory.ENVELOPE,
            provider=provider_type.value,
            provider_envelope_id=envelope.provider_envelope_id,
            signer_count=len(envelope.signers),
        )
        logger.info(
            "envelope.created",
            envelope_id=envelope.id,
            provider=provider_type.value,
            provider_envelope_id=envelope.provider_envelope_id,
            owner_id=actor.id,
        )
        return CreatedEnvelope(envelope=envelope, signing_urls=dict(provider_envelope.signing_urls))

    async def create_for_lease(
        self,
        lease: LeaseSummary,
        actor: Actor,
        provider: Optional[ProviderType] = None,
    ) -> CreatedEnvelope:
        """Build the standard two-party lease envelope: tenant signs first, landlord second."""
        if actor.id != lease.owner_id:
            await self._record(
                None,
                actor.id,
                "lease.envelope.denied",
                AuditCategory.AUTHORIZATION,
                critical=True,
                lease_id=lease.lease_id,
            )
            raise ForbiddenError(
                f"Not authorized to create signing envelopes for lease {lease.lease_id}",
                details={"lease_id": lease.lease_id},
            )

        request = EnvelopeRequest(
            document_type=DocumentType.LEASE,
            title=f"Lease Agreement - {lease.property_name} Unit {lease.unit_number}",
            documents=[DocumentRequest(name="Lease Agreement", file_url=lease.document_url)],
            signers=[
                SignerRequest(name=lease.tenant_name, email=lease.tenant_email, role=SignerRole.TENANT, order=1),
                SignerRequest(name=lease.landlord_name, email=lease.landlord_email, role=SignerRole.LANDLORD, order=2),
            ],
            provider=provider,
            related_entity=RelatedEntity(type="lease", id=lease.lease_id),
        )
        return await self.create(request, actor)

    # Owner actions

    async def send(self, envelope_id: str, actor: Actor) -> Envelope:
        envelope = await self._snapshot(envelope_id)
        await self._require_owner(actor, envelope, "send")
        state_machine.ensure_sendable(envelope)

        adapter = self.registry.get(envelope.provider)
        await self._call(
            adapter, "send_envelope", lambda: adapter.send_envelope(envelope.provider_envelope_id), safe=False
        )

        # A webhook may already have advanced the envelope past sent.
        envelope, result = await self._mutate(
            envelope_id, lambda current: state_machine.advance_envelope(current, EnvelopeStatus.SENT, self.clock())
        )
        await self._record(envelope.id, actor.id, "envelope.sent", AuditCategory.ENVELOPE, status=envelope.status.value)
        logger.info("envelope.sent", envelope_id=envelope.id, changed=result.changed)
        return envelope

    async def void(self, envelope_id: str, actor: Actor, reason: str) -> Envelope:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A void reason is required")

        envelope = await self._snapshot(envelope_id)
        await self._require_owner(actor, envelope, "void")
        state_machine.ensure_voidable(envelope)

        adapter = self.registry.get(envelope.provider)
        await self._call(
            adapter,
            "void_envelope",
            lambda: adapter.void_envelope(envelope.provider_envelope_id, reason),
            safe=False,
        )

        def apply(current: Envelope) -> state_machine.TransitionResult:
            result = state_machine.advance_envelope(current, EnvelopeStatus.VOIDED, self.clock())
            if result.changed:
                current.metadata["void_reason"] = reason
            return result

        envelope, result = await self._mutate(envelope_id, apply)
        await self._record(
            envelope.id,
            actor.id,
            "envelope.voided",
            AuditCategory.ENVELOPE,
            critical=True,
            reason=reason,
            status=envelope.status.value,
        )
        logger.info("envelope.voided", envelope_id=envelope.id, reason=reason, changed=result.changed)
        return envelope

    # Reads

    async def get_envelope(self, envelope_id: str, actor: Actor, refresh: bool = False) -> Envelope:
        envelope = await self._load(envelope_id)
        await self._require_can_act(actor, envelope, envelope.find_signer_by_email(actor.email), "view")
        if refresh:
            envelope = await self.refresh_status(envelope_id)
        return envelope

    async def list_envelopes(
        self,
        actor: Actor,
        *,
        status: Optional[EnvelopeStatus] = None,
        document_type: Optional[DocumentType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> EnvelopePage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        return await self.repository.list_for_owner(
            actor.id,
            status=status,
            document_type=document_type,
            offset=(page - 1) * page_size,
            limit=page_size,
        )

    async def refresh_status(self, envelope_id: str) -> Envelope:
        """
        Reconcile local state with the provider.

        Merges monotonically: a poll result older than local state (for
        example one that raced a webhook) is discarded without error.
        """
        envelope = await self._snapshot(envelope_id)
        if envelope.is_terminal:
            return envelope

        adapter = self.registry.get(envelope.provider)
        provider_status = await self._call(
            adapter,
            "get_envelope_status",
            lambda: adapter.get_envelope_status(envelope.provider_envelope_id),
            safe=True,
        )

        envelope, result = await self._mutate(
            envelope_id,
            lambda current: state_machine.merge_provider_status(
                current, provider_status.status, provider_status.signer_statuses, self.clock()
            ),
        )
        if result.changed:
            await self._record(
                envelope.id,
                "system",
                "envelope.status_refreshed",
                AuditCategory.PROVIDER,
                previous=result.previous.value,
                current=envelope.status.value,
                signers=result.signer_changes,
            )
        logger.info(
            "envelope.refreshed",
            envelope_id=envelope.id,
            provider_status=provider_status.status.value,
            status=envelope.status.value,
            changed=result.changed,
        )
        return envelope

    async def get_signing_url(
        self,
        envelope_id: str,
        signer_id: str,
        actor: Actor,
        return_url: Optional[str] = None,
    ) -> SigningLink:
        envelope = await self._snapshot(envelope_id)
        signer = envelope.find_signer(signer_id)
        if signer is None:
            raise NotFoundError(f"Signer {signer_id} not found on envelope {envelope_id}")
        await self._require_can_act(actor, envelope, signer, "sign")

        if envelope.is_terminal:
            raise InvalidStateError(
                f"Envelope {envelope.id} is {envelope.status.value}; signing is closed",
                details={"status": envelope.status.value},
            )
        if signer.status.is_terminal:
            raise InvalidStateError(
                f"Signer {signer.id} has already {signer.status.value}",
                details={"signer_status": signer.status.value},
            )
        if self.settings.signing_order_policy == "enforced":
            waiting_on = [
                other.id
                for other in envelope.signers
                if other.order < signer.order and other.status is not SignerStatus.SIGNED
            ]
            if waiting_on:
                raise InvalidStateError(
                    f"Signer {signer.id} must wait for earlier signers",
                    details={"waiting_on": waiting_on},
                )

        adapter = self.registry.get(envelope.provider)
        return_url = return_url or self.settings.default_return_url
        url = await self._call(
            adapter,
            "get_signing_url",
            lambda: adapter.get_signing_url(envelope.provider_envelope_id, signer, return_url),
            safe=True,
        )
        await self._record(envelope.id, actor.id, "signing_url.issued", AuditCategory.SIGNER, signer_id=signer.id)
        return SigningLink(url=url, expires_in=self.settings.signing_url_ttl_seconds)

    async def download_document(self, envelope_id: str, document_id: str, actor: Actor) -> DocumentDownload:
        envelope = await self._snapshot(envelope_id)
        await self._require_can_act(actor, envelope, envelope.find_signer_by_email(actor.email), "download")
        document = envelope.find_document(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found on envelope {envelope_id}")

        adapter = self.registry.get(envelope.provider)
        content = await self._call(
            adapter,
            "download_document",
            lambda: adapter.download_document(envelope.provider_envelope_id, document),
            safe=True,
        )
        await self._record(
            envelope.id, actor.id, "document.downloaded", AuditCategory.ENVELOPE, document_id=document.id
        )
        return DocumentDownload(filename=f"{document.name}.pdf", content=content)

    # Inbound notifications

    async def process_webhook_event(
        self,
        provider_tag: str,
        raw_payload: bytes,
        signature_header: Optional[str],
    ) -> WebhookOutcome:
        """
        Verify, parse and apply one vendor webhook.

        Raises:
            WebhookAuthError: If the signature does not verify. Every other
                problem is reported as an ``ignored`` outcome.
        """
        adapter = self.registry.get(provider_tag)
        verify_signature(adapter, raw_payload, signature_header)

        event = parse_event(adapter, raw_payload)
        if event is None:
            return WebhookOutcome.ignored("unparseable payload")
        if event.kind is WebhookEventKind.UNKNOWN:
            return WebhookOutcome.ignored(f"unhandled event type {event.raw_type}", event_id=event.event_id)

        envelope = await self.repository.get_by_provider_id(adapter.provider_type, event.provider_envelope_id)
        if envelope is None:
            logger.info(
                "webhook.unknown_envelope",
                provider=adapter.provider_type.value,
                provider_envelope_id=event.provider_envelope_id,
                event_id=event.event_id,
            )
            return WebhookOutcome.ignored("unknown envelope", event_id=event.event_id)

        def apply(current: Envelope) -> WebhookOutcome:
            if event.event_id in current.processed_event_ids:
                return WebhookOutcome(WebhookResult.DUPLICATE, event_id=event.event_id, envelope_id=current.id)
            if current.is_terminal:
                return WebhookOutcome.ignored(
                    f"envelope is {current.status.value}", event_id=event.event_id, envelope_id=current.id
                )
            transition = state_machine.apply_event(current, event, self.clock())
            remember_event(current.processed_event_ids, event.event_id)
            if not transition.changed:
                return WebhookOutcome.ignored(
                    transition.reason or "no state change", event_id=event.event_id, envelope_id=current.id
                )
            return WebhookOutcome(
                WebhookResult.APPLIED,
                event_id=event.event_id,
                envelope_id=current.id,
                reason=transition.reason,
            )

        envelope, outcome = await self._mutate(envelope.id, apply)
        if outcome.result is WebhookResult.APPLIED:
            await self._record(
                envelope.id,
                f"webhook:{adapter.provider_type.value}",
                "webhook.applied",
                AuditCategory.WEBHOOK,
                event_id=event.event_id,
                kind=event.kind.value,
                status=envelope.status.value,
            )
        logger.info(
            f"webhook.{outcome.result.value}",
            envelope_id=envelope.id,
            event_id=event.event_id,
            kind=event.kind.value,
            status=envelope.status.value,
        )
        return outcome

    # Sweep

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """Move every overdue, non-terminal envelope to ``expired``; returns how many moved."""
        now = now or self.clock()
        expired = 0
        for envelope_id in await self.repository.list_expirable(now):
            envelope, result = await self._mutate(
                envelope_id, lambda current: state_machine.expire_if_overdue(current, now)
            )
            if result.changed:
                expired += 1
                await self._record(envelope.id, "system", "envelope.expired", AuditCategory.SYSTEM)
        logger.info("envelope.sweep.completed", expired=expired)
        return expired

    # Internals

    def _validate_request(self, request: EnvelopeRequest) -> None:
        if not request.title or not request.title.strip():
            raise ValidationError("Envelope title is required")
        if len(request.title.strip()) > 200:
            raise ValidationError("Envelope title must be at most 200 characters")
        if not request.documents:
            raise ValidationError("At least one document is required")
        if not request.signers:
            raise ValidationError("At least one signer is required")

        seen_ids: Set[str] = set()
        seen_emails: Set[str] = set()
        for signer in request.signers:
            email = (signer.email or "").strip().lower()
            if not signer.name or "@" not in email:
                raise ValidationError("Every signer needs a name and a valid email", details={"email": signer.email})
            if signer.order < 1:
                raise ValidationError("Signer order is 1-based", details={"email": signer.email})
            if email in seen_emails:
                raise ValidationError(f"Duplicate signer email {signer.email}", details={"email": signer.email})
            seen_emails.add(email)
            if signer.id is not None:
                if signer.id in seen_ids:
                    raise ValidationError(f"Duplicate signer id {signer.id}", details={"signer_id": signer.id})
                seen_ids.add(signer.id)

        for document in request.documents:
            if not document.name or not document.file_url:
                raise ValidationError("Every document needs a name and a file URL")

        if request.expires_in_days is not None and not 1 <= request.expires_in_days <= MAX_EXPIRY_DAYS:
            raise ValidationError(f"expires_in_days must be between 1 and {MAX_EXPIRY_DAYS}")

    async def _load(self, envelope_id: str) -> Envelope:
        envelope = await self.repository.get(envelope_id)
        if envelope is None:
            raise NotFoundError(f"Envelope {envelope_id} not found", details={"envelope_id": envelope_id})
        return envelope

    async def _snapshot(self, envelope_id: str) -> Envelope:
        async with self.locks.for_envelope(envelope_id):
            return await self._load(envelope_id)

    async def _mutate(self, envelope_id: str, mutation: Callable[[Envelope], T]) -> Tuple[Envelope, T]:
        """Apply ``mutation`` to a fresh copy under the envelope lock and persist any change."""
        attempts = self.settings.persistence_retry_attempts
        for attempt in range(1, attempts + 1):
            async with self.locks.for_envelope(envelope_id):
                envelope = await self._load(envelope_id)
                before = copy.deepcopy(envelope)
                value = mutation(envelope)
                if envelope == before:
                    return envelope, value
                try:
                    await self.repository.update(envelope)
                    return envelope, value
                except ConcurrentUpdateError:
                    logger.warning("envelope.update.conflict", envelope_id=envelope_id, attempt=attempt)
                    if attempt == attempts:
                        raise

    async def _call(
        self,
        adapter: SignatureProvider,
        operation: str,
        call: Callable[[], Awaitable[T]],
        *,
        safe: bool,
    ) -> T:
        retry = safe or operation in adapter.idempotent_operations
        return await call_provider(
            call,
            operation=operation,
            provider=adapter.provider_type.value,
            timeout=self.settings.provider_timeout_seconds,
            attempts=self.settings.provider_retry_attempts if retry else 1,
            base_delay=self.settings.provider_retry_base_delay_seconds,
        )

    async def _require_owner(self, actor: Actor, envelope: Envelope, action: str) -> None:
        try:
            require_owner(actor, envelope, action)
        except ForbiddenError:
            await self._record(envelope.id, actor.id, f"envelope.{action}.denied", AuditCategory.AUTHORIZATION, critical=True)
            raise

    async def _require_can_act(self, actor: Actor, envelope: Envelope, signer: Optional[Signer], action: str) -> None:
        try:
            require_can_act(actor, envelope, signer, action)
        except ForbiddenError:
            await self._record(
                envelope.id,
                actor.id,
                f"envelope.{action}.denied",
                AuditCategory.AUTHORIZATION,
                critical=True,
                signer_id=signer.id if signer else None,
            )
            raise

    async def _record(
        self,
        envelope_id: Optional[str],
        actor: str,
        action: str,
        category: AuditCategory,
        critical: bool = False,
        **details,
    ) -> None:
        await self.audit.record(
            AuditEntry(
                action=action,
                category=category,
                envelope_id=envelope_id,
                actor=actor,
                details=details,
                critical=critical,
                created_at=self.clock(),
            )
        )

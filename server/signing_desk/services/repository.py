"""
Envelope persistence.

Repositories store whole envelopes and guard every update with an
optimistic ``version`` check so two writers can never silently overwrite
each other. Callers receive detached copies; mutating a returned envelope
has no effect until it is passed back to ``update``.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signing_desk.core.errors import ConcurrentUpdateError
from signing_desk.domain.envelope import (
    DocumentType,
    Envelope,
    EnvelopeDocument,
    EnvelopeStatus,
    ProviderType,
    RelatedEntity,
    Signer,
    SignerRole,
    SignerStatus,
    TERMINAL_ENVELOPE_STATUSES,
)
from signing_desk.models.envelope import EnvelopeRecord


@dataclass
class EnvelopePage:
    items: List[Envelope]
    total: int


class EnvelopeRepository(ABC):
    @abstractmethod
    async def add(self, envelope: Envelope) -> Envelope:
        """Persist a new envelope."""

    @abstractmethod
    async def get(self, envelope_id: str) -> Optional[Envelope]:
        ...

    @abstractmethod
    async def get_by_provider_id(self, provider: ProviderType, provider_envelope_id: str) -> Optional[Envelope]:
        ...

    @abstractmethod
    async def update(self, envelope: Envelope) -> Envelope:
        """
        Store ``envelope`` if the stored version still equals ``envelope.version``.

        Returns the envelope with its version bumped.

        Raises:
            ConcurrentUpdateError: If another writer got there first
        """

    @abstractmethod
    async def list_for_owner(
        self,
        owner_id: str,
        *,
        status: Optional[EnvelopeStatus] = None,
        document_type: Optional[DocumentType] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> EnvelopePage:
        """Owner-scoped listing, newest first."""

    @abstractmethod
    async def list_expirable(self, now: datetime) -> List[str]:
        """Ids of non-terminal envelopes whose ``expires_at`` has passed."""


class InMemoryEnvelopeRepository(EnvelopeRepository):
    def __init__(self) -> None:
        self._envelopes: Dict[str, Envelope] = {}

    async def add(self, envelope: Envelope) -> Envelope:
        self._envelopes[envelope.id] = copy.deepcopy(envelope)
        return envelope

    async def get(self, envelope_id: str) -> Optional[Envelope]:
        stored = self._envelopes.get(envelope_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def get_by_provider_id(self, provider: ProviderType, provider_envelope_id: str) -> Optional[Envelope]:
        for stored in self._envelopes.values():
            if stored.provider == provider and stored.provider_envelope_id == provider_envelope_id:
                return copy.deepcopy(stored)
        return None

    async def update(self, envelope: Envelope) -> Envelope:
        stored = self._envelopes.get(envelope.id)
        if stored is None or stored.version != envelope.version:
            raise ConcurrentUpdateError(
                f"Envelope {envelope.id} was modified concurrently",
                details={"expected_version": envelope.version},
            )
        envelope.version += 1
        self._envelopes[envelope.id] = copy.deepcopy(envelope)
        return envelope

    async def list_for_owner(
        self,
        owner_id: str,
        *,
        status: Optional[EnvelopeStatus] = None,
        document_type: Optional[DocumentType] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> EnvelopePage:
        matches = [
            envelope
            for envelope in self._envelopes.values()
            if envelope.owner_id == owner_id
            and (status is None or envelope.status == status)
            and (document_type is None or envelope.document_type == document_type)
        ]
        matches.sort(key=lambda envelope: envelope.created_at, reverse=True)
        return EnvelopePage(
            items=[copy.deepcopy(envelope) for envelope in matches[offset:offset + limit]],
            total=len(matches),
        )

    async def list_expirable(self, now: datetime) -> List[str]:
        return [
            envelope.id
            for envelope in self._envelopes.values()
            if not envelope.is_terminal and envelope.expires_at <= now
        ]


class SqlAlchemyEnvelopeRepository(EnvelopeRepository):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def add(self, envelope: Envelope) -> Envelope:
        async with self.session_factory() as session:
            session.add(EnvelopeRecord(id=envelope.id, version=envelope.version, **envelope_to_columns(envelope)))
            await session.commit()
        return envelope

    async def get(self, envelope_id: str) -> Optional[Envelope]:
        async with self.session_factory() as session:
            record = await session.get(EnvelopeRecord, envelope_id)
            return record_to_envelope(record) if record is not None else None

    async def get_by_provider_id(self, provider: ProviderType, provider_envelope_id: str) -> Optional[Envelope]:
        async with self.session_factory() as session:
            record = await session.scalar(
                select(EnvelopeRecord).where(
                    EnvelopeRecord.provider == provider,
                    EnvelopeRecord.provider_envelope_id == provider_envelope_id,
                )
            )
            return record_to_envelope(record) if record is not None else None

    async def update(self, envelope: Envelope) -> Envelope:
        async with self.session_factory() as session:
            result = await session.execute(
                update(EnvelopeRecord)
                .where(EnvelopeRecord.id == envelope.id, EnvelopeRecord.version == envelope.version)
                .values(version=envelope.version + 1, **envelope_to_columns(envelope))
            )
            if result.rowcount != 1:
                await session.rollback()
                raise ConcurrentUpdateError(
                    f"Envelope {envelope.id} was modified concurrently",
                    details={"expected_version": envelope.version},
                )
            await session.commit()
        envelope.version += 1
        return envelope

    async def list_for_owner(
        self,
        owner_id: str,
        *,
        status: Optional[EnvelopeStatus] = None,
        document_type: Optional[DocumentType] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> EnvelopePage:
        conditions = [EnvelopeRecord.owner_id == owner_id]
        if status is not None:
            conditions.append(EnvelopeRecord.status == status)
        if document_type is not None:
            conditions.append(EnvelopeRecord.document_type == document_type)

        async with self.session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(EnvelopeRecord).where(*conditions))
            records = await session.scalars(
                select(EnvelopeRecord)
                .where(*conditions)
                .order_by(EnvelopeRecord.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return EnvelopePage(items=[record_to_envelope(record) for record in records], total=total or 0)

    async def list_expirable(self, now: datetime) -> List[str]:
        async with self.session_factory() as session:
            ids = await session.scalars(
                select(EnvelopeRecord.id).where(
                    EnvelopeRecord.status.not_in(list(TERMINAL_ENVELOPE_STATUSES)),
                    EnvelopeRecord.expires_at <= now,
                )
            )
            return list(ids)


def envelope_to_columns(envelope: Envelope) -> Dict[str, Any]:
    return {
        "owner_id": envelope.owner_id,
        "provider": envelope.provider,
        "provider_envelope_id": envelope.provider_envelope_id,
        "document_type": envelope.document_type,
        "title": envelope.title,
        "message": envelope.message,
        "status": envelope.status,
        "related_entity_type": envelope.related_entity.type if envelope.related_entity else None,
        "related_entity_id": envelope.related_entity.id if envelope.related_entity else None,
        "documents": [
            {"id": document.id, "name": document.name, "file_url": document.file_url, "sequence": document.sequence}
            for document in envelope.documents
        ],
        "signers": [_signer_to_dict(signer) for signer in envelope.signers],
        "envelope_metadata": dict(envelope.metadata),
        "processed_event_ids": list(envelope.processed_event_ids),
        "expires_at": envelope.expires_at,
        "sent_at": envelope.sent_at,
        "completed_at": envelope.completed_at,
        "created_at": envelope.created_at,
        "updated_at": envelope.updated_at or envelope.created_at,
    }


def record_to_envelope(record: EnvelopeRecord) -> Envelope:
    related = None
    if record.related_entity_type and record.related_entity_id:
        related = RelatedEntity(type=record.related_entity_type, id=record.related_entity_id)
    return Envelope(
        id=record.id,
        owner_id=record.owner_id,
        provider=record.provider,
        document_type=record.document_type,
        title=record.title,
        documents=[EnvelopeDocument(**document) for document in record.documents],
        signers=[_signer_from_dict(signer) for signer in record.signers],
        created_at=_as_utc(record.created_at),
        expires_at=_as_utc(record.expires_at),
        status=record.status,
        provider_envelope_id=record.provider_envelope_id,
        message=record.message,
        related_entity=related,
        sent_at=_as_utc(record.sent_at),
        completed_at=_as_utc(record.completed_at),
        updated_at=_as_utc(record.updated_at),
        metadata=dict(record.envelope_metadata or {}),
        version=record.version,
        processed_event_ids=list(record.processed_event_ids or []),
    )


def _signer_to_dict(signer: Signer) -> Dict[str, Any]:
    return {
        "id": signer.id,
        "name": signer.name,
        "email": signer.email,
        "role": signer.role.value,
        "order": signer.order,
        "status": signer.status.value,
        "signed_at": signer.signed_at.isoformat() if signer.signed_at else None,
        "declined_at": signer.declined_at.isoformat() if signer.declined_at else None,
        "ip_address": signer.ip_address,
    }


def _signer_from_dict(data: Dict[str, Any]) -> Signer:
    return Signer(
        id=data["id"],
        name=data["name"],
        email=data["email"],
        role=SignerRole(data["role"]),
        order=data.get("order", 1),
        status=SignerStatus(data.get("status", SignerStatus.PENDING.value)),
        signed_at=_parse_timestamp(data.get("signed_at")),
        declined_at=_parse_timestamp(data.get("declined_at")),
        ip_address=data.get("ip_address"),
    )


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    return _as_utc(datetime.fromisoformat(value)) if value else None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)

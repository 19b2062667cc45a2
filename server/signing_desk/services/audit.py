from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signing_desk.core.logging import get_logger
from signing_desk.models.audit import AuditCategory, AuditLog

logger = get_logger(__name__)


@dataclass
class AuditEntry:
    action: str
    category: AuditCategory
    envelope_id: Optional[str] = None
    actor: str = "system"
    details: Dict[str, Any] = field(default_factory=dict)
    critical: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditTrail(ABC):
    """Append-only record of envelope actions and denials."""

    @abstractmethod
    async def record(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    async def for_envelope(self, envelope_id: str) -> List[AuditEntry]:
        ...


class InMemoryAuditTrail(AuditTrail):
    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    async def for_envelope(self, envelope_id: str) -> List[AuditEntry]:
        return [entry for entry in self.entries if entry.envelope_id == envelope_id]


class SqlAuditTrail(AuditTrail):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record(self, entry: AuditEntry) -> None:
        async with self.session_factory() as session:
            session.add(
                AuditLog(
                    envelope_id=entry.envelope_id,
                    actor=entry.actor,
                    action=entry.action,
                    category=entry.category,
                    details=entry.details,
                    critical=entry.critical,
                    created_at=entry.created_at,
                )
            )
            await session.commit()
        logger.debug("audit.recorded", action=entry.action, envelope_id=entry.envelope_id)

    async def for_envelope(self, envelope_id: str) -> List[AuditEntry]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(AuditLog).where(AuditLog.envelope_id == envelope_id).order_by(AuditLog.created_at)
            )
            return [
                AuditEntry(
                    action=row.action,
                    category=row.category,
                    envelope_id=row.envelope_id,
                    actor=row.actor,
                    details=dict(row.details or {}),
                    critical=row.critical,
                    created_at=row.created_at,
                )
                for row in rows
            ]

from datetime import datetime, timezone
from typing import Annotated

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


Timestamp = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False),
]


class TimestampMixin:
    created_at: Mapped[Timestamp]
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False,
    )


class VersionedMixin:
    """Row version bumped by every successful compare-and-swap update."""

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

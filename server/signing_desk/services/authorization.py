"""
Authorization policy for envelope operations.

A single predicate decides every access question: the envelope owner may act
on anything, a signer may act on what concerns their own signature. Denials
are always explicit ``ForbiddenError``s, never an empty or redacted result.
"""

from typing import Optional

from signing_desk.core.errors import ForbiddenError
from signing_desk.domain.envelope import Actor, Envelope, Signer


def _same_email(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return left.strip().lower() == right.strip().lower()


def is_owner(actor: Actor, envelope: Envelope) -> bool:
    return actor.id == envelope.owner_id


def can_act(actor: Actor, envelope: Envelope, signer: Optional[Signer] = None) -> bool:
    return is_owner(actor, envelope) or (signer is not None and _same_email(actor.email, signer.email))


def require_owner(actor: Actor, envelope: Envelope, action: str) -> None:
    if not is_owner(actor, envelope):
        raise ForbiddenError(
            f"Only the envelope owner may {action} envelope {envelope.id}",
            details={"envelope_id": envelope.id, "action": action},
        )


def require_can_act(actor: Actor, envelope: Envelope, signer: Optional[Signer], action: str) -> None:
    if not can_act(actor, envelope, signer):
        raise ForbiddenError(
            f"Not authorized to {action} on envelope {envelope.id}",
            details={"envelope_id": envelope.id, "action": action},
        )

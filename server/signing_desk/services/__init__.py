from signing_desk.services import (
    state_machine,
    authorization,
    audit,
    locks,
    repository,
    retry,
    webhook_service,
    envelope_service,
)

__all__ = [
    "state_machine",
    "authorization",
    "audit",
    "locks",
    "repository",
    "retry",
    "webhook_service",
    "envelope_service",
]

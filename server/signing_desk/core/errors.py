"""
Error taxonomy for envelope orchestration.

Every failure surfaced by the orchestrator carries a stable machine-readable
``code`` and a human-readable message. The HTTP layer maps codes to status
codes; nothing downstream branches on message text.
"""

from typing import Any, Dict, Optional


class SigningError(Exception):
    """Base class for all orchestration errors."""

    code = "signing_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(SigningError):
    """Malformed or incomplete request."""

    code = "validation_error"


class NotFoundError(SigningError):
    """Unknown envelope, signer or document id."""

    code = "not_found"


class ForbiddenError(SigningError):
    """The acting user failed the authorization predicate."""

    code = "forbidden"


class InvalidStateError(SigningError):
    """The requested transition is illegal from the current state."""

    code = "invalid_state"


class ProviderError(SigningError):
    """Adapter or vendor failure."""

    code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        retryable: bool,
        provider: Optional[str] = None,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        provider_response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.retryable = retryable
        self.provider = provider
        self.operation = operation
        self.status_code = status_code
        self.provider_response = provider_response


class ProviderUnavailableError(SigningError):
    """Retryable provider failure that persisted through every retry."""

    code = "provider_unavailable"


class WebhookAuthError(SigningError):
    """Inbound webhook signature did not verify."""

    code = "webhook_auth"


class ConcurrentUpdateError(SigningError):
    """Optimistic version check failed while persisting an envelope."""

    code = "concurrent_update"

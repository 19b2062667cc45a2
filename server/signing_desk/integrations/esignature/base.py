"""
E-signature Base Classes and Interfaces

Defines the contract every signing provider adapter implements. Adapters hide
the vendor wire protocol and speak only the universal envelope vocabulary.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from typing import FrozenSet, Optional

from signing_desk.core.errors import ProviderError
from signing_desk.domain.envelope import Envelope, EnvelopeDocument, ProviderType, Signer
from signing_desk.domain.events import ProviderEnvelope, ProviderStatus, WebhookEvent


def constant_time_equals(expected: str, received: Optional[str]) -> bool:
    """Compare two signatures without leaking how many leading bytes match."""
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


def hmac_sha256(secret: str, payload: bytes) -> hmac.HMAC:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256)


class SignatureProvider(ABC):
    """Abstract base class for e-signature providers."""

    # Mutating calls the vendor documents as safe to repeat.
    idempotent_operations: FrozenSet[str] = frozenset()
    webhook_signature_header: str = "X-Signature"
    # Plain-text body some vendors require in the webhook response.
    webhook_ack: Optional[str] = None

    def __init__(self, **config):
        """Initialize the e-signature provider with configuration."""
        self.config = config
        self.provider_type = self._get_provider_type()

    @abstractmethod
    def _get_provider_type(self) -> ProviderType:
        """Return the provider type identifier."""

    @abstractmethod
    async def create_envelope(self, envelope: Envelope) -> ProviderEnvelope:
        """
        Create the envelope at the provider.

        Args:
            envelope: Local envelope in draft state

        Returns:
            ProviderEnvelope with the provider envelope id and any signing URLs

        Raises:
            ProviderError: If creation fails
        """

    @abstractmethod
    async def send_envelope(self, provider_envelope_id: str) -> None:
        """
        Trigger vendor-side delivery to signers.

        Raises:
            ProviderError: If sending fails
        """

    @abstractmethod
    async def void_envelope(self, provider_envelope_id: str, reason: str) -> None:
        """
        Void an envelope at the provider.

        Raises:
            ProviderError: If voiding fails
        """

    @abstractmethod
    async def get_envelope_status(self, provider_envelope_id: str) -> ProviderStatus:
        """
        Query the provider for the current envelope and signer statuses.

        Raises:
            ProviderError: If the status query fails
        """

    @abstractmethod
    async def get_signing_url(self, provider_envelope_id: str, signer: Signer, return_url: str) -> str:
        """
        Get a short-lived embedded signing URL for one signer.

        Raises:
            ProviderError: If URL generation fails
        """

    @abstractmethod
    async def download_document(self, provider_envelope_id: str, document: EnvelopeDocument) -> bytes:
        """
        Download the current (signed, when complete) copy of a document.

        Raises:
            ProviderError: If the download fails
        """

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        """
        Check the webhook signature in constant time.

        Returns:
            True only if the payload was signed with this provider's secret
        """

    @abstractmethod
    def parse_webhook(self, payload: bytes) -> WebhookEvent:
        """
        Translate a verified vendor payload into a universal event.

        Raises:
            ProviderError: If the payload cannot be interpreted
        """

    async def close(self) -> None:
        """Release network resources held by the adapter."""

    def _error(
        self,
        message: str,
        *,
        retryable: bool,
        operation: str,
        status_code: Optional[int] = None,
        provider_response: Optional[dict] = None,
    ) -> ProviderError:
        return ProviderError(
            message,
            retryable=retryable,
            provider=self.provider_type.value,
            operation=operation,
            status_code=status_code,
            provider_response=provider_response,
        )

"""
Provider Registry

Lazily builds and memoizes one adapter per provider tag from process-wide
settings. Construction is guarded so concurrent first access never builds
two stateful clients.
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional, Union

from signing_desk.core.config import Settings
from signing_desk.core.errors import ValidationError
from signing_desk.core.logging import get_logger
from signing_desk.domain.envelope import ProviderType

from .base import SignatureProvider
from .docusign_adapter import DocuSignAdapter
from .hellosign_adapter import HelloSignAdapter
from .mock_adapter import MockSignatureAdapter

logger = get_logger(__name__)

ProviderFactory = Callable[[Settings], SignatureProvider]


def _require(settings: Settings, *names: str) -> None:
    missing = [name for name in names if not getattr(settings, name)]
    if missing:
        raise ValidationError(
            f"Provider is not configured; missing settings: {', '.join(missing)}",
            details={"missing": missing},
        )


def build_mock(settings: Settings) -> SignatureProvider:
    return MockSignatureAdapter(webhook_secret=settings.mock_webhook_secret)


def build_docusign(settings: Settings) -> SignatureProvider:
    _require(settings, "docusign_account_id", "docusign_access_token")
    return DocuSignAdapter(
        base_url=settings.docusign_base_url,
        account_id=settings.docusign_account_id,
        access_token=settings.docusign_access_token,
        user_id=settings.docusign_user_id,
        webhook_secret=settings.docusign_webhook_secret,
        timeout_seconds=settings.provider_timeout_seconds,
        connect_timeout_seconds=settings.provider_connect_timeout_seconds,
    )


def build_hellosign(settings: Settings) -> SignatureProvider:
    _require(settings, "hellosign_api_key", "hellosign_client_id")
    return HelloSignAdapter(
        api_key=settings.hellosign_api_key,
        client_id=settings.hellosign_client_id,
        base_url=settings.hellosign_base_url,
        test_mode=settings.hellosign_test_mode,
        timeout_seconds=settings.provider_timeout_seconds,
        connect_timeout_seconds=settings.provider_connect_timeout_seconds,
    )


DEFAULT_FACTORIES: Dict[ProviderType, ProviderFactory] = {
    ProviderType.MOCK: build_mock,
    ProviderType.DOCUSIGN: build_docusign,
    ProviderType.HELLOSIGN: build_hellosign,
}


def parse_provider_tag(tag: Union[str, ProviderType]) -> ProviderType:
    if isinstance(tag, ProviderType):
        return tag
    try:
        return ProviderType(str(tag).lower())
    except ValueError:
        raise ValidationError(
            f"Unsupported provider: {tag}",
            details={"supported": [provider.value for provider in ProviderType]},
        )


class ProviderRegistry:
    """Shared adapter instances keyed by provider tag."""

    def __init__(
        self,
        settings: Settings,
        factories: Optional[Dict[ProviderType, ProviderFactory]] = None,
    ) -> None:
        self.settings = settings
        self._factories: Dict[ProviderType, ProviderFactory] = dict(DEFAULT_FACTORIES)
        if factories:
            self._factories.update(factories)
        self._instances: Dict[ProviderType, SignatureProvider] = {}
        self._lock = threading.Lock()

    def register(self, tag: Union[str, ProviderType], factory: ProviderFactory) -> None:
        """Replace the factory for a tag, discarding any instance already built."""
        provider_type = parse_provider_tag(tag)
        with self._lock:
            self._factories[provider_type] = factory
            self._instances.pop(provider_type, None)

    def get(self, tag: Union[str, ProviderType]) -> SignatureProvider:
        provider_type = parse_provider_tag(tag)
        adapter = self._instances.get(provider_type)
        if adapter is not None:
            return adapter

        with self._lock:
            adapter = self._instances.get(provider_type)
            if adapter is None:
                adapter = self._factories[provider_type](self.settings)
                self._instances[provider_type] = adapter
                logger.info("provider.initialized", provider=provider_type.value)
        return adapter

    def initialized(self) -> Dict[ProviderType, SignatureProvider]:
        with self._lock:
            return dict(self._instances)

    async def close(self) -> None:
        with self._lock:
            adapters = list(self._instances.values())
            self._instances.clear()
        for adapter in adapters:
            await adapter.close()

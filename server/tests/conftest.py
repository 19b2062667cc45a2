"""
Shared test configuration and fixtures for the signing desk test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from signing_desk.core.config import Settings
from signing_desk.domain.envelope import (
    Actor,
    DocumentRequest,
    DocumentType,
    EnvelopeRequest,
    ProviderType,
    SignerRequest,
    SignerRole,
)
from signing_desk.integrations.esignature.mock_adapter import MockSignatureAdapter
from signing_desk.integrations.esignature.registry import ProviderRegistry
from signing_desk.services.audit import InMemoryAuditTrail
from signing_desk.services.envelope_service import EnvelopeService
from signing_desk.services.repository import InMemoryEnvelopeRepository


TEST_SECRET_KEY = "test-secret-key-for-jwt"
MOCK_WEBHOOK_SECRET = "test-mock-webhook-secret"


class FrozenClock:
    """Deterministic clock; ``advance`` moves it forward."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        secret_key=TEST_SECRET_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
        mock_webhook_secret=MOCK_WEBHOOK_SECRET,
        provider_retry_attempts=3,
        provider_retry_base_delay_seconds=0,
        provider_timeout_seconds=2,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def registry(settings) -> ProviderRegistry:
    return ProviderRegistry(settings)


@pytest.fixture
def mock_adapter(registry) -> MockSignatureAdapter:
    return registry.get(ProviderType.MOCK)


@pytest.fixture
def repository() -> InMemoryEnvelopeRepository:
    return InMemoryEnvelopeRepository()


@pytest.fixture
def audit() -> InMemoryAuditTrail:
    return InMemoryAuditTrail()


@pytest.fixture
def service(repository, registry, audit, settings, clock) -> EnvelopeService:
    return EnvelopeService(repository=repository, registry=registry, audit=audit, settings=settings, clock=clock)


@pytest.fixture
def owner() -> Actor:
    return Actor(id="user_owner", email="owner@example.com", name="Olivia Owner")


@pytest.fixture
def signer_a() -> Actor:
    return Actor(id="user_a", email="a@x.com")


@pytest.fixture
def signer_b() -> Actor:
    return Actor(id="user_b", email="b@x.com")


@pytest.fixture
def stranger() -> Actor:
    return Actor(id="user_stranger", email="stranger@example.com")


@pytest.fixture
def make_request() -> Callable[..., EnvelopeRequest]:
    def _make(
        signers: Optional[List[SignerRequest]] = None,
        provider: Optional[ProviderType] = ProviderType.MOCK,
        **overrides,
    ) -> EnvelopeRequest:
        values = dict(
            document_type=DocumentType.LEASE,
            title="Lease Agreement - Maple Court Unit 4B",
            documents=[DocumentRequest(name="Lease Agreement", file_url="https://files.example.com/lease.pdf")],
            signers=signers
            if signers is not None
            else [
                SignerRequest(name="Alex Tenant", email="a@x.com", role=SignerRole.TENANT, order=1),
                SignerRequest(name="Blair Landlord", email="b@x.com", role=SignerRole.LANDLORD, order=2),
            ],
            provider=provider,
        )
        values.update(overrides)
        return EnvelopeRequest(**values)

    return _make

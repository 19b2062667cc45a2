"""
E-signature integration modules

Provides adapters for signing platforms behind one universal interface.
"""

from .base import SignatureProvider
from .docusign_adapter import DocuSignAdapter
from .hellosign_adapter import HelloSignAdapter
from .mock_adapter import MockSignatureAdapter
from .registry import ProviderRegistry, parse_provider_tag

__all__ = [
    "SignatureProvider",
    "DocuSignAdapter",
    "HelloSignAdapter",
    "MockSignatureAdapter",
    "ProviderRegistry",
    "parse_provider_tag",
]

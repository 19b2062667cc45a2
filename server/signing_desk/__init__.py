"""Signing Desk: multi-provider signature envelope orchestration."""

__version__ = "0.1.0"

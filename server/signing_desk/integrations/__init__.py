"""
Integration modules for Signing Desk

Contains adapters for external signing providers (DocuSign, HelloSign) and
an in-memory mock provider.
"""

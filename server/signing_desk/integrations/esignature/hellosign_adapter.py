"""
HelloSign E-signature Adapter

Provides integration with HelloSign (now Dropbox Sign) embedded signature
requests. HelloSign delivers a request as soon as it is created, so sending
is a no-op on this provider.
"""

import asyncio
import hashlib
import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import aiohttp
from aiohttp import ClientTimeout

from signing_desk.core.logging import get_logger
from signing_desk.domain.envelope import (
    Envelope,
    EnvelopeDocument,
    EnvelopeStatus,
    ProviderType,
    Signer,
    SignerStatus,
)
from signing_desk.domain.events import ProviderEnvelope, ProviderStatus, WebhookEvent, WebhookEventKind

from .base import SignatureProvider, constant_time_equals, hmac_sha256

logger = get_logger(__name__)

SIGNATURE_STATUS_MAP: Dict[str, SignerStatus] = {
    "awaiting_signature": SignerStatus.SENT,
    "on_hold": SignerStatus.PENDING,
    "signed": SignerStatus.SIGNED,
    "declined": SignerStatus.DECLINED,
}

EVENT_KIND_MAP: Dict[str, WebhookEventKind] = {
    "signature_request_sent": WebhookEventKind.ENVELOPE_SENT,
    "signature_request_viewed": WebhookEventKind.SIGNER_VIEWED,
    "signature_request_signed": WebhookEventKind.SIGNER_SIGNED,
    "signature_request_all_signed": WebhookEventKind.ENVELOPE_COMPLETED,
    "signature_request_declined": WebhookEventKind.SIGNER_DECLINED,
    "signature_request_canceled": WebhookEventKind.ENVELOPE_VOIDED,
    "signature_request_expired": WebhookEventKind.ENVELOPE_EXPIRED,
}


class HelloSignAdapter(SignatureProvider):
    """HelloSign (Dropbox Sign) e-signature adapter."""

    idempotent_operations = frozenset({"send_envelope"})
    # HelloSign treats any other callback response body as a failed delivery.
    webhook_ack = "Hello API Event Received"

    def __init__(
        self,
        api_key: str,
        client_id: Optional[str] = None,
        base_url: str = "https://api.hellosign.com/v3",
        test_mode: bool = True,
        timeout_seconds: float = 30,
        connect_timeout_seconds: float = 10,
        **config
    ):
        """
        Initialize HelloSign adapter.

        Args:
            api_key: HelloSign API key (also the callback HMAC key)
            client_id: API app client id, required for embedded signing
            base_url: API root
            test_mode: Create non-binding test requests
        """
        super().__init__(client_id=client_id, base_url=base_url, test_mode=test_mode, **config)
        self.api_key = api_key
        self.client_id = client_id
        self.api_base = base_url.rstrip('/')
        self.test_mode = test_mode

        self._session = None
        self._timeout = ClientTimeout(total=timeout_seconds, connect=connect_timeout_seconds)

    def _get_provider_type(self) -> ProviderType:
        return ProviderType.HELLOSIGN

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                auth=aiohttp.BasicAuth(self.api_key, ""),
                headers={"Accept": "application/json"},
            )
        return self._session

    async def create_envelope(self, envelope: Envelope) -> ProviderEnvelope:
        form: Dict[str, str] = {
            "client_id": self.client_id or "",
            "title": envelope.title,
            "subject": envelope.title,
            "message": envelope.message or "",
            "test_mode": "1" if self.test_mode else "0",
            "metadata[envelope_id]": envelope.id,
        }
        for index, signer in enumerate(envelope.signers):
            form[f"signers[{index}][email_address]"] = signer.email
            form[f"signers[{index}][name]"] = signer.name
            form[f"signers[{index}][order]"] = str(signer.order - 1)
        for index, document in enumerate(envelope.documents):
            form[f"file_urls[{index}]"] = document.file_url

        response_data = await self._request(
            "POST", f"{self.api_base}/signature_request/create_embedded", "create_envelope", form=form
        )
        request_data = response_data.get("signature_request") or {}
        provider_envelope_id = request_data.get("signature_request_id")
        if not provider_envelope_id:
            raise self._error(
                "HelloSign response did not include a signature_request_id",
                retryable=False,
                operation="create_envelope",
                provider_response=response_data,
            )

        signing_urls: Dict[str, str] = {}
        for signature in request_data.get("signatures", []):
            signer = envelope.find_signer_by_email(signature.get("signer_email_address"))
            if signer is not None and signature.get("signature_id"):
                signing_urls[signer.id] = await self._embedded_sign_url(signature["signature_id"])

        logger.info("hellosign.request.created", envelope_id=envelope.id, provider_envelope_id=provider_envelope_id)
        return ProviderEnvelope(provider_envelope_id=provider_envelope_id, signing_urls=signing_urls)

    async def send_envelope(self, provider_envelope_id: str) -> None:
        logger.info("hellosign.request.already_sent", provider_envelope_id=provider_envelope_id)

    async def void_envelope(self, provider_envelope_id: str, reason: str) -> None:
        await self._request(
            "POST", f"{self.api_base}/signature_request/cancel/{provider_envelope_id}", "void_envelope"
        )
        logger.info("hellosign.request.canceled", provider_envelope_id=provider_envelope_id, reason=reason)

    async def get_envelope_status(self, provider_envelope_id: str) -> ProviderStatus:
        request_data = await self._get_signature_request(provider_envelope_id, "get_envelope_status")
        if request_data.get("is_complete"):
            status = EnvelopeStatus.COMPLETED
        elif request_data.get("is_declined"):
            status = EnvelopeStatus.DECLINED
        else:
            status = EnvelopeStatus.SENT

        signer_statuses: Dict[str, SignerStatus] = {}
        for signature in request_data.get("signatures", []):
            email = signature.get("signer_email_address")
            signer_status = SIGNATURE_STATUS_MAP.get(signature.get("status_code", ""))
            if email and signer_status is not None:
                signer_statuses[email] = signer_status
        return ProviderStatus(status=status, signer_statuses=signer_statuses)

    async def get_signing_url(self, provider_envelope_id: str, signer: Signer, return_url: str) -> str:
        request_data = await self._get_signature_request(provider_envelope_id, "get_signing_url")
        for signature in request_data.get("signatures", []):
            if str(signature.get("signer_email_address", "")).lower() == signer.email.lower():
                return await self._embedded_sign_url(signature["signature_id"])
        raise self._error(
            f"No HelloSign signature found for signer {signer.id}",
            retryable=False,
            operation="get_signing_url",
        )

    async def download_document(self, provider_envelope_id: str, document: EnvelopeDocument) -> bytes:
        # HelloSign serves every document of a request as one merged PDF.
        return await self._request(
            "GET",
            f"{self.api_base}/signature_request/files/{provider_envelope_id}",
            "download_document",
            params={"file_type": "pdf"},
            expect_bytes=True,
        )

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        """Verify the ``event_hash`` HelloSign embeds in every callback body."""
        if not self.api_key:
            return False
        try:
            event = self._decode_callback(payload)["event"]
            message = f"{event['event_time']}{event['event_type']}".encode("utf-8")
            received = event["event_hash"]
        except (ValueError, KeyError, TypeError):
            return False
        expected = hmac_sha256(self.api_key, message).hexdigest()
        return constant_time_equals(expected, received)

    def parse_webhook(self, payload: bytes) -> WebhookEvent:
        try:
            body = self._decode_callback(payload)
            event = body["event"]
            event_type = event["event_type"]
            request_data = body["signature_request"]
            provider_envelope_id = request_data["signature_request_id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise self._error(f"Invalid HelloSign callback: {exc}", retryable=False, operation="parse_webhook")

        metadata = event.get("event_metadata") or {}
        related_signature_id = metadata.get("related_signature_id")
        signer_email = None
        for signature in request_data.get("signatures", []):
            if related_signature_id and signature.get("signature_id") == related_signature_id:
                signer_email = signature.get("signer_email_address")

        material = "|".join([str(event.get("event_time")), event_type, provider_envelope_id, str(related_signature_id or "")])
        return WebhookEvent(
            event_id=f"hellosign:{hashlib.sha256(material.encode('utf-8')).hexdigest()}",
            kind=EVENT_KIND_MAP.get(event_type, WebhookEventKind.UNKNOWN),
            provider_envelope_id=provider_envelope_id,
            signer_email=signer_email,
            raw_type=event_type,
            data={"related_signature_id": related_signature_id},
        )

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    @staticmethod
    def _decode_callback(payload: bytes) -> Dict[str, Any]:
        """Callbacks arrive either as a JSON body or as a form field named ``json``."""
        text = payload.decode("utf-8")
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            fields = parse_qs(text)
            if "json" not in fields:
                raise
            return json.loads(fields["json"][0])

    async def _get_signature_request(self, provider_envelope_id: str, operation: str) -> Dict[str, Any]:
        response_data = await self._request(
            "GET", f"{self.api_base}/signature_request/{provider_envelope_id}", operation
        )
        request_data = response_data.get("signature_request")
        if not isinstance(request_data, dict):
            raise self._error("HelloSign response missing signature_request", retryable=False, operation=operation)
        return request_data

    async def _embedded_sign_url(self, signature_id: str) -> str:
        response_data = await self._request(
            "GET", f"{self.api_base}/embedded/sign_url/{signature_id}", "get_signing_url"
        )
        url = (response_data.get("embedded") or {}).get("sign_url")
        if not url:
            raise self._error("No signing URL returned", retryable=False, operation="get_signing_url")
        return url

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        form: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        expect_bytes: bool = False,
    ) -> Any:
        try:
            async with self.session.request(method, url, data=form, params=params) as response:
                if response.status not in (200, 201, 204):
                    await self._raise_for_status(response, operation)
                if expect_bytes:
                    return await response.read()
                if response.status == 204:
                    return {}
                text = await response.text()
                return json.loads(text) if text else {}
        except json.JSONDecodeError as exc:
            raise self._error(f"Unexpected HelloSign response body in {operation}: {exc}", retryable=False, operation=operation)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("hellosign.transport_error", operation=operation, error=str(exc))
            raise self._error(f"HelloSign transport error in {operation}: {exc}", retryable=True, operation=operation)

    async def _raise_for_status(self, response: aiohttp.ClientResponse, operation: str) -> None:
        error_data: Optional[Dict[str, Any]] = None
        message = f"HelloSign API error in {operation}"
        try:
            error_data = json.loads(await response.text())
            message = (error_data.get("error") or {}).get("error_msg", message)
        except (json.JSONDecodeError, AttributeError):
            pass
        raise self._error(
            message,
            retryable=response.status == 429 or response.status >= 500,
            operation=operation,
            status_code=response.status,
            provider_response=error_data,
        )

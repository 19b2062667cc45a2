"""
DocuSign E-signature Adapter

Stateless translator between the universal envelope vocabulary and the
DocuSign eSignature REST API v2.1 and Connect (JSON SIM) webhooks.
"""

import asyncio
import base64
import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

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

ENVELOPE_STATUS_MAP: Dict[str, EnvelopeStatus] = {
    "created": EnvelopeStatus.DRAFT,
    "sent": EnvelopeStatus.SENT,
    "delivered": EnvelopeStatus.DELIVERED,
    "signed": EnvelopeStatus.VIEWED,
    "completed": EnvelopeStatus.COMPLETED,
    "declined": EnvelopeStatus.DECLINED,
    "voided": EnvelopeStatus.VOIDED,
    "deleted": EnvelopeStatus.VOIDED,
    "timedout": EnvelopeStatus.EXPIRED,
    "expired": EnvelopeStatus.EXPIRED,
}

RECIPIENT_STATUS_MAP: Dict[str, SignerStatus] = {
    "created": SignerStatus.PENDING,
    "sent": SignerStatus.SENT,
    "autoresponded": SignerStatus.SENT,
    "authenticationfailed": SignerStatus.SENT,
    "delivered": SignerStatus.DELIVERED,
    "signed": SignerStatus.SIGNED,
    "completed": SignerStatus.SIGNED,
    "declined": SignerStatus.DECLINED,
}

EVENT_KIND_MAP: Dict[str, WebhookEventKind] = {
    "envelope-sent": WebhookEventKind.ENVELOPE_SENT,
    "envelope-delivered": WebhookEventKind.ENVELOPE_DELIVERED,
    "envelope-completed": WebhookEventKind.ENVELOPE_COMPLETED,
    "envelope-declined": WebhookEventKind.ENVELOPE_DECLINED,
    "envelope-voided": WebhookEventKind.ENVELOPE_VOIDED,
    "recipient-sent": WebhookEventKind.SIGNER_SENT,
    "recipient-delivered": WebhookEventKind.SIGNER_DELIVERED,
    "recipient-completed": WebhookEventKind.SIGNER_SIGNED,
    "recipient-declined": WebhookEventKind.SIGNER_DECLINED,
}

SIGNATURE_HEADER = "X-DocuSign-Signature-1"


class DocuSignAdapter(SignatureProvider):
    """DocuSign e-signature adapter."""

    webhook_signature_header = SIGNATURE_HEADER

    def __init__(
        self,
        base_url: str,
        account_id: str,
        access_token: str,
        user_id: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout_seconds: float = 30,
        connect_timeout_seconds: float = 10,
        **config
    ):
        """
        Initialize DocuSign adapter.

        Args:
            base_url: DocuSign base URL (demo or production)
            account_id: DocuSign account ID
            access_token: OAuth 2.0 access token
            user_id: DocuSign user ID
            webhook_secret: Connect HMAC key
            timeout_seconds: Total per-request timeout
            connect_timeout_seconds: Connection establishment timeout
        """
        super().__init__(
            base_url=base_url,
            account_id=account_id,
            user_id=user_id,
            **config
        )
        self.base_url = base_url.rstrip('/')
        self.account_id = account_id
        self.access_token = access_token
        self.user_id = user_id
        self.webhook_secret = webhook_secret

        self.api_base = f"{self.base_url}/restapi/v2.1"
        self.envelopes_endpoint = f"{self.api_base}/accounts/{self.account_id}/envelopes"

        # Session will be created lazily to avoid event loop issues during initialization
        self._session = None
        self._timeout = ClientTimeout(total=timeout_seconds, connect=connect_timeout_seconds)

    def _get_provider_type(self) -> ProviderType:
        return ProviderType.DOCUSIGN

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Accept": "application/json"
                }
            )
        return self._session

    async def create_envelope(self, envelope: Envelope) -> ProviderEnvelope:
        """
        Create a draft envelope in DocuSign.

        The envelope is created with status ``created`` so that delivery only
        happens on an explicit send. Recipient views cannot be generated for
        a draft, so no signing URLs are returned here.
        """
        payload = self._build_envelope_payload(envelope)
        response_data = await self._request("POST", self.envelopes_endpoint, "create_envelope", json_body=payload)
        try:
            provider_envelope_id = response_data["envelopeId"]
        except (KeyError, TypeError):
            raise self._error(
                "DocuSign response did not include an envelopeId",
                retryable=False,
                operation="create_envelope",
                provider_response=response_data if isinstance(response_data, dict) else None,
            )
        logger.info("docusign.envelope.created", envelope_id=envelope.id, provider_envelope_id=provider_envelope_id)
        return ProviderEnvelope(provider_envelope_id=provider_envelope_id)

    async def send_envelope(self, provider_envelope_id: str) -> None:
        endpoint = f"{self.envelopes_endpoint}/{provider_envelope_id}"
        await self._request("PUT", endpoint, "send_envelope", json_body={"status": "sent"})

    async def void_envelope(self, provider_envelope_id: str, reason: str) -> None:
        endpoint = f"{self.envelopes_endpoint}/{provider_envelope_id}"
        payload = {"status": "voided", "voidedReason": reason}
        await self._request("PUT", endpoint, "void_envelope", json_body=payload)

    async def get_envelope_status(self, provider_envelope_id: str) -> ProviderStatus:
        envelope_data = await self._request(
            "GET", f"{self.envelopes_endpoint}/{provider_envelope_id}", "get_envelope_status"
        )
        recipients_data = await self._request(
            "GET", f"{self.envelopes_endpoint}/{provider_envelope_id}/recipients", "get_envelope_status"
        )
        status = self._map_envelope_status(envelope_data.get("status"))

        signer_statuses: Dict[str, SignerStatus] = {}
        for signer in recipients_data.get("signers", []):
            client_user_id = signer.get("clientUserId")
            signer_status = RECIPIENT_STATUS_MAP.get(str(signer.get("status", "")).lower())
            if client_user_id and signer_status is not None:
                signer_statuses[client_user_id] = signer_status

        return ProviderStatus(status=status, signer_statuses=signer_statuses)

    async def get_signing_url(self, provider_envelope_id: str, signer: Signer, return_url: str) -> str:
        endpoint = f"{self.envelopes_endpoint}/{provider_envelope_id}/views/recipient"
        payload = {
            "returnUrl": return_url,
            "authenticationMethod": "none",
            "userName": signer.name,
            "email": signer.email,
            "clientUserId": signer.id,
            "pingFrequency": "600",
        }
        response_data = await self._request("POST", endpoint, "get_signing_url", json_body=payload)
        url = response_data.get("url")
        if not url:
            raise self._error("No signing URL returned", retryable=False, operation="get_signing_url")
        return url

    async def download_document(self, provider_envelope_id: str, document: EnvelopeDocument) -> bytes:
        endpoint = f"{self.envelopes_endpoint}/{provider_envelope_id}/documents/{document.sequence}"
        return await self._request("GET", endpoint, "download_document", expect_bytes=True)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> bool:
        """Verify a Connect HMAC signature (base64 HMAC-SHA256 of the raw body)."""
        if not self.webhook_secret:
            return False
        expected = base64.b64encode(hmac_sha256(self.webhook_secret, payload).digest()).decode("ascii")
        return constant_time_equals(expected, signature)

    def parse_webhook(self, payload: bytes) -> WebhookEvent:
        try:
            webhook_data = json.loads(payload.decode("utf-8"))
            event_type = webhook_data["event"]
            data = webhook_data.get("data") or {}
            provider_envelope_id = data["envelopeId"]
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as exc:
            raise self._error(f"Invalid webhook JSON: {exc}", retryable=False, operation="parse_webhook")

        recipient_id = data.get("recipientId")
        recipient = self._find_summary_signer(data, recipient_id)
        generated_at = webhook_data.get("generatedDateTime")

        return WebhookEvent(
            event_id=self._event_id(event_type, provider_envelope_id, recipient_id, generated_at),
            kind=EVENT_KIND_MAP.get(event_type, WebhookEventKind.UNKNOWN),
            provider_envelope_id=provider_envelope_id,
            signer_id=recipient.get("clientUserId"),
            signer_email=recipient.get("email"),
            signer_sequence=_as_int(recipient_id),
            occurred_at=self._parse_datetime(generated_at),
            raw_type=event_type,
            data={"account_id": data.get("accountId")},
        )

    async def close(self):
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _build_envelope_payload(self, envelope: Envelope) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": "created",
            "emailSubject": envelope.title,
            "emailBlurb": envelope.message or "",
            "documents": [
                {
                    "documentId": str(document.sequence),
                    "name": document.name,
                    "remoteUrl": document.file_url,
                    "order": str(document.sequence),
                }
                for document in envelope.documents
            ],
            "recipients": {
                "signers": [
                    {
                        # Position-based ids; signer order never changes after creation.
                        "recipientId": str(position),
                        "clientUserId": signer.id,
                        "name": signer.name,
                        "email": signer.email,
                        "roleName": signer.role.value,
                        "routingOrder": str(signer.order),
                    }
                    for position, signer in enumerate(envelope.signers, start=1)
                ],
            },
            "customFields": {
                "textCustomFields": [
                    {"name": "envelope_id", "value": envelope.id, "required": "false", "show": "false"},
                ]
            },
        }
        return payload

    @staticmethod
    def _find_summary_signer(data: Dict[str, Any], recipient_id: Optional[str]) -> Dict[str, Any]:
        summary = data.get("envelopeSummary") or {}
        signers: List[Dict[str, Any]] = (summary.get("recipients") or {}).get("signers") or []
        for signer in signers:
            if recipient_id is not None and str(signer.get("recipientId")) == str(recipient_id):
                return signer
        return {}

    @staticmethod
    def _event_id(event_type: str, envelope_id: str, recipient_id: Optional[str], generated_at: Optional[str]) -> str:
        # Connect redeliveries bump retryCount, so the digest covers only stable fields.
        material = "|".join([event_type, envelope_id, str(recipient_id or ""), str(generated_at or "")])
        return f"docusign:{hashlib.sha256(material.encode('utf-8')).hexdigest()}"

    def _map_envelope_status(self, docusign_status: Optional[str]) -> EnvelopeStatus:
        status = ENVELOPE_STATUS_MAP.get(str(docusign_status or "").lower())
        if status is None:
            raise self._error(
                f"Unexpected DocuSign envelope status: {docusign_status!r}",
                retryable=False,
                operation="get_envelope_status",
            )
        return status

    def _parse_datetime(self, datetime_str: Optional[str]) -> Optional[datetime]:
        """Parse DocuSign datetime string."""
        if not datetime_str:
            return None

        try:
            # DocuSign format: 2023-01-01T12:00:00.0000000Z
            trimmed = datetime_str.replace('Z', '+00:00')
            if "." in trimmed:
                head, tail = trimmed.split(".", 1)
                fraction, _, offset = tail.partition("+")
                trimmed = f"{head}.{fraction[:6]}" + (f"+{offset}" if offset else "")
            return datetime.fromisoformat(trimmed)
        except (ValueError, AttributeError):
            return None

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        json_body: Optional[Dict[str, Any]] = None,
        expect_bytes: bool = False,
    ) -> Any:
        try:
            async with self.session.request(method, url, json=json_body) as response:
                await self._handle_api_error(response, operation)
                if expect_bytes:
                    return await response.read()
                if response.status == 204:
                    return {}
                return await response.json()
        except aiohttp.ContentTypeError as exc:
            raise self._error(f"Unexpected DocuSign response body in {operation}: {exc}", retryable=False, operation=operation)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("docusign.transport_error", operation=operation, error=str(exc))
            raise self._error(f"DocuSign transport error in {operation}: {exc}", retryable=True, operation=operation)

    async def _handle_api_error(self, response: aiohttp.ClientResponse, operation: str):
        """Handle DocuSign API response with proper error handling."""
        if response.status in (200, 201, 204):
            return

        error_message = f"DocuSign API error in {operation}"
        error_data: Optional[Dict[str, Any]] = None
        try:
            error_data = await response.json()
            error_message = error_data.get("message", error_message)
        except (aiohttp.ContentTypeError, json.JSONDecodeError):
            error_message = await response.text() or error_message

        if response.status == 401:
            error_message = "Authentication failed - check access token"
        elif response.status == 429:
            retry_after = response.headers.get('Retry-After', '60')
            error_message = f"Rate limit exceeded, retry after {retry_after}s"

        raise self._error(
            error_message,
            retryable=response.status == 429 or response.status >= 500,
            operation=operation,
            status_code=response.status,
            provider_response=error_data,
        )


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

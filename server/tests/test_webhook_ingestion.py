"""
Webhook ingestion tests: signature checks, deduplication and per-vendor parsing.
"""

import base64
import json
from urllib.parse import urlencode

import pytest
import pytest_asyncio

from signing_desk.core.errors import WebhookAuthError
from signing_desk.domain.envelope import EnvelopeStatus, ProviderType, SignerStatus
from signing_desk.integrations.esignature.base import hmac_sha256
from signing_desk.integrations.esignature.docusign_adapter import DocuSignAdapter
from signing_desk.integrations.esignature.hellosign_adapter import HelloSignAdapter
from signing_desk.services.webhook_service import MAX_PROCESSED_EVENT_IDS, WebhookResult, remember_event

from tests.factories import build_envelope

DOCUSIGN_SECRET = "docusign-connect-key"
HELLOSIGN_API_KEY = "hellosign-api-key"


def docusign_payload(event, envelope_id, recipient_id=None, client_user_id=None, generated_at="2025-03-01T12:30:00.0000000Z"):
    data = {"accountId": "acct-1", "envelopeId": envelope_id}
    if recipient_id is not None:
        data["recipientId"] = recipient_id
        data["envelopeSummary"] = {
            "recipients": {
                "signers": [{"recipientId": recipient_id, "clientUserId": client_user_id, "email": "a@x.com"}]
            }
        }
    body = {"event": event, "generatedDateTime": generated_at, "retryCount": 0, "data": data}
    return json.dumps(body).encode("utf-8")


def docusign_signature(payload):
    return base64.b64encode(hmac_sha256(DOCUSIGN_SECRET, payload).digest()).decode("ascii")


def hellosign_payload(event_type, request_id, related_signature_id=None, event_time="1740832200", api_key=HELLOSIGN_API_KEY):
    body = {
        "event": {
            "event_type": event_type,
            "event_time": event_time,
            "event_hash": hmac_sha256(api_key, f"{event_time}{event_type}".encode("utf-8")).hexdigest(),
            "event_metadata": {"related_signature_id": related_signature_id},
        },
        "signature_request": {
            "signature_request_id": request_id,
            "signatures": [
                {"signature_id": "hs_sig_a", "signer_email_address": "a@x.com"},
                {"signature_id": "hs_sig_b", "signer_email_address": "b@x.com"},
            ],
        },
    }
    return json.dumps(body).encode("utf-8")


@pytest.fixture
def docusign_adapter(registry):
    adapter = DocuSignAdapter(
        base_url="https://demo.docusign.net",
        account_id="acct-1",
        access_token="token",
        webhook_secret=DOCUSIGN_SECRET,
    )
    registry.register(ProviderType.DOCUSIGN, lambda settings: adapter)
    return adapter


@pytest.fixture
def hellosign_adapter(registry):
    adapter = HelloSignAdapter(api_key=HELLOSIGN_API_KEY, client_id="client-1")
    registry.register(ProviderType.HELLOSIGN, lambda settings: adapter)
    return adapter


@pytest_asyncio.fixture
async def sent_envelope(service, make_request, owner):
    envelope = (await service.create(make_request(), owner)).envelope
    return await service.send(envelope.id, owner)


class TestMockWebhooks:
    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected_without_side_effects(self, service, mock_adapter, audit, sent_envelope, owner):
        payload = mock_adapter.build_webhook_payload("envelope.completed", sent_envelope.provider_envelope_id)

        with pytest.raises(WebhookAuthError):
            await service.process_webhook_event("mock", payload, "not-the-signature")
        with pytest.raises(WebhookAuthError):
            await service.process_webhook_event("mock", payload, None)

        assert (await service.get_envelope(sent_envelope.id, owner)).status is EnvelopeStatus.SENT
        assert not [entry for entry in audit.entries if entry.action == "webhook.applied"]

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_applied_once(self, service, mock_adapter, audit, sent_envelope):
        payload = mock_adapter.build_webhook_payload(
            "signer.viewed", sent_envelope.provider_envelope_id, signer_id=sent_envelope.signers[0].id, event_id="evt_1"
        )
        signature = mock_adapter.sign_payload(payload)

        first = await service.process_webhook_event("mock", payload, signature)
        second = await service.process_webhook_event("mock", payload, signature)

        assert first.result is WebhookResult.APPLIED
        assert second.result is WebhookResult.DUPLICATE
        assert second.envelope_id == sent_envelope.id
        applied = [entry for entry in audit.entries if entry.action == "webhook.applied"]
        assert len(applied) == 1

    @pytest.mark.asyncio
    async def test_stale_signer_event_is_ignored_without_audit(self, service, mock_adapter, audit, sent_envelope, owner):
        signer_id = sent_envelope.signers[0].id
        signed = mock_adapter.build_webhook_payload(
            "signer.signed", sent_envelope.provider_envelope_id, signer_id=signer_id, event_id="evt_signed"
        )
        viewed = mock_adapter.build_webhook_payload(
            "signer.viewed", sent_envelope.provider_envelope_id, signer_id=signer_id, event_id="evt_viewed"
        )
        await service.process_webhook_event("mock", signed, mock_adapter.sign_payload(signed))

        outcome = await service.process_webhook_event("mock", viewed, mock_adapter.sign_payload(viewed))

        assert outcome.result is WebhookResult.IGNORED
        assert outcome.reason == f"signer {signer_id} is already signed"
        envelope = await service.get_envelope(sent_envelope.id, owner)
        assert envelope.signers[0].status is SignerStatus.SIGNED
        assert "evt_viewed" in envelope.processed_event_ids
        applied = [entry.details["event_id"] for entry in audit.entries if entry.action == "webhook.applied"]
        assert applied == ["evt_signed"]

    @pytest.mark.asyncio
    async def test_unknown_envelope_is_ignored(self, service, mock_adapter):
        payload = mock_adapter.build_webhook_payload("envelope.completed", "mock_env_999999")

        outcome = await service.process_webhook_event("mock", payload, mock_adapter.sign_payload(payload))

        assert outcome.result is WebhookResult.IGNORED
        assert outcome.reason == "unknown envelope"

    @pytest.mark.asyncio
    async def test_unknown_event_kind_is_ignored(self, service, mock_adapter, sent_envelope, owner):
        payload = mock_adapter.build_webhook_payload("envelope.reminder_sent", sent_envelope.provider_envelope_id)

        outcome = await service.process_webhook_event("mock", payload, mock_adapter.sign_payload(payload))

        assert outcome.result is WebhookResult.IGNORED
        assert (await service.get_envelope(sent_envelope.id, owner)).processed_event_ids == []

    @pytest.mark.asyncio
    async def test_malformed_body_is_ignored(self, service, mock_adapter):
        payload = b'{"event": "envelope.sent"}'

        outcome = await service.process_webhook_event("mock", payload, mock_adapter.sign_payload(payload))

        assert outcome.result is WebhookResult.IGNORED
        assert outcome.reason == "unparseable payload"

    @pytest.mark.asyncio
    async def test_event_for_terminal_envelope_is_ignored(self, service, mock_adapter, sent_envelope, owner):
        await service.void(sent_envelope.id, owner, "Withdrawn")
        payload = mock_adapter.build_webhook_payload(
            "signer.signed", sent_envelope.provider_envelope_id, signer_id=sent_envelope.signers[0].id
        )

        outcome = await service.process_webhook_event("mock", payload, mock_adapter.sign_payload(payload))

        assert outcome.result is WebhookResult.IGNORED
        envelope = await service.get_envelope(sent_envelope.id, owner)
        assert envelope.status is EnvelopeStatus.VOIDED
        assert envelope.signers[0].status is SignerStatus.SENT

    @pytest.mark.asyncio
    async def test_declined_signer_declines_envelope(self, service, mock_adapter, sent_envelope, owner):
        payload = mock_adapter.build_webhook_payload(
            "signer.declined", sent_envelope.provider_envelope_id, signer_id=sent_envelope.signers[1].id
        )

        await service.process_webhook_event("mock", payload, mock_adapter.sign_payload(payload))

        envelope = await service.get_envelope(sent_envelope.id, owner)
        assert envelope.status is EnvelopeStatus.DECLINED
        assert envelope.signers[1].declined_at is not None


class TestDocuSignWebhooks:
    @pytest.mark.asyncio
    async def test_recipient_completed_signs_matching_signer(self, service, repository, docusign_adapter):
        await repository.add(build_envelope(EnvelopeStatus.SENT, provider=ProviderType.DOCUSIGN, provider_envelope_id="ds-env-1"))
        payload = docusign_payload("recipient-completed", "ds-env-1", recipient_id="1", client_user_id="sig_a")

        outcome = await service.process_webhook_event("docusign", payload, docusign_signature(payload))

        assert outcome.result is WebhookResult.APPLIED
        assert outcome.event_id.startswith("docusign:")
        stored = await repository.get("env_test")
        assert stored.signers[0].status is SignerStatus.SIGNED
        assert stored.status is EnvelopeStatus.SENT

    @pytest.mark.asyncio
    async def test_redelivery_with_new_retry_count_is_duplicate(self, service, repository, docusign_adapter):
        await repository.add(build_envelope(EnvelopeStatus.SENT, provider=ProviderType.DOCUSIGN, provider_envelope_id="ds-env-1"))
        payload = docusign_payload("envelope-completed", "ds-env-1")
        redelivery = json.loads(payload)
        redelivery["retryCount"] = 1
        redelivery = json.dumps(redelivery).encode("utf-8")

        await service.process_webhook_event("docusign", payload, docusign_signature(payload))
        outcome = await service.process_webhook_event("docusign", redelivery, docusign_signature(redelivery))

        assert outcome.result is WebhookResult.DUPLICATE
        assert (await repository.get("env_test")).status is EnvelopeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_signature_must_match_raw_body(self, service, docusign_adapter):
        payload = docusign_payload("envelope-completed", "ds-env-1")

        with pytest.raises(WebhookAuthError):
            await service.process_webhook_event("docusign", payload, docusign_signature(payload + b" "))


class TestHelloSignWebhooks:
    @pytest.mark.asyncio
    async def test_signed_event_resolves_signer_by_email(self, service, repository, hellosign_adapter):
        await repository.add(build_envelope(EnvelopeStatus.SENT, provider=ProviderType.HELLOSIGN, provider_envelope_id="hs-req-1"))
        payload = hellosign_payload("signature_request_signed", "hs-req-1", related_signature_id="hs_sig_b")

        outcome = await service.process_webhook_event("hellosign", payload, None)

        assert outcome.result is WebhookResult.APPLIED
        stored = await repository.get("env_test")
        assert stored.signers[1].status is SignerStatus.SIGNED
        assert stored.signers[0].status is SignerStatus.PENDING

    @pytest.mark.asyncio
    async def test_form_encoded_callback(self, service, repository, hellosign_adapter):
        await repository.add(build_envelope(EnvelopeStatus.SENT, provider=ProviderType.HELLOSIGN, provider_envelope_id="hs-req-1"))
        body = hellosign_payload("signature_request_all_signed", "hs-req-1")
        payload = urlencode({"json": body.decode("utf-8")}).encode("utf-8")

        outcome = await service.process_webhook_event("hellosign", payload, None)

        assert outcome.result is WebhookResult.APPLIED
        assert (await repository.get("env_test")).status is EnvelopeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_event_hash_from_wrong_key_is_rejected(self, service, hellosign_adapter):
        payload = hellosign_payload("signature_request_signed", "hs-req-1", api_key="someone-else")

        with pytest.raises(WebhookAuthError):
            await service.process_webhook_event("hellosign", payload, None)


class TestProcessedEventMemory:
    def test_oldest_ids_are_forgotten_past_the_cap(self):
        processed = [f"evt_{index}" for index in range(MAX_PROCESSED_EVENT_IDS)]

        remember_event(processed, "evt_new")

        assert len(processed) == MAX_PROCESSED_EVENT_IDS
        assert processed[0] == "evt_1"
        assert processed[-1] == "evt_new"

"""
HelloSign adapter tests against a faked aiohttp session.
"""

import json

import pytest

from signing_desk.core.errors import ProviderError
from signing_desk.domain.envelope import EnvelopeStatus, SignerStatus
from signing_desk.domain.events import WebhookEventKind
from signing_desk.integrations.esignature.base import hmac_sha256
from signing_desk.integrations.esignature.hellosign_adapter import HelloSignAdapter

from tests.factories import build_envelope
from tests.integrations.fakes import fake_response

API = "https://api.hellosign.com/v3"


@pytest.fixture
def hellosign_adapter():
    return HelloSignAdapter(api_key="test_api_key", client_id="test_client_id")


def signature_request(**overrides):
    data = {
        "signature_request_id": "hs-req-1",
        "is_complete": False,
        "is_declined": False,
        "signatures": [
            {"signature_id": "hs_sig_a", "signer_email_address": "a@x.com", "status_code": "signed"},
            {"signature_id": "hs_sig_b", "signer_email_address": "B@x.com", "status_code": "awaiting_signature"},
        ],
    }
    data.update(overrides)
    return {"signature_request": data}


class TestSignatureRequests:
    @pytest.mark.asyncio
    async def test_create_embedded_request(self, hellosign_adapter, install_session):
        session = install_session(
            hellosign_adapter,
            fake_response(200, signature_request()),
            fake_response(200, {"embedded": {"sign_url": "https://app.hellosign.com/editor/embeddedSign?a"}}),
            fake_response(200, {"embedded": {"sign_url": "https://app.hellosign.com/editor/embeddedSign?b"}}),
        )

        result = await hellosign_adapter.create_envelope(build_envelope())

        assert result.provider_envelope_id == "hs-req-1"
        assert result.signing_urls == {
            "sig_a": "https://app.hellosign.com/editor/embeddedSign?a",
            "sig_b": "https://app.hellosign.com/editor/embeddedSign?b",
        }
        create_call = session.request.call_args_list[0]
        assert create_call.args == ("POST", f"{API}/signature_request/create_embedded")
        form = create_call.kwargs["data"]
        assert form["client_id"] == "test_client_id"
        assert form["signers[0][email_address]"] == "a@x.com"
        assert form["signers[1][order]"] == "1"
        assert form["file_urls[0]"] == "https://files.example.com/lease.pdf"
        assert form["metadata[envelope_id]"] == "env_test"
        assert form["test_mode"] == "1"

    @pytest.mark.asyncio
    async def test_send_is_a_no_op(self, hellosign_adapter, install_session):
        session = install_session(hellosign_adapter)

        await hellosign_adapter.send_envelope("hs-req-1")

        session.request.assert_not_called()
        assert "send_envelope" in hellosign_adapter.idempotent_operations

    @pytest.mark.asyncio
    async def test_void_cancels_request(self, hellosign_adapter, install_session):
        session = install_session(hellosign_adapter, fake_response(200, text=""))

        await hellosign_adapter.void_envelope("hs-req-1", "Terms changed")

        assert session.request.call_args.args == ("POST", f"{API}/signature_request/cancel/hs-req-1")

    @pytest.mark.asyncio
    async def test_status_is_keyed_by_signer_email(self, hellosign_adapter, install_session):
        install_session(hellosign_adapter, fake_response(200, signature_request()))

        status = await hellosign_adapter.get_envelope_status("hs-req-1")

        assert status.status is EnvelopeStatus.SENT
        assert status.signer_statuses == {"a@x.com": SignerStatus.SIGNED, "B@x.com": SignerStatus.SENT}

    @pytest.mark.asyncio
    async def test_complete_request(self, hellosign_adapter, install_session):
        install_session(hellosign_adapter, fake_response(200, signature_request(is_complete=True)))

        status = await hellosign_adapter.get_envelope_status("hs-req-1")

        assert status.status is EnvelopeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_signing_url_matches_signer_email_case_insensitively(self, hellosign_adapter, install_session):
        signer = build_envelope().signers[1]
        install_session(
            hellosign_adapter,
            fake_response(200, signature_request()),
            fake_response(200, {"embedded": {"sign_url": "https://app.hellosign.com/editor/embeddedSign?b"}}),
        )

        url = await hellosign_adapter.get_signing_url("hs-req-1", signer, "https://app.example.com/done")

        assert url.endswith("?b")

    @pytest.mark.asyncio
    async def test_download_requests_merged_pdf(self, hellosign_adapter, install_session):
        session = install_session(hellosign_adapter, fake_response(200, body=b"%PDF-1.4 merged"))

        content = await hellosign_adapter.download_document("hs-req-1", build_envelope().documents[0])

        assert content == b"%PDF-1.4 merged"
        assert session.request.call_args.kwargs["params"] == {"file_type": "pdf"}

    @pytest.mark.asyncio
    async def test_api_error_message_is_surfaced(self, hellosign_adapter, install_session):
        install_session(
            hellosign_adapter,
            fake_response(400, {"error": {"error_msg": "Invalid file URL", "error_name": "bad_request"}}),
        )

        with pytest.raises(ProviderError) as exc_info:
            await hellosign_adapter.void_envelope("hs-req-1", "Terms changed")

        assert exc_info.value.message == "Invalid file URL"
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, hellosign_adapter, install_session):
        install_session(hellosign_adapter, fake_response(502, text="Bad Gateway"))

        with pytest.raises(ProviderError) as exc_info:
            await hellosign_adapter.get_envelope_status("hs-req-1")
        assert exc_info.value.retryable is True


class TestCallbacks:
    def _callback(self, event_type="signature_request_signed", api_key="test_api_key", related="hs_sig_b"):
        event_time = "1740832200"
        return json.dumps(
            {
                "event": {
                    "event_type": event_type,
                    "event_time": event_time,
                    "event_hash": hmac_sha256(api_key, f"{event_time}{event_type}".encode("utf-8")).hexdigest(),
                    "event_metadata": {"related_signature_id": related},
                },
                "signature_request": signature_request()["signature_request"],
            }
        ).encode("utf-8")

    def test_event_hash_verification(self, hellosign_adapter):
        assert hellosign_adapter.verify_webhook(self._callback(), None)
        assert not hellosign_adapter.verify_webhook(self._callback(api_key="other"), None)
        assert not hellosign_adapter.verify_webhook(b"not json", None)

    def test_parse_resolves_signer_email(self, hellosign_adapter):
        event = hellosign_adapter.parse_webhook(self._callback())

        assert event.kind is WebhookEventKind.SIGNER_SIGNED
        assert event.provider_envelope_id == "hs-req-1"
        assert event.signer_email == "B@x.com"
        assert event.event_id.startswith("hellosign:")

    def test_event_id_is_stable_across_deliveries(self, hellosign_adapter):
        first = hellosign_adapter.parse_webhook(self._callback())
        second = hellosign_adapter.parse_webhook(self._callback())
        assert first.event_id == second.event_id

    def test_callback_test_event_is_unknown(self, hellosign_adapter):
        event = hellosign_adapter.parse_webhook(self._callback(event_type="callback_test"))
        assert event.kind is WebhookEventKind.UNKNOWN

    def test_acknowledgement_body(self, hellosign_adapter):
        assert hellosign_adapter.webhook_ack == "Hello API Event Received"

from datetime import timedelta

import pytest

from signing_desk.core.errors import InvalidStateError
from signing_desk.domain.envelope import EnvelopeStatus, SignerStatus
from signing_desk.domain.events import WebhookEvent, WebhookEventKind
from signing_desk.services import state_machine

from tests.factories import NOW, build_envelope


class TestTransitionGraph:
    def test_terminal_states_have_no_exits(self):
        for status in (EnvelopeStatus.COMPLETED, EnvelopeStatus.DECLINED, EnvelopeStatus.VOIDED, EnvelopeStatus.EXPIRED):
            assert state_machine.ALLOWED_TRANSITIONS[status] == ()

    def test_nothing_returns_to_draft(self):
        for targets in state_machine.ALLOWED_TRANSITIONS.values():
            assert EnvelopeStatus.DRAFT not in targets

    def test_transitions_only_move_forward(self):
        for current, targets in state_machine.ALLOWED_TRANSITIONS.items():
            for target in targets:
                assert target.rank > current.rank


class TestAdvanceEnvelope:
    def test_leaving_draft_marks_signers_sent(self):
        envelope = build_envelope()
        result = state_machine.advance_envelope(envelope, EnvelopeStatus.SENT, NOW)

        assert result.changed
        assert envelope.status is EnvelopeStatus.SENT
        assert envelope.sent_at == NOW
        assert all(signer.status is SignerStatus.SENT for signer in envelope.signers)

    def test_stale_target_is_discarded(self):
        envelope = build_envelope(EnvelopeStatus.VIEWED)
        result = state_machine.advance_envelope(envelope, EnvelopeStatus.SENT, NOW)

        assert not result.changed
        assert envelope.status is EnvelopeStatus.VIEWED
        assert "discarded" in result.reason

    def test_completed_sets_completed_at_and_signs_everyone(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        state_machine.advance_envelope(envelope, EnvelopeStatus.COMPLETED, NOW)

        assert envelope.completed_at == NOW
        assert all(signer.status is SignerStatus.SIGNED for signer in envelope.signers)

    def test_void_from_draft_leaves_signers_pending(self):
        envelope = build_envelope()
        state_machine.advance_envelope(envelope, EnvelopeStatus.VOIDED, NOW)

        assert envelope.status is EnvelopeStatus.VOIDED
        assert envelope.sent_at is None
        assert all(signer.status is SignerStatus.PENDING for signer in envelope.signers)


class TestGuards:
    def test_send_requires_draft(self):
        with pytest.raises(InvalidStateError):
            state_machine.ensure_sendable(build_envelope(EnvelopeStatus.SENT))

    @pytest.mark.parametrize("status", [EnvelopeStatus.COMPLETED, EnvelopeStatus.VOIDED, EnvelopeStatus.EXPIRED])
    def test_terminal_envelope_is_not_voidable(self, status):
        with pytest.raises(InvalidStateError):
            state_machine.ensure_voidable(build_envelope(status))


class TestSignerTransitions:
    def test_first_signature_does_not_complete(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        state_machine.advance_signer(envelope, envelope.signers[0], SignerStatus.SIGNED, NOW)

        assert envelope.signers[0].status is SignerStatus.SIGNED
        assert envelope.signers[0].signed_at == NOW
        assert envelope.status is EnvelopeStatus.SENT
        assert envelope.completed_at is None

    def test_last_signature_completes(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        for signer in envelope.signers:
            state_machine.advance_signer(envelope, signer, SignerStatus.SIGNED, NOW)

        assert envelope.status is EnvelopeStatus.COMPLETED
        assert envelope.completed_at == NOW

    def test_decline_declines_envelope(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        state_machine.advance_signer(envelope, envelope.signers[1], SignerStatus.DECLINED, NOW)

        assert envelope.status is EnvelopeStatus.DECLINED
        assert envelope.signers[1].declined_at == NOW
        assert envelope.completed_at is None

    def test_signer_event_on_draft_advances_envelope_to_sent(self):
        envelope = build_envelope()
        state_machine.advance_signer(envelope, envelope.signers[0], SignerStatus.VIEWED, NOW)

        assert envelope.status is EnvelopeStatus.SENT
        assert envelope.signers[0].status is SignerStatus.VIEWED

    def test_signed_signer_never_regresses(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        signer = envelope.signers[0]
        state_machine.advance_signer(envelope, signer, SignerStatus.SIGNED, NOW)
        result = state_machine.advance_signer(envelope, signer, SignerStatus.VIEWED, NOW)

        assert not result.changed
        assert signer.status is SignerStatus.SIGNED

    def test_terminal_envelope_ignores_signer_updates(self):
        envelope = build_envelope(EnvelopeStatus.VOIDED)
        result = state_machine.advance_signer(envelope, envelope.signers[0], SignerStatus.SIGNED, NOW)

        assert not result.changed
        assert envelope.signers[0].status is SignerStatus.PENDING


class TestProviderMerge:
    def test_merge_by_signer_id_and_email(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        state_machine.merge_provider_status(
            envelope,
            EnvelopeStatus.DELIVERED,
            {"sig_a": SignerStatus.SIGNED, "B@X.com": SignerStatus.VIEWED},
            NOW,
        )

        assert envelope.status is EnvelopeStatus.DELIVERED
        assert envelope.signers[0].status is SignerStatus.SIGNED
        assert envelope.signers[1].status is SignerStatus.VIEWED

    def test_stale_poll_does_not_regress(self):
        envelope = build_envelope(EnvelopeStatus.VIEWED)
        result = state_machine.merge_provider_status(envelope, EnvelopeStatus.SENT, {}, NOW)

        assert not result.changed
        assert envelope.status is EnvelopeStatus.VIEWED

    def test_draft_poll_with_pending_signers_stays_draft(self):
        envelope = build_envelope()
        result = state_machine.merge_provider_status(
            envelope,
            EnvelopeStatus.DRAFT,
            {"sig_a": SignerStatus.PENDING, "sig_b": SignerStatus.PENDING},
            NOW,
        )

        assert not result.changed
        assert envelope.status is EnvelopeStatus.DRAFT
        assert envelope.sent_at is None
        assert all(signer.status is SignerStatus.PENDING for signer in envelope.signers)


class TestExpiry:
    def test_overdue_envelope_expires(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        result = state_machine.expire_if_overdue(envelope, NOW + timedelta(days=31))

        assert result.changed
        assert envelope.status is EnvelopeStatus.EXPIRED

    def test_envelope_inside_window_is_untouched(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        assert not state_machine.expire_if_overdue(envelope, NOW + timedelta(days=1)).changed

    def test_completed_envelope_never_expires(self):
        envelope = build_envelope(EnvelopeStatus.COMPLETED)
        assert not state_machine.expire_if_overdue(envelope, NOW + timedelta(days=400)).changed


class TestApplyEvent:
    def test_resolves_signer_by_sequence(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        event = WebhookEvent(
            event_id="evt_1",
            kind=WebhookEventKind.SIGNER_SIGNED,
            provider_envelope_id="mock_env_000001",
            signer_sequence=2,
        )
        state_machine.apply_event(envelope, event, NOW)

        assert envelope.signers[1].status is SignerStatus.SIGNED

    def test_unknown_signer_is_a_noop(self):
        envelope = build_envelope(EnvelopeStatus.SENT)
        event = WebhookEvent(
            event_id="evt_2",
            kind=WebhookEventKind.SIGNER_SIGNED,
            provider_envelope_id="mock_env_000001",
            signer_email="nobody@x.com",
        )
        result = state_machine.apply_event(envelope, event, NOW)

        assert not result.changed
        assert result.reason == "event references an unknown signer"

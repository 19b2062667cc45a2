import pytest

from signing_desk.core.errors import ForbiddenError
from signing_desk.domain.envelope import Actor
from signing_desk.services.authorization import can_act, require_can_act, require_owner

from tests.factories import build_envelope


@pytest.fixture
def envelope():
    return build_envelope()


class TestCanAct:
    def test_owner_can_act_without_signer(self, envelope):
        assert can_act(Actor(id="user_owner", email="owner@example.com"), envelope)

    def test_signer_can_act_on_own_signature(self, envelope):
        assert can_act(Actor(id="user_a", email="a@x.com"), envelope, envelope.signers[0])

    def test_email_match_ignores_case(self, envelope):
        assert can_act(Actor(id="user_a", email="A@X.COM"), envelope, envelope.signers[0])

    def test_signer_cannot_act_for_another_signer(self, envelope):
        assert not can_act(Actor(id="user_a", email="a@x.com"), envelope, envelope.signers[1])

    def test_signer_needs_a_target_signer(self, envelope):
        assert not can_act(Actor(id="user_a", email="a@x.com"), envelope)


class TestRequirements:
    def test_require_owner_rejects_signer(self, envelope):
        with pytest.raises(ForbiddenError) as exc_info:
            require_owner(Actor(id="user_a", email="a@x.com"), envelope, "void")
        assert exc_info.value.details["action"] == "void"

    def test_require_can_act_rejects_stranger(self, envelope):
        with pytest.raises(ForbiddenError):
            require_can_act(Actor(id="x", email="x@example.com"), envelope, envelope.signers[0], "sign")

import pytest

from tests.integrations.fakes import fake_session


@pytest.fixture
def install_session():
    """Swap an adapter's HTTP session for a fake answering with ``responses`` in order."""
    def _install(adapter, *responses):
        adapter._session = fake_session(*responses)
        return adapter._session

    return _install

import pytest

_PROXY_VARIABLES = (
    'HTTP_PROXY', 'HTTPS_PROXY', 'ALL_PROXY', 'NO_PROXY',
    'http_proxy', 'https_proxy', 'all_proxy', 'no_proxy',
)


@pytest.fixture
def anyio_backend() -> str:
    return 'asyncio'


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep proxy settings from the host out of the adapter tests."""
    for name in _PROXY_VARIABLES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def record_sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Replace the retry sleep with one that records its delay and returns at once."""
    delays: list[float] = []

    async def fake_sleep(delay, token):
        delays.append(delay)
        return True

    monkeypatch.setattr('jady._dispatch.cancellable_sleep', fake_sleep)
    return delays

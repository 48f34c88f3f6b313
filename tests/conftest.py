import pytest

from batchfetch.context import active_coalescer


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "BATCHFETCH_BASE_URL",
        "BATCHFETCH_BATCH_ENDPOINT",
        "BATCHFETCH_DEBOUNCE_SECONDS",
        "BATCHFETCH_GROUP_DEPTH",
        "BATCHFETCH_MAX_WAIT_SECONDS",
        "BATCHFETCH_FAIL_MISSING_RESULTS",
        "BATCHFETCH_REQUEST_TIMEOUT_SECONDS",
        "BATCHFETCH_BATCHABLE_PREFIXES",
    ):
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the tests
    monkeypatch.setattr("batchfetch.config.load_dotenv", lambda *args, **kwargs: False)


@pytest.fixture
def reset_context():
    token = active_coalescer.set(None)
    yield
    active_coalescer.reset(token)

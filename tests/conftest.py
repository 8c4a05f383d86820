import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from dependencies import Services, get_services
from main import app
from tests.fakes import (
    FakeAdapter,
    FakeAuditLog,
    FakeUploader,
    InMemoryGenerationStore,
    InMemoryLedgerStore,
)
from utils import rate_limit
from utils.auth import get_current_user_id

USER_ID = "user-1"


@pytest.fixture(autouse=True)
def reset_local_rate_limit_windows():
    """Rate limits off by default; tests that exercise them switch them back on."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_windows.clear()
    yield
    rate_limit._local_windows.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def ledger_store():
    store = InMemoryLedgerStore()
    store.add_account(USER_ID, credits=50, credits_extras=0)
    return store


@pytest.fixture
def generation_store():
    return InMemoryGenerationStore()


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def audit():
    return FakeAuditLog()


@pytest.fixture
def services(ledger_store, generation_store, uploader, audit, adapter):
    return Services.build(
        ledger_store=ledger_store,
        generation_store=generation_store,
        uploader=uploader,
        audit=audit,
        adapter_factory=lambda tool: adapter,
    )


@pytest_asyncio.fixture
async def client(services):
    async def override_get_services():
        return services

    async def override_user():
        return USER_ID

    app.dependency_overrides[get_services] = override_get_services
    app.dependency_overrides[get_current_user_id] = override_user

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.pop(get_services, None)
    app.dependency_overrides.pop(get_current_user_id, None)

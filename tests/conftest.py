"""
Ganttium - Test Configuration
=============================
Pytest fixtures and markers.

Every test gets its own SQLite database file. API tests talk to the app
in-process through ``httpx.ASGITransport``; outbound HTTP (ECB, Twilio)
goes through ``httpx.MockTransport`` handlers the tests can swap.
"""

import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, Dict, Optional

import httpx
import pytest
import pytest_asyncio

# Add backend to path for imports
BACKEND_PATH = Path(__file__).parent.parent / "apps" / "backend"
sys.path.insert(0, str(BACKEND_PATH))

# Settings are cached on first use; pin the test environment before any import
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789abcdef")
os.environ["ENVIRONMENT"] = "test"
os.environ["REDIS_ENABLED"] = "false"
os.environ["EXCHANGE_SYNC_ENABLED"] = "false"
os.environ["API_RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["BCRYPT_ROUNDS"] = "10"
os.environ["ALLOWED_ORIGINS"] = "https://app.ganttium.test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="ganttium-uploads-")

TEST_PASSWORD = "Sup3rSecret!"

ECB_XML = """<?xml version="1.0" encoding="UTF-8"?>
<gesmes:Envelope xmlns:gesmes="http://www.gesmes.org/xml/2002-08-01"
                 xmlns="http://www.ecb.int/vocabulary/2002-08-01/eurofxref">
  <gesmes:subject>Reference rates</gesmes:subject>
  <Cube>
    <Cube time="2024-03-15">
      <Cube currency="USD" rate="1.0890"/>
      <Cube currency="GBP" rate="0.8550"/>
      <Cube currency="JPY" rate="161.50"/>
    </Cube>
  </Cube>
</gesmes:Envelope>
"""


# =============================================================================
# Test Run Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast, no I/O, mocks only")
    config.addinivalue_line("markers", "integration: Real SQLite database, mocked external APIs")
    config.addinivalue_line("markers", "security: Access control and hardening checks")
    config.addinivalue_line("markers", "e2e: End-to-end tests requiring a running server")
    config.addinivalue_line("markers", "slow: Tests that take more than 5 seconds")


def pytest_collection_modifyitems(config, items):
    """Skip E2E tests unless E2E_ACTIVE is set."""
    if not os.getenv("E2E_ACTIVE"):
        skip_e2e = pytest.mark.skip(
            reason="E2E_ACTIVE not set. Run with E2E_ACTIVE=1 for E2E tests."
        )
        for item in items:
            if "e2e" in item.keywords:
                item.add_marker(skip_e2e)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'ganttium-test.db'}"


@pytest_asyncio.fixture
async def db_engine(database_url: str):
    """Fresh schema in a per-test SQLite file."""
    from database import create_tables, dispose_engine, init_engine

    engine = init_engine(database_url)
    await create_tables()
    yield engine
    await dispose_engine()


@pytest_asyncio.fixture
async def db_session(db_engine):
    from database import get_session_factory

    async with get_session_factory()() as session:
        yield session


# =============================================================================
# Outbound HTTP
# =============================================================================

class RecordingHandler:
    """``httpx.MockTransport`` handler that records requests and replays a response."""

    def __init__(self, status_code: int = 200, text: str = "", json: Optional[dict] = None):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.text = text
        self.json = json
        self.responder: Optional[Callable[[httpx.Request], httpx.Response]] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responder is not None:
            return self.responder(request)
        if self.json is not None:
            return httpx.Response(self.status_code, json=self.json)
        return httpx.Response(self.status_code, text=self.text)


@pytest.fixture
def ecb_xml() -> str:
    return ECB_XML


@pytest.fixture
def ecb_handler() -> RecordingHandler:
    return RecordingHandler(text=ECB_XML)


@pytest.fixture
def twilio_handler() -> RecordingHandler:
    return RecordingHandler(status_code=201, json={"sid": "SM123", "status": "queued"})


@pytest.fixture
def twilio_settings():
    from config import get_settings

    return get_settings().model_copy(update={
        "twilio_account_sid": "AC123",
        "twilio_auth_token": "twilio-token",
        "twilio_phone_number": "+15550001111",
    })


# =============================================================================
# Application
# =============================================================================

@pytest.fixture
def app(db_engine, ecb_handler, twilio_handler, twilio_settings, tmp_path, monkeypatch):
    """The FastAPI app with per-test clients on ``app.state``."""
    from config import get_settings
    from main import app as fastapi_app
    from routers.auth import get_login_limiter
    from services.chat_hub import ChatHub
    from services.exchange_rates import ExchangeRateService
    from services.sms import TwilioSmsClient

    get_login_limiter.cache_clear()
    # Per-test upload directory; the project id restarts at 1 with each fresh database
    monkeypatch.setattr(get_settings(), "upload_dir", str(tmp_path / "uploads"))

    fastapi_app.state.chat_hub = ChatHub()
    fastapi_app.state.sms_client = TwilioSmsClient(twilio_settings, transport=httpx.MockTransport(twilio_handler))
    fastapi_app.state.exchange_service = ExchangeRateService(transport=httpx.MockTransport(ecb_handler))
    fastapi_app.state.exchange_scheduler = None
    return fastapi_app


@pytest_asyncio.fixture
async def client(app):
    """Async HTTP client bound to the app in-process."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://testserver",
    ) as http_client:
        yield http_client


def auth_headers(user) -> Dict[str, str]:
    from auth import create_session_token

    return {"Authorization": f"Bearer {create_session_token(user.id)}"}


# =============================================================================
# Factories
# =============================================================================

class Factory:
    """Creates committed rows for API tests."""

    def __init__(self, session):
        self.session = session
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def user(self, email: Optional[str] = None, **fields):
        from auth import hash_password
        from models import User

        user = User(
            email=email or f"user{self._next()}@example.com",
            password_hash=hash_password(TEST_PASSWORD),
            **fields,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def organization(self, owner, name: Optional[str] = None, **fields):
        from services.organization_service import create_organization

        org = await create_organization(self.session, owner, name or f"Org {self._next()}", **fields)
        await self.session.commit()
        return org

    async def member(self, org, user, role: str = "member"):
        from models import UserOrganization

        membership = UserOrganization(user_id=user.id, organization_id=org.id, role=role)
        self.session.add(membership)
        await self.session.commit()
        return membership

    async def project(self, org, code: Optional[str] = None, **fields):
        from models import Project

        fields.setdefault("name", "Refinery Expansion")
        project = Project(organization_id=org.id, code=code or f"PRJ-{self._next()}", **fields)
        self.session.add(project)
        await self.session.commit()
        return project

    async def task(self, project, wbs_code: str, name: Optional[str] = None, **fields):
        from models import Task

        task = Task(project_id=project.id, wbs_code=wbs_code, name=name or f"Task {wbs_code}", **fields)
        self.session.add(task)
        await self.session.commit()
        return task

    async def dependency(self, project, predecessor, successor, type: str = "FS", lag_days: int = 0):
        from models import TaskDependency

        dep = TaskDependency(
            project_id=project.id,
            predecessor_id=predecessor.id,
            successor_id=successor.id,
            type=type,
            lag_days=lag_days,
        )
        self.session.add(dep)
        await self.session.commit()
        return dep


@pytest.fixture
def factory(db_session) -> Factory:
    return Factory(db_session)


@pytest_asyncio.fixture
async def workspace(factory):
    """
    An organization with one user per role and a project.

    Returns a dict with ``org``, ``project``, the users (``owner``,
    ``admin``, ``member``, ``viewer``, ``outsider``) and their headers
    under ``headers``.
    """
    owner = await factory.user("owner@example.com", first_name="Olivia", last_name="Owner")
    org = await factory.organization(owner, "Acme EPC")
    users = {"owner": owner}
    for role in ("admin", "member", "viewer"):
        users[role] = await factory.user(f"{role}@example.com", first_name=role.title())
        await factory.member(org, users[role], role)
    users["outsider"] = await factory.user("outsider@example.com")

    project = await factory.project(org, "ACME-01", name="Acme Refinery", budget=100000.0)

    return {
        "org": org,
        "project": project,
        **users,
        "headers": {role: auth_headers(u) for role, u in users.items()},
    }

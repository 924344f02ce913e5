import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatrelay.config import Settings
from chatrelay.core.database import Base
from chatrelay.services.gateway import Gateway
from chatrelay.services.providers.gemini import GeminiClient
from chatrelay.services.providers.openai_compat import OpenAICompatClient
from chatrelay.services.routing import Provider, build_profiles

FAKE_GEMINI_URL = "http://fake-gemini"
FAKE_OPENAI_URL = "http://fake-openai"


@pytest.fixture
def test_settings():
    """Settings with every provider configured and pointed at the in-process fakes."""
    return Settings(
        gemini_api_key="test-gemini-key",
        openrouter_api_key="test-openrouter-key",
        groq_api_key="test-groq-key",
        gemini_base_url=FAKE_GEMINI_URL,
        openrouter_base_url=FAKE_OPENAI_URL,
        groq_base_url=FAKE_OPENAI_URL,
    )


@pytest.fixture
def profiles(test_settings):
    return build_profiles(test_settings)


@pytest_asyncio.fixture
async def gemini_http():
    """HTTP client routed to the fake native provider."""
    from tests.mocks.fake_gemini import app as fake_gemini_app

    async with AsyncClient(transport=ASGITransport(app=fake_gemini_app), base_url=FAKE_GEMINI_URL) as client:
        yield client


@pytest_asyncio.fixture
async def openai_http():
    """HTTP client routed to the fake OpenAI-compatible provider."""
    from tests.mocks.fake_openai import app as fake_openai_app

    async with AsyncClient(transport=ASGITransport(app=fake_openai_app), base_url=FAKE_OPENAI_URL) as client:
        yield client


@pytest.fixture
def gateway(profiles, gemini_http, openai_http):
    return Gateway({
        Provider.GEMINI: GeminiClient(profiles[Provider.GEMINI], gemini_http),
        Provider.OPENROUTER: OpenAICompatClient(profiles[Provider.OPENROUTER], openai_http),
        Provider.GROQ: OpenAICompatClient(profiles[Provider.GROQ], openai_http),
    })


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(db_engine, gateway):
    """FastAPI app wired to the in-memory test database and the fake providers."""
    import chatrelay.core.database as db_module

    # Patch the module-level engine and session factory
    original_engine = db_module.engine
    original_session = db_module.async_session

    db_module.engine = db_engine
    db_module.async_session = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    from chatrelay.main import app

    app.state.gateway = gateway

    yield app

    db_module.engine = original_engine
    db_module.async_session = original_session


@pytest_asyncio.fixture
async def client(app_with_db):
    """Async HTTP client talking to the relay in-process."""
    transport = ASGITransport(app=app_with_db)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

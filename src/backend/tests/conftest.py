"""Pytest configuration and fixtures for ACM gateway tests."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from acm_gateway.main import app
from acm_gateway.models.base import Base
# Import all models to ensure they're registered with Base.metadata
from acm_gateway.models import AlarmRecordRow, CodeSystem  # noqa: F401
from acm_gateway.core.deps import get_db
from acm_gateway.integrations.hl7.parser import parse_message
from acm_gateway.services.codesystem_service import CodeTableRegistry
from acm_gateway.services.session_manager import ConnectionSessionManager

# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def make_tag(tagkey, encode, description, subid="", observationtype="", source="", channel="") -> str:
    """Render one code system tag element."""
    return (
        "<tag>"
        f"<tagkey>{tagkey}</tagkey>"
        f"<observationtype>{observationtype}</observationtype>"
        f"<encode>{encode}</encode>"
        f"<subid>{subid}</subid>"
        f"<description>{description}</description>"
        f"<source>{source}</source>"
        f"<channel>{channel}</channel>"
        "</tag>"
    )


CODESYSTEM_DOCUMENT = (
    '<?xml version="1.0" encoding="UTF-8"?><codesystem>'
    + make_tag("1", "147842", "Heart Rate", subid="1.1.1.1", observationtype="Physiological",
               source="ECG", channel="HR")
    + make_tag("2", "147842", "Pulse Rate", subid="1.2.1.1", observationtype="Physiological",
               source="SpO2", channel="Pulse")
    + make_tag("3", "196616", "Alarm Event", subid="1.1.1.1", observationtype="Alarm",
               source="ECG", channel="HR")
    + make_tag("4", "196650", "ECG Leads Off", observationtype="Technical")
    + make_tag("5", "264864", "bpm", observationtype="Unit")
    + make_tag("6", "262688", "%", observationtype="Unit")
    + "</codesystem>"
)

LOW_HR_ALARM = "\r".join([
    "MSH|^~\\&|ACM|Monitor|||20250402142522||ORU^R40^ORU_R40|MSG0001|P|2.6",
    "PID|||12345^^^Hospital^MR||Doe^John",
    "PV1||I|ICU^^Bed 7",
    "OBR|1|ALARM001||196616^MDC_EVT_ALARM^MDC|||20250402142522||||||Device^MON-01",
    "OBX|1|CWE|196616^MDC_EVT_ALARM^MDC|1.1.1.1.1|196674^MDC_EVT_LO^MDC||||||F",
    "OBX|2|NM|147842^MDC_ECG_HEART_RATE^MDC|1.1.1.1.2|20|264864^MDC_DIM_BEAT_PER_MIN^MDC|22-120|||||F",
    "OBX|3|ST|68481^MDC_ATTR_EVENT_PHASE^MDC|1.1.1.1.3|start||||||F",
    "OBX|4|ST|68482^MDC_ATTR_ALARM_STATE^MDC|1.1.1.1.4|active||||||F",
    "OBX|5|ST|68483^MDC_ATTR_ALARM_PRIORITY^MDC|1.1.1.1.5|PH||||||F",
])


def build_message(*segments: str, message_type: str = "ORU^R40^ORU_R40") -> str:
    """Build a message from an MSH header and the given segments."""
    header = f"MSH|^~\\&|ACM|Monitor|||20250402142522||{message_type}|MSG0002|P|2.6"
    return "\r".join([header, *segments])


@pytest.fixture
def low_hr_alarm() -> str:
    """A low heart rate limit alarm report."""
    return LOW_HR_ALARM


@pytest.fixture
def parsed_low_hr_alarm():
    """The low heart rate alarm, parsed."""
    return parse_message(LOW_HR_ALARM)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine with shared connection."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def empty_registry(session_factory) -> CodeTableRegistry:
    """Registry with nothing loaded."""
    return CodeTableRegistry(session_factory=session_factory)


@pytest_asyncio.fixture
async def registry(session_factory) -> CodeTableRegistry:
    """Registry bootstrapped with the default test code system."""
    loaded = CodeTableRegistry(session_factory=session_factory)
    await loaded.bootstrap(CODESYSTEM_DOCUMENT, name="300", filename="300_map.xml")
    return loaded


@pytest.fixture
def session_manager() -> ConnectionSessionManager:
    """Fresh connection session manager."""
    return ConnectionSessionManager(history_size=3)


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory,
    registry: CodeTableRegistry,
    session_manager: ConnectionSessionManager,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database and application state overrides."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.registry = registry
    app.state.session_manager = session_manager
    app.state.listener = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.registry = None
    app.state.session_manager = None

"""Shared test fixtures and configuration."""
import asyncio
import json
import os
from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OFFICE_NAME", "Test Dental")

from app.main import app
from app.db.database import Base
from app.core.dependencies import (
    get_call_recorder,
    get_conversation_agent,
    get_transcriber_factory,
    get_tts_service,
)
from app.services.agent.state import AgentReply
from app.services.scheduling.base import OfficeHours
from app.services.scheduling.in_memory_store import InMemoryAppointmentStore
from app.services.speech.stt import TranscriberOpened


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Tuesday morning, before opening
FIXED_NOW = datetime(2030, 1, 1, 8, 0)


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_factory(test_db_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    """Create test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def office_hours():
    return OfficeHours(open_hour=9, close_hour=17, slot_minutes=30, search_days=14)


@pytest.fixture
def appointment_store(office_hours):
    """In-memory appointment store with a fixed clock."""
    return InMemoryAppointmentStore(hours=office_hours, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_completion():
    """Build a fake chat completion with optional content and function call."""

    def _make(content=None, function_name=None, arguments=None):
        message = Mock()
        message.content = content
        if function_name:
            function = Mock()
            function.name = function_name
            function.arguments = (
                arguments if isinstance(arguments, str) else json.dumps(arguments or {})
            )
            message.tool_calls = [Mock(function=function)]
        else:
            message.tool_calls = None
        return Mock(choices=[Mock(message=message)])

    return _make


@pytest.fixture
def mock_openai(make_completion):
    """Mock OpenAI API client."""
    mock_client = Mock()
    mock_client.chat.completions.create = AsyncMock(
        return_value=make_completion(content="Test response")
    )
    return mock_client


class FakeMediaSocket:
    """Stands in for the Twilio media WebSocket."""

    def __init__(self):
        self.sent = []
        self.closed = False

    async def send_json(self, message):
        if self.closed:
            raise RuntimeError("WebSocket is closed")
        self.sent.append(message)

    def media(self):
        return [m for m in self.sent if m["event"] == "media"]

    def marks(self):
        return [
            m for m in self.sent
            if m["event"] == "mark" and not m["mark"]["name"].startswith("keepalive")
        ]


class FakeTranscriber:
    """Stands in for the Deepgram live transcriber."""

    def __init__(self, emit, auto_open=True):
        self.emit = emit
        self.auto_open = auto_open
        self.chunks = []
        self.started = False
        self.finished = False

    async def start(self):
        self.started = True
        if self.auto_open:
            await self.emit(TranscriberOpened())

    async def send(self, chunk):
        self.chunks.append(chunk)

    async def finish(self):
        self.finished = True


@pytest.fixture
def media_socket():
    return FakeMediaSocket()


@pytest.fixture
def transcribers():
    """Transcribers created by the factory, in creation order."""
    return []


@pytest.fixture
def transcriber_factory(transcribers):
    def _factory(emit):
        transcriber = FakeTranscriber(emit)
        transcribers.append(transcriber)
        return transcriber

    return _factory


def audio_for(label: int, frames: int = 2) -> bytes:
    """Audio whose bytes all equal ``label``, so frames can be traced to a turn."""
    return bytes([label]) * (160 * frames)


@pytest.fixture
def mock_tts():
    """TTS service returning two frames of audio per reply."""
    tts = Mock()
    tts.synthesize = AsyncMock(return_value=audio_for(1))
    return tts


@pytest.fixture
def mock_agent():
    agent = Mock()
    agent.handle_utterance = AsyncMock(
        return_value=AgentReply(reply_text="How can I assist you today?")
    )
    return agent


@pytest.fixture
def start_message():
    def _make(phone_number="+15551234567", stream_sid="MZ-test-stream", call_sid="CA-test-call"):
        return {
            "event": "start",
            "start": {
                "streamSid": stream_sid,
                "callSid": call_sid,
                "customParameters": {"phoneNumber": phone_number},
            },
        }

    return _make


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout passes."""

    async def _wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait


@pytest.fixture
def test_client(mock_agent, mock_tts, transcriber_factory):
    """Create FastAPI test client with overrides."""
    app.dependency_overrides[get_conversation_agent] = lambda: mock_agent
    app.dependency_overrides[get_tts_service] = lambda: mock_tts
    app.dependency_overrides[get_transcriber_factory] = lambda: transcriber_factory
    app.dependency_overrides[get_call_recorder] = lambda: None

    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()

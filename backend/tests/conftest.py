# tests/conftest.py
import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./telehealth-test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from langchain_core.language_models import FakeListChatModel

from telehealth.db.base import create_all_tables, get_engine, get_session_factory
from telehealth.db.crud.user import get_user
from telehealth.db.models.consultation import ConsultationModel
from telehealth.db.models.user import UserModel
from telehealth.db.session import set_global_session_factory
from telehealth.services.assistant import AIResponder
from telehealth.services.memory import ConversationMemory, InMemoryBackend
from telehealth.services.relay import MessageRelay


class FakeConnection:
    """Collects everything the relay pushes to one client."""

    def __init__(self, name="conn"):
        self.name = name
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    def events(self, event):
        return [frame["data"] for frame in self.sent if frame["event"] == event]


class BrokenConnection(FakeConnection):
    async def send_json(self, data):
        raise ConnectionResetError("peer went away")


@pytest.fixture
async def engine(tmp_path):
    # a file database so that separate sessions see each other's commits
    engine = await get_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}")
    await create_all_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    factory = await get_session_factory(engine)
    set_global_session_factory(factory)
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make_user(role="patient", name=None):
        counter["n"] += 1
        n = counter["n"]
        user = UserModel(
            email=f"{role}{n}@example.com",
            password_hash="not-a-real-hash",
            name=name if name is not None else f"{role.title()} {n}",
            role=role,
            onboarded=True,
        )
        db.add(user)
        await db.commit()
        return await get_user(db, user.id)

    return _make_user


@pytest.fixture
async def patient(make_user):
    return await make_user("patient", "Pat Patient")


@pytest.fixture
async def doctor(make_user):
    return await make_user("doctor", "Dr. Dana")


@pytest.fixture
def make_consultation(db):
    async def _make_consultation(patient, doctor, status="pending", title="Headache"):
        consultation = ConsultationModel(
            patient_id=patient.id,
            doctor_id=doctor.id if doctor is not None else None,
            title=title,
            description="Persistent headache for three days",
            status=status,
        )
        db.add(consultation)
        await db.commit()
        return consultation

    return _make_consultation


@pytest.fixture
def memory():
    return ConversationMemory(InMemoryBackend(), context_window=50)


@pytest.fixture
def relay(memory):
    return MessageRelay(memory, mention_trigger="@ai", max_message_length=5000)


@pytest.fixture
def fake_llm():
    return FakeListChatModel(responses=["Noted. Please take it with food."])


@pytest.fixture
def responder(relay, memory, fake_llm):
    responder = AIResponder(relay, memory, llm=fake_llm, prompt_context_size=10)
    relay.responder = responder
    return responder

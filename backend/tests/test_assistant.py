# tests/test_assistant.py
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessageChunk, HumanMessage, SystemMessage

from telehealth.db.crud.message import list_messages
from telehealth.services import lifecycle
from telehealth.services.assistant import (
    AIResponder,
    advice_key,
    chunk_text,
    format_memories,
    prompt_context,
)
from conftest import FakeConnection


class ExplodingModel:
    """Chat model stand-in whose stream fails immediately."""

    async def astream(self, messages):
        raise RuntimeError("completion service unavailable")
        yield  # pragma: no cover


class EmptyModel:
    async def astream(self, messages):
        yield AIMessageChunk(content="   ")


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------
def test_prompt_context_is_chronological_and_bounded():
    newest_first = [f"line {i}" for i in range(15, 0, -1)]
    excerpt = prompt_context(newest_first, 10)
    assert excerpt == [f"line {i}" for i in range(6, 16)]


def test_chunk_text_handles_content_parts():
    assert chunk_text(AIMessageChunk(content="plain")) == "plain"
    parts = AIMessageChunk(content=[{"type": "text", "text": "a"}, "b", {"type": "image_url"}])
    assert chunk_text(parts) == "ab"


def test_advice_key_uses_epoch_millis():
    assert advice_key(1700000000123) == "advice_1700000000123"
    assert advice_key().startswith("advice_")


def test_format_memories():
    assert format_memories({"advice_1": "rest", "allergy": "nuts"}) == "advice_1: rest\nallergy: nuts"
    assert format_memories({}) == ""


async def test_prompt_carries_memories_and_context(memory, relay, fake_llm):
    await memory.set_memory(4, "advice_1", "Drink water")
    await memory.add_to_context(4, "patient: I feel dizzy")
    await memory.add_to_context(4, "doctor: How long?")
    responder = AIResponder(relay, memory, llm=fake_llm)

    messages = await responder.build_messages(4, "@ai what should I do?")

    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    system = messages[0].content
    assert "advice_1: Drink water" in system
    assert system.index("patient: I feel dizzy") < system.index("doctor: How long?")
    assert "@ai" in system
    assert messages[1].content == "@ai what should I do?"


# ---------------------------------------------------------------------------
# full pipeline
# ---------------------------------------------------------------------------
async def test_doctor_mention_records_advice_and_replies(
    db, relay, memory, responder, patient, doctor, make_consultation
):
    consultation = await make_consultation(patient, doctor, status="active")
    conn = FakeConnection()
    await relay.subscribe(db, conn, consultation.id, patient)

    human = await relay.send(db, consultation.id, doctor, "@ai Take medication twice daily")
    await responder.join()

    memories = await memory.get_all_memories(consultation.id)
    [(key, value)] = memories.items()
    assert key.startswith("advice_")
    assert value == "Take medication twice daily"

    rows = await list_messages(db, consultation.id)
    assert [m.id for m, _, _ in rows][0] == human.id
    ai_row = rows[1][0]
    assert ai_row.message_type == "ai"
    assert ai_row.sender_id is None
    assert ai_row.content == "Noted. Please take it with food."

    first, second = conn.events("new-message")
    assert first["id"] == human.id
    assert second["id"] == ai_row.id
    assert second["senderName"] == "AI Assistant"
    assert second["senderRole"] == "ai"
    assert second["messageType"] == "ai"
    assert second["senderId"] is None

    context = await memory.get_context(consultation.id)
    assert context == [
        "AI: Noted. Please take it with food.",
        "doctor: @ai Take medication twice daily",
    ]


async def test_patient_mention_replies_without_storing_advice(
    db, relay, memory, responder, patient, doctor, make_consultation
):
    consultation = await make_consultation(patient, doctor, status="active")

    await relay.send(db, consultation.id, patient, "@ai is ibuprofen ok?")
    await responder.join()

    assert await memory.get_all_memories(consultation.id) == {}
    rows = await list_messages(db, consultation.id)
    assert [m.message_type for m, _, _ in rows] == ["user", "ai"]


async def test_no_mention_no_reply(db, relay, memory, responder, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")

    await relay.send(db, consultation.id, patient, "just saying hi to AI")
    assert responder.pending == 0
    await responder.join()

    assert len(await list_messages(db, consultation.id)) == 1


async def test_failed_completion_leaves_nothing_behind(
    db, relay, memory, responder, patient, doctor, make_consultation
):
    consultation = await make_consultation(patient, doctor, status="active")
    conn = FakeConnection()
    await relay.subscribe(db, conn, consultation.id, patient)
    responder.llm = ExplodingModel()

    human = await relay.send(db, consultation.id, doctor, "@ai Avoid caffeine")
    await responder.join()

    rows = await list_messages(db, consultation.id)
    assert [m.id for m, _, _ in rows] == [human.id]
    assert [e["id"] for e in conn.events("new-message")] == [human.id]
    assert await memory.get_all_memories(consultation.id) == {}
    assert await memory.get_context(consultation.id) == ["doctor: @ai Avoid caffeine"]


async def test_empty_completion_is_a_failure(db, relay, memory, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    responder = AIResponder(relay, memory, llm=EmptyModel())

    result = await responder.respond(consultation.id, "@ai hello", "doctor")

    assert result is None
    assert await list_messages(db, consultation.id) == []
    assert await memory.get_all_memories(consultation.id) == {}


async def test_missing_model_is_logged_not_raised(db, relay, memory, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    responder = AIResponder(relay, memory, llm_factory=lambda: None)

    assert await responder.respond(consultation.id, "@ai hello", "patient") is None
    assert await list_messages(db, consultation.id) == []


async def test_reply_streams_are_joined(db, relay, memory, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    responder = AIResponder(
        relay, memory, llm=FakeListChatModel(responses=["Stay hydrated and rest."])
    )

    out = await responder.respond(consultation.id, "@ai advice?", "patient")

    assert out.content == "Stay hydrated and rest."
    assert out.sender_name == "AI Assistant"


async def test_ai_reply_skips_reassigned_doctor(
    db, relay, responder, patient, doctor, make_user, make_consultation
):
    consultation = await make_consultation(patient, doctor, status="active")
    old_conn, patient_conn = FakeConnection("old doctor"), FakeConnection("patient")
    await relay.subscribe(db, old_conn, consultation.id, doctor)
    await relay.subscribe(db, patient_conn, consultation.id, patient)

    await lifecycle.end_consultation(db, consultation.id, doctor)
    new_doctor = await make_user("doctor")
    await lifecycle.reassign_doctor(db, consultation.id, new_doctor.id, patient)
    await lifecycle.accept_consultation(db, consultation.id, new_doctor)

    out = await responder.respond(consultation.id, "@ai is this serious?", "patient")

    assert out is not None
    assert old_conn.sent == []
    assert [e["id"] for e in patient_conn.events("new-message")] == [out.id]

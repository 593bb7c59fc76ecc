# tests/test_relay.py
import asyncio

import pytest

from telehealth.core.errors import Forbidden, InvalidArgument, InvalidState, NotFound
from telehealth.db.crud.message import list_messages
from telehealth.services import lifecycle
from telehealth.services.relay import ConnectionManager, ContextWriter
from conftest import BrokenConnection, FakeConnection


async def test_message_reaches_every_member(db, relay, memory, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    patient_conn, doctor_conn = FakeConnection("patient"), FakeConnection("doctor")
    await relay.subscribe(db, patient_conn, consultation.id, patient)
    await relay.subscribe(db, doctor_conn, consultation.id, doctor)

    out = await relay.send(db, consultation.id, patient, "hello")

    assert out.content == "hello"
    assert out.sender_id == patient.id
    assert out.sender_name == "Pat Patient"
    assert out.sender_role == "patient"

    for conn in (patient_conn, doctor_conn):
        [event] = conn.events("new-message")
        assert event["id"] == out.id
        assert event["consultationId"] == consultation.id
        assert event["senderId"] == patient.id
        assert event["senderName"] == "Pat Patient"
        assert event["senderRole"] == "patient"
        assert event["messageType"] == "user"
        assert event["content"] == "hello"

    assert patient_conn.events("new-message") == doctor_conn.events("new-message")
    assert await memory.get_context(consultation.id) == ["patient: hello"]

    rows = await list_messages(db, consultation.id)
    assert [m.id for m, _, _ in rows] == [out.id]


async def test_stored_content_is_sanitized(db, relay, memory, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")

    out = await relay.send(db, consultation.id, doctor, "<script>x()</script>Rest today")

    assert out.content == "Rest today"
    assert await memory.get_context(consultation.id) == ["doctor: Rest today"]


async def test_send_requires_active(db, relay, memory, patient, doctor, make_consultation):
    for status in ("pending", "inactive"):
        consultation = await make_consultation(patient, doctor, status=status)
        conn = FakeConnection()
        relay.connections.subscribe(conn, consultation.id)

        with pytest.raises(InvalidState):
            await relay.send(db, consultation.id, patient, "anyone there?")

        assert conn.sent == []
        assert await memory.get_context(consultation.id) == []
        assert await list_messages(db, consultation.id) == []


async def test_send_rejects_non_participants(db, relay, patient, doctor, make_user, make_consultation):
    outsider = await make_user("patient")
    other_doctor = await make_user("doctor")
    consultation = await make_consultation(patient, doctor, status="active")

    with pytest.raises(Forbidden):
        await relay.send(db, consultation.id, outsider, "hi")
    with pytest.raises(Forbidden):
        await relay.send(db, consultation.id, other_doctor, "hi")
    with pytest.raises(NotFound):
        await relay.send(db, 9999, patient, "hi")


async def test_send_validates_content(db, relay, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    with pytest.raises(InvalidArgument):
        await relay.send(db, consultation.id, patient, "   ")
    with pytest.raises(InvalidArgument):
        await relay.send(db, consultation.id, patient, "x" * 5001)
    with pytest.raises(InvalidArgument):
        await relay.send(db, consultation.id, patient, "<script>only()</script>")


async def test_subscribe_checks_access(db, relay, patient, doctor, make_user, make_consultation):
    outsider = await make_user("patient")
    consultation = await make_consultation(patient, doctor, status="inactive")

    with pytest.raises(Forbidden):
        await relay.subscribe(db, FakeConnection(), consultation.id, outsider)
    # the assigned doctor lost access when it went inactive
    with pytest.raises(Forbidden):
        await relay.subscribe(db, FakeConnection(), consultation.id, doctor)

    conn = FakeConnection()
    await relay.subscribe(db, conn, consultation.id, patient)
    assert relay.connections.is_subscribed(conn, consultation.id)


async def test_unsubscribed_connection_stops_receiving(db, relay, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    conn = FakeConnection()
    await relay.subscribe(db, conn, consultation.id, patient)
    relay.unsubscribe(conn, consultation.id)

    await relay.send(db, consultation.id, patient, "hello?")

    assert conn.sent == []


async def test_history_includes_sender_details(db, relay, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    await relay.send(db, consultation.id, patient, "first")
    await relay.send(db, consultation.id, doctor, "second")
    await relay.send(db, consultation.id, patient, "third")

    history = await relay.get_messages(db, consultation.id, patient)
    assert [m.content for m in history] == ["first", "second", "third"]
    assert [m.sender_role for m in history] == ["patient", "doctor", "patient"]
    assert history[1].sender_name == "Dr. Dana"

    latest_two = await relay.get_messages(db, consultation.id, doctor, limit=2)
    assert [m.content for m in latest_two] == ["second", "third"]

    earlier = await relay.get_messages(db, consultation.id, doctor, limit=2, offset=2)
    assert [m.content for m in earlier] == ["first"]


async def test_history_respects_access(db, relay, patient, doctor, make_user, make_consultation):
    outsider = await make_user("doctor")
    consultation = await make_consultation(patient, doctor, status="active")
    with pytest.raises(Forbidden):
        await relay.get_messages(db, consultation.id, outsider)


async def test_reassigned_doctor_stops_receiving(db, relay, patient, doctor, make_user, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    old_conn, patient_conn = FakeConnection("old doctor"), FakeConnection("patient")
    await relay.subscribe(db, old_conn, consultation.id, doctor)
    await relay.subscribe(db, patient_conn, consultation.id, patient)

    await lifecycle.end_consultation(db, consultation.id, doctor)
    new_doctor = await make_user("doctor", "Dr. New")
    await lifecycle.reassign_doctor(db, consultation.id, new_doctor.id, patient)
    new_conn = FakeConnection("new doctor")
    await relay.subscribe(db, new_conn, consultation.id, new_doctor)
    await lifecycle.accept_consultation(db, consultation.id, new_doctor)

    out = await relay.send(db, consultation.id, patient, "private symptoms for my new doctor")

    assert old_conn.events("new-message") == []
    assert [e["id"] for e in new_conn.events("new-message")] == [out.id]
    assert [e["id"] for e in patient_conn.events("new-message")] == [out.id]
    assert not relay.connections.is_subscribed(old_conn, consultation.id)
    assert relay.connections.is_subscribed(new_conn, consultation.id)


async def test_publish_skips_doctor_of_ended_consultation(db, relay, patient, doctor, make_consultation):
    consultation = await make_consultation(patient, doctor, status="active")
    doctor_conn, patient_conn = FakeConnection("doctor"), FakeConnection("patient")
    await relay.subscribe(db, doctor_conn, consultation.id, doctor)
    await relay.subscribe(db, patient_conn, consultation.id, patient)
    out = await relay.send(db, consultation.id, patient, "thanks")

    ended = await lifecycle.end_consultation(db, consultation.id, doctor)
    delivered = await relay.publish(out, ended)

    assert delivered == 1
    assert len(patient_conn.events("new-message")) == 2
    assert len(doctor_conn.events("new-message")) == 1
    assert not relay.connections.is_subscribed(doctor_conn, consultation.id)


# ---------------------------------------------------------------------------
# ConnectionManager / ContextWriter
# ---------------------------------------------------------------------------
async def test_broadcast_drops_failing_connection():
    manager = ConnectionManager()
    good, broken = FakeConnection("good"), BrokenConnection("broken")
    manager.subscribe(good, 1)
    manager.subscribe(broken, 1)
    manager.subscribe(broken, 2)

    delivered = await manager.broadcast(1, {"event": "new-message", "data": {}})

    assert delivered == 1
    assert good.sent == [{"event": "new-message", "data": {}}]
    assert manager.members(1) == [good]
    assert manager.members(2) == []


async def test_broadcast_to_empty_group():
    assert await ConnectionManager().broadcast(3, {"event": "x"}) == 0


async def test_broadcast_filters_members_by_identity():
    manager = ConnectionManager()
    allowed, revoked, anonymous = FakeConnection("a"), FakeConnection("r"), FakeConnection("n")
    manager.subscribe(allowed, 1, (10, "patient"))
    manager.subscribe(revoked, 1, (20, "doctor"))
    manager.subscribe(anonymous, 1)

    delivered = await manager.broadcast(
        1, {"event": "new-message", "data": {}}, admit=lambda user_id, role: user_id == 10
    )

    assert delivered == 2
    assert revoked.sent == []
    assert set(manager.members(1)) == {allowed, anonymous}


async def test_disconnect_leaves_every_group():
    manager = ConnectionManager()
    conn = FakeConnection()
    manager.subscribe(conn, 1)
    manager.subscribe(conn, 2)
    manager.disconnect(conn)
    assert not manager.is_subscribed(conn, 1)
    assert not manager.is_subscribed(conn, 2)


async def test_context_writer_keeps_completion_order(memory):
    writer = ContextWriter(memory)
    lines = [f"patient: {i}" for i in range(20)]

    await asyncio.gather(*(writer.append(1, line) for line in lines))
    await writer.close()

    assert await memory.get_context(1) == list(reversed(lines))


async def test_context_failure_does_not_fail_send(db, relay, memory, patient, doctor, make_consultation, monkeypatch):
    consultation = await make_consultation(patient, doctor, status="active")

    async def boom(consultation_id, line):
        raise ConnectionError("memory store down")

    monkeypatch.setattr(memory, "add_to_context", boom)

    out = await relay.send(db, consultation.id, patient, "still delivered")
    assert out.content == "still delivered"

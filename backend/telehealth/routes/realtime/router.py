"""
Real-time consultation chat over a single WebSocket.

Frames in both directions are ``{"event": <name>, "data": ...}`` with
camelCase payloads:

    client -> server   join-consultation  consultationId
                       leave-consultation consultationId
                       send-message       {consultationId, content, senderId?, ...}
    server -> client   joined             consultationId
                       new-message        MessageEvent
                       error              human-readable message

The socket authenticates once, at connect time, with the ``session``
cookie or a ``?token=`` query parameter.
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from telehealth.config.constants import SocketEvent
from telehealth.core.auth import identity_from_token
from telehealth.core.errors import ConsultationError, Forbidden, InvalidArgument
from telehealth.core.middleware import token_from_request
from telehealth.db.crud.user import get_user
from telehealth.db.models.user import UserModel
from telehealth.db.session import background_db_session
from telehealth.schemas.message import SendMessagePayload
from telehealth.services.relay import MessageRelay

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _authenticate(websocket: WebSocket):
    token = token_from_request(websocket) or websocket.query_params.get("token")
    identity = identity_from_token(token)
    if identity is None:
        return None
    async with background_db_session() as db:
        return await get_user(db, identity["user_id"])


async def _send_error(websocket: WebSocket, error: ConsultationError) -> None:
    await websocket.send_json({"event": SocketEvent.ERROR.value, "data": error.message})


def _consultation_id(data) -> int:
    # a bare id, or an object carrying consultationId
    value = data.get("consultationId") if isinstance(data, dict) else data
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument("consultationId must be an integer")
    return value


async def _handle_frame(
    websocket: WebSocket, relay: MessageRelay, user: UserModel, frame: dict
) -> None:
    event = frame.get("event")
    data = frame.get("data")

    if event == SocketEvent.JOIN.value:
        consultation_id = _consultation_id(data)
        async with background_db_session() as db:
            await relay.subscribe(db, websocket, consultation_id, user)
        await websocket.send_json(
            {"event": SocketEvent.JOINED.value, "data": consultation_id}
        )

    elif event == SocketEvent.LEAVE.value:
        relay.unsubscribe(websocket, _consultation_id(data))

    elif event == SocketEvent.SEND.value:
        try:
            payload = SendMessagePayload.model_validate(data)
        except ValidationError as e:
            raise InvalidArgument(f"Malformed send-message payload: {e.errors()[0]['msg']}")
        # the authenticated identity is the sender; a mismatching claim is refused
        if payload.sender_id is not None and payload.sender_id != user.id:
            raise Forbidden("senderId does not match the authenticated user")
        async with background_db_session() as db:
            await relay.send(db, payload.consultation_id, user, payload.content)

    else:
        raise InvalidArgument(f"Unknown event '{event}'")


@router.websocket("/ws")
async def consultation_socket(websocket: WebSocket):
    relay: MessageRelay = websocket.app.state.relay

    user = await _authenticate(websocket)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for user {user.id}")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                if not isinstance(frame, dict):
                    raise ValueError("frame must be a JSON object")
            except ValueError:
                await _send_error(websocket, InvalidArgument("Frames must be JSON objects"))
                continue

            try:
                await _handle_frame(websocket, relay, user, frame)
            except ConsultationError as e:
                logger.info(f"WebSocket event refused for user {user.id}: {e.code} - {e.message}")
                await _send_error(websocket, e)
    except WebSocketDisconnect:
        pass
    finally:
        relay.disconnect(websocket)
        logger.info(f"WebSocket closed for user {user.id}")

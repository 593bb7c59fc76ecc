"""
Message relay
─────────────
Persists chat lines, fans them out to every live connection subscribed to
the consultation, feeds the AI context window and hands `@ai` mentions to
the responder.

Per consultation the order is always: commit -> broadcast -> context append.
Broadcast is fire-and-forget; a connection that fails to receive is dropped
and has to catch up through the message history endpoint.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from telehealth.config.constants import MessageType, SocketEvent
from telehealth.config.settings import settings
from telehealth.core.errors import Forbidden, Internal, InvalidState
from telehealth.db.crud.message import create_message, list_messages
from telehealth.db.models.consultation import ConsultationModel
from telehealth.db.models.message import MessageModel
from telehealth.db.models.user import UserModel
from telehealth.schemas.message import MessageEvent, MessageOut
from telehealth.services import lifecycle
from telehealth.services.content import has_mention, prepare_content
from telehealth.services.memory import ConversationMemory

logger = logging.getLogger(__name__)

Identity = Tuple[int, str]


class Connection(Protocol):
    """Anything that can push JSON to one live client (a FastAPI WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


def display_name(user: UserModel) -> str:
    return user.name or user.email


def to_message_out(
    message: MessageModel, sender_name: Optional[str], sender_role: Optional[str]
) -> MessageOut:
    return MessageOut(
        id=message.id,
        consultation_id=message.consultation_id,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        created_at=message.created_at,
        sender_name=sender_name,
        sender_role=sender_role,
    )


# =============================================================================
# Broadcast groups
# =============================================================================

class ConnectionManager:
    """
    Consultation id -> subscribed connections, each tagged with the
    (user id, role) it joined as. Access is checked again at delivery time,
    so a connection whose user lost access since joining gets nothing.
    """

    def __init__(self):
        self._rooms: Dict[int, Dict[Connection, Optional[Identity]]] = {}

    def subscribe(
        self, connection: Connection, consultation_id: int, identity: Optional[Identity] = None
    ) -> None:
        self._rooms.setdefault(consultation_id, {})[connection] = identity

    def unsubscribe(self, connection: Connection, consultation_id: int) -> None:
        members = self._rooms.get(consultation_id)
        if not members:
            return
        members.pop(connection, None)
        if not members:
            del self._rooms[consultation_id]

    def disconnect(self, connection: Connection) -> None:
        for consultation_id in list(self._rooms):
            self.unsubscribe(connection, consultation_id)

    def members(self, consultation_id: int) -> List[Connection]:
        return list(self._rooms.get(consultation_id, ()))

    def is_subscribed(self, connection: Connection, consultation_id: int) -> bool:
        return connection in self._rooms.get(consultation_id, ())

    def _admitted(
        self, consultation_id: int, admit: Optional[Callable[[int, str], bool]]
    ) -> List[Connection]:
        room = self._rooms.get(consultation_id, {})
        if admit is None:
            return list(room)

        allowed = []
        for conn, identity in list(room.items()):
            if identity is None or admit(*identity):
                allowed.append(conn)
                continue
            logger.info(
                f"Removing user {identity[0]} from consultation {consultation_id}: access revoked"
            )
            self.unsubscribe(conn, consultation_id)
        return allowed

    async def broadcast(
        self,
        consultation_id: int,
        payload: dict,
        admit: Optional[Callable[[int, str], bool]] = None,
    ) -> int:
        """
        Send to every member that `admit(user_id, role)` still accepts;
        returns how many deliveries succeeded.
        """
        members = self._admitted(consultation_id, admit)
        if not members:
            return 0

        results = await asyncio.gather(
            *(conn.send_json(payload) for conn in members), return_exceptions=True
        )
        delivered = 0
        for conn, result in zip(members, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Dropping connection from consultation {consultation_id} after failed delivery: {result}"
                )
                self.disconnect(conn)
            else:
                delivered += 1
        return delivered


# =============================================================================
# Context window writer
# =============================================================================

class ContextWriter:
    """
    One writer per consultation: appends are queued and drained by a single
    task, so context lines land in the order the sends completed and
    concurrent senders never overwrite each other.
    """

    def __init__(self, memory: ConversationMemory):
        self._memory = memory
        self._writers: Dict[int, Tuple[asyncio.Queue, asyncio.Task]] = {}

    async def append(self, consultation_id: int, line: str) -> None:
        future = asyncio.get_running_loop().create_future()
        entry = self._writers.get(consultation_id)
        if entry is None:
            queue: asyncio.Queue = asyncio.Queue()
            task = asyncio.create_task(self._drain(consultation_id, queue))
            self._writers[consultation_id] = (queue, task)
        else:
            queue = entry[0]
        queue.put_nowait((line, future))
        await future

    async def _drain(self, consultation_id: int, queue: asyncio.Queue) -> None:
        try:
            while True:
                try:
                    line, future = queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                try:
                    await self._memory.add_to_context(consultation_id, line)
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(None)
        finally:
            self._writers.pop(consultation_id, None)

    async def close(self) -> None:
        tasks = [task for _, task in self._writers.values()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


# =============================================================================
# Relay
# =============================================================================

class MessageRelay:
    def __init__(
        self,
        memory: ConversationMemory,
        connections: Optional[ConnectionManager] = None,
        context_writer: Optional[ContextWriter] = None,
        mention_trigger: Optional[str] = None,
        max_message_length: Optional[int] = None,
    ):
        self.memory = memory
        self.connections = connections or ConnectionManager()
        self.context = context_writer or ContextWriter(memory)
        self.mention_trigger = mention_trigger or settings.ai_mention_trigger
        self.max_message_length = max_message_length or settings.max_message_length
        # set once the AI responder is built (it needs the relay to publish)
        self.responder = None

    # ------------------------------------------------------------ subscribe
    async def subscribe(
        self, db: AsyncSession, connection: Connection, consultation_id: int, user: UserModel
    ) -> None:
        """Admit a connection to a consultation group after checking membership."""
        consultation = await lifecycle.get_consultation(db, consultation_id)
        lifecycle.ensure_access(consultation, user.id, user.role)
        self.connections.subscribe(connection, consultation_id, (user.id, user.role))
        logger.info(f"User {user.id} joined consultation {consultation_id}")

    def unsubscribe(self, connection: Connection, consultation_id: int) -> None:
        self.connections.unsubscribe(connection, consultation_id)

    def disconnect(self, connection: Connection) -> None:
        self.connections.disconnect(connection)

    # ---------------------------------------------------------------- send
    async def send(
        self, db: AsyncSession, consultation_id: int, sender: UserModel, content: str
    ) -> MessageOut:
        """
        Store and fan out one human message.

        Raises:
            NotFound: unknown consultation
            Forbidden: sender is neither the owning patient nor the assigned doctor
            InvalidState: consultation is not active
            InvalidArgument: empty or oversized content
            Internal: the message could not be stored
        """
        consultation = await lifecycle.get_consultation(db, consultation_id)
        if not lifecycle.is_participant(consultation, sender.id, sender.role):
            raise Forbidden("You don't have access to this consultation")
        if consultation.status != lifecycle.ACTIVE:
            raise InvalidState("Can only send messages in active consultations")

        clean = prepare_content(content, self.max_message_length)

        try:
            message = await create_message(
                db, consultation_id, sender.id, clean, MessageType.USER.value
            )
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to store message in consultation {consultation_id}: {e}", exc_info=True
            )
            raise Internal("Failed to send message") from e

        out = to_message_out(message, display_name(sender), sender.role)
        await self.publish(out, consultation)
        await self.append_context(consultation_id, f"{sender.role}: {clean}")

        if self.responder is not None and has_mention(clean, self.mention_trigger):
            self.responder.dispatch(consultation_id, clean, sender.role)

        return out

    async def publish(
        self, message: MessageOut, consultation: Optional[ConsultationModel] = None
    ) -> int:
        """
        Fan a stored message out. Given the consultation, only connections whose
        user can still access it receive the message; the rest are unsubscribed.
        """
        admit = None
        if consultation is not None:
            def admit(user_id: int, role: str) -> bool:
                return lifecycle.can_access(consultation, user_id, role)

        payload = {
            "event": SocketEvent.NEW_MESSAGE.value,
            "data": MessageEvent(**message.model_dump()).model_dump(mode="json", by_alias=True),
        }
        delivered = await self.connections.broadcast(message.consultation_id, payload, admit)
        logger.debug(
            f"Broadcast message {message.id} to {delivered} connection(s) in consultation {message.consultation_id}"
        )
        return delivered

    async def append_context(self, consultation_id: int, line: str) -> None:
        # the context window is best-effort grounding; the message itself is already stored
        try:
            await self.context.append(consultation_id, line)
        except Exception:
            logger.exception(f"Failed to update AI context for consultation {consultation_id}")

    # -------------------------------------------------------------- history
    async def get_messages(
        self,
        db: AsyncSession,
        consultation_id: int,
        caller: UserModel,
        limit: int = 50,
        offset: int = 0,
    ) -> List[MessageOut]:
        consultation = await lifecycle.get_consultation(db, consultation_id)
        lifecycle.ensure_access(consultation, caller.id, caller.role)
        rows = await list_messages(db, consultation_id, limit=limit, offset=offset)
        return [
            to_message_out(
                m,
                name if m.sender_id is not None else settings.ai_sender_name,
                role if m.sender_id is not None else MessageType.AI.value,
            )
            for m, name, role in rows
        ]

    async def close(self) -> None:
        await self.context.close()

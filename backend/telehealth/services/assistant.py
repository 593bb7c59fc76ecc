"""
In-consultation AI assistant
────────────────────────────
Runs when a chat line contains the mention trigger (``@ai``):

1. read memory facts + the context window (10 most recent, oldest first)
2. build the system prompt around them
3. stream a completion and join the chunks
4. doctor mentions are remembered as ``advice_<epoch ms>``
5. store the reply as an AI message (no sender)
6. append ``AI: <reply>`` to the context window
7. broadcast it to the consultation group as "AI Assistant"

The reply is best effort. Any failure is logged and the pipeline stops
before anything partial is stored or sent; the human message that
triggered it has already gone through on its own.
"""

import asyncio
import logging
import time
from typing import Callable, List, Optional, Set

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from langchain_core.prompts import ChatPromptTemplate

from telehealth.config.constants import ADVICE_KEY_PREFIX, AI_ROLE_LABEL, MessageType, Role
from telehealth.config.prompts import (
    CONSULTATION_ASSISTANT_PROMPT,
    NO_CONTEXT_PLACEHOLDER,
    NO_MEMORIES_PLACEHOLDER,
)
from telehealth.config.settings import settings
from telehealth.core.models import get_llm
from telehealth.db.crud.message import create_message
from telehealth.db.session import background_db_session
from telehealth.schemas.message import MessageOut
from telehealth.services import lifecycle
from telehealth.services.content import strip_mention
from telehealth.services.memory import ConversationMemory
from telehealth.services.relay import MessageRelay, to_message_out

logger = logging.getLogger(__name__)

assistant_prompt = ChatPromptTemplate.from_messages([
    ("system", CONSULTATION_ASSISTANT_PROMPT),
    ("human", "{message}"),
])


def format_memories(memories: dict) -> str:
    return "\n".join(f"{key}: {value}" for key, value in memories.items())


def prompt_context(context: List[str], size: int) -> List[str]:
    """Newest-first window -> the `size` most recent lines in chronological order."""
    return list(reversed(context[:size]))


def chunk_text(chunk) -> str:
    """Text of one streamed chunk; Gemini may hand back a list of content parts."""
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return str(content or "")


def advice_key(now_ms: Optional[int] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{ADVICE_KEY_PREFIX}{now_ms}"


class AIResponder:
    def __init__(
        self,
        relay: MessageRelay,
        memory: ConversationMemory,
        llm: Optional[BaseChatModel] = None,
        llm_factory: Callable[[], Optional[BaseChatModel]] = get_llm,
        mention_trigger: Optional[str] = None,
        prompt_context_size: Optional[int] = None,
        sender_name: Optional[str] = None,
    ):
        self.relay = relay
        self.memory = memory
        self._llm = llm
        self._llm_factory = llm_factory
        self.mention_trigger = mention_trigger or settings.ai_mention_trigger
        self.prompt_context_size = prompt_context_size or settings.prompt_context_size
        self.sender_name = sender_name or settings.ai_sender_name
        self._tasks: Set[asyncio.Task] = set()

    @property
    def llm(self) -> Optional[BaseChatModel]:
        if self._llm is None:
            self._llm = self._llm_factory()
        return self._llm

    @llm.setter
    def llm(self, value: Optional[BaseChatModel]) -> None:
        self._llm = value

    # ------------------------------------------------------------ scheduling
    def dispatch(self, consultation_id: int, content: str, sender_role: str) -> asyncio.Task:
        """Start a reply in the background; the caller never waits for the model."""
        task = asyncio.create_task(
            self.respond(consultation_id, content, sender_role),
            name=f"ai-reply-{consultation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"AI reply scheduled for consultation {consultation_id} ({sender_role} mention)")
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> None:
        """Wait for every in-flight reply (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------- pipeline
    async def build_messages(self, consultation_id: int, content: str) -> List[BaseMessage]:
        memories = await self.memory.get_all_memories(consultation_id)
        context = await self.memory.get_context(consultation_id)
        excerpt = prompt_context(context, self.prompt_context_size)

        return assistant_prompt.format_messages(
            memories=format_memories(memories) or NO_MEMORIES_PLACEHOLDER,
            context="\n".join(excerpt) or NO_CONTEXT_PLACEHOLDER,
            trigger=self.mention_trigger,
            message=content,
        )

    async def generate(self, messages: List[BaseMessage]) -> str:
        llm = self.llm
        if llm is None:
            raise RuntimeError("No chat model configured for the AI assistant")

        text = ""
        async for chunk in llm.astream(messages):
            text += chunk_text(chunk)
        return text.strip()

    async def respond(
        self, consultation_id: int, content: str, sender_role: str
    ) -> Optional[MessageOut]:
        try:
            messages = await self.build_messages(consultation_id, content)
            reply = await self.generate(messages)
            if not reply:
                raise RuntimeError("Chat model returned an empty reply")

            if sender_role == Role.DOCTOR.value:
                key = advice_key()
                await self.memory.set_memory(
                    consultation_id, key, strip_mention(content, self.mention_trigger)
                )
                logger.info(f"Recorded doctor advice '{key}' for consultation {consultation_id}")

            async with background_db_session() as db:
                message = await create_message(
                    db, consultation_id, None, reply, MessageType.AI.value
                )
                # current assignment, so a reassigned doctor's socket is left out
                consultation = await lifecycle.get_consultation(db, consultation_id)
            out = to_message_out(message, self.sender_name, MessageType.AI.value)

            await self.relay.append_context(consultation_id, f"{AI_ROLE_LABEL}: {reply}")
            await self.relay.publish(out, consultation)
            logger.info(f"AI reply {out.id} delivered in consultation {consultation_id}")
            return out
        except Exception:
            logger.exception(f"Error generating AI response for consultation {consultation_id}")
            return None

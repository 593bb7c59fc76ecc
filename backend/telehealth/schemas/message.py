# telehealth/schemas/message.py
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from telehealth.config.constants import MessageType


# --------------------------------------------------------------------------
# 1.  REST payloads
# --------------------------------------------------------------------------
class MessageCreate(BaseModel):
    # length and emptiness are re-checked after sanitization by the relay
    content: Annotated[str, Field(min_length=1)]


class MessageOut(BaseModel):
    """A persisted chat line together with display information about its sender."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    consultation_id: int
    sender_id: Optional[int] = None
    content: str
    message_type: MessageType
    created_at: datetime
    sender_name: Optional[str] = None
    sender_role: Optional[str] = None


# --------------------------------------------------------------------------
# 2.  Real-time payloads (camelCase on the wire)
# --------------------------------------------------------------------------
class MessageEvent(MessageOut):
    """`new-message` payload pushed to every member of a consultation group."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendMessagePayload(BaseModel):
    """
    `send-message` payload. Only `consultationId` and `content` are trusted;
    the sender fields are accepted for client compatibility and checked
    against the authenticated identity.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    consultation_id: int
    content: str
    sender_id: Optional[int] = None
    sender_name: Optional[str] = None
    sender_role: Optional[str] = None

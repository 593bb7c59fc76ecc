"""Merge durable message history with messages received live over the socket."""

from datetime import datetime, timezone
from typing import Iterable, List

from telehealth.schemas.message import MessageOut


def _as_utc(value: datetime) -> datetime:
    # some stores hand back naive UTC timestamps
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def merge_messages(
    history: Iterable[MessageOut], live: Iterable[MessageOut]
) -> List[MessageOut]:
    """
    Union of both collections keyed by message id, ordered by (created_at, id).
    History is authoritative: a live copy of a message already in the
    history is ignored. Neither input is modified.
    """
    merged = {}
    for message in live:
        merged[message.id] = message
    for message in history:
        merged[message.id] = message
    return sorted(merged.values(), key=lambda m: (_as_utc(m.created_at), m.id))

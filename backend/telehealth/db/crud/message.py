# telehealth/db/crud/message.py
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from telehealth.db.models.message import MessageModel
from telehealth.db.models.user import UserModel

logger = logging.getLogger(__name__)


async def create_message(
    db: AsyncSession,
    consultation_id: int,
    sender_id: Optional[int],
    content: str,
    message_type: str = "user",
) -> MessageModel:
    """
    Insert one chat line and commit it.

    Args:
        db (AsyncSession): The database session.
        consultation_id (int): Consultation the line belongs to.
        sender_id (Optional[int]): Author, None for AI-authored lines.
        content (str): Already sanitized text.
        message_type (str): 'user' or 'ai'; must agree with sender_id.

    Returns:
        MessageModel: the committed row with its id and created_at populated.
    """
    message = MessageModel(
        consultation_id=consultation_id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
    )
    db.add(message)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.debug(
        f"CRUD: stored message_id={message.id} ({message_type}) in consultation_id={consultation_id}"
    )
    return message


async def list_messages(
    db: AsyncSession,
    consultation_id: int,
    limit: int = 50,
    offset: int = 0,
) -> List[Tuple[MessageModel, Optional[str], Optional[str]]]:
    """
    Most recent `limit` messages (skipping the newest `offset`), returned
    oldest first, each with the sender's display name and role.
    AI messages come back with (None, None).
    """
    query = (
        select(
            MessageModel,
            func.coalesce(UserModel.name, UserModel.email),
            UserModel.role,
        )
        .outerjoin(UserModel, MessageModel.sender_id == UserModel.id)
        .where(MessageModel.consultation_id == consultation_id)
        .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await db.execute(query)
    rows = [(m, name, role) for m, name, role in result.all()]
    rows.reverse()
    return rows

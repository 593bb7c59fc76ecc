from fastapi import APIRouter, Depends, Query, Request, status
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from telehealth.core.middleware import get_current_db_user, get_db
from telehealth.db.models.user import UserModel
from telehealth.schemas.message import MessageCreate, MessageOut

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/{consultation_id}", response_model=List[MessageOut])
async def get_messages_route(
    consultation_id: int,
    request: Request,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    """History of a consultation, oldest first. `offset` pages further back."""
    relay = request.app.state.relay
    return await relay.get_messages(db, consultation_id, user, limit=limit, offset=offset)


@router.post("/{consultation_id}", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message_route(
    consultation_id: int,
    body: MessageCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: UserModel = Depends(get_current_db_user),
):
    relay = request.app.state.relay
    return await relay.send(db, consultation_id, user, body.content)

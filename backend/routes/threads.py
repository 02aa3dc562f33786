"""Read-only views over stored threads and messages."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from config import BotConfig
from deps import get_config, get_db
from history_service import build_thread_history
from message_store import MESSAGE_TYPE_PSEUDO, get_recent_messages, load_payload
from models import ChatMessage, ChatThreadRel
from schemas import ChatMessagePayload, StoredMessageResponse, ThreadResponse
from thread_index import thread_exists

router = APIRouter(prefix="/api", tags=["threads"])


def _to_response(row: ChatMessage, sequence_num: Optional[int] = None) -> StoredMessageResponse:
    return StoredMessageResponse(
        id=row.id,
        message_type=row.message_type,
        user_name=row.user_name,
        mastodon_status_id=row.mastodon_status_id,
        timestamp=row.timestamp,
        privacy_level=row.privacy_level,
        sequence_num=sequence_num,
        body=load_payload(row),
    )


@router.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: str,
    include_pseudo: bool = True,
    db: Session = Depends(get_db),
):
    if not thread_exists(db, thread_id):
        raise HTTPException(status_code=404, detail="Thread not found")
    query = (
        db.query(ChatMessage, ChatThreadRel.sequence_num)
        .join(ChatThreadRel, ChatThreadRel.chat_message_id == ChatMessage.id)
        .filter(ChatThreadRel.thread_id == thread_id)
    )
    if not include_pseudo:
        query = query.filter(ChatMessage.message_type != MESSAGE_TYPE_PSEUDO)
    rows = query.order_by(ChatThreadRel.sequence_num.asc()).all()
    return ThreadResponse(
        thread_id=thread_id,
        messages=[_to_response(row, seq) for row, seq in rows],
    )


@router.get("/history/{acct}", response_model=List[List[ChatMessagePayload]])
async def get_history(
    acct: str,
    db: Session = Depends(get_db),
    config: BotConfig = Depends(get_config),
):
    return build_thread_history(
        db,
        acct,
        max_threads=config.max_history_threads,
        max_recent_per_account=config.max_recent_per_account,
    )


@router.get("/messages/recent", response_model=List[StoredMessageResponse])
async def get_recent(limit: int = 20, db: Session = Depends(get_db)):
    rows = get_recent_messages(db, max(1, min(200, limit)))
    return [_to_response(row) for row in rows]

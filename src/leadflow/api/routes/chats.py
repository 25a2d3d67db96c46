"""Chat link and chat session routes.

Routes under ``/public`` serve visitors who arrive through a chat link and
carry no user identity.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...models import ChatLinkStatus, ChatSessionStatus
from ...services import chat_links, chats
from ..deps import get_current_user_id, get_db
from ..schemas import (
    ChatLinkCreate,
    ChatLinkStatusUpdate,
    ChatMessageCreate,
    ChatSessionCreate,
    ChatSessionStatusUpdate,
)

router = APIRouter(tags=["chats"])


# Chat links

@router.post("/chat-links", status_code=status.HTTP_201_CREATED)
async def generate_chat_link(
    body: ChatLinkCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await chat_links.generate(db, user_id, body.lead_id, body.expires_in_days)


@router.get("/chat-links")
async def list_chat_links(
    link_status: Optional[ChatLinkStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return await chat_links.list_links(db, user_id, link_status)


@router.get("/chat-links/{link_id}")
async def get_chat_link(
    link_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await chat_links.get(db, user_id, link_id)


@router.patch("/chat-links/{link_id}/status")
async def update_chat_link_status(
    link_id: str,
    body: ChatLinkStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    link = await chat_links.update_status(db, user_id, link_id, body.status)
    return chat_links.with_url(link)


@router.get("/leads/{lead_id}/chat-links")
async def list_chat_links_by_lead(
    lead_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return await chat_links.list_by_lead(db, user_id, lead_id)


@router.get("/public/chat-links/{token}")
async def get_chat_link_by_token(
    token: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await chat_links.get_by_token(db, token)


@router.post("/public/chat-links/{token}/access")
async def mark_chat_link_accessed(
    token: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    return await chat_links.mark_accessed(db, token)


# Chat sessions

@router.post("/public/chat-sessions", status_code=status.HTTP_201_CREATED)
async def create_chat_session(
    body: ChatSessionCreate,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    chat = await chats.create_session(
        db, body.token, body.visitor_name, body.visitor_email
    )
    return chat.to_dict()


@router.get("/public/chat-sessions/{session_id}")
async def get_chat_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await chats.get_session(db, session_id)


@router.post("/public/chat-sessions/{session_id}/messages", status_code=status.HTTP_201_CREATED)
async def add_chat_message(
    session_id: str,
    body: ChatMessageCreate,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    message = await chats.add_message(
        db, session_id, body.role, body.content, body.audio_storage_id
    )
    return message.to_dict()


@router.get("/public/chat-sessions/{session_id}/messages")
async def get_chat_messages(
    session_id: str,
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return [m.to_dict() for m in await chats.get_messages(db, session_id)]


@router.post("/public/chat-sessions/{session_id}/end")
async def end_chat_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, bool]:
    return await chats.end_session(db, session_id)


@router.get("/chat-sessions")
async def list_chat_sessions(
    session_status: Optional[ChatSessionStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return [s.to_dict() for s in await chats.list_sessions(db, user_id, session_status)]


@router.get("/leads/{lead_id}/chat-sessions")
async def list_chat_sessions_by_lead(
    lead_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return [s.to_dict() for s in await chats.list_sessions_by_lead(db, user_id, lead_id)]


@router.patch("/chat-sessions/{session_id}/status")
async def update_chat_session_status(
    session_id: str,
    body: ChatSessionStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    chat = await chats.update_session_status(db, user_id, session_id, body.status)
    return chat.to_dict()

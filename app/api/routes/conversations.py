"""
Conversation Endpoints.

Inbound WhatsApp messages (already parsed from the provider webhook) are
processed one turn at a time; replies are returned and delivered through
the messaging channel after the response is sent.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from app.api.dependencies import get_clinic_id, get_conversation_engine
from app.core.scheduling.engine import ConversationEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["Conversations"])


class ErrorResponse(BaseModel):
    """Error response."""

    error: str
    detail: Optional[str] = None


class InboundMessageRequest(BaseModel):
    """One inbound message."""

    phone: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description="Counterparty phone number",
        examples=["923001234567"],
    )
    text: str = Field(
        default="",
        max_length=2000,
        description="Message text",
        examples=["I want to book an appointment"],
    )
    message_id: Optional[str] = Field(
        default=None,
        description="Provider message id, duplicates are ignored",
        examples=["wamid.HBgMOTIzMDAxMjM0NTY3"],
    )


class InboundMessageResponse(BaseModel):
    replies: list[dict[str, Any]] = Field(
        ...,
        description="WhatsApp text payloads, in send order",
    )


class SessionResponse(BaseModel):
    clinic_id: str
    phone: str
    state: str
    context: dict[str, Any]
    version: int
    last_message_id: Optional[str] = None
    created_at: datetime
    last_interaction_at: datetime


@router.post(
    "/messages",
    response_model=InboundMessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Process an inbound message",
    description="Run one conversation turn and queue its replies for delivery.",
)
async def process_message(
    request: InboundMessageRequest,
    background_tasks: BackgroundTasks,
    clinic_id: str = Depends(get_clinic_id),
    engine: ConversationEngine = Depends(get_conversation_engine),
) -> InboundMessageResponse:
    replies = await engine.process_inbound_message(
        clinic_id,
        request.phone,
        request.text,
        message_id=request.message_id,
    )
    if replies:
        background_tasks.add_task(engine.deliver_replies, clinic_id, request.phone, replies)
    return InboundMessageResponse(replies=replies)


@router.get(
    "/{phone}",
    response_model=SessionResponse,
    summary="Get conversation session",
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
)
async def get_session(
    phone: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ConversationEngine = Depends(get_conversation_engine),
) -> SessionResponse:
    session = await engine.get_session(clinic_id, phone)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return SessionResponse(**session.to_dict())


@router.delete(
    "/{phone}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Reset conversation session",
)
async def reset_session(
    phone: str,
    clinic_id: str = Depends(get_clinic_id),
    engine: ConversationEngine = Depends(get_conversation_engine),
) -> None:
    if not await engine.reset_session(clinic_id, phone):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import CallerId
from app.database import get_db
from app.schemas.chat import ChatRequest, ChatResponse
from app.services.chat_orchestrator import handle_turn
from app.services.chat_prompts import ROUTE_ERROR_REPLY
from app.services.credentials import MissingCredentialsError, resolve_credentials

router = APIRouter(prefix="/api/chatbot", tags=["chat"])

DbSession = Annotated[AsyncSession, Depends(get_db)]

logger = logging.getLogger(__name__)


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, db: DbSession, user_id: CallerId):
    """Answer a chat message using OpenAI tool calling over GoHighLevel data.

    Every outcome past input validation is a 200 with a readable reply,
    including missing integrations and internal failures.
    """
    message = (request.message or "").strip()
    if not message:
        return JSONResponse(status_code=400, content={"error": "Message is required"})

    logger.info("Chat message from user %s (%d chars)", user_id, len(message))

    try:
        credentials = await resolve_credentials(db, user_id)
    except MissingCredentialsError as exc:
        logger.info("Chat for user %s blocked on setup: %s", user_id, exc.guidance)
        return ChatResponse(response=exc.guidance)
    except Exception:
        logger.exception("Credential lookup failed for user %s", user_id)
        return ChatResponse(response=ROUTE_ERROR_REPLY)

    try:
        history = request.conversation_history or []
        reply = await handle_turn(db, message, history, credentials)
    except Exception:
        logger.exception("Chat request failed for user %s", user_id)
        return ChatResponse(response=ROUTE_ERROR_REPLY)

    return ChatResponse(response=reply)

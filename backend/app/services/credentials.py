import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.integration import Integration, UserApiKey
from app.services.chat_prompts import (
    MCP_TOKEN_LOOKUP_REPLY,
    MISSING_INTEGRATION_REPLY,
    MISSING_LOCATION_REPLY,
    MISSING_MCP_TOKEN_REPLY,
    MISSING_OPENAI_KEY_REPLY,
)

logger = logging.getLogger(__name__)

GHL_INTEGRATION_TYPE = "gohighlevel"
MCP_PROVIDER = "ghlmcp"
OPENAI_PROVIDER = "openai"


class MissingCredentialsError(Exception):
    """A required integration step has not been completed by the user."""

    def __init__(self, guidance: str):
        self.guidance = guidance
        super().__init__(guidance)


@dataclass(frozen=True)
class CRMCredentials:
    user_id: str
    location_id: str
    mcp_token: str


@dataclass(frozen=True)
class Credentials(CRMCredentials):
    openai_api_key: str


def missing_credentials_guidance(credentials: Credentials) -> str | None:
    """Name the first integration step still missing, or None when complete."""
    if not credentials.mcp_token:
        return MISSING_MCP_TOKEN_REPLY
    if not credentials.location_id:
        return MISSING_LOCATION_REPLY
    if not credentials.openai_api_key:
        return MISSING_OPENAI_KEY_REPLY
    return None


async def get_active_integration(db: AsyncSession, user_id: str) -> Integration | None:
    result = await db.execute(
        select(Integration)
        .where(
            Integration.user_id == user_id,
            Integration.type == GHL_INTEGRATION_TYPE,
            Integration.is_active.is_(True),
        )
        .order_by(Integration.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_api_key(db: AsyncSession, user_id: str, provider: str) -> str | None:
    """Most recent active key for a provider; reading it stamps ``last_used_at``."""
    result = await db.execute(
        select(UserApiKey)
        .where(
            UserApiKey.user_id == user_id,
            UserApiKey.provider == provider,
            UserApiKey.is_active.is_(True),
        )
        .order_by(UserApiKey.created_at.desc(), UserApiKey.id.desc())
        .limit(1)
    )
    key = result.scalar_one_or_none()
    if key is None:
        return None
    key.last_used_at = datetime.now(UTC)
    await db.commit()
    return key.api_key


async def resolve_crm_credentials(db: AsyncSession, user_id: str) -> CRMCredentials:
    integration = await get_active_integration(db, user_id)
    if integration is None:
        raise MissingCredentialsError(MISSING_INTEGRATION_REPLY)

    try:
        mcp_token = await get_api_key(db, user_id, MCP_PROVIDER)
    except SQLAlchemyError:
        logger.exception("MCP token lookup failed for user %s", user_id)
        raise MissingCredentialsError(MCP_TOKEN_LOOKUP_REPLY)
    if not mcp_token:
        raise MissingCredentialsError(MISSING_MCP_TOKEN_REPLY)

    location_id = integration.resolved_location_id
    if not location_id:
        logger.error("No location ID on integration %d", integration.id)
        raise MissingCredentialsError(MISSING_LOCATION_REPLY)

    return CRMCredentials(user_id=user_id, location_id=location_id, mcp_token=mcp_token)


async def resolve_credentials(db: AsyncSession, user_id: str) -> Credentials:
    """Everything a chat turn needs, checked in the order the user sets it up."""
    crm = await resolve_crm_credentials(db, user_id)

    try:
        openai_api_key = await get_api_key(db, user_id, OPENAI_PROVIDER)
    except SQLAlchemyError:
        logger.exception("OpenAI key lookup failed for user %s", user_id)
        openai_api_key = None
    if not openai_api_key:
        raise MissingCredentialsError(MISSING_OPENAI_KEY_REPLY)

    return Credentials(
        user_id=crm.user_id,
        location_id=crm.location_id,
        mcp_token=crm.mcp_token,
        openai_api_key=openai_api_key,
    )

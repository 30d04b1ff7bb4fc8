"""Resolve a free-text person reference to cached GoHighLevel contacts.

Matching is tiered on the number of whitespace-separated tokens:

- none: the most recently updated active contacts, unfiltered
- one: token in first name, last name, or full name
- two: whole query in full name, or token 1 in first name and token 2 in
  last name
- three or more: whole query in full name, email, or phone

All matches are case-insensitive substrings. Results are scoped to the
caller's location and active sync status. If the cache query fails the
remote ``contacts_get-contacts`` tool answers instead, unmodified.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from app.config import settings
from app.integrations.ghl_mcp import GHLMCPClient
from app.models.contact import GHLContact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolverConfig:
    default_limit: int = 50
    max_limit: int = 100

    @classmethod
    def from_settings(cls) -> "ResolverConfig":
        return cls(
            default_limit=settings.contact_search_default_limit,
            max_limit=settings.contact_search_max_limit,
        )

    def clamp(self, limit: int | None) -> int:
        if not limit or limit < 1:
            return self.default_limit
        return min(limit, self.max_limit)


def build_contact_filter(query: str | None) -> ColumnElement[bool] | None:
    search_term = (query or "").strip().lower()
    tokens = search_term.split()

    if not tokens:
        return None
    if len(tokens) == 1:
        token = tokens[0]
        return or_(
            GHLContact.first_name.icontains(token, autoescape=True),
            GHLContact.last_name.icontains(token, autoescape=True),
            GHLContact.contact_name.icontains(token, autoescape=True),
        )
    if len(tokens) == 2:
        return or_(
            GHLContact.contact_name.icontains(search_term, autoescape=True),
            and_(
                GHLContact.first_name.icontains(tokens[0], autoescape=True),
                GHLContact.last_name.icontains(tokens[1], autoescape=True),
            ),
        )
    return or_(
        GHLContact.contact_name.icontains(search_term, autoescape=True),
        GHLContact.email.icontains(search_term, autoescape=True),
        GHLContact.phone.icontains(search_term, autoescape=True),
    )


def contact_record(contact: GHLContact) -> dict:
    return {
        "id": contact.contact_id,
        "locationId": contact.location_id,
        "firstName": contact.first_name,
        "lastName": contact.last_name,
        "fullName": contact.contact_name,
        "email": contact.email,
        "phone": contact.phone,
        "type": contact.type,
        "tags": contact.tags or [],
        "customFields": contact.custom_fields or [],
        "dateAdded": contact.date_added,
        "dateUpdated": contact.date_updated,
    }


class ContactResolver:
    def __init__(
        self,
        db: AsyncSession,
        location_id: str,
        mcp: GHLMCPClient | None = None,
        config: ResolverConfig | None = None,
    ):
        self.db = db
        self.location_id = location_id
        self.mcp = mcp
        self.config = config or ResolverConfig.from_settings()

    async def resolve(self, query: str | None, limit: int | None = None) -> list[dict] | Any:
        condition = build_contact_filter(query)
        stmt = select(GHLContact).where(
            GHLContact.location_id == self.location_id,
            GHLContact.sync_status == "active",
        )
        if condition is None:
            stmt = stmt.order_by(GHLContact.updated_at.desc(), GHLContact.id.desc())
        else:
            stmt = stmt.where(condition)
        stmt = stmt.limit(self.config.clamp(limit))

        try:
            result = await self.db.execute(stmt)
            contacts = result.scalars().all()
        except SQLAlchemyError:
            logger.exception(
                "Contact cache query failed for location %s, falling back to MCP",
                self.location_id,
            )
            await self.db.rollback()
            if self.mcp is None:
                raise
            return await self.mcp.get_contacts({"query": query, "limit": limit})

        logger.info(
            "Contact search %r in location %s: %d match(es)",
            query,
            self.location_id,
            len(contacts),
        )
        return [contact_record(contact) for contact in contacts]

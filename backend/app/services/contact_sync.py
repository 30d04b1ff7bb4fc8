import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.integrations.ghl_mcp import GHLMCPClient
from app.models.contact import ContactSyncLog, GHLContact
from app.services.credentials import resolve_crm_credentials

logger = logging.getLogger(__name__)


def contact_fields(contact: dict) -> dict:
    """Map a GoHighLevel contact payload onto ``GHLContact`` columns."""
    first_name = contact.get("firstName") or contact.get("firstNameRaw")
    last_name = contact.get("lastName") or contact.get("lastNameRaw")
    contact_name = contact.get("contactName") or (
        f"{first_name or ''} {last_name or ''}".strip() or None
    )
    return {
        "first_name": first_name,
        "last_name": last_name,
        "contact_name": contact_name,
        "email": contact.get("email"),
        "phone": contact.get("phone"),
        "company_name": contact.get("companyName"),
        "type": contact.get("type"),
        "source": contact.get("source"),
        "tags": contact.get("tags") or [],
        "custom_fields": contact.get("customFields") or [],
        "date_added": contact.get("dateAdded"),
        "date_updated": contact.get("dateUpdated"),
    }


async def _find_contact(
    db: AsyncSession, location_id: str, contact_id: str
) -> GHLContact | None:
    result = await db.execute(
        select(GHLContact).where(
            GHLContact.location_id == location_id,
            GHLContact.contact_id == contact_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_contact(
    db: AsyncSession, user_id: str, location_id: str, contact: dict
) -> bool:
    """Insert or refresh one cached contact. Returns True when a row was created."""
    contact_id = contact.get("id")
    if not contact_id:
        raise ValueError("Contact payload has no id")

    fields = contact_fields(contact)
    existing = await _find_contact(db, location_id, contact_id)
    if existing is None:
        try:
            async with db.begin_nested():
                db.add(
                    GHLContact(
                        user_id=user_id,
                        location_id=location_id,
                        contact_id=contact_id,
                        sync_status="active",
                        **fields,
                    )
                )
            return True
        except IntegrityError:
            # another delivery inserted the same contact first
            logger.info("Contact %s already cached, updating instead", contact_id)
            existing = await _find_contact(db, location_id, contact_id)
            if existing is None:
                raise

    for key, value in fields.items():
        setattr(existing, key, value)
    existing.user_id = user_id
    existing.sync_status = "active"
    existing.sync_error = None
    await db.flush()
    return False


async def mark_contact_deleted(
    db: AsyncSession, location_id: str, contact_id: str
) -> bool:
    """Soft-delete a cached contact so searches stop returning it."""
    existing = await _find_contact(db, location_id, contact_id)
    if existing is None:
        return False
    existing.sync_status = "deleted"
    await db.flush()
    return True


def start_sync_log(
    db: AsyncSession, *, user_id: str, location_id: str, sync_type: str
) -> ContactSyncLog:
    """Create a ContactSyncLog and add it to the session; the caller commits."""
    log = ContactSyncLog(
        user_id=user_id,
        location_id=location_id,
        sync_type=sync_type,
        status="running",
        contacts_processed=0,
        contacts_created=0,
        contacts_updated=0,
        contacts_deleted=0,
    )
    db.add(log)
    return log


def finish_sync_log(
    log: ContactSyncLog, *, status: str = "completed", error: str | None = None
) -> ContactSyncLog:
    log.status = status
    log.error_message = error
    log.completed_at = datetime.now(UTC)
    return log


def _page_contacts(page: Any) -> list[dict]:
    if isinstance(page, list):
        return page
    if isinstance(page, dict):
        return page.get("contacts") or page.get("data") or []
    return []


async def _prune_unseen_contacts(
    db: AsyncSession, location_id: str, seen: set[str]
) -> int:
    """Soft-delete active cached contacts the CRM no longer returns."""
    result = await db.execute(
        select(GHLContact).where(
            GHLContact.location_id == location_id,
            GHLContact.sync_status == "active",
        )
    )
    removed = 0
    for contact in result.scalars():
        if contact.contact_id not in seen:
            contact.sync_status = "deleted"
            removed += 1
    await db.flush()
    return removed


async def sync_contacts_for_user(
    db: AsyncSession,
    user_id: str,
    *,
    page_size: int | None = None,
    max_pages: int | None = None,
) -> ContactSyncLog:
    """Pull every contact for the user's location over MCP into the local cache."""
    credentials = await resolve_crm_credentials(db, user_id)
    page_size = page_size or settings.contact_sync_page_size
    max_pages = max_pages or settings.contact_sync_max_pages

    log = start_sync_log(
        db, user_id=user_id, location_id=credentials.location_id, sync_type="bulk"
    )
    await db.commit()

    seen: set[str] = set()
    complete = False
    async with GHLMCPClient(credentials.mcp_token, credentials.location_id) as mcp:
        try:
            for page_number in range(max_pages):
                page = await mcp.get_contacts(
                    {"limit": page_size, "offset": page_number * page_size}
                )
                contacts = _page_contacts(page)
                for contact in contacts:
                    if not isinstance(contact, dict) or not contact.get("id"):
                        continue
                    created = await upsert_contact(
                        db, user_id, credentials.location_id, contact
                    )
                    seen.add(contact["id"])
                    log.contacts_processed += 1
                    if created:
                        log.contacts_created += 1
                    else:
                        log.contacts_updated += 1
                await db.commit()
                if len(contacts) < page_size:
                    complete = True
                    break

            if complete and seen:
                log.contacts_deleted = await _prune_unseen_contacts(
                    db, credentials.location_id, seen
                )
                await db.commit()
            elif not complete:
                logger.warning(
                    "Contact sync for location %s stopped at %d pages, skipping prune",
                    credentials.location_id,
                    max_pages,
                )
        except Exception as exc:
            logger.exception("Contact sync failed for user %s", user_id)
            await db.rollback()
            finish_sync_log(log, status="failed", error=str(exc))
            await db.commit()
            await db.refresh(log)
            return log

    finish_sync_log(log)
    await db.commit()
    logger.info(
        "Contact sync for location %s: %d processed, %d new, %d updated, %d removed",
        credentials.location_id,
        log.contacts_processed,
        log.contacts_created,
        log.contacts_updated,
        log.contacts_deleted,
    )
    return log

import hashlib
import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models.integration import Integration
from app.schemas.webhook import ContactWebhook
from app.services.contact_sync import (
    finish_sync_log,
    mark_contact_deleted,
    start_sync_log,
    upsert_contact,
)
from app.services.credentials import GHL_INTEGRATION_TYPE

router = APIRouter(prefix="/api/webhooks/ghl", tags=["webhooks"])

DbSession = Annotated[AsyncSession, Depends(get_db)]

logger = logging.getLogger(__name__)


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """HMAC-SHA256 check of the raw body. Unsigned requests pass when no secret is set."""
    if not signature or not secret:
        return True
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, expected)


async def _integration_for_location(
    db: AsyncSession, location_id: str
) -> Integration | None:
    result = await db.execute(
        select(Integration)
        .where(
            Integration.type == GHL_INTEGRATION_TYPE,
            Integration.is_active.is_(True),
            or_(
                Integration.location_id == location_id,
                Integration.location_id.is_(None),
            ),
        )
        .order_by(Integration.id.desc())
    )
    for integration in result.scalars():
        if integration.resolved_location_id == location_id:
            return integration
    return None


@router.post("/contacts")
async def contact_webhook(request: Request, db: DbSession) -> dict:
    """Keep the local contact cache in step with GoHighLevel contact events."""
    body = await request.body()
    if not verify_signature(
        body, request.headers.get("x-ghl-signature"), settings.ghl_webhook_secret
    ):
        logger.warning("Rejected contact webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = ContactWebhook.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors()) from exc

    logger.info(
        "GHL contact webhook: type=%s location=%s contact=%s",
        event.type,
        event.location_id,
        event.contact_id,
    )

    integration = await _integration_for_location(db, event.location_id)
    if integration is None:
        logger.error("No active integration for location %s", event.location_id)
        raise HTTPException(status_code=404, detail="Integration not found")

    log = start_sync_log(
        db,
        user_id=integration.user_id,
        location_id=event.location_id,
        sync_type="webhook",
    )

    if event.type in ("contact.create", "contact.update"):
        contact = dict(event.contact or {})
        contact["id"] = contact.get("id") or event.contact_id
        if not contact["id"]:
            raise HTTPException(status_code=422, detail="contactId is required")
        created = await upsert_contact(
            db, integration.user_id, event.location_id, contact
        )
        log.contacts_processed = 1
        if created:
            log.contacts_created = 1
        else:
            log.contacts_updated = 1
    elif event.type == "contact.delete":
        if not event.contact_id:
            raise HTTPException(status_code=422, detail="contactId is required")
        deleted = await mark_contact_deleted(db, event.location_id, event.contact_id)
        log.contacts_processed = 1
        log.contacts_deleted = 1 if deleted else 0
    else:
        logger.warning("Ignoring unknown contact event type: %s", event.type)

    finish_sync_log(log)
    await db.commit()
    return {"success": True}

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.models.contact import ContactSyncLog
from app.schemas.webhook import ContactSyncLogResponse, ContactSyncRequest
from app.services.credentials import get_active_integration
from app.worker import sync_contacts_task

router = APIRouter(prefix="/api/contacts", tags=["contacts"])

DbSession = Annotated[AsyncSession, Depends(get_db)]


@router.post("/sync", status_code=202)
async def trigger_contact_sync(payload: ContactSyncRequest, db: DbSession) -> dict:
    """Queue a full contact cache refresh for a user."""
    integration = await get_active_integration(db, payload.user_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="GoHighLevel integration not found")
    task = sync_contacts_task.delay(payload.user_id)
    return {"status": "queued", "task_id": task.id, "user_id": payload.user_id}


@router.get("/sync/logs", response_model=list[ContactSyncLogResponse])
async def list_sync_logs(
    db: DbSession, user_id: str, limit: int = 20
) -> list[ContactSyncLog]:
    """Most recent contact sync operations for a user."""
    result = await db.execute(
        select(ContactSyncLog)
        .where(ContactSyncLog.user_id == user_id)
        .order_by(ContactSyncLog.id.desc())
        .limit(min(limit, 100))
    )
    return list(result.scalars().all())

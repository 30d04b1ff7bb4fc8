import asyncio
import logging

from celery import Celery
from celery.schedules import crontab
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery("ghl_assistant", broker=settings.redis_url)

celery_app.conf.beat_schedule = {
    "sync-all-contacts-nightly": {
        "task": "app.worker.sync_all_contacts",
        "schedule": crontab(hour=3, minute=0),
    },
}
celery_app.conf.timezone = "UTC"


def _get_async_session() -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(settings.database_url)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@celery_app.task(name="app.worker.sync_contacts")
def sync_contacts_task(user_id: str) -> None:
    """Celery task to refresh one user's contact cache from GoHighLevel."""
    asyncio.run(_run_contact_sync(user_id))


@celery_app.task(name="app.worker.sync_all_contacts")
def sync_all_contacts() -> None:
    """Celery task to refresh the contact cache for every active integration."""
    asyncio.run(_run_all_contact_syncs())


async def _run_contact_sync(user_id: str) -> None:
    from app.services.contact_sync import sync_contacts_for_user

    session_factory = _get_async_session()
    async with session_factory() as db:
        log = await sync_contacts_for_user(db, user_id)
        logger.info(
            "Contact sync %d for user %s finished: status=%s processed=%d",
            log.id,
            user_id,
            log.status,
            log.contacts_processed,
        )


async def _run_all_contact_syncs() -> None:
    from sqlalchemy import distinct, select

    from app.models.integration import Integration
    from app.services.credentials import GHL_INTEGRATION_TYPE, MissingCredentialsError

    session_factory = _get_async_session()
    async with session_factory() as db:
        result = await db.execute(
            select(distinct(Integration.user_id)).where(
                Integration.type == GHL_INTEGRATION_TYPE,
                Integration.is_active.is_(True),
            )
        )
        user_ids = result.scalars().all()

    for user_id in user_ids:
        try:
            await _run_contact_sync(user_id)
        except MissingCredentialsError as exc:
            logger.info("Skipping contact sync for user %s: %s", user_id, exc.guidance)
        except Exception as exc:
            logger.error("Contact sync failed for user %s: %s", user_id, exc)

from app.models.contact import ContactSyncLog, GHLContact
from app.models.integration import Integration, UserApiKey

__all__ = [
    "ContactSyncLog",
    "GHLContact",
    "Integration",
    "UserApiKey",
]

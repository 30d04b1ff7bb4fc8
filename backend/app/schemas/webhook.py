from pydantic import BaseModel, ConfigDict, Field


class ContactWebhook(BaseModel):
    """GoHighLevel contact event as delivered to the webhook endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    type: str  # contact.create, contact.update, contact.delete
    location_id: str = Field(alias="locationId")
    contact_id: str | None = Field(default=None, alias="contactId")
    id: str | None = None  # event id
    contact: dict | None = None


class ContactSyncRequest(BaseModel):
    user_id: str


class ContactSyncLogResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    sync_type: str
    status: str
    contacts_processed: int
    contacts_created: int
    contacts_updated: int
    contacts_deleted: int
    error_message: str | None

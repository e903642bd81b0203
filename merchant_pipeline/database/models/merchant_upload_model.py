from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from uuid import uuid4

from merchant_pipeline.schemas.merchant_schema import UploadTypeEnum


class MerchantUpload(Document):
    upload_id: str = Field(default_factory=lambda: str(uuid4()))
    application_id: str = Field(..., description="Owning merchant application")
    document_type: str = Field(..., description="Document key, e.g. businessLicense or voidedCheck")
    file_url: str = Field(..., description="Public URL of the stored file or the agent-supplied link")
    upload_type: UploadTypeEnum = Field(UploadTypeEnum.file, description="file for stored uploads, url for external links")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "merchant_uploads"
        indexes = ["application_id"]

from beanie import Document
from pydantic import Field
from typing import List, Optional
from datetime import datetime, timezone
from uuid import uuid4


class FileUploadRequest(Document):
    request_id: str = Field(default_factory=lambda: str(uuid4()))
    application_id: str = Field(..., description="Application the merchant is asked to add files to")
    requested_files: List[str] = Field(default_factory=list, description="Document keys the merchant must provide")
    requested_by: Optional[str] = Field(None, description="Email of the agent who opened the request")
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    class Settings:
        name = "file_upload_requests"
        indexes = ["application_id"]

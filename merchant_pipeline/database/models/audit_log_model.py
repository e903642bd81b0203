from beanie import Document
from pydantic import Field
from datetime import datetime, timezone
from typing import Optional, Dict, Any


class AuditLog(Document):
    action: str = Field(..., description="Action performed (e.g. 'application_submitted', 'status_changed')")
    actor: Optional[str] = Field(None, description="Email of the agent or merchant who performed the action")
    application_id: Optional[str] = Field(None, description="Application acted upon")
    details: Dict[str, Any] = Field(default_factory=dict, description="Action specific context such as old and new status")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="When the action occurred")
    status: str = Field("successful", description="Result status: 'successful' or 'failed'")

    class Settings:
        name = "audit_logs"

    class Config:
        json_encoders = {datetime: lambda v: v.isoformat()}

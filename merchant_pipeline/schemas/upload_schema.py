from pydantic import BaseModel, Field
from enum import Enum
from typing import List, Dict, Optional

from merchant_pipeline.schemas.merchant_schema import UploadStatusEnum


class UploadOutcomeStatus(str, Enum):
    succeeded = "succeeded"
    skipped_too_large = "skipped-too-large"
    failed = "failed"


class FilePayload(BaseModel):
    document_type: str = Field(..., description="Document key taken from the form part name, e.g. businessLicense")
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


class UploadOutcome(BaseModel):
    document_type: str
    filename: str
    status: UploadOutcomeStatus
    url: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0

    def summary_line(self, max_mb: int = 8) -> str:
        if self.status == UploadOutcomeStatus.skipped_too_large:
            return f"{self.document_type}: {self.filename} (too large - max {max_mb}MB)"
        return f"{self.document_type}: {self.filename}"


class UploadSummary(BaseModel):
    outcomes: List[UploadOutcome] = Field(default_factory=list)
    max_mb: int = 8

    @property
    def uploaded(self) -> Dict[str, str]:
        return {o.document_type: o.url for o in self.outcomes if o.status == UploadOutcomeStatus.succeeded}

    @property
    def failed(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if o.status == UploadOutcomeStatus.failed]

    @property
    def skipped(self) -> List[UploadOutcome]:
        return [o for o in self.outcomes if o.status == UploadOutcomeStatus.skipped_too_large]

    @property
    def upload_status(self) -> UploadStatusEnum:
        if self.failed or self.skipped:
            return UploadStatusEnum.partial
        return UploadStatusEnum.complete

    @property
    def error_messages(self) -> List[str]:
        return [o.summary_line(self.max_mb) for o in self.failed + self.skipped]

    def upload_errors(self) -> Optional[str]:
        messages = self.error_messages
        return "; ".join(messages) if messages else None

    def to_response(self) -> dict:
        return {
            "successful": len(self.uploaded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "errors": [o.summary_line(self.max_mb) for o in self.failed],
            "skippedFiles": [o.summary_line(self.max_mb) for o in self.skipped],
        }

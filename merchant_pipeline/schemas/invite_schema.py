from pydantic import BaseModel, Field
from typing import List


class FailedInvite(BaseModel):
    email: str
    error: str


class BatchInviteResult(BaseModel):
    total: int = 0
    successful: List[str] = Field(default_factory=list)
    failed: List[FailedInvite] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        message = f"Successfully sent {len(self.successful)} invites"
        if self.skipped:
            message += f", skipped {len(self.skipped)} existing invites"
        if self.failed:
            message += f", {len(self.failed)} failed"
        return message

    def to_response(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "results": {
                "total": self.total,
                "successful": len(self.successful),
                "failed": len(self.failed),
                "skipped": len(self.skipped),
                "successfulEmails": self.successful,
                "failedEmails": [item.model_dump() for item in self.failed],
                "skippedEmails": self.skipped,
            },
        }

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set, Tuple

from fastapi import HTTPException
from pymongo import DESCENDING

from merchant_pipeline.core.exceptions import (
    ApplicationNotFoundError,
    InvalidStatusTransition,
    PersistenceError,
    PreconditionError,
)
from merchant_pipeline.database.models import MerchantApplication, MerchantUpload, FileUploadRequest
from merchant_pipeline.schemas.merchant_schema import (
    ApplicationStatusEnum,
    MerchantApplicationData,
    UploadTypeEnum,
    can_transition,
)

logger = logging.getLogger(__name__)

# Never copied onto a resent application
RESEND_EXCLUDED_FIELDS = {
    "id",
    "revision_id",
    "application_id",
    "status",
    "created_at",
    "updated_at",
    "opened_at",
    "submitted_at",
    "status_updated_at",
    "upload_status",
    "upload_errors",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore:
    """System of record for merchant applications and their uploads.

    Every write failure is raised as ``PersistenceError``; it is the only
    error class allowed to abort a pipeline request after ingress.
    """

    @contextmanager
    def _persistence(self, operation: str):
        try:
            yield
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"Record store {operation} failed: {str(e)}", exc_info=True)
            raise PersistenceError(f"Failed to {operation}", e) from e

    # Inserts a new application or applies a field-level update to an existing one
    async def upsert(
        self,
        data: MerchantApplicationData,
        status: ApplicationStatusEnum,
        agent_email: Optional[str] = None,
        agent_name: Optional[str] = None,
    ) -> MerchantApplication:
        fields = data.record_fields()
        now = _now()

        with self._persistence("save merchant application"):
            if data.id:
                record = await self.get(data.id)
                self._check_transition(record, status)

                # The owning agent is assigned at creation and only changed by reassignment
                fields.pop("agent_email", None)
                fields.pop("agent_name", None)
                for name, value in fields.items():
                    setattr(record, name, value)
                self._apply_status(record, status, now)
                record.updated_at = now
                await record.save()
                logger.info(f"Updated merchant application {record.application_id}")
                return record

            fields["agent_email"] = agent_email or fields.get("agent_email")
            fields["agent_name"] = agent_name or fields.get("agent_name")
            record = MerchantApplication(**fields, status=status, created_at=now, updated_at=now)
            self._apply_status(record, status, now)
            await record.insert()
            logger.info(f"Inserted merchant application {record.application_id}")
            return record

    # Deletes every upload row of an application, then inserts the fresh set
    async def replace_children(self, application_id: str, uploads: Iterable[Tuple[str, str, UploadTypeEnum]]) -> List[MerchantUpload]:
        rows = [
            MerchantUpload(application_id=application_id, document_type=doc_type, file_url=url, upload_type=upload_type)
            for doc_type, url, upload_type in uploads
        ]
        with self._persistence("replace merchant uploads"):
            await MerchantUpload.find(MerchantUpload.application_id == application_id).delete()
            if rows:
                await MerchantUpload.insert_many(rows)
        logger.info(f"Replaced uploads for application {application_id} with {len(rows)} rows")
        return rows

    async def set_upload_result(self, record: MerchantApplication, upload_status, upload_errors: Optional[str]) -> None:
        with self._persistence("record upload status"):
            record.upload_status = upload_status
            record.upload_errors = upload_errors
            await record.save()

    async def get(self, application_id: str) -> MerchantApplication:
        with self._persistence("load merchant application"):
            record = await MerchantApplication.find_one(MerchantApplication.application_id == application_id)
        if record is None:
            raise ApplicationNotFoundError(application_id)
        return record

    # Returns the subset of emails that already have an outstanding invite
    async def find_invited_emails(self, emails: List[str]) -> Set[str]:
        if not emails:
            return set()
        with self._persistence("look up existing invites"):
            existing = await MerchantApplication.find(
                {"dba_email": {"$in": list(emails)}, "status": ApplicationStatusEnum.invited.value}
            ).to_list()
        return {record.dba_email for record in existing if record.dba_email}

    async def create_invite(
        self,
        agent_email: str,
        agent_name: Optional[str] = None,
        merchant_email: Optional[str] = None,
        status: ApplicationStatusEnum = ApplicationStatusEnum.invited,
    ) -> MerchantApplication:
        now = _now()
        record = MerchantApplication(
            agent_email=agent_email,
            agent_name=agent_name,
            dba_email=merchant_email.lower() if merchant_email else None,
            status=status,
            created_at=now,
            updated_at=now,
            status_updated_at=now,
        )
        with self._persistence("create invite"):
            await record.insert()
        logger.info(f"Created {status.value} application {record.application_id} for agent {agent_email}")
        return record

    # Partial update used by drafts and agent pre-fill; never touches status
    async def update_fields(self, application_id: str, data: MerchantApplicationData) -> MerchantApplication:
        record = await self.get(application_id)
        fields = data.record_fields(include_unset=False)
        with self._persistence("update merchant application"):
            for name, value in fields.items():
                setattr(record, name, value)
            record.updated_at = _now()
            await record.save()
        return record

    async def update_status(self, application_id: str, status: ApplicationStatusEnum) -> Tuple[MerchantApplication, ApplicationStatusEnum]:
        record = await self.get(application_id)
        previous = record.status
        self._check_transition(record, status)
        with self._persistence("update application status"):
            now = _now()
            self._apply_status(record, status, now)
            record.updated_at = now
            await record.save()
        logger.info(f"Application {application_id} status {previous} -> {status.value}")
        return record, previous

    async def update_notes(self, application_id: str, notes: List[dict]) -> MerchantApplication:
        record = await self.get(application_id)
        with self._persistence("update application notes"):
            record.notes = notes
            record.updated_at = _now()
            await record.save()
        return record

    async def update_agent(self, application_id: str, agent_email: Optional[str], agent_name: Optional[str]) -> MerchantApplication:
        if not agent_email and not agent_name:
            raise PreconditionError("agentEmail or agentName is required")
        record = await self.get(application_id)
        with self._persistence("reassign application agent"):
            if agent_email:
                record.agent_email = agent_email.strip().lower()
            if agent_name:
                record.agent_name = agent_name
            record.updated_at = _now()
            await record.save()
        return record

    # Copies an application into a fresh invited record and retires the old one
    async def clone_for_resend(self, application_id: str) -> Tuple[MerchantApplication, MerchantApplication]:
        old = await self.get(application_id)
        self._check_transition(old, ApplicationStatusEnum.resent)
        now = _now()
        copied = old.model_dump(exclude=RESEND_EXCLUDED_FIELDS)
        with self._persistence("resend application"):
            fresh = MerchantApplication(
                **copied,
                status=ApplicationStatusEnum.invited,
                created_at=now,
                updated_at=now,
                status_updated_at=now,
            )
            await fresh.insert()
            self._apply_status(old, ApplicationStatusEnum.resent, now)
            old.updated_at = now
            await old.save()
        logger.info(f"Resent application {application_id} as {fresh.application_id}")
        return old, fresh

    async def mark_opened(self, application_id: str) -> MerchantApplication:
        record = await self.get(application_id)
        if record.status == ApplicationStatusEnum.invited:
            record, _ = await self.update_status(application_id, ApplicationStatusEnum.opened)
        return record

    async def delete(self, application_id: str) -> None:
        record = await self.get(application_id)
        with self._persistence("delete merchant application"):
            await MerchantUpload.find(MerchantUpload.application_id == application_id).delete()
            await FileUploadRequest.find(FileUploadRequest.application_id == application_id).delete()
            await record.delete()
        logger.info(f"Deleted merchant application {application_id}")

    async def list_applications(
        self,
        agent_email: Optional[str],
        page: int = 1,
        limit: int = 20,
        status: Optional[ApplicationStatusEnum] = None,
    ) -> Tuple[List[MerchantApplication], int]:
        """Page through applications, newest first.

        ``agent_email`` of None lists every application (admin view).
        """
        query = {}
        if agent_email:
            query["agent_email"] = agent_email
        if status:
            query["status"] = status.value
        with self._persistence("list merchant applications"):
            finder = MerchantApplication.find(query)
            total = await finder.count()
            rows = await (
                MerchantApplication.find(query)
                .sort([("created_at", DESCENDING)])
                .skip((page - 1) * limit)
                .limit(limit)
                .to_list()
            )
        return rows, total

    async def list_invites(self, agent_email: str, limit: int = 50) -> List[MerchantApplication]:
        with self._persistence("list agent invites"):
            return await (
                MerchantApplication.find(MerchantApplication.agent_email == agent_email)
                .sort([("created_at", DESCENDING)])
                .limit(limit)
                .to_list()
            )

    # Uploads grouped by application, keyed by document type
    async def list_uploads(self, application_ids: List[str]) -> Dict[str, Dict[str, dict]]:
        grouped: Dict[str, Dict[str, dict]] = {app_id: {} for app_id in application_ids}
        if not application_ids:
            return grouped
        with self._persistence("list merchant uploads"):
            rows = await MerchantUpload.find({"application_id": {"$in": list(application_ids)}}).to_list()
        for row in rows:
            grouped.setdefault(row.application_id, {})[row.document_type] = {
                "file_url": row.file_url,
                "upload_type": row.upload_type.value if hasattr(row.upload_type, "value") else row.upload_type,
            }
        return grouped

    # ---- file upload requests -------------------------------------------

    async def create_upload_request(self, application_id: str, requested_files: List[str], requested_by: Optional[str]) -> FileUploadRequest:
        if not requested_files:
            raise PreconditionError("requestedFiles must not be empty")
        await self.get(application_id)
        request = FileUploadRequest(application_id=application_id, requested_files=requested_files, requested_by=requested_by)
        with self._persistence("create upload request"):
            await request.insert()
        return request

    async def get_upload_request(self, request_id: str) -> FileUploadRequest:
        with self._persistence("load upload request"):
            request = await FileUploadRequest.find_one(FileUploadRequest.request_id == request_id)
        if request is None:
            raise PreconditionError(f"Upload request {request_id} not found", 404)
        return request

    async def complete_upload_request(self, request_id: str, files: List[Tuple[str, str]]) -> FileUploadRequest:
        request = await self.get_upload_request(request_id)
        if not request.is_active:
            raise PreconditionError("This upload request is no longer active")
        if not files:
            raise PreconditionError("No files provided")
        unexpected = sorted({doc_type for doc_type, _ in files} - set(request.requested_files))
        if unexpected:
            raise PreconditionError(f"Documents not requested: {', '.join(unexpected)}")

        # One row per (application, document type); the last link given for a type wins
        latest = dict(files)
        rows = [
            MerchantUpload(application_id=request.application_id, document_type=doc_type, file_url=url, upload_type=UploadTypeEnum.file)
            for doc_type, url in latest.items()
        ]
        with self._persistence("complete upload request"):
            await MerchantUpload.find(
                {"application_id": request.application_id, "document_type": {"$in": list(latest)}}
            ).delete()
            await MerchantUpload.insert_many(rows)
            request.is_active = False
            request.completed_at = _now()
            await request.save()
        return request

    # ---- helpers ----------------------------------------------------------

    def _check_transition(self, record: MerchantApplication, target: ApplicationStatusEnum) -> None:
        if not can_transition(record.status, target):
            current = record.status.value if hasattr(record.status, "value") else record.status
            raise InvalidStatusTransition(current, target.value)

    def _apply_status(self, record: MerchantApplication, status: ApplicationStatusEnum, now: datetime) -> None:
        if record.status != status or record.status_updated_at is None:
            record.status_updated_at = now
        record.status = status
        if status == ApplicationStatusEnum.opened and record.opened_at is None:
            record.opened_at = now
        if status == ApplicationStatusEnum.submitted:
            record.submitted_at = now

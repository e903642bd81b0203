import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from merchant_pipeline.core.auth_dependencies import AgentIdentity
from merchant_pipeline.core.exceptions import InvalidStatusTransition, PreconditionError
from merchant_pipeline.database.models import MerchantApplication
from merchant_pipeline.helpers.response_builder import build_application_response, record_to_data
from merchant_pipeline.schemas.merchant_schema import (
    ApplicationStatusEnum,
    DraftRequest,
    EventAction,
    GenerateInviteRequest,
    MerchantApplicationData,
    PrefillRequest,
)
from merchant_pipeline.services.audit_service import AuditService
from merchant_pipeline.services.crm_mirror_sync import CrmMirrorSync
from merchant_pipeline.services.email_templates import invite_email, invite_link, prefill_ready_email, renewed_invite_email
from merchant_pipeline.services.notification_dispatcher import NotificationDispatcher
from merchant_pipeline.services.record_store import RecordStore
from merchant_pipeline.services.webhook_notifier import WebhookNotifier
from merchant_pipeline.utils.email_utils import is_valid_email, normalize_emails

logger = logging.getLogger(__name__)


class ApplicationService:
    """Agent and admin lifecycle actions around a merchant application.

    Record store writes happen first and may abort the request; mirror,
    webhook and email effects run afterwards and are only reported.
    """

    def __init__(
        self,
        record_store: RecordStore,
        crm: CrmMirrorSync,
        webhooks: WebhookNotifier,
        notifier: NotificationDispatcher,
        audit: AuditService,
        invite_base_url: str,
        admin_email: str,
    ):
        self.record_store = record_store
        self.crm = crm
        self.webhooks = webhooks
        self.notifier = notifier
        self.audit = audit
        self.invite_base_url = invite_base_url
        self.admin_email = admin_email

    def link_for(self, application_id: str) -> str:
        return invite_link(self.invite_base_url, application_id)

    # Agents may only touch their own applications; admins may touch any
    def ensure_access(self, record: MerchantApplication, agent: AgentIdentity) -> None:
        if agent.is_admin:
            return
        if (record.agent_email or "").lower() != agent.email:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this application")

    # Creates a draft (agent pre-fill) or an invited application (direct invite)
    async def generate_invite(self, request: GenerateInviteRequest, agent: AgentIdentity) -> Dict[str, Any]:
        merchant_email = (request.merchant_email or "").strip().lower() or None
        if merchant_email and not is_valid_email(merchant_email):
            raise PreconditionError("Invalid merchant email address")

        initial_status = ApplicationStatusEnum.invited if merchant_email else ApplicationStatusEnum.draft
        record = await self.record_store.create_invite(
            agent_email=agent.email,
            agent_name=request.agent_name or agent.name,
            merchant_email=merchant_email,
            status=initial_status,
        )

        if initial_status == ApplicationStatusEnum.draft:
            self.webhooks.notify("merchant_application_draft", {
                "status": "merchant_application_draft",
                "agent_email": agent.email,
                "merchant_email": merchant_email,
            })

        mirrored = await self.crm.sync(
            record.application_id,
            EventAction.invite_created,
            record_to_data(record),
            agent_email=agent.email,
            merchant_email=merchant_email,
        )
        return {
            "success": True,
            "inviteId": record.application_id,
            "status": initial_status.value,
            "link": self.link_for(record.application_id),
            "satellites": {"crm_mirror": mirrored},
        }

    async def send_invite(self, application_id: str, emails: List[Any], agent: AgentIdentity) -> Dict[str, Any]:
        """Email the invite link to each merchant address, copying the ops inbox.

        Each address is emailed and announced to the webhook on its own; a
        failed delivery is reported per recipient and never fails the request.
        """
        recipients = normalize_emails(emails)
        if not recipients:
            raise PreconditionError("No valid emails provided")
        record = await self.record_store.get(application_id)
        self.ensure_access(record, agent)

        link = self.link_for(application_id)
        notifications = await self.notifier.send(recipients, invite_email(link), cc=[self.admin_email])
        failed = [email for email in recipients if notifications.get(email) is not None]
        delivered = len(recipients) - len(failed)
        logger.info(f"Invite {application_id} sent to {delivered}/{len(recipients)} recipients")

        now = datetime.now(timezone.utc).isoformat()
        for email in recipients:
            self.webhooks.notify("merchant_application_draft", {
                "status": "merchant_application_draft",
                "agent_email": agent.email,
                "merchant_email": email,
                "timestamp": now,
            })

        if delivered and record.status == ApplicationStatusEnum.draft:
            record = await self._advance_to_invited(application_id, record)

        mirrored = await self.crm.sync(
            application_id,
            EventAction.invite_sent,
            record_to_data(record),
            agent_email=record.agent_email,
            merchant_email=record.dba_email or recipients[0],
        )
        return {
            "success": True,
            "message": f"Invite sent successfully to {delivered}/{len(recipients)} recipients!",
            "status": record.status.value,
            "link": link,
            "failedEmails": failed,
            "satellites": {"crm_mirror": mirrored, "notifications": notifications},
        }

    async def save_prefill(self, application_id: str, request: PrefillRequest, agent: AgentIdentity) -> Dict[str, Any]:
        """Store agent pre-filled data (sensitive fields stripped) and optionally send it to the merchant."""
        if request.action not in ("save", "send"):
            raise PreconditionError("action must be 'save' or 'send'")
        record = await self.record_store.get(application_id)
        self.ensure_access(record, agent)

        form = dict(request.form_data)
        if request.principals is not None:
            form["principals"] = request.principals
        merchant_email = (request.merchant_email or "").strip().lower() or None
        if merchant_email:
            form["dbaEmail"] = merchant_email
        if request.action == "send" and not (merchant_email or record.dba_email):
            raise PreconditionError("merchantEmail is required to send the application")

        data = MerchantApplicationData.model_validate(form).without_sensitive_fields()
        record = await self.record_store.update_fields(application_id, data)
        merchant_email = merchant_email or record.dba_email
        link = self.link_for(application_id)

        sending = request.action == "send"
        self.webhooks.notify("merchant_application_prefill", {
            "status": "merchant_application_sent" if sending else "merchant_application_prefilled",
            "agent_email": agent.email,
            "merchant_email": merchant_email or "",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        notifications: Dict[str, Optional[str]] = {}
        if sending:
            notifications = await self.notifier.send(
                [merchant_email, self.admin_email],
                prefill_ready_email(link, data.terminals),
            )
            if notifications.get(merchant_email) is None:
                record = await self._advance_to_invited(application_id, record)

        mirrored = await self.crm.sync(
            application_id,
            EventAction.invite_sent if sending else EventAction.prefill_saved,
            record_to_data(record),
            agent_email=record.agent_email,
            merchant_email=merchant_email,
        )
        return {
            "success": True,
            "link": link,
            "status": record.status.value,
            "satellites": {"crm_mirror": mirrored, "notifications": notifications},
        }

    async def _advance_to_invited(self, application_id: str, record: MerchantApplication) -> MerchantApplication:
        try:
            record, _ = await self.record_store.update_status(application_id, ApplicationStatusEnum.invited)
        except InvalidStatusTransition:
            logger.info(f"Application {application_id} already past invited ({record.status}); status kept")
        return record

    # Partial save from the merchant or agent wizard; never moves status
    async def save_draft(self, application_id: str, request: DraftRequest, agent: AgentIdentity) -> Dict[str, Any]:
        record = await self.record_store.get(application_id)
        self.ensure_access(record, agent)
        form = dict(request.form_data)
        if request.principals is not None:
            form["principals"] = request.principals
        data = MerchantApplicationData.model_validate(form)
        record = await self.record_store.update_fields(application_id, data)
        return {"success": True, "applicationId": application_id, "status": record.status.value}

    async def resend_invite(self, expired_application_id: str, agent: AgentIdentity) -> Dict[str, Any]:
        old, fresh = await self.record_store.clone_for_resend(expired_application_id)
        await self.audit.record(
            action="invite_resent",
            actor=agent.email,
            application_id=expired_application_id,
            details={"new_application_id": fresh.application_id},
        )

        notifications: Dict[str, Optional[str]] = {}
        if fresh.dba_email and is_valid_email(fresh.dba_email):
            notifications = await self.notifier.send(
                [fresh.dba_email, self.admin_email],
                renewed_invite_email(self.link_for(fresh.application_id)),
            )
        else:
            logger.warning(f"Resent application {fresh.application_id} has no valid merchant email; no email sent")

        return {
            "success": True,
            "newInviteId": fresh.application_id,
            "link": self.link_for(fresh.application_id),
            "satellites": {"notifications": notifications},
        }

    # Merchant opened their invite link
    async def open_application(self, application_id: str) -> Dict[str, Any]:
        record = await self.record_store.mark_opened(application_id)
        if record.status == ApplicationStatusEnum.resent:
            raise HTTPException(status_code=status.HTTP_410_GONE, detail="This application link has been replaced by a newer invite")
        uploads = await self.record_store.list_uploads([application_id])
        return build_application_response(record, uploads.get(application_id, {}))

    async def update_status(self, application_id: str, new_status: ApplicationStatusEnum, agent: AgentIdentity) -> Dict[str, Any]:
        record, previous = await self.record_store.update_status(application_id, new_status)
        await self.audit.record(
            action="status_changed",
            actor=agent.email,
            application_id=application_id,
            details={"from": getattr(previous, "value", previous), "to": new_status.value},
        )
        return {"success": True, "applicationId": application_id, "status": record.status.value}

    async def update_notes(self, application_id: str, notes: List[dict], agent: AgentIdentity) -> Dict[str, Any]:
        record = await self.record_store.get(application_id)
        self.ensure_access(record, agent)
        record = await self.record_store.update_notes(application_id, notes)
        return {"success": True, "notes": record.notes}

    async def update_agent(self, application_id: str, agent_email: Optional[str], agent_name: Optional[str], agent: AgentIdentity) -> Dict[str, Any]:
        record = await self.record_store.update_agent(application_id, agent_email, agent_name)
        await self.audit.record(
            action="agent_reassigned",
            actor=agent.email,
            application_id=application_id,
            details={"agent_email": record.agent_email, "agent_name": record.agent_name},
        )
        return {"success": True, "agentEmail": record.agent_email, "agentName": record.agent_name}

    async def delete_application(self, application_id: str, agent: AgentIdentity) -> Dict[str, Any]:
        await self.record_store.delete(application_id)
        await self.audit.record(action="application_deleted", actor=agent.email, application_id=application_id)
        return {"success": True}

    async def list_applications(
        self,
        agent: AgentIdentity,
        page: int,
        limit: int,
        status_filter: Optional[ApplicationStatusEnum] = None,
    ) -> Dict[str, Any]:
        rows, total = await self.record_store.list_applications(
            None if agent.is_admin else agent.email, page=page, limit=limit, status=status_filter
        )
        uploads = await self.record_store.list_uploads([row.application_id for row in rows])
        return {
            "data": [build_application_response(row, uploads.get(row.application_id, {})) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "totalPages": (total + limit - 1) // limit if limit else 0,
            },
        }

    async def list_invites(self, agent: AgentIdentity) -> Dict[str, Any]:
        rows = await self.record_store.list_invites(agent.email)
        return {
            "invites": [
                {
                    "id": row.application_id,
                    "merchant_email": row.dba_email,
                    "dba_name": row.dba_name,
                    "status": row.status.value,
                    "created_at": row.created_at.isoformat() if row.created_at else None,
                    "link": self.link_for(row.application_id),
                }
                for row in rows
            ]
        }

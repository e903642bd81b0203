import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple

from merchant_pipeline.core.auth_dependencies import AgentIdentity
from merchant_pipeline.core.config import Settings
from merchant_pipeline.core.exceptions import PreconditionError
from merchant_pipeline.database.models import MerchantApplication
from merchant_pipeline.schemas.invite_schema import BatchInviteResult, FailedInvite
from merchant_pipeline.schemas.merchant_schema import ApplicationStatusEnum, SendStrategy
from merchant_pipeline.services.email_templates import batch_failure_email, invite_email, invite_link
from merchant_pipeline.services.notification_dispatcher import NotificationDispatcher, mask_email
from merchant_pipeline.services.record_store import RecordStore
from merchant_pipeline.services.webhook_notifier import WebhookNotifier
from merchant_pipeline.utils.email_utils import normalize_emails

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

DRAFT_WEBHOOK_STATUS = "merchant_application_draft"


class BatchInviteDispatcher:
    """Creates invited applications for many merchant emails and mails the links.

    Addresses are processed in fixed-size batches. Inside a batch the record
    creation fans out concurrently; batches run one after another with a
    short pause in between. ``grouped`` strategy sends one provider batch call
    per batch and falls back to per-address sends if that call fails;
    ``sequential`` always sends per address.
    """

    def __init__(
        self,
        record_store: RecordStore,
        notifier: NotificationDispatcher,
        webhooks: WebhookNotifier,
        invite_base_url: str,
        batch_size: int = 10,
        batch_delay_seconds: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ):
        self.record_store = record_store
        self.notifier = notifier
        self.webhooks = webhooks
        self.invite_base_url = invite_base_url
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, record_store, notifier, webhooks, sleep: Sleep = asyncio.sleep) -> "BatchInviteDispatcher":
        return cls(
            record_store,
            notifier,
            webhooks,
            invite_base_url=settings.INVITE_BASE_URL,
            batch_size=settings.INVITE_BATCH_SIZE,
            batch_delay_seconds=settings.INVITE_BATCH_DELAY_SECONDS,
            sleep=sleep,
        )

    async def dispatch(
        self,
        raw_inputs: Iterable[Any],
        agent: AgentIdentity,
        strategy: SendStrategy = SendStrategy.grouped,
    ) -> BatchInviteResult:
        emails = normalize_emails(raw_inputs)
        if not emails:
            raise PreconditionError("No valid email addresses found")

        result = BatchInviteResult(total=len(emails))

        existing = await self.record_store.find_invited_emails(emails)
        result.skipped = [email for email in emails if email in existing]
        pending = [email for email in emails if email not in existing]
        logger.info(
            f"Batch invite by {agent.email}: {len(pending)} new, {len(result.skipped)} already invited "
            f"(strategy={SendStrategy(strategy).value})"
        )

        batches = [pending[i:i + self.batch_size] for i in range(0, len(pending), self.batch_size)]
        for index, batch in enumerate(batches):
            await self._process_batch(batch, agent, SendStrategy(strategy), result)
            if index < len(batches) - 1:
                await self._sleep(self.batch_delay_seconds)

        if result.failed:
            await self._report_failures(agent, result)

        logger.info(f"Batch invite finished: {result.message}")
        return result

    async def _process_batch(self, batch: List[str], agent: AgentIdentity, strategy: SendStrategy, result: BatchInviteResult) -> None:
        created = await asyncio.gather(*(self._create_invite(email, agent) for email in batch))

        items: List[Tuple[str, MerchantApplication]] = []
        for email, record, error in created:
            if error:
                result.failed.append(FailedInvite(email=email, error=error))
            else:
                items.append((email, record))
        if not items:
            return

        if strategy == SendStrategy.grouped:
            try:
                errors = await self.notifier.send_batch(
                    [(email, invite_email(invite_link(self.invite_base_url, record.application_id))) for email, record in items]
                )
            except Exception as e:
                logger.error(f"Grouped invite send failed, falling back to individual sends: {str(e)}")
            else:
                for (email, _), error in zip(items, errors):
                    if error:
                        logger.warning(f"Invite to {mask_email(email)} rejected by provider: {error}")
                        result.failed.append(FailedInvite(email=email, error=error))
                    else:
                        self._mark_sent(email, agent, result)
                return

        for email, record in items:
            try:
                await self.notifier.send_with_retry(email, invite_email(invite_link(self.invite_base_url, record.application_id)))
            except Exception as e:
                result.failed.append(FailedInvite(email=email, error=str(e)))
            else:
                self._mark_sent(email, agent, result)

    async def _create_invite(self, email: str, agent: AgentIdentity) -> Tuple[str, Optional[MerchantApplication], Optional[str]]:
        try:
            record = await self.record_store.create_invite(
                agent_email=agent.email,
                agent_name=agent.name,
                merchant_email=email,
                status=ApplicationStatusEnum.invited,
            )
            return email, record, None
        except Exception as e:
            message = getattr(e, "detail", None) or str(e)
            logger.error(f"Failed to create invite row for {mask_email(email)}: {message}")
            return email, None, message

    def _mark_sent(self, email: str, agent: AgentIdentity, result: BatchInviteResult) -> None:
        result.successful.append(email)
        self.webhooks.notify(DRAFT_WEBHOOK_STATUS, {
            "status": DRAFT_WEBHOOK_STATUS,
            "agent_email": agent.email,
            "merchant_email": email,
        })

    # One summary email to the initiating agent, not retried
    async def _report_failures(self, agent: AgentIdentity, result: BatchInviteResult) -> None:
        template = batch_failure_email(
            len(result.successful),
            [item.model_dump() for item in result.failed],
        )
        report = await self.notifier.send([agent.email], template)
        if report.get(agent.email):
            logger.error(f"Failed to send batch failure summary to {mask_email(agent.email)}")

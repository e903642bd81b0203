import asyncio
import logging
from typing import Any, Dict, List, Tuple

from merchant_pipeline.core.service_container import ServiceContainer
from merchant_pipeline.schemas.merchant_schema import (
    ApplicationStatusEnum,
    EventAction,
    MerchantApplicationData,
    UploadTypeEnum,
)
from merchant_pipeline.schemas.upload_schema import FilePayload, UploadSummary
from merchant_pipeline.services.email_templates import submission_admin_email, submission_merchant_email
from merchant_pipeline.utils.crm_field_utils import build_submission_payload

logger = logging.getLogger(__name__)

SUBMISSION_WEBHOOK_EVENT = "merchant_application_submitted"


def collect_upload_rows(data: MerchantApplicationData, uploaded: Dict[str, str]) -> List[Tuple[str, str, UploadTypeEnum]]:
    """One row per document type; files stored in this request win over earlier references."""
    rows: Dict[str, Tuple[str, str, UploadTypeEnum]] = {}
    for doc_type, ref in data.uploads.items():
        if ref.url:
            rows[doc_type] = (doc_type, ref.url, ref.upload_type)
    for doc_type, url in uploaded.items():
        rows[doc_type] = (doc_type, url, UploadTypeEnum.file)
    return list(rows.values())


async def process_submission(
    data: MerchantApplicationData,
    files: List[FilePayload],
    services: ServiceContainer,
) -> Dict[str, Any]:
    """
    Orchestrates a merchant application submission.

    Documents are stored first, then the application and its upload rows are
    committed. A record store failure raises and nothing else runs. Once the
    commit succeeds the CRM mirror, webhook and emails run concurrently and
    their failures are only reported in the response.
    """
    logger.info(f"Starting submission for application {data.id or '<new>'} with {len(files)} files")

    upload_summary: UploadSummary = await services.uploads.upload_all(files, actor=data.dba_email)

    record = await services.record_store.upsert(
        data,
        ApplicationStatusEnum.submitted,
        agent_email=data.agent_email,
        agent_name=data.agent_name,
    )
    application_id = record.application_id
    await services.record_store.set_upload_result(record, upload_summary.upload_status, upload_summary.upload_errors())

    uploaded = upload_summary.uploaded
    await services.record_store.replace_children(application_id, collect_upload_rows(data, uploaded))
    logger.info(f"Application {application_id} committed (uploads: {upload_summary.upload_status.value})")

    satellites = await run_satellites(application_id, data, uploaded, services)

    return {
        "success": True,
        "applicationId": application_id,
        "uploadStatus": upload_summary.upload_status.value,
        "uploadSummary": upload_summary.to_response(),
        "satellites": satellites,
    }


async def run_satellites(
    application_id: str,
    data: MerchantApplicationData,
    uploaded: Dict[str, str],
    services: ServiceContainer,
) -> Dict[str, Any]:
    """Fan out the post-commit effects; none of them may fail the submission."""

    async def mirror() -> bool:
        return await services.crm.sync(application_id, EventAction.application_submitted, data)

    async def webhook() -> bool:
        task = services.webhooks.notify(SUBMISSION_WEBHOOK_EVENT, build_submission_payload(application_id, data, uploaded))
        return task is not None

    async def notifications() -> Dict[str, Any]:
        admin_email = services.settings.ADMIN_NOTIFICATION_EMAIL
        sends = [services.notifier.send([admin_email], submission_admin_email(application_id, data, uploaded))]
        if data.dba_email:
            sends.append(services.notifier.send(
                [data.dba_email],
                submission_merchant_email(application_id, data, admin_email),
            ))
        reports = await asyncio.gather(*sends)
        merged: Dict[str, Any] = {}
        for report in reports:
            merged.update(report)
        return {"sent": sum(1 for error in merged.values() if error is None), "failed": {k: v for k, v in merged.items() if v}}

    mirror_result, webhook_result, notify_result = await asyncio.gather(
        mirror(), webhook(), notifications(), return_exceptions=True
    )

    for name, result in (("crm_mirror", mirror_result), ("webhook", webhook_result), ("notifications", notify_result)):
        if isinstance(result, BaseException):
            logger.error(f"Satellite {name} failed for application {application_id}: {result}")

    return {
        "crm_mirror": mirror_result if isinstance(mirror_result, bool) else False,
        "webhook": webhook_result if isinstance(webhook_result, bool) else False,
        "notifications": notify_result if isinstance(notify_result, dict) else {"sent": 0, "failed": {"*": str(notify_result)}},
    }

import logging
from dataclasses import dataclass

from fastapi import Request

from merchant_pipeline.core.config import Settings
from merchant_pipeline.core.supabase_client import get_supabase_client
from merchant_pipeline.services.application_service import ApplicationService
from merchant_pipeline.services.audit_service import AuditService
from merchant_pipeline.services.batch_invite_dispatcher import BatchInviteDispatcher
from merchant_pipeline.services.crm_mirror_sync import CrmMirrorSync
from merchant_pipeline.services.download_proxy import DownloadProxy
from merchant_pipeline.services.notification_dispatcher import NotificationDispatcher
from merchant_pipeline.services.record_store import RecordStore
from merchant_pipeline.services.upload_coordinator import UploadCoordinator
from merchant_pipeline.services.webhook_notifier import WebhookNotifier

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Every pipeline component, built once at startup from validated settings."""
    settings: Settings
    record_store: RecordStore
    uploads: UploadCoordinator
    crm: CrmMirrorSync
    webhooks: WebhookNotifier
    notifier: NotificationDispatcher
    invites: BatchInviteDispatcher
    applications: ApplicationService
    downloads: DownloadProxy
    audit: AuditService


def build_services(settings: Settings, supabase_client=None) -> ServiceContainer:
    if supabase_client is None:
        supabase_client = get_supabase_client(settings)

    record_store = RecordStore()
    crm = CrmMirrorSync.from_settings(settings)
    webhooks = WebhookNotifier.from_settings(settings)
    notifier = NotificationDispatcher.from_settings(settings)
    audit = AuditService()

    container = ServiceContainer(
        settings=settings,
        record_store=record_store,
        uploads=UploadCoordinator.from_settings(settings, supabase_client),
        crm=crm,
        webhooks=webhooks,
        notifier=notifier,
        invites=BatchInviteDispatcher.from_settings(settings, record_store, notifier, webhooks),
        applications=ApplicationService(
            record_store,
            crm,
            webhooks,
            notifier,
            audit,
            invite_base_url=settings.INVITE_BASE_URL,
            admin_email=settings.ADMIN_NOTIFICATION_EMAIL,
        ),
        downloads=DownloadProxy(timeout=settings.DOWNLOAD_TIMEOUT_SECONDS),
        audit=audit,
    )
    logger.info("Pipeline services initialized")
    return container


# FastAPI dependency returning the container attached to the app at startup
def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized; the application lifespan has not run")
    return services

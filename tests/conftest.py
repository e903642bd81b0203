import json
from types import SimpleNamespace
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from merchant_pipeline.core.auth_dependencies import AgentIdentity
from merchant_pipeline.core.exceptions import EmailDeliveryError
from merchant_pipeline.database.connection import init_db
from merchant_pipeline.core.service_container import ServiceContainer
from merchant_pipeline.schemas.merchant_schema import ApplicationStatusEnum
from merchant_pipeline.services.upload_coordinator import UploadCoordinator


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeBucket:
    def __init__(self, name: str, failures: int = 0):
        self.name = name
        self.failures = failures
        self.calls = 0
        self.uploads = []

    def upload(self, path, content, options):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("storage unavailable")
        self.uploads.append((path, content, options))
        return {"path": path}

    def get_public_url(self, path):
        return f"https://storage.test/{self.name}/{path}"


class FakeStorage:
    def __init__(self, bucket: FakeBucket):
        self.bucket = bucket

    def from_(self, name):
        return self.bucket


class FakeSupabase:
    def __init__(self, failures: int = 0, bucket_name: str = "merchant-uploads"):
        self.bucket = FakeBucket(bucket_name, failures)
        self.storage = FakeStorage(self.bucket)


class FakeRecordStore:
    """In-memory record store for dispatcher, worker and route tests."""

    def __init__(self, invited=(), fail_for=(), upsert_error: Optional[Exception] = None):
        self.invited = set(invited)
        self.fail_for = set(fail_for)
        self.upsert_error = upsert_error
        self.created = []
        self.upserts = []
        self.upload_results = []
        self.children: Dict[str, list] = {}

    async def find_invited_emails(self, emails):
        return {email for email in emails if email in self.invited}

    async def create_invite(self, agent_email, agent_name=None, merchant_email=None, status=ApplicationStatusEnum.invited):
        if merchant_email in self.fail_for:
            raise RuntimeError("insert rejected")
        record = SimpleNamespace(
            application_id=f"app-{len(self.created) + 1}",
            agent_email=agent_email,
            dba_email=merchant_email,
            status=status,
        )
        self.created.append(record)
        return record

    async def upsert(self, data, status, agent_email=None, agent_name=None):
        if self.upsert_error:
            raise self.upsert_error
        record = SimpleNamespace(application_id=data.id or "app-new", status=status, agent_email=agent_email)
        self.upserts.append((data, status))
        return record

    async def set_upload_result(self, record, upload_status, upload_errors):
        self.upload_results.append((record.application_id, upload_status, upload_errors))

    async def replace_children(self, application_id, uploads):
        self.children[application_id] = list(uploads)
        return self.children[application_id]


class FakeCrm:
    def __init__(self, result: bool = True, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls = []

    async def sync(self, application_id, action, data, agent_email=None, merchant_email=None, now=None):
        self.calls.append((application_id, action, agent_email, merchant_email))
        if self.error:
            raise self.error
        return self.result


class FakeWebhooks:
    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self.events = []

    def notify(self, event_name, payload):
        self.events.append((event_name, payload))
        return object() if self.enabled else None

    async def drain(self, timeout=None):
        return None


class FakeNotifier:
    def __init__(self, batch_errors=None, batch_exception=None, failing=()):
        self.batch_errors = batch_errors or {}
        self.batch_exception = batch_exception
        self.failing = set(failing)
        self.batches = []
        self.retried = []
        self.sent = []
        self.copied = []

    async def send_batch(self, messages):
        self.batches.append([recipient for recipient, _ in messages])
        if self.batch_exception:
            raise self.batch_exception
        return [self.batch_errors.get(recipient) for recipient, _ in messages]

    async def send_with_retry(self, recipient, template):
        self.retried.append(recipient)
        if recipient in self.failing:
            raise EmailDeliveryError(f"rejected {recipient}", 422)
        return "email-id"

    async def send(self, recipients, template, cc=None):
        self.sent.append((list(recipients), template))
        self.copied.append(cc)
        return {recipient: ("rejected" if recipient in self.failing else None) for recipient in recipients if recipient}


class FakeAudit:
    def __init__(self):
        self.entries = []

    async def record(self, **kwargs):
        self.entries.append(kwargs)
        return None


def request_json(request: httpx.Request):
    return json.loads(request.content.decode())


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def agent():
    return AgentIdentity(email="agent@partner.com", name="Pat Agent", is_admin=False)


@pytest.fixture
def admin():
    return AgentIdentity(email="ops@golumino.com", name="Ops", is_admin=True)


@pytest_asyncio.fixture
async def beanie_db():
    settings = SimpleNamespace(MONGODB_URI=None, MONGODB_DB_NAME="merchant_pipeline_test")
    return await init_db(settings, client=AsyncMongoMockClient())


def build_container(
    supabase=None,
    record_store=None,
    crm=None,
    webhooks=None,
    notifier=None,
    sleep=None,
    **overrides,
):
    """ServiceContainer wired with fakes around the real upload coordinator."""
    settings = SimpleNamespace(ADMIN_NOTIFICATION_EMAIL="apps@golumino.com")
    fields = dict(
        settings=settings,
        record_store=record_store or FakeRecordStore(),
        uploads=UploadCoordinator(supabase or FakeSupabase(), "merchant-uploads", sleep=sleep or RecordingSleep()),
        crm=crm or FakeCrm(),
        webhooks=webhooks or FakeWebhooks(),
        notifier=notifier or FakeNotifier(),
        invites=None,
        applications=None,
        downloads=None,
        audit=FakeAudit(),
    )
    fields.update(overrides)
    return ServiceContainer(**fields)

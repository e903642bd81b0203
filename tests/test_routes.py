import json

import httpx
import pytest
from fastapi.testclient import TestClient

from main import app
from merchant_pipeline.core.auth_dependencies import AgentIdentity, get_current_agent
from merchant_pipeline.core.config import settings
from merchant_pipeline.core.exceptions import PersistenceError
from merchant_pipeline.core.security import create_access_token
from merchant_pipeline.core.service_container import get_services
from merchant_pipeline.services.batch_invite_dispatcher import BatchInviteDispatcher
from merchant_pipeline.services.download_proxy import DownloadProxy

from tests.conftest import FakeCrm, FakeNotifier, FakeRecordStore, FakeWebhooks, RecordingSleep, build_container


class FakeApplications:
    async def list_applications(self, agent, page, limit, status=None):
        return {"agent": agent.email, "admin": agent.is_admin, "page": page, "limit": limit,
                "status": status.value if status else None}

    async def send_invite(self, application_id, emails, agent):
        return {"applicationId": application_id, "emails": emails, "agent": agent.email}


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def use_services(container):
    app.dependency_overrides[get_services] = lambda: container
    return container


def login_as(identity):
    app.dependency_overrides[get_current_agent] = lambda: identity


def test_submit_stores_files_and_reports_summary():
    services = use_services(build_container())
    client = TestClient(app)

    resp = client.post(
        "/applications/submit",
        data={"data": json.dumps({"id": "app-7", "dbaName": "Corner Cafe", "dbaEmail": "owner@cafe.com"})},
        files={"file_voidedCheck": ("check.pdf", b"%PDF-1.4 check", "application/pdf")},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["applicationId"] == "app-7"
    assert body["uploadStatus"] == "complete"
    assert body["uploadSummary"]["successful"] == 1
    assert services.record_store.children["app-7"][0][0] == "voidedCheck"
    assert services.crm.calls[0][0] == "app-7"


def test_submit_without_data_field_is_rejected():
    use_services(build_container())
    client = TestClient(app)

    resp = client.post("/applications/submit", files={"file_voidedCheck": ("check.pdf", b"x", "application/pdf")})

    assert resp.status_code == 400
    assert resp.json() == {"error": {
        "code": "bad_request",
        "message": "No data field found in form data",
        "status_code": 400,
    }}


def test_submit_with_malformed_json_is_rejected():
    services = use_services(build_container())
    client = TestClient(app)

    resp = client.post("/applications/submit", data={"data": "{not json"})

    assert resp.status_code == 400
    assert resp.json()["error"]["message"].startswith("Invalid JSON in data field")
    assert services.record_store.upserts == []


def test_submit_persistence_failure_is_a_server_error():
    store = FakeRecordStore(upsert_error=PersistenceError("Failed to save merchant application", RuntimeError("db down")))
    services = use_services(build_container(record_store=store))
    client = TestClient(app)

    resp = client.post("/applications/submit", data={"data": json.dumps({"dbaName": "Cafe"})})

    assert resp.status_code == 500
    assert resp.json()["error"]["message"] == "Failed to save merchant application: db down"
    assert services.notifier.sent == []


def test_listing_requires_a_token():
    use_services(build_container(applications=FakeApplications()))
    client = TestClient(app)

    resp = client.get("/applications")

    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_bearer_token_identifies_admin_by_domain(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret")
    monkeypatch.setattr(settings, "ADMIN_EMAIL_DOMAIN", "golumino.com")
    use_services(build_container(applications=FakeApplications()))
    client = TestClient(app)
    token = create_access_token({"sub": "Boss@Golumino.com"})

    resp = client.get("/applications?page=2&limit=5&status=submitted", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 200
    assert resp.json() == {"agent": "boss@golumino.com", "admin": True, "page": 2, "limit": 5, "status": "submitted"}


def test_listing_rejects_out_of_range_limit(agent):
    use_services(build_container(applications=FakeApplications()))
    login_as(agent)
    client = TestClient(app)

    resp = client.get("/applications?limit=500")

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"


def test_status_change_requires_admin(agent):
    use_services(build_container())
    login_as(agent)
    client = TestClient(app)

    resp = client.put("/applications/app-1/status", json={"status": "approved"})

    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "Admin access required"


def test_batch_invite_route_reports_results_and_audits(agent):
    store, notifier, webhooks = FakeRecordStore(invited={"old@shop.com"}), FakeNotifier(), FakeWebhooks()
    invites = BatchInviteDispatcher(store, notifier, webhooks, invite_base_url="https://apply.test", sleep=RecordingSleep())
    services = use_services(build_container(record_store=store, notifier=notifier, webhooks=webhooks, invites=invites))
    login_as(agent)
    client = TestClient(app)

    resp = client.post("/invites/batch", json={"emails": ["new@shop.com, old@shop.com", "oops"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Successfully sent 1 invites, skipped 1 existing invites"
    assert body["results"]["successfulEmails"] == ["new@shop.com"]
    assert services.audit.entries[0]["action"] == "batch_invite"
    assert services.audit.entries[0]["actor"] == "agent@partner.com"


def test_batch_invite_without_valid_addresses_is_bad_request(agent):
    invites = BatchInviteDispatcher(FakeRecordStore(), FakeNotifier(), FakeWebhooks(), invite_base_url="https://apply.test")
    use_services(build_container(invites=invites))
    login_as(agent)
    client = TestClient(app)

    resp = client.post("/invites/batch", json={"emails": ["nope"]})

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "No valid email addresses found"


def test_send_invite_route_passes_id_and_addresses(agent):
    use_services(build_container(applications=FakeApplications()))
    login_as(agent)
    client = TestClient(app)

    resp = client.post("/invites/app-7/send", json={"emails": ["owner@cafe.com"]})

    assert resp.status_code == 200
    assert resp.json() == {"applicationId": "app-7", "emails": ["owner@cafe.com"], "agent": "agent@partner.com"}


def test_send_invite_route_requires_a_token():
    use_services(build_container(applications=FakeApplications()))
    client = TestClient(app)

    resp = client.post("/invites/app-7/send", json={"emails": ["owner@cafe.com"]})

    assert resp.status_code == 401


def test_mirror_sync_route_defaults_partner_to_caller(agent):
    crm = FakeCrm(result=True)
    use_services(build_container(crm=crm))
    login_as(agent)
    client = TestClient(app)

    resp = client.post("/mirror/sync", json={"applicationId": "app-1", "action": "invite_sent", "data": {"dbaName": "Cafe"}})

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
    assert crm.calls == [("app-1", "invite_sent", "agent@partner.com", None)]


def test_download_returns_attachment(agent):
    def upstream(request):
        return httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})

    use_services(build_container(downloads=DownloadProxy(transport=httpx.MockTransport(upstream))))
    login_as(agent)
    client = TestClient(app)

    resp = client.get("/download", params={"url": "https://storage.test/check.pdf", "filename": "check.pdf"})

    assert resp.status_code == 200
    assert resp.content == b"%PDF-1.4"
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["content-disposition"] == 'attachment; filename="check.pdf"'


def test_health_carries_security_headers():
    client = TestClient(app)

    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_unknown_route_uses_error_envelope():
    client = TestClient(app)

    resp = client.get("/nowhere")

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_refresh_issues_a_token_for_the_same_agent(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret")
    client = TestClient(app)
    token = create_access_token({"sub": "agent@partner.com", "name": "Pat Agent"})

    refreshed = client.post("/auth/refresh", headers={"Authorization": f"Bearer {token}"})
    assert refreshed.status_code == 200
    new_token = refreshed.json()["access_token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {new_token}"})
    assert me.json() == {"email": "agent@partner.com", "name": "Pat Agent", "is_admin": False}


def test_tampered_token_is_rejected(monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET_KEY", "test-secret")
    client = TestClient(app)
    token = create_access_token({"sub": "agent@partner.com"}, secret="someone-else")

    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401

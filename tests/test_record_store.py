import pytest

from merchant_pipeline.core.exceptions import ApplicationNotFoundError, InvalidStatusTransition, PreconditionError
from merchant_pipeline.database.models import MerchantApplication, MerchantUpload
from merchant_pipeline.schemas.merchant_schema import (
    DEFAULT_BATCH_TIME,
    ApplicationStatusEnum,
    MerchantApplicationData,
    UploadTypeEnum,
)
from merchant_pipeline.services.record_store import RecordStore


def application(**fields):
    base = {"dbaName": "Corner Cafe", "dbaEmail": "Owner@Cafe.com"}
    base.update(fields)
    return MerchantApplicationData.model_validate(base)


@pytest.mark.asyncio
async def test_insert_coerces_numbers_and_keeps_absent_fields_as_null(beanie_db):
    store = RecordStore()

    record = await store.upsert(
        application(monthlyVolume="$12,500", averageTicket="n/a", acceptAmex="yes", legalName=""),
        ApplicationStatusEnum.submitted,
        agent_email="agent@partner.com",
        agent_name="Pat Agent",
    )

    assert record.application_id
    assert record.monthly_volume == 12500.0
    assert record.average_ticket == 0.0
    assert record.accept_amex is True
    assert record.accept_debit is False
    assert record.dba_email == "owner@cafe.com"
    assert record.batch_time == DEFAULT_BATCH_TIME
    assert record.submitted_at is not None

    raw = await beanie_db["merchant_applications"].find_one({"application_id": record.application_id})
    assert "legal_name" in raw
    assert raw["legal_name"] is None
    assert raw["status"] == "submitted"


@pytest.mark.asyncio
async def test_update_with_id_keeps_owner_and_identity(beanie_db):
    store = RecordStore()
    invite = await store.create_invite("agent@partner.com", "Pat Agent", "owner@cafe.com")

    record = await store.upsert(
        application(id=invite.application_id, agentEmail="someone@else.com", dbaName="Corner Cafe LLC"),
        ApplicationStatusEnum.submitted,
        agent_email="someone@else.com",
    )

    assert record.application_id == invite.application_id
    assert record.agent_email == "agent@partner.com"
    assert record.dba_name == "Corner Cafe LLC"
    assert record.status == ApplicationStatusEnum.submitted
    assert await MerchantApplication.find_all().count() == 1


@pytest.mark.asyncio
async def test_upsert_unknown_id_is_not_found(beanie_db):
    with pytest.raises(ApplicationNotFoundError) as exc:
        await RecordStore().upsert(application(id="missing"), ApplicationStatusEnum.submitted)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_replace_children_never_accumulates_duplicates(beanie_db):
    store = RecordStore()
    record = await store.upsert(application(), ApplicationStatusEnum.submitted)
    app_id = record.application_id

    await store.replace_children(app_id, [
        ("voidedCheck", "https://files/check-v1.pdf", UploadTypeEnum.file),
        ("taxId", "https://files/ein.pdf", UploadTypeEnum.file),
    ])
    await store.replace_children(app_id, [
        ("voidedCheck", "https://files/check-v2.pdf", UploadTypeEnum.file),
        ("taxId", "https://drive/ein", UploadTypeEnum.url),
    ])

    rows = await MerchantUpload.find(MerchantUpload.application_id == app_id).to_list()
    assert len(rows) == 2
    uploads = await store.list_uploads([app_id])
    assert uploads[app_id]["voidedCheck"]["file_url"] == "https://files/check-v2.pdf"
    assert uploads[app_id]["taxId"] == {"file_url": "https://drive/ein", "upload_type": "url"}


@pytest.mark.asyncio
async def test_status_cannot_move_backwards(beanie_db):
    store = RecordStore()
    record = await store.upsert(application(), ApplicationStatusEnum.submitted)

    with pytest.raises(InvalidStatusTransition) as exc:
        await store.update_status(record.application_id, ApplicationStatusEnum.invited)
    assert exc.value.status_code == 409

    updated, previous = await store.update_status(record.application_id, ApplicationStatusEnum.approved)
    assert previous == ApplicationStatusEnum.submitted
    assert updated.status == ApplicationStatusEnum.approved


@pytest.mark.asyncio
async def test_mark_opened_only_moves_invited(beanie_db):
    store = RecordStore()
    invite = await store.create_invite("agent@partner.com", merchant_email="owner@cafe.com")

    opened = await store.mark_opened(invite.application_id)
    assert opened.status == ApplicationStatusEnum.opened
    assert opened.opened_at is not None

    again = await store.mark_opened(invite.application_id)
    assert again.status == ApplicationStatusEnum.opened


@pytest.mark.asyncio
async def test_clone_for_resend_retires_the_old_record(beanie_db):
    store = RecordStore()
    invite = await store.create_invite("agent@partner.com", "Pat Agent", "owner@cafe.com")
    await store.update_fields(invite.application_id, application(monthlyVolume="5000"))

    old, fresh = await store.clone_for_resend(invite.application_id)

    assert old.status == ApplicationStatusEnum.resent
    assert fresh.status == ApplicationStatusEnum.invited
    assert fresh.application_id != old.application_id
    assert fresh.dba_name == "Corner Cafe"
    assert fresh.monthly_volume == 5000.0
    assert fresh.agent_email == "agent@partner.com"

    with pytest.raises(InvalidStatusTransition):
        await store.clone_for_resend(invite.application_id)


@pytest.mark.asyncio
async def test_find_invited_emails_only_matches_invited_status(beanie_db):
    store = RecordStore()
    await store.create_invite("agent@partner.com", merchant_email="a@x.com")
    await store.create_invite("agent@partner.com", merchant_email="b@x.com", status=ApplicationStatusEnum.draft)

    assert await store.find_invited_emails(["a@x.com", "b@x.com", "c@x.com"]) == {"a@x.com"}


@pytest.mark.asyncio
async def test_list_applications_scopes_to_agent_and_paginates(beanie_db):
    store = RecordStore()
    for index in range(3):
        await store.create_invite("agent@partner.com", merchant_email=f"m{index}@x.com")
    await store.create_invite("other@partner.com", merchant_email="z@x.com")

    rows, total = await store.list_applications("agent@partner.com", page=1, limit=2)
    assert total == 3
    assert len(rows) == 2

    rows, total = await store.list_applications(None, page=2, limit=2)
    assert total == 4
    assert len(rows) == 2


@pytest.mark.asyncio
async def test_upload_request_completes_once(beanie_db):
    store = RecordStore()
    record = await store.upsert(application(), ApplicationStatusEnum.submitted)
    request = await store.create_upload_request(record.application_id, ["voidedCheck"], "agent@partner.com")

    completed = await store.complete_upload_request(request.request_id, [("voidedCheck", "https://files/check.pdf")])
    assert completed.is_active is False
    assert completed.completed_at is not None
    uploads = await store.list_uploads([record.application_id])
    assert uploads[record.application_id]["voidedCheck"]["file_url"] == "https://files/check.pdf"

    with pytest.raises(PreconditionError) as exc:
        await store.complete_upload_request(request.request_id, [("voidedCheck", "https://files/again.pdf")])
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_upload_request_replaces_existing_row_for_the_same_type(beanie_db):
    store = RecordStore()
    record = await store.upsert(application(), ApplicationStatusEnum.submitted)
    app_id = record.application_id
    await store.replace_children(app_id, [
        ("voidedCheck", "https://files/old.pdf", UploadTypeEnum.file),
        ("taxId", "https://files/ein.pdf", UploadTypeEnum.file),
    ])
    request = await store.create_upload_request(app_id, ["voidedCheck"], "agent@partner.com")

    await store.complete_upload_request(request.request_id, [("voidedCheck", "https://files/new.pdf")])

    rows = await MerchantUpload.find(MerchantUpload.application_id == app_id).to_list()
    assert sorted((row.document_type, row.file_url) for row in rows) == [
        ("taxId", "https://files/ein.pdf"),
        ("voidedCheck", "https://files/new.pdf"),
    ]


@pytest.mark.asyncio
async def test_upload_request_rejects_documents_that_were_not_requested(beanie_db):
    store = RecordStore()
    record = await store.upsert(application(), ApplicationStatusEnum.submitted)
    request = await store.create_upload_request(record.application_id, ["voidedCheck"], "agent@partner.com")

    with pytest.raises(PreconditionError) as exc:
        await store.complete_upload_request(request.request_id, [
            ("voidedCheck", "https://files/check.pdf"),
            ("taxId", "https://files/ein.pdf"),
        ])
    assert exc.value.status_code == 400

    assert await MerchantUpload.find(MerchantUpload.application_id == record.application_id).count() == 0
    still_open = await store.get_upload_request(request.request_id)
    assert still_open.is_active is True


@pytest.mark.asyncio
async def test_delete_removes_child_uploads(beanie_db):
    store = RecordStore()
    record = await store.upsert(application(), ApplicationStatusEnum.submitted)
    await store.replace_children(record.application_id, [("taxId", "https://files/ein.pdf", UploadTypeEnum.file)])

    await store.delete(record.application_id)

    assert await MerchantUpload.find(MerchantUpload.application_id == record.application_id).count() == 0
    with pytest.raises(ApplicationNotFoundError):
        await store.get(record.application_id)

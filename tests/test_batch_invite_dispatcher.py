import pytest

from merchant_pipeline.core.exceptions import EmailDeliveryError, PreconditionError
from merchant_pipeline.schemas.merchant_schema import ApplicationStatusEnum, SendStrategy
from merchant_pipeline.services.batch_invite_dispatcher import BatchInviteDispatcher
from merchant_pipeline.services.email_templates import BATCH_FAILURE_SUBJECT

from tests.conftest import FakeNotifier, FakeRecordStore, FakeWebhooks


def build(store=None, notifier=None, webhooks=None, sleep=None, batch_size=10):
    store = store or FakeRecordStore()
    notifier = notifier or FakeNotifier()
    webhooks = webhooks or FakeWebhooks()
    dispatcher = BatchInviteDispatcher(
        store,
        notifier,
        webhooks,
        invite_base_url="https://apply.test",
        batch_size=batch_size,
        batch_delay_seconds=0.1,
        sleep=sleep,
    )
    return dispatcher, store, notifier, webhooks


@pytest.mark.asyncio
async def test_duplicates_invalid_and_already_invited(agent, recording_sleep):
    dispatcher, store, notifier, webhooks = build(store=FakeRecordStore(invited={"ok@x.com"}), sleep=recording_sleep)

    result = await dispatcher.dispatch(["dup@x.com", "dup@x.com", "bad-email", "ok@x.com"], agent)

    assert result.successful == ["dup@x.com"]
    assert result.skipped == ["ok@x.com"]
    assert result.failed == []
    assert result.total == 2
    assert [record.dba_email for record in store.created] == ["dup@x.com"]
    assert store.created[0].status == ApplicationStatusEnum.invited
    assert notifier.sent == []
    assert result.message == "Successfully sent 1 invites, skipped 1 existing invites"


@pytest.mark.asyncio
async def test_delimited_and_mixed_case_inputs_are_normalized(agent, recording_sleep):
    dispatcher, _, notifier, _ = build(sleep=recording_sleep)

    result = await dispatcher.dispatch(["Owner@Cafe.com; owner@cafe.com\nsecond@shop.com", 42], agent)

    assert result.successful == ["owner@cafe.com", "second@shop.com"]
    assert notifier.batches == [["owner@cafe.com", "second@shop.com"]]


@pytest.mark.asyncio
async def test_no_valid_addresses_is_rejected(agent, recording_sleep):
    dispatcher, store, _, _ = build(sleep=recording_sleep)

    with pytest.raises(PreconditionError):
        await dispatcher.dispatch(["not-an-email", ""], agent)
    assert store.created == []


@pytest.mark.asyncio
async def test_batches_are_paced_only_between_batches(agent, recording_sleep):
    dispatcher, _, notifier, _ = build(sleep=recording_sleep)
    emails = [f"merchant{index}@shop.com" for index in range(23)]

    result = await dispatcher.dispatch(emails, agent)

    assert len(result.successful) == 23
    assert [len(batch) for batch in notifier.batches] == [10, 10, 3]
    assert recording_sleep.delays == [0.1, 0.1]


@pytest.mark.asyncio
async def test_per_index_errors_fail_only_those_addresses(agent, recording_sleep):
    notifier = FakeNotifier(batch_errors={"b@shop.com": "Invalid recipient"})
    dispatcher, _, _, webhooks = build(notifier=notifier, sleep=recording_sleep)

    result = await dispatcher.dispatch(["a@shop.com", "b@shop.com", "c@shop.com"], agent)

    assert result.successful == ["a@shop.com", "c@shop.com"]
    assert [(item.email, item.error) for item in result.failed] == [("b@shop.com", "Invalid recipient")]
    assert [payload["merchant_email"] for _, payload in webhooks.events] == ["a@shop.com", "c@shop.com"]
    assert all(event == "merchant_application_draft" for event, _ in webhooks.events)

    recipients, template = notifier.sent[0]
    assert recipients == ["agent@partner.com"]
    assert template.subject == BATCH_FAILURE_SUBJECT
    assert "b@shop.com: Invalid recipient" in template.html
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_grouped_failure_falls_back_to_individual_sends(agent, recording_sleep):
    notifier = FakeNotifier(batch_exception=EmailDeliveryError("Batch transport error"), failing={"b@shop.com"})
    dispatcher, _, _, _ = build(notifier=notifier, sleep=recording_sleep)

    result = await dispatcher.dispatch(["a@shop.com", "b@shop.com"], agent)

    assert notifier.retried == ["a@shop.com", "b@shop.com"]
    assert result.successful == ["a@shop.com"]
    assert result.failed[0].email == "b@shop.com"
    assert result.failed[0].error == "email: rejected b@shop.com"


@pytest.mark.asyncio
async def test_sequential_strategy_never_uses_batch_send(agent, recording_sleep):
    dispatcher, _, notifier, _ = build(sleep=recording_sleep)

    result = await dispatcher.dispatch(["a@shop.com", "b@shop.com"], agent, SendStrategy.sequential)

    assert notifier.batches == []
    assert notifier.retried == ["a@shop.com", "b@shop.com"]
    assert result.successful == ["a@shop.com", "b@shop.com"]


@pytest.mark.asyncio
async def test_record_creation_failure_is_reported_not_sent(agent, recording_sleep):
    dispatcher, _, notifier, _ = build(store=FakeRecordStore(fail_for={"b@shop.com"}), sleep=recording_sleep)

    result = await dispatcher.dispatch(["a@shop.com", "b@shop.com"], agent)

    assert notifier.batches == [["a@shop.com"]]
    assert result.successful == ["a@shop.com"]
    assert [(item.email, item.error) for item in result.failed] == [("b@shop.com", "insert rejected")]


@pytest.mark.asyncio
async def test_result_response_shape(agent, recording_sleep):
    dispatcher, _, _, _ = build(store=FakeRecordStore(invited={"b@shop.com"}), sleep=recording_sleep)

    response = (await dispatcher.dispatch(["a@shop.com", "b@shop.com"], agent)).to_response()

    assert response["success"] is True
    assert response["results"] == {
        "total": 2,
        "successful": 1,
        "failed": 0,
        "skipped": 1,
        "successfulEmails": ["a@shop.com"],
        "failedEmails": [],
        "skippedEmails": ["b@shop.com"],
    }

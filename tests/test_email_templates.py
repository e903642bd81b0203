from merchant_pipeline.schemas.merchant_schema import Terminal
from merchant_pipeline.services.email_templates import (
    BATCH_FAILURE_SUBJECT,
    batch_failure_email,
    invite_email,
    invite_link,
    prefill_ready_email,
)


def test_invite_link_appends_application_id():
    assert invite_link("https://apply.golumino.com/", "abc") == "https://apply.golumino.com?id=abc"


def test_invite_email_embeds_escaped_link():
    template = invite_email('https://apply.test?id=a&b="c"')

    assert 'href="https://apply.test?id=a&amp;b=&quot;c&quot;"' in template.html


def test_prefill_email_shows_terminal_discounts():
    template = prefill_ready_email("https://apply.test?id=1", [
        Terminal(name="Clover Flex", price=0, original_price=499),
        Terminal(name="Clover Mini", price=300, original_price=400),
        Terminal(name="Pin Pad", price=99),
    ])

    assert "FREE" in template.html
    assert "25% OFF" in template.html
    assert "Price: $99.00" in template.html


def test_batch_failure_email_lists_each_failure():
    template = batch_failure_email(3, [{"email": "a@x.com", "error": "Invalid <to>"}])

    assert template.subject == BATCH_FAILURE_SUBJECT
    assert "• a@x.com: Invalid &lt;to&gt;" in template.html
    assert "<strong>Successful:</strong> 3" in template.html

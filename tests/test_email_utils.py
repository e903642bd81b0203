from merchant_pipeline.utils.email_utils import is_valid_email, normalize_emails


def test_is_valid_email():
    assert is_valid_email("owner@cafe.com")
    assert is_valid_email("first.last+tag@sub.shop.co")
    assert not is_valid_email("bad-email")
    assert not is_valid_email("two@@at.com")
    assert not is_valid_email("")


def test_normalize_flattens_delimiters_and_dedupes_in_order():
    assert normalize_emails(["B@x.com, a@x.com;b@x.com\n c@x.com ", "A@X.com"]) == ["b@x.com", "a@x.com", "c@x.com"]


def test_normalize_drops_invalid_and_non_string_inputs():
    assert normalize_emails(["bad-email", None, 7, {"email": "x@y.com"}, "ok@x.com"]) == ["ok@x.com"]
    assert normalize_emails(None) == []

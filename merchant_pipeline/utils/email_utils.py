import re
from typing import Any, Iterable, List

EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

_DELIMITERS = re.compile(r"[,;\n]")


# Validates an email address against the strict invite pattern
def is_valid_email(email: str) -> bool:
    return bool(email) and EMAIL_PATTERN.match(email) is not None


def normalize_emails(raw_inputs: Iterable[Any]) -> List[str]:
    """Flatten delimited strings, trim, lowercase, validate and dedupe.

    Order of first appearance is kept. Non-string inputs and invalid
    addresses are dropped silently.
    """
    seen = set()
    normalized = []
    for raw in raw_inputs or []:
        if not isinstance(raw, str):
            continue
        for candidate in _DELIMITERS.split(raw):
            email = candidate.strip().lower()
            if email and email not in seen and is_valid_email(email):
                seen.add(email)
                normalized.append(email)
    return normalized

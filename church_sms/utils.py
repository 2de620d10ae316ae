"""
Utility functions for the SMS service.
"""

import re
from xml.sax.saxutils import escape
from typing import NamedTuple, Optional

_NON_DIGITS = re.compile(r"\D")


class NormalizedPhone(NamedTuple):
    """Lookup keys derived from one raw phone string."""
    formatted: str  # XXX-XXX-XXXX for 10-digit local numbers, otherwise the digit string
    digits: str  # every digit, country code kept
    local: str  # digits with a leading "1" country code removed

    def keys(self) -> list:
        """Distinct non-empty representations, in priority order."""
        return [k for k in dict.fromkeys((self.formatted, self.digits, self.local)) if k]


def digits_only(value: Optional[str]) -> str:
    """Strip everything that is not a digit."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def normalize_phone(raw: Optional[str]) -> NormalizedPhone:
    """
    Normalize a raw phone string into its lookup forms.

    Never raises: malformed input degrades to whatever digits it contains.

    >>> normalize_phone("+1 (555) 123-4567")
    NormalizedPhone(formatted='555-123-4567', digits='15551234567', local='5551234567')
    """
    digits = digits_only(raw)
    local = digits[1:] if len(digits) == 11 and digits.startswith("1") else digits
    if len(local) == 10:
        formatted = f"{local[:3]}-{local[3:6]}-{local[6:]}"
    else:
        formatted = local
    return NormalizedPhone(formatted=formatted, digits=digits, local=local)


def phone_matches(stored: Optional[str], normalized: NormalizedPhone) -> bool:
    """Digits-only comparison of a stored number against the inbound number's forms."""
    stored_digits = digits_only(stored)
    if not stored_digits:
        return False
    return stored_digits in (normalized.digits, normalized.local)


def build_twiml(reply: Optional[str] = None) -> str:
    """TwiML document for the webhook response; a <Message> is included only when reply is non-empty."""
    if reply:
        inner = f"<Message>{escape(reply)}</Message>"
    else:
        inner = ""
    return f'<?xml version="1.0" encoding="UTF-8"?><Response>{inner}</Response>'

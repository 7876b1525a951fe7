"""
PHI masking helpers

Responses built for an impersonating admin and log records pass through
here so patient identifiers are not exposed.
"""

import logging
import re
from typing import Any

REDACTED = "[REDACTED]"

NAME_FIELDS = {"firstName", "lastName", "customerName", "patientName"}
REDACTED_FIELDS = {"dob", "dateOfBirth", "address", "apartment", "zipCode", "zip"}

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_PATTERN = re.compile(r"\b\d{3}[-. ]?\d{3}[-. ]?\d{4}\b")


def mask_email(email: str) -> str:
    """Mask email for privacy: j***@***.com"""
    if not email or "@" not in email:
        return "***@***.***"
    local, domain = email.split("@", 1)
    tld = domain.rsplit(".", 1)[-1] if "." in domain else "***"
    return f"{local[:1]}***@***.{tld}"


def mask_phone(phone: str) -> str:
    """Mask phone for privacy: ***-***-1234"""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 4:
        return "***-***-****"
    return f"***-***-{digits[-4:]}"


def mask_phi(data: Any) -> Any:
    """Return a copy of a response payload with patient identifiers masked"""
    if isinstance(data, list):
        return [mask_phi(item) for item in data]
    if not isinstance(data, dict):
        return data

    masked = {}
    for key, value in data.items():
        if value is None:
            masked[key] = None
        elif key in NAME_FIELDS or key in REDACTED_FIELDS:
            masked[key] = REDACTED
        elif key in ("email", "customerEmail", "patientEmail"):
            masked[key] = mask_email(str(value))
        elif key in ("phone", "phoneNumber"):
            masked[key] = mask_phone(str(value))
        else:
            masked[key] = mask_phi(value)
    return masked


class PHIRedactionFilter(logging.Filter):
    """Masks emails and phone numbers that end up in log messages"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = EMAIL_PATTERN.sub(lambda m: mask_email(m.group(0)), message)
        redacted = PHONE_PATTERN.sub(lambda m: mask_phone(m.group(0)), redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True

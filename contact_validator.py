"""Validation of inbound identify requests.

``validate_identify_request`` never raises: it returns either the cleaned
:class:`IdentifyRequest` or a :class:`ValidationFailure` naming the field.
"""

import re
from typing import Any, Optional, Union

from pydantic import BaseModel

from db_models import IdentifyRequest

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{0,15}$")
PHONE_SEPARATORS_RE = re.compile(r"[\s\-()]")


class ValidationFailure(BaseModel):
    field: Optional[str] = None
    message: str


ValidationResult = Union[IdentifyRequest, ValidationFailure]


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email))


def is_valid_phone_number(phone_number: str) -> bool:
    return bool(PHONE_RE.match(PHONE_SEPARATORS_RE.sub("", phone_number)))


def _clean(value: Any, field: str) -> Union[Optional[str], ValidationFailure]:
    if value is None:
        return None
    if not isinstance(value, str):
        return ValidationFailure(field=field, message=f"{field} must be a string")
    return value.strip() or None


def validate_identify_request(
    email: Any = None, phone_number: Any = None
) -> ValidationResult:
    """Trim and check an (email, phoneNumber) pair.

    Blank strings count as absent. At least one identifier is required.
    """
    email = _clean(email, "email")
    if isinstance(email, ValidationFailure):
        return email
    phone_number = _clean(phone_number, "phoneNumber")
    if isinstance(phone_number, ValidationFailure):
        return phone_number

    if not email and not phone_number:
        return ValidationFailure(message="Either email or phoneNumber must be provided")

    if email and not is_valid_email(email):
        return ValidationFailure(field="email", message="Email format is invalid")

    if phone_number and not is_valid_phone_number(phone_number):
        return ValidationFailure(field="phoneNumber", message="Phone number format is invalid")

    return IdentifyRequest(email=email, phoneNumber=phone_number)

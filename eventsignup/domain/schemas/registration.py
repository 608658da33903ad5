import re
import uuid
from datetime import datetime
from typing import Any, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_core import PydanticCustomError

from ...config import get_settings
from ..errors import ValidationFailed

S = get_settings()

_LEVEL_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
TITLE_MAX_LENGTH = 200


def _invalid(message: str) -> PydanticCustomError:
    return PydanticCustomError("invalid_request", message)


def parse_event_id(raw: Any) -> Optional[int]:
    """Accept ints and numeric strings; bools and everything else are rejected."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    # isdigit alone also accepts non-ASCII digits such as "²", which int() rejects
    if isinstance(raw, str) and raw.strip().isascii() and raw.strip().isdigit():
        v = int(raw.strip())
        return v if v > 0 else None
    return None


def normalize_email(raw: str) -> str:
    """Lower-cased, syntax-checked address; raises ValueError when unusable."""
    email = raw.strip().lower()
    if not email or len(email) > S.EMAIL_MAX_LENGTH:
        raise ValueError("bad email")
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError("bad email") from e
    return email


def _text(data: dict, key: str) -> str:
    v = data.get(key)
    return v.strip() if isinstance(v, str) else ""


def _flag(raw: Any) -> bool:
    """Only an explicit true counts; "false", 1 and other truthy values do not."""
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    return raw is True


def _ride_level(data: dict) -> str:
    level = _text(data, "rideLevel")
    if not level:
        raise _invalid("Missing ride level.")
    if len(level) > S.RIDE_LEVEL_MAX_LENGTH or not _LEVEL_RE.match(level):
        raise _invalid("Invalid ride level.")
    return level


class SignupIn(BaseModel):
    event_id: int
    ride_level: str
    first_name: str
    last_name: str
    event_type: str = "ride"
    event_title: Optional[str] = None
    flinta_attested: bool = False
    email: Optional[str] = None
    turnstile_token: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def from_wire(cls, data: Any):
        if not isinstance(data, dict):
            raise _invalid("Invalid request body.")
        event_id = parse_event_id(data.get("eventId"))
        if event_id is None:
            raise _invalid("Missing or invalid eventId.")
        level = _ride_level(data)

        first, last = _text(data, "firstName"), _text(data, "lastName")
        if not first or not last:
            raise _invalid("Missing first or last name.")
        if len(first) > S.NAME_MAX_LENGTH or len(last) > S.NAME_MAX_LENGTH:
            raise _invalid("First or last name is too long.")

        email = None
        if _text(data, "email"):
            try:
                email = normalize_email(_text(data, "email"))
            except ValueError:
                raise _invalid("Please enter a valid email address.")

        return {
            "event_id": event_id,
            "ride_level": level,
            "first_name": first,
            "last_name": last,
            "event_type": _text(data, "eventType")[:32] or "ride",
            "event_title": _text(data, "eventTitle")[:TITLE_MAX_LENGTH] or None,
            "flinta_attested": _flag(data.get("flintaAttested")),
            "email": email,
            "turnstile_token": _text(data, "turnstileToken") or None,
        }


class CancelIn(BaseModel):
    event_id: Optional[int] = None
    ride_level: Optional[str] = None
    token: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def from_wire(cls, data: Any):
        if not isinstance(data, dict):
            raise _invalid("Invalid request body.")
        return {
            "event_id": parse_event_id(data.get("eventId")),
            "ride_level": _text(data, "rideLevel") or None,
            "token": _text(data, "token") or None,
        }

    def require_selector(self) -> tuple[int, str]:
        """(event_id, ride_level) for an authenticated cancel."""
        if self.event_id is None:
            raise ValidationFailed("Missing or invalid eventId.")
        if not self.ride_level:
            raise ValidationFailed("Missing ride level.")
        return self.event_id, self.ride_level

    def require_token(self) -> str:
        if not self.token:
            raise ValidationFailed("Missing cancellation token.")
        return self.token


def parse_body(model: type[BaseModel], body: Any):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        errors = e.errors()
        raise ValidationFailed(errors[0]["msg"] if errors else None)


# ---- responses ----
class CapacityOut(BaseModel):
    event_id: int = Field(serialization_alias="eventId")
    total: int
    counts: dict[str, int]


class SignupOut(BaseModel):
    success: bool = True
    waitlisted: bool


class CancelOut(BaseModel):
    success: bool = True


class WaitlistRowOut(BaseModel):
    id: uuid.UUID
    event_id: int
    ride_level: str
    waitlist_joined_at: Optional[datetime] = None
    user_id: Optional[uuid.UUID] = None
    email: str


class WaitlistReportOut(BaseModel):
    total: int
    rows: list[WaitlistRowOut]

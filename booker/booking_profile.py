"""Operator-supplied booking profile.

The profile is a JSON document loaded once before the workflow starts and
never mutated afterwards.
"""
import datetime
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TicketCategory(str, Enum):
    STANDARD = "standard"
    CONCESSION = "concession"


class SessionPeriod(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Credentials(_Frozen):
    identity: str = Field(min_length=1)
    secret: str = Field(min_length=1)


class Trip(_Frozen):
    origin: str = Field(min_length=1)
    destination: str = Field(min_length=1)


class PassengerInfo(_Frozen):
    name: str = Field(min_length=1)
    identity_number: str = Field(min_length=1)


class TicketRequest(_Frozen):
    category: TicketCategory
    passenger: Optional[PassengerInfo] = None


class SolverSettings(_Frozen):
    provider: Literal["2captcha", "gemini"] = "2captcha"
    # gemini falls back to GEMINI_API_KEY from the environment
    api_key: Optional[str] = None

    @model_validator(mode="after")
    def require_2captcha_key(self) -> "SolverSettings":
        if self.provider == "2captcha" and not self.api_key:
            raise ValueError("2captcha needs an api_key")
        return self


class BookingProfile(_Frozen):
    host: str
    credentials: Credentials
    trip: Trip
    date: datetime.date
    session_period: SessionPeriod
    time_slots: tuple[str, ...] = Field(min_length=1)
    tickets: tuple[TicketRequest, ...] = Field(min_length=1)
    solver: SolverSettings

    @field_validator("host")
    @classmethod
    def check_host(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("host must be an http(s) URL")
        return value.rstrip("/")

    @property
    def ticket_count(self) -> int:
        return len(self.tickets)

    def count_for(self, category: TicketCategory) -> int:
        return sum(1 for t in self.tickets if t.category == category)

    def passengers_for(self, category: TicketCategory) -> list[PassengerInfo]:
        """Passenger records of one category, in the operator's list order."""
        return [
            t.passenger for t in self.tickets
            if t.category == category and t.passenger is not None
        ]


def load_profile(path: str | Path) -> BookingProfile:
    """Read and validate a profile document. Raises pydantic.ValidationError."""
    text = Path(path).read_text(encoding="utf-8")
    return BookingProfile.model_validate_json(text)

import re
from typing import Optional

from pydantic import BaseModel, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DISPOSABLE_EMAIL_DOMAINS = {
    "mailinator.com",
    "tempmail.com",
    "temp-mail.org",
    "guerrillamail.com",
    "sharklasers.com",
    "yopmail.com",
    "trashmail.com",
    "throwawaymail.com",
    "fakeinbox.com",
    "mailnesia.com",
    "getnada.com",
    "tempinbox.com",
    "dispostable.com",
    "10minutemail.com",
    "grr.la",
    "maildrop.cc",
    "33mail.com",
    "spamgourmet.com",
    "emailondeck.com",
    "mailforspam.com",
}


class EntryRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    referred_by: Optional[str] = None
    campaign_id: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("email")
    @classmethod
    def email_is_deliverable(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please enter a valid email address")
        if value.split("@")[1] in DISPOSABLE_EMAIL_DOMAINS:
            raise ValueError("Please use a non-disposable email address")
        return value

    @field_validator("referred_by", "campaign_id")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class ConversionPostback(BaseModel):
    referral_code: Optional[str] = None
    transaction_id: Optional[str] = None
    test_only: bool = False


class SheetsSyncRequest(BaseModel):
    automated: bool = False

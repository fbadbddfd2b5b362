import secrets
import string
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from app.database import Base

REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
REFERRAL_CODE_LENGTH = 8


def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_referral_code() -> str:
    return "".join(
        secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH)
    )


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False)
    prize_name = Column(String(255), nullable=False, default="")
    prize_amount = Column(String(100), nullable=False, default="")
    target_audience = Column(String(255), nullable=False, default="")
    source_id = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Entry(Base):
    __tablename__ = "entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=False, unique=True, index=True)
    referral_code = Column(
        String(32), nullable=False, unique=True, index=True,
        default=generate_referral_code
    )
    referred_by = Column(String(32), nullable=True, index=True)
    entry_count = Column(Integer, nullable=False, default=1)
    referral_count = Column(Integer, nullable=False, default=0)
    total_entries = Column(Integer, nullable=False, default=1)
    campaign_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ReferralDebug(Base):
    __tablename__ = "referral_debug"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), nullable=True)
    referrer_email = Column(String(320), nullable=True)
    referred_by = Column(String(32), nullable=True)
    referral_code = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class ReferralConversion(Base):
    __tablename__ = "referral_conversions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    referral_code = Column(String(32), nullable=True, index=True)
    transaction_id = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class SheetsSyncMetadata(Base):
    __tablename__ = "sheets_sync_metadata"

    id = Column(String(100), primary_key=True)
    last_sync_time = Column(DateTime, nullable=True)
    entries_synced = Column(Integer, nullable=False, default=0)
    total_entries_synced = Column(Integer, nullable=False, default=0)
    last_sync_type = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

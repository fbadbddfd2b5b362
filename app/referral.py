import logging
from typing import Optional
from urllib.parse import quote

from sqlalchemy import insert, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from app import config
from app.metrics import referral_debug_failures_total, referral_validation_failures_total
from app.models import Entry, ReferralDebug

logger = logging.getLogger(__name__)

entries = Entry.__table__
referral_debug = ReferralDebug.__table__


def validate_referral(conn: Connection, code: Optional[str]) -> bool:
    if not code:
        return False

    try:
        found = conn.execute(
            select(entries.c.id).where(entries.c.referral_code == code).limit(1)
        ).first()
    except SQLAlchemyError as e:
        logger.error("Referral code validation failed for %s: %s", code, e)
        referral_validation_failures_total.inc()
        conn.rollback()
        return False

    if found is None:
        logger.info("Invalid referral code or not found: %s", code)
        return False
    return True


def log_referral(conn: Connection, email: str, referred_by: str, referral_code: str) -> None:
    """Write one referral_debug row. Never raises."""
    try:
        referrer_email = conn.execute(
            select(entries.c.email).where(entries.c.referral_code == referred_by)
        ).scalar_one_or_none()

        conn.execute(
            insert(referral_debug).values(
                email=email,
                referrer_email=referrer_email,
                referred_by=referred_by,
                referral_code=referral_code,
            )
        )
        conn.commit()
    except SQLAlchemyError as e:
        logger.error("Error logging referral debug for %s: %s", email, e)
        referral_debug_failures_total.inc()
        conn.rollback()


def build_referral_link(referral_code: str, source_id: Optional[str] = None) -> str:
    link = (
        f"{config.REFERRAL_BASE_URL}?utm_source=sweeps"
        f"&oid={config.REFERRAL_OFFER_ID}&sub1={referral_code}"
    )
    if source_id and source_id.strip():
        link += f"&source_id={quote(source_id.strip(), safe='')}"
    return link

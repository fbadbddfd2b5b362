import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from app.exceptions import (
    EntryLookupError,
    EntryNotFoundException,
    EntryWriteError,
    database_error_message,
)
from app.models import Entry, ReferralConversion

logger = logging.getLogger(__name__)

entries = Entry.__table__
referral_conversions = ReferralConversion.__table__

EXISTING_ENTRY_COLUMNS = (
    entries.c.id,
    entries.c.email,
    entries.c.referral_code,
    entries.c.entry_count,
    entries.c.referral_count,
    entries.c.total_entries,
    entries.c.campaign_id,
    entries.c.created_at,
)


def get_existing_entry(conn: Connection, email: str) -> Optional[dict]:
    if not email:
        return None

    try:
        row = conn.execute(
            select(*EXISTING_ENTRY_COLUMNS)
            .where(entries.c.email == email.lower())
            .order_by(entries.c.created_at.desc())
            .limit(1)
        ).mappings().first()
    except SQLAlchemyError as e:
        logger.error("Error checking for existing entry %s: %s", email, e)
        raise EntryLookupError(database_error_message(e), {"email": email}) from e

    return dict(row) if row else None


def create_entry(
    conn: Connection,
    first_name: str,
    last_name: str,
    email: str,
    referred_by: Optional[str],
    entry_count: int,
    campaign_id: Optional[str],
) -> dict:
    entry_count = entry_count or 1
    try:
        row = conn.execute(
            insert(entries)
            .values(
                first_name=first_name,
                last_name=last_name,
                email=email.lower(),
                referred_by=referred_by,
                entry_count=entry_count,
                total_entries=entry_count,
                campaign_id=campaign_id,
            )
            .returning(*entries.c)
        ).mappings().one()
        conn.commit()
    except SQLAlchemyError as e:
        logger.error("Error creating entry for %s: %s", email, e)
        conn.rollback()
        raise EntryWriteError(database_error_message(e), {"email": email}) from e

    return dict(row)


def get_entry(conn: Connection, entry_id: str) -> Optional[dict]:
    row = conn.execute(
        select(entries).where(entries.c.id == entry_id)
    ).mappings().first()
    return dict(row) if row else None


def get_entry_by_referral_code(conn: Connection, referral_code: str) -> Optional[dict]:
    row = conn.execute(
        select(entries).where(entries.c.referral_code == referral_code)
    ).mappings().first()
    return dict(row) if row else None


def list_entries(conn: Connection, campaign_id: Optional[str] = None, limit: int = 100) -> list[dict]:
    query = select(entries).order_by(entries.c.created_at.desc()).limit(limit)
    if campaign_id:
        query = query.where(entries.c.campaign_id == campaign_id)
    return [dict(row) for row in conn.execute(query).mappings()]


def list_entries_since(conn: Connection, since: datetime) -> list[dict]:
    query = (
        select(entries)
        .where(entries.c.created_at > since)
        .order_by(entries.c.created_at.asc())
    )
    return [dict(row) for row in conn.execute(query).mappings()]


def get_entry_summary(conn: Connection, campaign_id: Optional[str] = None) -> dict:
    query = select(
        func.count(entries.c.id),
        func.coalesce(func.sum(entries.c.referral_count), 0),
        func.coalesce(func.sum(entries.c.total_entries), 0),
        func.count(entries.c.referred_by),
    )
    if campaign_id:
        query = query.where(entries.c.campaign_id == campaign_id)
    total, referrals, total_entries, referred = conn.execute(query).one()
    return {
        "entries": total,
        "referrals": int(referrals),
        "total_entries": int(total_entries),
        "referred_entries": referred,
    }


def delete_entry(conn: Connection, entry_id: str) -> int:
    """
    Remove an entry along with everything that points at its referral code.

    Conversions credited to the code are deleted and entries it referred lose
    their referred_by link. Returns the number of entry rows deleted.
    """
    try:
        referral_code = conn.execute(
            select(entries.c.referral_code).where(entries.c.id == entry_id)
        ).scalar_one_or_none()
        if referral_code is None:
            raise EntryNotFoundException(f"Entry not found: {entry_id}", {"id": entry_id})

        removed = conn.execute(
            delete(referral_conversions)
            .where(referral_conversions.c.referral_code == referral_code)
        ).rowcount
        logger.info("Removed %d referral conversions for code %s", removed, referral_code)

        conn.execute(
            update(entries)
            .where(entries.c.referred_by == referral_code)
            .values(referred_by=None, updated_at=datetime.utcnow())
        )

        deleted = conn.execute(
            delete(entries).where(entries.c.id == entry_id)
        ).rowcount
        conn.commit()
    except SQLAlchemyError as e:
        logger.error("Error deleting entry %s: %s", entry_id, e)
        conn.rollback()
        raise EntryWriteError(database_error_message(e), {"id": entry_id}) from e

    logger.info("Deleted entry %s", entry_id)
    return deleted


def record_conversion(conn: Connection, referral_code: str, transaction_id: str) -> dict:
    """
    Credit a referrer for one ad-tracking conversion.

    A transaction id is credited at most once.
    """
    try:
        already = conn.execute(
            select(referral_conversions.c.id)
            .where(referral_conversions.c.transaction_id == transaction_id)
        ).first()
        if already is not None:
            logger.info("Conversion %s already recorded", transaction_id)
            return {"status": "duplicate", "transaction_id": transaction_id}

        referrer = get_entry_by_referral_code(conn, referral_code)
        if referrer is None:
            raise EntryNotFoundException(
                f"Referral code not found: {referral_code}",
                {"referral_code": referral_code}
            )

        conn.execute(
            insert(referral_conversions).values(
                referral_code=referral_code,
                transaction_id=transaction_id,
            )
        )
        conn.execute(
            update(entries)
            .where(entries.c.id == referrer["id"])
            .values(
                referral_count=entries.c.referral_count + 1,
                entry_count=entries.c.entry_count + 1,
                total_entries=entries.c.total_entries + 1,
                updated_at=datetime.utcnow(),
            )
        )
        conn.commit()
    except SQLAlchemyError as e:
        logger.error("Error recording conversion %s: %s", transaction_id, e)
        conn.rollback()
        raise EntryWriteError(database_error_message(e), {"transaction_id": transaction_id}) from e

    logger.info("Credited conversion %s to %s", transaction_id, referral_code)
    return {
        "status": "credited",
        "transaction_id": transaction_id,
        "referral_code": referral_code,
        "referrer_id": referrer["id"],
        "total_entries": referrer["total_entries"] + 1,
    }

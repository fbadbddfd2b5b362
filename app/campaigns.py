import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from app import config
from app.exceptions import CampaignResolutionError, database_error_message
from app.models import Campaign

logger = logging.getLogger(__name__)

campaigns = Campaign.__table__


def get_campaign_by_id(conn: Connection, campaign_id: str) -> Optional[dict]:
    row = conn.execute(
        select(campaigns).where(campaigns.c.id == campaign_id)
    ).mappings().first()
    return dict(row) if row else None


def get_campaign_by_slug(conn: Connection, slug: str) -> Optional[dict]:
    row = conn.execute(
        select(campaigns).where(campaigns.c.slug == slug)
    ).mappings().first()
    return dict(row) if row else None


def resolve_campaign(conn: Connection, campaign_id: Optional[str] = None) -> Optional[dict]:
    """
    Map an optional campaign id to its campaign record.

    Without an id the configured default slug is used. An unknown id or a
    missing default gives None; only a failing query raises.
    """
    try:
        if campaign_id:
            campaign = get_campaign_by_id(conn, campaign_id)
        else:
            campaign = get_campaign_by_slug(conn, config.DEFAULT_CAMPAIGN_SLUG)
    except SQLAlchemyError as e:
        logger.error("Error resolving campaign %s: %s", campaign_id or "<default>", e)
        raise CampaignResolutionError(database_error_message(e), {"campaign_id": campaign_id}) from e

    if campaign is None:
        logger.warning(
            "Campaign not found: %s",
            campaign_id or f"slug={config.DEFAULT_CAMPAIGN_SLUG}"
        )
    return campaign

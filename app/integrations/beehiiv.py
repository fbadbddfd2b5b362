"""
Beehiiv API client for the sweepstakes email list.

New entrants are subscribed with campaign attribution and then tagged; the
tag call is a second request because Beehiiv does not reliably apply tags
sent with the subscription.
"""

import logging
from typing import Optional

import requests

from app import config
from app.exceptions import BeehiivAPIException
from app.metrics import integration_errors_total

logger = logging.getLogger(__name__)

BEEHIIV_API_BASE = "https://api.beehiiv.com/v2"
SWEEPSTAKES_TAGS = ["comprendi", "sweeps"]
REQUEST_TIMEOUT = 10


def build_subscriber_data(
    email: str,
    first_name: str,
    last_name: str,
    referral_code: str,
    campaign_slug: Optional[str],
) -> dict:
    return {
        "email": email,
        "first_name": first_name,
        "last_name": last_name,
        "utm_source": "sweepstakes",
        "utm_medium": campaign_slug or "unknown",
        "utm_campaign": "comprendi",
        "reactivate": True,
        "send_welcome_email": False,
        "double_opt_in": False,
        "custom_fields": [
            {"name": "First Name", "value": first_name},
            {"name": "Last Name", "value": last_name},
            {"name": "referral_code", "value": referral_code},
            {"name": "sweepstakes_entries", "value": "1"},
        ],
    }


class BeehiivClient:
    def __init__(self, api_key: Optional[str] = None, publication_id: Optional[str] = None):
        self.api_key = api_key or config.BEEHIIV_API_KEY
        if not self.api_key:
            raise BeehiivAPIException("BEEHIIV_API_KEY is not configured")
        self.publication_id = publication_id or config.BEEHIIV_PUBLICATION_ID
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            }
        )

    @property
    def subscriptions_url(self) -> str:
        return f"{BEEHIIV_API_BASE}/publications/{self.publication_id}/subscriptions"

    def subscribe(self, subscriber_data: dict) -> dict:
        logger.info("Subscribing %s to Beehiiv", subscriber_data["email"])
        try:
            response = self.session.post(
                self.subscriptions_url, json=subscriber_data, timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            integration_errors_total.labels(integration="beehiiv").inc()
            logger.error("Beehiiv subscription failed for %s: %s", subscriber_data["email"], e)
            raise BeehiivAPIException(
                "Failed to subscribe to newsletter", {"email": subscriber_data["email"]}
            ) from e
        return response.json()

    def get_subscriber(self, email: str) -> Optional[dict]:
        try:
            response = self.session.get(
                self.subscriptions_url, params={"email": email}, timeout=REQUEST_TIMEOUT
            )
            response.raise_for_status()
        except requests.RequestException as e:
            integration_errors_total.labels(integration="beehiiv").inc()
            raise BeehiivAPIException(f"Could not look up subscriber: {e}", {"email": email}) from e

        data = response.json().get("data") or []
        return data[0] if data else None

    def add_tags(self, subscriber_id: str, tags: list[str]) -> dict:
        url = f"{self.subscriptions_url}/{subscriber_id}/tags"
        try:
            response = self.session.post(url, json={"tags": tags}, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            integration_errors_total.labels(integration="beehiiv").inc()
            raise BeehiivAPIException(
                f"Could not tag subscriber: {e}", {"subscriber_id": subscriber_id}
            ) from e
        return response.json()

    def tag_sweepstakes_subscriber(self, email: str) -> bool:
        """Tags are best-effort; returns False instead of raising."""
        try:
            subscriber = self.get_subscriber(email)
            if subscriber is None:
                logger.error("No Beehiiv subscriber found with email %s", email)
                return False
            self.add_tags(subscriber["id"], SWEEPSTAKES_TAGS)
        except BeehiivAPIException as e:
            logger.error("Error adding Beehiiv tags for %s: %s", email, e)
            return False

        logger.info("Added Beehiiv tags for %s", email)
        return True


def subscribe_entry(entry: dict, campaign_slug: Optional[str], client: Optional[BeehiivClient] = None):
    """Subscribe and tag a new entrant. Runs off the request path."""
    if client is None:
        if not config.BEEHIIV_API_KEY:
            logger.info("Beehiiv not configured; skipping subscription for %s", entry["email"])
            return
        client = BeehiivClient()

    data = build_subscriber_data(
        entry["email"],
        entry["first_name"],
        entry["last_name"],
        entry["referral_code"],
        campaign_slug,
    )
    try:
        client.subscribe(data)
    except BeehiivAPIException:
        return
    client.tag_sweepstakes_subscriber(entry["email"])

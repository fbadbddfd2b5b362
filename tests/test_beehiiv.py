"""
Tests for the Beehiiv client.
Uses responses library to mock HTTP requests to the Beehiiv API.
"""

import json
from unittest.mock import MagicMock

import pytest
import responses

from app.exceptions import BeehiivAPIException
from app.integrations.beehiiv import (
    BEEHIIV_API_BASE,
    BeehiivClient,
    build_subscriber_data,
    subscribe_entry,
)

PUBLICATION_ID = "pub_test"
SUBSCRIPTIONS_URL = f"{BEEHIIV_API_BASE}/publications/{PUBLICATION_ID}/subscriptions"


@pytest.fixture
def beehiiv_client():
    return BeehiivClient(api_key="test-key", publication_id=PUBLICATION_ID)


@pytest.fixture
def sample_entry():
    return {
        "email": "ann@example.com",
        "first_name": "Ann",
        "last_name": "Lee",
        "referral_code": "ABCD1234",
    }


class TestSubscriberData:
    def test_campaign_slug_becomes_utm_medium(self):
        data = build_subscriber_data("ann@example.com", "Ann", "Lee", "ABCD1234", "spring")

        assert data["utm_medium"] == "spring"
        assert data["send_welcome_email"] is False
        assert data["double_opt_in"] is False
        assert {"name": "referral_code", "value": "ABCD1234"} in data["custom_fields"]

    def test_missing_slug_is_unknown(self):
        data = build_subscriber_data("ann@example.com", "Ann", "Lee", "ABCD1234", None)

        assert data["utm_medium"] == "unknown"


class TestBeehiivClient:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.setattr("app.config.BEEHIIV_API_KEY", None)

        with pytest.raises(BeehiivAPIException):
            BeehiivClient()

    @responses.activate
    def test_subscribe_sends_bearer_token(self, beehiiv_client):
        responses.add(responses.POST, SUBSCRIPTIONS_URL, json={"data": {"id": "sub_1"}}, status=201)

        result = beehiiv_client.subscribe({"email": "ann@example.com"})

        assert result["data"]["id"] == "sub_1"
        assert responses.calls[0].request.headers["Authorization"] == "Bearer test-key"

    @responses.activate
    def test_subscribe_failure_raises(self, beehiiv_client):
        responses.add(responses.POST, SUBSCRIPTIONS_URL, json={"errors": []}, status=400)

        with pytest.raises(BeehiivAPIException, match="Failed to subscribe"):
            beehiiv_client.subscribe({"email": "ann@example.com"})

    @responses.activate
    def test_get_subscriber_not_found(self, beehiiv_client):
        responses.add(responses.GET, SUBSCRIPTIONS_URL, json={"data": []}, status=200)

        assert beehiiv_client.get_subscriber("ann@example.com") is None

    @responses.activate
    def test_tagging_posts_sweepstakes_tags(self, beehiiv_client):
        responses.add(responses.GET, SUBSCRIPTIONS_URL, json={"data": [{"id": "sub_1"}]}, status=200)
        responses.add(responses.POST, f"{SUBSCRIPTIONS_URL}/sub_1/tags", json={}, status=200)

        assert beehiiv_client.tag_sweepstakes_subscriber("ann@example.com") is True
        assert json.loads(responses.calls[1].request.body) == {"tags": ["comprendi", "sweeps"]}

    @responses.activate
    def test_tagging_failure_is_not_raised(self, beehiiv_client):
        responses.add(responses.GET, SUBSCRIPTIONS_URL, json={"data": [{"id": "sub_1"}]}, status=200)
        responses.add(responses.POST, f"{SUBSCRIPTIONS_URL}/sub_1/tags", json={}, status=500)

        assert beehiiv_client.tag_sweepstakes_subscriber("ann@example.com") is False


class TestSubscribeEntry:
    def test_skipped_without_api_key(self, monkeypatch, sample_entry):
        monkeypatch.setattr("app.config.BEEHIIV_API_KEY", None)

        with responses.RequestsMock() as rsps:
            subscribe_entry(sample_entry, "spring")
            assert len(rsps.calls) == 0

    def test_tags_after_subscribing(self, sample_entry):
        client = MagicMock()

        subscribe_entry(sample_entry, "spring", client=client)

        client.subscribe.assert_called_once()
        client.tag_sweepstakes_subscriber.assert_called_once_with("ann@example.com")

    def test_no_tagging_when_subscribe_fails(self, sample_entry):
        client = MagicMock()
        client.subscribe.side_effect = BeehiivAPIException("Failed to subscribe to newsletter")

        subscribe_entry(sample_entry, "spring", client=client)

        client.tag_sweepstakes_subscriber.assert_not_called()

"""
Tests for the Google Sheets export.
Uses responses library to mock the Sheets API.
"""

import json
import re
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
import responses

from app.exceptions import SheetsAPIException
from app.integrations.sheets import (
    HEADERS,
    SHEETS_API_BASE,
    SHEETS_SCOPES,
    SheetsClient,
    entry_to_row,
    format_created_at,
    get_sync_metadata,
    sync_entries_to_sheet,
)

SPREADSHEET_ID = "sheet-123"
BASE_URL = f"{SHEETS_API_BASE}/{SPREADSHEET_ID}"


@pytest.fixture
def sheets_client():
    return SheetsClient(access_token="token", spreadsheet_id=SPREADSHEET_ID, sheet_name="Entries")


def mock_existing_sheet(rsps, emails):
    rsps.add(
        responses.GET,
        BASE_URL,
        json={"sheets": [{"properties": {"title": "Entries", "sheetId": 42}}]},
    )
    rows = [["First Name"]] + [["x"] for _ in emails]
    rsps.add(responses.GET, re.compile(r".*/values/Entries!A:A$"), json={"values": rows})
    rsps.add(
        responses.GET,
        re.compile(r".*/values/Entries!C:C$"),
        json={"values": [["Email"]] + [[email] for email in emails]},
    )


class TestRowFormatting:
    def test_created_at_format(self):
        assert format_created_at(datetime(2025, 3, 4, 15, 7)) == "03/04/2025 03:07 PM"

    def test_referred_by_column_is_blank(self):
        entry = {
            "first_name": "Ann",
            "last_name": "Lee",
            "email": "ann@example.com",
            "referral_code": "ABCD1234",
            "referred_by": "ZZZZ9999",
            "entry_count": 2,
            "referral_count": 1,
            "total_entries": 2,
            "created_at": datetime(2025, 1, 1, 9, 0),
        }

        row = entry_to_row(entry)

        assert len(row) == len(HEADERS)
        assert row[4] == ""
        assert row[-1] == "01/01/2025 09:00 AM"


class TestSheetsClient:
    def test_requires_spreadsheet_id(self, monkeypatch):
        monkeypatch.setattr("app.config.SPREADSHEET_ID", None)

        with pytest.raises(SheetsAPIException, match="SPREADSHEET_ID"):
            SheetsClient(access_token="token")

    def test_requires_credentials(self, monkeypatch):
        monkeypatch.setattr("app.config.GOOGLE_SERVICE_ACCOUNT", None)
        monkeypatch.setattr("app.config.GOOGLE_APPLICATION_CREDENTIALS", None)

        with pytest.raises(SheetsAPIException, match="no service account"):
            SheetsClient(spreadsheet_id=SPREADSHEET_ID)

    def test_inline_service_account(self, monkeypatch):
        monkeypatch.setattr("app.config.GOOGLE_SERVICE_ACCOUNT", '{"type": "service_account"}')
        credentials = MagicMock()

        with patch(
            "app.integrations.sheets.service_account.Credentials.from_service_account_info",
            return_value=credentials,
        ) as from_info, patch("app.integrations.sheets.AuthorizedSession") as session_cls:
            client = SheetsClient(spreadsheet_id=SPREADSHEET_ID)

        from_info.assert_called_once_with({"type": "service_account"}, scopes=SHEETS_SCOPES)
        session_cls.assert_called_once_with(credentials)
        assert client.session is session_cls.return_value

    def test_invalid_service_account_json(self, monkeypatch):
        monkeypatch.setattr("app.config.GOOGLE_SERVICE_ACCOUNT", "{not json")

        with pytest.raises(SheetsAPIException, match="not valid JSON"):
            SheetsClient(spreadsheet_id=SPREADSHEET_ID)

    @responses.activate
    def test_ensure_sheet_creates_missing_tab(self, sheets_client):
        responses.add(responses.GET, BASE_URL, json={"sheets": []})
        responses.add(
            responses.POST,
            f"{BASE_URL}:batchUpdate",
            json={"replies": [{"addSheet": {"properties": {"sheetId": 7}}}]},
        )
        responses.add(responses.PUT, re.compile(r".*/values/Entries!A1:I1.*"), json={})

        assert sheets_client.ensure_sheet() == 7
        assert json.loads(responses.calls[2].request.body) == {"values": [HEADERS]}

    @responses.activate
    def test_api_error_raises(self, sheets_client):
        responses.add(responses.GET, BASE_URL, status=403, json={"error": "denied"})

        with pytest.raises(SheetsAPIException):
            sheets_client.ensure_sheet()


class TestSyncEntries:
    def test_no_new_entries_still_records_sync(self, conn, sheets_client):
        with responses.RequestsMock() as rsps:
            result = sync_entries_to_sheet(conn, sheets_client, automated=True)
            assert len(rsps.calls) == 0

        assert result["synced"] == 0
        metadata = get_sync_metadata(conn)
        assert metadata["last_sync_type"] == "automated"
        assert metadata["entries_synced"] == 0

    def test_appends_only_unseen_emails(self, conn, sheets_client, make_entry):
        make_entry("seen@example.com", "CODE0001")
        make_entry("fresh@example.com", "CODE0002")

        with responses.RequestsMock() as rsps:
            mock_existing_sheet(rsps, ["Seen@Example.com"])
            rsps.add(responses.PUT, re.compile(r".*/values/Entries!A3:I3.*"), json={})

            result = sync_entries_to_sheet(conn, sheets_client)

            written = json.loads(rsps.calls[-1].request.body)["values"]

        assert result["synced"] == 1
        assert result["sheet_url"].endswith("#gid=42")
        assert [row[2] for row in written] == ["fresh@example.com"]
        assert get_sync_metadata(conn)["total_entries_synced"] == 1

    def test_second_run_skips_already_synced(self, conn, sheets_client, make_entry):
        make_entry("fresh@example.com", "CODE0002")

        with responses.RequestsMock() as rsps:
            mock_existing_sheet(rsps, [])
            rsps.add(responses.PUT, re.compile(r".*/values/Entries!A2:I2.*"), json={})
            sync_entries_to_sheet(conn, sheets_client)

        with responses.RequestsMock() as rsps:
            result = sync_entries_to_sheet(conn, sheets_client)

        assert result["synced"] == 0
        assert get_sync_metadata(conn)["total_entries_synced"] == 1

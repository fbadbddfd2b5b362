"""
Google Sheets export of sweepstakes entries.

Only entries created after the last recorded sync are considered, and rows
whose email already appears in column C are skipped. Sync metadata is
written after every run, including runs with nothing to append.
"""

import json
import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account
from sqlalchemy import select, insert, update
from sqlalchemy.engine import Connection

from app import config
from app.entries import list_entries_since
from app.exceptions import SheetsAPIException
from app.metrics import integration_errors_total
from app.models import SheetsSyncMetadata

logger = logging.getLogger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
SYNC_METADATA_ID = "google_sheets_sync"
REQUEST_TIMEOUT = 15
EPOCH = datetime(1970, 1, 1)

HEADERS = [
    "First Name",
    "Last Name",
    "Email",
    "Referral Code",
    "Referred By",
    "Entry Count",
    "Referral Count",
    "Total Entries",
    "Created At",
]

sync_metadata = SheetsSyncMetadata.__table__


def format_created_at(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.strftime("%m/%d/%Y %I:%M %p")


def entry_to_row(entry: dict) -> list:
    # "Referred By" (column E) is written empty
    return [
        entry["first_name"],
        entry["last_name"],
        entry["email"],
        entry["referral_code"],
        "",
        entry["entry_count"],
        entry["referral_count"],
        entry["total_entries"],
        format_created_at(entry["created_at"]),
    ]


def get_sheets_credentials():
    """
    Service account credentials for the Sheets API.

    GOOGLE_SERVICE_ACCOUNT holds the key JSON inline; otherwise the key file
    at GOOGLE_APPLICATION_CREDENTIALS is used. Returns None if neither is set.
    """
    if config.GOOGLE_SERVICE_ACCOUNT:
        try:
            info = json.loads(config.GOOGLE_SERVICE_ACCOUNT)
        except ValueError as e:
            raise SheetsAPIException("GOOGLE_SERVICE_ACCOUNT is not valid JSON") from e
        return service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)

    if config.GOOGLE_APPLICATION_CREDENTIALS:
        logger.info("Loading Sheets credentials from: %s", config.GOOGLE_APPLICATION_CREDENTIALS)
        return service_account.Credentials.from_service_account_file(
            config.GOOGLE_APPLICATION_CREDENTIALS, scopes=SHEETS_SCOPES
        )

    return None


def sheets_configured() -> bool:
    return bool(config.SPREADSHEET_ID and (
        config.GOOGLE_SERVICE_ACCOUNT or config.GOOGLE_APPLICATION_CREDENTIALS
    ))


class SheetsClient:
    def __init__(
        self,
        access_token: Optional[str] = None,
        spreadsheet_id: Optional[str] = None,
        sheet_name: Optional[str] = None,
    ):
        self.spreadsheet_id = spreadsheet_id or config.SPREADSHEET_ID
        if not self.spreadsheet_id:
            raise SheetsAPIException("Google Sheets sync is not configured: SPREADSHEET_ID is missing")
        self.sheet_name = sheet_name or config.SHEET_NAME

        if access_token:
            self.session = requests.Session()
            self.session.headers["Authorization"] = f"Bearer {access_token}"
        else:
            credentials = get_sheets_credentials()
            if credentials is None:
                raise SheetsAPIException("Google Sheets sync is not configured: no service account")
            # AuthorizedSession is a requests.Session that refreshes the token itself
            self.session = AuthorizedSession(credentials)
        self.session.headers["Content-Type"] = "application/json"

    @property
    def base_url(self) -> str:
        return f"{SHEETS_API_BASE}/{self.spreadsheet_id}"

    def sheet_url(self, sheet_id) -> str:
        return f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}/edit#gid={sheet_id}"

    def _range_url(self, cell_range: str) -> str:
        return f"{self.base_url}/values/{quote(f'{self.sheet_name}!{cell_range}', safe='!:')}"

    def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = self.session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            integration_errors_total.labels(integration="sheets").inc()
            logger.error("Google Sheets %s %s failed: %s", method, url, e)
            raise SheetsAPIException(f"Google Sheets request failed: {e}") from e
        return response.json() if response.content else {}

    def ensure_sheet(self):
        """Return the sheet id, creating the tab with a header row if needed."""
        spreadsheet = self._request("GET", self.base_url)
        for sheet in spreadsheet.get("sheets", []):
            if sheet["properties"]["title"] == self.sheet_name:
                return sheet["properties"]["sheetId"]

        logger.info("Sheet %r not found, creating it", self.sheet_name)
        created = self._request(
            "POST",
            f"{self.base_url}:batchUpdate",
            json={"requests": [{"addSheet": {"properties": {"title": self.sheet_name}}}]},
        )
        sheet_id = created["replies"][0]["addSheet"]["properties"]["sheetId"]
        self.write_rows(1, [HEADERS])
        return sheet_id

    def get_column(self, column: str) -> list:
        data = self._request("GET", self._range_url(f"{column}:{column}"))
        return [row[0] if row else "" for row in data.get("values", [])]

    def write_rows(self, start_row: int, rows: list[list]) -> dict:
        end_row = start_row + len(rows) - 1
        return self._request(
            "PUT",
            self._range_url(f"A{start_row}:I{end_row}"),
            params={"valueInputOption": "RAW"},
            json={"values": rows},
        )


def get_sync_metadata(conn: Connection) -> Optional[dict]:
    row = conn.execute(
        select(sync_metadata).where(sync_metadata.c.id == SYNC_METADATA_ID)
    ).mappings().first()
    return dict(row) if row else None


def save_sync_metadata(conn: Connection, previous: Optional[dict], synced: int, automated: bool):
    now = datetime.utcnow()
    values = {
        "last_sync_time": now,
        "entries_synced": synced,
        "total_entries_synced": (previous["total_entries_synced"] if previous else 0) + synced,
        "last_sync_type": "automated" if automated else "manual",
        "updated_at": now,
    }
    if previous is None:
        conn.execute(insert(sync_metadata).values(id=SYNC_METADATA_ID, **values))
    else:
        conn.execute(
            update(sync_metadata)
            .where(sync_metadata.c.id == SYNC_METADATA_ID)
            .values(**values)
        )
    conn.commit()


def sync_entries_to_sheet(conn: Connection, client: SheetsClient, automated: bool = False) -> dict:
    metadata = get_sync_metadata(conn)
    last_sync_time = (metadata or {}).get("last_sync_time") or EPOCH
    logger.info(
        "Starting %s Google Sheets sync; last sync at %s",
        "automated" if automated else "manual",
        last_sync_time.isoformat(),
    )

    entries = list_entries_since(conn, last_sync_time)
    if not entries:
        save_sync_metadata(conn, metadata, 0, automated)
        return {"synced": 0, "message": "No new entries to sync", "is_automated": automated}

    sheet_id = client.ensure_sheet()
    used_rows = client.get_column("A")
    existing_emails = {email.strip().lower() for email in client.get_column("C") if email}
    new_rows = [
        entry_to_row(entry)
        for entry in entries
        if entry["email"].lower() not in existing_emails
    ]
    logger.info("After filtering duplicates, will sync %d new entries", len(new_rows))

    if new_rows:
        client.write_rows(len(used_rows) + 1, new_rows)

    save_sync_metadata(conn, metadata, len(new_rows), automated)
    return {
        "synced": len(new_rows),
        "message": (
            f"Synced {len(new_rows)} entries" if new_rows
            else "No new entries to sync (all entries already exist in sheet)"
        ),
        "sheet_url": client.sheet_url(sheet_id),
        "is_automated": automated,
    }

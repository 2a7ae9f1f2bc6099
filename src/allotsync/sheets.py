"""Spreadsheet write capability and its Google Sheets implementation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

# Values are parsed as if typed into the UI, so dates and numbers keep
# their spreadsheet types instead of being stored as literal strings.
VALUE_INPUT_OPTION = "USER_ENTERED"


class SheetsWriter(Protocol):
    """Anything that can apply a batch of single-cell writes."""

    def batch_write(self, spreadsheet_id: str, updates: list[tuple[str, str]]) -> dict[str, Any]:
        """Apply all ``(range, value)`` pairs in one request.

        Raises whatever the underlying transport raises on failure.
        """
        ...


class GoogleSheetsWriter:
    """Sheets API v4 writer around a ``googleapiclient`` resource.

    Parameters
    ----------
    service : googleapiclient.discovery.Resource
        Result of ``build("sheets", "v4", credentials=...)``.
    """

    def __init__(self, service: Any) -> None:
        self._service = service

    def batch_write(self, spreadsheet_id: str, updates: list[tuple[str, str]]) -> dict[str, Any]:
        body = {
            "valueInputOption": VALUE_INPUT_OPTION,
            "data": [{"range": rng, "values": [[value]]} for rng, value in updates],
        }
        request = self._service.spreadsheets().values().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body=body,
        )
        return request.execute()


def load_credentials(
    *,
    credentials_file: str | None = None,
    credentials_json: str | None = None,
) -> Any:
    """Load service-account credentials from inline JSON or a key file.

    Inline JSON wins when both are given.

    Raises:
        ValueError: If neither source is configured.
    """
    from google.oauth2.service_account import Credentials

    if credentials_json:
        info = json.loads(credentials_json)
        return Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
    if credentials_file:
        return Credentials.from_service_account_file(
            str(Path(credentials_file).expanduser()), scopes=SHEETS_SCOPES
        )
    raise ValueError(
        "No Google credentials configured: set credentials_file or "
        "GOOGLE_SERVICE_ACCOUNT_JSON"
    )


def build_sheets_writer(config: dict[str, Any]) -> GoogleSheetsWriter:
    """Construct a :class:`GoogleSheetsWriter` from a loaded config dict."""
    from googleapiclient.discovery import build

    creds = load_credentials(
        credentials_file=config.get("credentials_file"),
        credentials_json=config.get("credentials_json"),
    )
    service = build("sheets", "v4", credentials=creds, cache_discovery=False)
    return GoogleSheetsWriter(service)

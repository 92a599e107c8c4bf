"""
Xiyin Bot: Google Sheets authentication.

The spreadsheet is the bot's database and its content editor at the same
time, so the bot authenticates as a service account that the sheet has been
shared with. No interactive consent flow is involved.
"""

from __future__ import annotations

import logging
from pathlib import Path

import gspread
from google.oauth2.service_account import Credentials

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


def get_sheets_client(service_account_file: str | None = None) -> gspread.Client:
    """Authenticate with a service-account key file and return a gspread client."""
    if service_account_file is None:
        from src.config import settings
        service_account_file = settings.GOOGLE_SERVICE_ACCOUNT_FILE

    key_path = Path(service_account_file)
    if not key_path.exists():
        raise FileNotFoundError(
            f"Service account key not found at {key_path}. "
            "Create one in the Google Cloud Console and share the sheet with it."
        )

    creds = Credentials.from_service_account_file(str(key_path), scopes=SCOPES)
    client = gspread.authorize(creds)
    logger.info("Google Sheets client authorized as %s", creds.service_account_email)
    return client


def open_spreadsheet(spreadsheet_id: str | None = None, client: gspread.Client | None = None) -> gspread.Spreadsheet:
    """Open the configured spreadsheet by key."""
    if spreadsheet_id is None:
        from src.config import settings
        spreadsheet_id = settings.SPREADSHEET_ID
    if not spreadsheet_id:
        raise ValueError("SPREADSHEET_ID is not set")

    client = client or get_sheets_client()
    spreadsheet = client.open_by_key(spreadsheet_id)
    logger.info("Opened spreadsheet %s", spreadsheet_id)
    return spreadsheet


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    print("Checking Google Sheets access...")
    sheet = open_spreadsheet()
    titles = [ws.title for ws in sheet.worksheets()]
    print(f"Access OK! Worksheets: {', '.join(titles) or '(none)'}")

"""Google Sheets sink.

Writes balances, a daily balance history and one tab of transactions per
month into the configured spreadsheets. Uses the Sheets v4 API through
``google-api-python-client`` with OAuth user credentials from the config.
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httplib2
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import Config, GoogleConfig, GoogleCredentials
from ..errors import ConfigError, SinkError
from ..models import Account, AccountType
from .ranges import DataRange, Range, column_letter, translate_range

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
HISTORY_DATE_FORMAT = "%m/%d/%Y"
HISTORY_ROW_OFFSET = 3  # row 1 holds account ids, row 2 account names

BALANCES_SHEET = "Balances"
HISTORY_SHEET = "History"
HOLDINGS_SHEET = "Investments"


# OAuth


def get_auth_url(credentials: GoogleCredentials) -> str:
    """Build the consent URL the user opens to authorize Mintable."""
    params = {
        "client_id": credentials.client_id,
        "redirect_uri": credentials.redirect_uri,
        "response_type": "code",
        "scope": " ".join(credentials.scope),
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{AUTH_URI}?{urlencode(params)}"


def exchange_auth_code(
    credentials: GoogleCredentials, auth_code: str
) -> GoogleCredentials:
    """Exchange an authorization code for tokens.

    Returns:
        GoogleCredentials: A copy carrying the new tokens, for the caller to save
    """
    response = requests.post(
        TOKEN_URI,
        data={
            "code": auth_code,
            "client_id": credentials.client_id,
            "client_secret": credentials.client_secret,
            "redirect_uri": credentials.redirect_uri,
            "grant_type": "authorization_code",
        },
        timeout=30,
    )
    response.raise_for_status()
    tokens = response.json()

    expires_in = tokens.get("expires_in")
    expiry_date = None
    if expires_in is not None:
        expiry = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        expiry_date = int(expiry.timestamp() * 1000)

    logger.info("✅ Received Google access tokens")
    return credentials.model_copy(
        update={
            "access_token": tokens["access_token"],
            "refresh_token": tokens.get("refresh_token", credentials.refresh_token),
            "token_type": tokens.get("token_type"),
            "expiry_date": expiry_date,
        }
    )


def build_credentials(credentials: GoogleCredentials) -> Credentials:
    """Build google-auth user credentials that refresh themselves."""
    expiry = None
    if credentials.expiry_date:
        # google-auth compares against naive UTC datetimes
        expiry = datetime.fromtimestamp(
            credentials.expiry_date / 1000, tz=timezone.utc
        ).replace(tzinfo=None)

    return Credentials(
        token=credentials.access_token,
        refresh_token=credentials.refresh_token,
        token_uri=TOKEN_URI,
        client_id=credentials.client_id,
        client_secret=credentials.client_secret,
        scopes=credentials.scope,
        expiry=expiry,
    )


class GoogleSheetsClient:
    """Sheets sink for balances, holdings and monthly transaction tabs."""

    def __init__(self, config: Config, service: Any | None = None):
        """Initialize the client.

        Args:
            config: Full configuration; the Google section must be present
            service: Optional pre-built Sheets service (used by tests)

        Raises:
            ConfigError: If Google Sheets is not configured
        """
        google_config = config.integrations.google
        if google_config is None:
            raise ConfigError("Google Sheets is not configured, run 'mintable google-setup'")

        self.config = config
        self.google_config: GoogleConfig = google_config

        if service is None:
            service = build(
                "sheets",
                "v4",
                credentials=build_credentials(google_config.credentials),
                cache_discovery=False,
            )
        self.spreadsheets = service.spreadsheets()
        self._sheets: dict[str, list[dict[str, Any]]] = {}

    @property
    def document_ids(self) -> list[str]:
        return self.google_config.document_ids

    def _execute(self, request: Any, action: str) -> dict[str, Any]:
        try:
            return request.execute()
        except (HttpError, RefreshError) as e:
            logger.error(f"❌ Error {action}: {e}")
            raise SinkError("google", f"Error {action}: {e}") from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            logger.error(f"❌ Could not reach Google Sheets while {action}: {e}")
            raise SinkError("google", f"Error {action}: {e}") from e

    # Sheet management

    def get_sheets(self, document_id: str | None = None) -> list[dict[str, Any]]:
        """List a document's sheets, cached until the document is changed."""
        document_id = document_id or self.document_ids[0]
        if document_id not in self._sheets:
            data = self._execute(
                self.spreadsheets.get(spreadsheetId=document_id),
                f"fetching sheets for spreadsheet {document_id}",
            )
            self._sheets[document_id] = data.get("sheets", [])
            logger.debug(f"Fetched {len(self._sheets[document_id])} sheets.")
        return self._sheets[document_id]

    def find_sheet(self, title: str, document_id: str | None = None) -> dict[str, Any] | None:
        for sheet in self.get_sheets(document_id):
            if sheet["properties"]["title"] == title:
                return sheet
        return None

    def _sheet_id(self, title: str, document_id: str) -> int:
        sheet = self.find_sheet(title, document_id)
        if sheet is None:
            raise SinkError("google", f"Sheet '{title}' not found in document {document_id}")
        return sheet["properties"]["sheetId"]

    def _batch_update(
        self, requests_: list[dict[str, Any]], document_id: str, action: str
    ) -> dict[str, Any]:
        return self._execute(
            self.spreadsheets.batchUpdate(
                spreadsheetId=document_id, body={"requests": requests_}
            ),
            action,
        )

    def add_sheet(self, title: str, document_id: str | None = None) -> dict[str, Any]:
        document_id = document_id or self.document_ids[0]
        data = self._batch_update(
            [{"addSheet": {"properties": {"title": title}}}],
            document_id,
            f"adding sheet {title}",
        )
        self._sheets.pop(document_id, None)
        logger.info(f"Added sheet {title}")
        return data["replies"][0]["addSheet"]["properties"]

    def copy_sheet(
        self,
        title: str,
        source_document_id: str | None = None,
        destination_document_id: str | None = None,
    ) -> dict[str, Any]:
        """Copy a sheet into another document; the copy is titled ``Copy of <title>``."""
        source = source_document_id or self.document_ids[0]
        destination = destination_document_id or self.document_ids[0]

        sheet_id = self._sheet_id(title, source)
        data = self._execute(
            self.spreadsheets.sheets().copyTo(
                spreadsheetId=source,
                sheetId=sheet_id,
                body={"destinationSpreadsheetId": destination},
            ),
            f"copying sheet {title}",
        )
        self._sheets.pop(destination, None)
        logger.info(f"Copied sheet {title}")
        return data

    def rename_sheet(
        self, old_title: str, new_title: str, document_id: str | None = None
    ) -> list[dict[str, Any]]:
        document_id = document_id or self.document_ids[0]
        sheet_id = self._sheet_id(old_title, document_id)
        data = self._batch_update(
            [
                {
                    "updateSheetProperties": {
                        "properties": {"sheetId": sheet_id, "title": new_title},
                        "fields": "title",
                    }
                }
            ],
            document_id,
            f"renaming sheet {old_title} to {new_title}",
        )
        self._sheets.pop(document_id, None)
        logger.info(f"Renamed sheet {old_title} to {new_title}")
        return data.get("replies", [])

    def ensure_sheet(
        self, title: str, document_id: str | None = None, use_template: bool = False
    ) -> bool:
        """Create the sheet if missing, cloning the template when asked.

        Returns:
            bool: True if the sheet was created
        """
        document_id = document_id or self.document_ids[0]
        if self.find_sheet(title, document_id) is not None:
            return False

        template = self.google_config.template
        if template and use_template:
            copied = self.copy_sheet(
                template.sheet_title,
                source_document_id=template.document_id or self.document_ids[0],
                destination_document_id=document_id,
            )
            self.rename_sheet(copied["title"], title, document_id)
        else:
            self.add_sheet(title, document_id)
        return True

    # Values

    def clear_ranges(
        self, ranges: list[Range], document_id: str | None = None
    ) -> dict[str, Any]:
        document_id = document_id or self.document_ids[0]
        translated = [translate_range(r) for r in ranges]
        data = self._execute(
            self.spreadsheets.values().batchClear(
                spreadsheetId=document_id, body={"ranges": translated}
            ),
            f"clearing {len(ranges)} range(s): {translated}",
        )
        logger.debug(f"Cleared {len(ranges)} range(s): {translated}")
        return data

    def update_ranges(
        self, data_ranges: list[DataRange], document_id: str | None = None
    ) -> dict[str, Any]:
        document_id = document_id or self.document_ids[0]
        data = [
            {"range": translate_range(dr.range), "values": dr.data}
            for dr in data_ranges
        ]
        names = [d["range"] for d in data]
        result = self._execute(
            self.spreadsheets.values().batchUpdate(
                spreadsheetId=document_id,
                body={"valueInputOption": "USER_ENTERED", "data": data},
            ),
            f"updating {len(data)} range(s): {names}",
        )
        logger.debug(f"Updated {len(data)} range(s): {names}")
        return result

    def get_values(self, document_id: str, range_: str) -> list[list[Any]]:
        data = self._execute(
            self.spreadsheets.values().get(spreadsheetId=document_id, range=range_),
            f"reading {range_}",
        )
        return data.get("values", [])

    # Presentation

    def sort_sheets(self, document_id: str | None = None) -> dict[str, Any]:
        """Order tabs by title, newest month first."""
        document_id = document_id or self.document_ids[0]
        sheets = self.get_sheets(document_id)
        ordered = sorted(sheets, key=lambda s: s["properties"]["title"], reverse=True)
        result = self._batch_update(
            [
                {
                    "updateSheetProperties": {
                        "properties": {"sheetId": s["properties"]["sheetId"], "index": i},
                        "fields": "index",
                    }
                }
                for i, s in enumerate(ordered)
            ],
            document_id,
            f"updating indices for {len(sheets)} sheets",
        )
        self._sheets.pop(document_id, None)
        return result

    def format_sheets(self, document_id: str | None = None) -> dict[str, Any]:
        """Bold header row, frozen first row and auto-sized columns on every tab."""
        document_id = document_id or self.document_ids[0]
        sheets = self.get_sheets(document_id)

        requests_: list[dict[str, Any]] = []
        for sheet in sheets:
            properties = sheet["properties"]
            sheet_id = properties["sheetId"]
            column_count = properties.get("gridProperties", {}).get("columnCount", 26)
            requests_.extend([
                {
                    "repeatCell": {
                        "range": {"sheetId": sheet_id, "startRowIndex": 0, "endRowIndex": 1},
                        "cell": {
                            "userEnteredFormat": {
                                "backgroundColor": {"red": 0.2, "green": 0.2, "blue": 0.2},
                                "horizontalAlignment": "CENTER",
                                "textFormat": {
                                    "foregroundColor": {"red": 1.0, "green": 1.0, "blue": 1.0},
                                    "bold": True,
                                },
                            }
                        },
                        "fields": "userEnteredFormat(backgroundColor,textFormat,horizontalAlignment)",
                    }
                },
                {
                    "updateSheetProperties": {
                        "properties": {
                            "sheetId": sheet_id,
                            "gridProperties": {"frozenRowCount": 1},
                        },
                        "fields": "gridProperties.frozenRowCount",
                    }
                },
                {
                    "autoResizeDimensions": {
                        "dimensions": {
                            "sheetId": sheet_id,
                            "dimension": "COLUMNS",
                            "startIndex": 0,
                            "endIndex": column_count,
                        }
                    }
                },
            ])

        return self._batch_update(
            requests_, document_id, f"updating formatting for {len(sheets)} sheets"
        )

    # Writing records

    def row_with_defaults(
        self, row: dict[str, Any], columns: list[str], default: Any = ""
    ) -> list[Any]:
        """Project a record onto ``columns``, formatting dates for the sheet."""
        values = []
        for column in columns:
            value = row.get(column)
            if value is None:
                values.append(default)
            elif column == "date" and isinstance(value, date):
                values.append(value.strftime(self.google_config.date_format))
            else:
                values.append(value)
        return values

    def update_sheet(
        self,
        title: str,
        rows: list[dict[str, Any]],
        columns: list[str] | None = None,
        use_template: bool = False,
        clear_entire_sheet: bool = False,
        document_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Replace a tab's contents with a header row and one row per record.

        The previous contents of the written columns (or the whole sheet) are
        cleared first, so writing the same rows twice leaves the sheet unchanged.
        """
        if columns is None:
            if not rows:
                logger.debug(f"No rows for sheet {title}, skipping")
                return None
            columns = list(rows[0].keys())
        if not columns:
            return None

        document_id = document_id or self.document_ids[0]
        self.ensure_sheet(title, document_id, use_template)

        last_column = column_letter(len(columns) - 1)
        target = Range(title, "A1", f"{last_column}{len(rows) + 1}")
        data = [list(columns)] + [self.row_with_defaults(row, columns) for row in rows]

        self.clear_ranges(
            [Range(title)] if clear_entire_sheet else [Range(title, "A1", last_column)],
            document_id,
        )
        result = self.update_ranges([DataRange(target, data)], document_id)
        logger.info(f"Wrote {len(rows)} rows to {title}")
        return result

    def _investment_document_id(self) -> str:
        ids = self.document_ids
        return ids[1] if len(ids) > 1 else ids[0]

    def update_transactions(
        self,
        accounts: list[Account],
        account_type: AccountType = AccountType.TRANSACTIONAL,
    ) -> None:
        """Write transactions into one tab per month."""
        accounts = [a for a in accounts if a.account_type == account_type]
        if not accounts:
            return

        if account_type == AccountType.INVESTMENT:
            properties = self.config.investment_transactions.properties
            document_id = self._investment_document_id()
            clear_entire_sheet = True
        else:
            properties = self.config.transactions.properties
            document_id = self.document_ids[0]
            clear_entire_sheet = False

        transactions = sorted(
            (t for account in accounts for t in account.transactions),
            key=lambda t: t.date,
        )

        by_month: dict[date, list[dict[str, Any]]] = {}
        for transaction in transactions:
            month = transaction.date.replace(day=1)
            by_month.setdefault(month, []).append(transaction.to_row())

        titles = {
            month: month.strftime(self.google_config.month_format) for month in by_month
        }
        new_tabs = [t for t in titles.values() if self.find_sheet(t, document_id) is None]

        for month, rows in by_month.items():
            self.update_sheet(
                titles[month],
                rows,
                properties,
                use_template=True,
                clear_entire_sheet=clear_entire_sheet,
                document_id=document_id,
            )

        if new_tabs:
            self.sort_sheets(document_id)
            # Template tabs carry their own formatting
            if self.google_config.template is None:
                self.format_sheets(document_id)

    def update_holdings(self, accounts: list[Account]) -> None:
        holdings = [h.to_row() for account in accounts for h in account.holdings]
        if not holdings:
            return
        self.update_sheet(
            HOLDINGS_SHEET,
            holdings,
            self.config.holdings.properties,
            use_template=True,
            document_id=self._investment_document_id(),
        )

    def update_balances(self, accounts: list[Account]) -> None:
        """Write the Balances tab in every document, then record today's history row."""
        rows = [account.to_row() for account in accounts]
        for document_id in self.document_ids:
            self.update_sheet(
                BALANCES_SHEET,
                rows,
                self.config.balances.properties,
                document_id=document_id,
            )
        self.balance_history(HISTORY_SHEET, accounts)

    def balance_history(
        self,
        title: str,
        accounts: Iterable[Account],
        today: date | None = None,
        use_template: bool = False,
    ) -> bool:
        """Append one row of current balances per day.

        Row 1 holds ``Date`` followed by account ids. Ids seen for the first
        time are appended to the header. Nothing is written when the last
        recorded date is already today.

        Returns:
            bool: True if a row was written
        """
        accounts = list(accounts)
        document_id = self.document_ids[0]
        today_text = (today or date.today()).strftime(HISTORY_DATE_FORMAT)

        if self.ensure_sheet(title, document_id, use_template):
            self.update_ranges([DataRange(Range(title, "A1"), [["Date"]])], document_id)

        column_a = self.get_values(document_id, f"{title}!A:A")
        last_date = column_a[-1][0] if column_a and column_a[-1] else None
        if last_date == today_text:
            logger.info("Day has already been recorded in history")
            return False

        header_rows = self.get_values(document_id, f"{title}!1:1")
        header = list(header_rows[0]) if header_rows else []
        ids = [a.account_id for a in accounts if a.account_id]
        missing = [i for i in dict.fromkeys(ids) if i not in header]
        if not header:
            missing = ["Date", *missing]

        if missing:
            self.update_ranges(
                [
                    DataRange(
                        Range(
                            title,
                            f"{column_letter(len(header))}1",
                            f"{column_letter(len(header) + len(missing) - 1)}1",
                        ),
                        [missing],
                    )
                ],
                document_id,
            )

        all_ids = header + missing
        balances = {a.account_id: a.current for a in accounts}
        row: list[Any] = [today_text] + [
            "" if balances.get(i) is None else balances[i] for i in all_ids[1:]
        ]

        last_column = column_letter(len(row) - 1)
        existing = self.get_values(
            document_id, translate_range(Range(title, "A3", last_column))
        )
        next_row = len(existing) + HISTORY_ROW_OFFSET

        self.update_ranges(
            [
                DataRange(
                    Range(title, f"A{next_row}", f"{last_column}{next_row}"), [row]
                )
            ],
            document_id,
        )
        logger.info("Recorded new day in history")
        return True

"""Google Sheets export of the KPI report."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

from ..kpi import JobTrackerStats
from .kpi_report import (
    RED_FLAG_CSV_COLUMNS,
    STATS_CSV_COLUMNS,
    RedFlagRows,
    StatsRows,
    into_days,
    job_numbers,
    red_flag_job_number,
)

SCOPES = ["https://www.googleapis.com/auth/drive.file"]
TOKEN_FILE = "google_sheets_token.json"
RED_FLAGS_SHEET = "Red Flags"
MAX_SHEET_TITLE = 100

Cell = Union[str, int, float, None]


def _cell(value: Cell) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"userEnteredValue": {"numberValue": value}}
    return {"userEnteredValue": {"stringValue": str(value)}}


def _sheet(title: str, rows: list[list[Cell]]) -> dict[str, Any]:
    return {
        "properties": {"title": title},
        "data": [
            {
                "startRow": 0,
                "startColumn": 0,
                "rowData": [{"values": [_cell(value) for value in row]} for row in rows],
            }
        ],
    }


def _stats_rows(stats: JobTrackerStats) -> list[list[Cell]]:
    rows: list[list[Cell]] = [list(STATS_CSV_COLUMNS)]
    for name, conv in stats.conversions():
        rows.append(
            [
                name,
                round(conv.conversion_rate * 100, 2) if conv.conversion_rate is not None else "N/A",
                len(conv.achieved),
                round(into_days(conv.average_time_to_achieve), 2),
                job_numbers(conv.achieved),
            ]
        )
    rows.append(["Appts", stats.appt_count, None, "Installed", stats.install_count])
    return rows


def _unique_title(raw: str, used: set[str]) -> str:
    base = raw[:MAX_SHEET_TITLE] or "Sheet"
    title = base
    n = 2
    while title in used:
        suffix = f" ({n})"
        title = base[: MAX_SHEET_TITLE - len(suffix)] + suffix
        n += 1
    used.add(title)
    return title


def build_spreadsheet_body(title: str, stats: StatsRows, red_flags: RedFlagRows) -> dict[str, Any]:
    used: set[str] = {RED_FLAGS_SHEET}
    sheets = [_sheet(_unique_title(str(subject), used), _stats_rows(subject_stats)) for subject, subject_stats in stats]

    flag_rows: list[list[Cell]] = [list(RED_FLAG_CSV_COLUMNS)]
    for subject, flags in red_flags:
        for job, anomaly in flags:
            flag_rows.append([str(subject), red_flag_job_number(job), anomaly.message])
    sheets.append(_sheet(RED_FLAGS_SHEET, flag_rows))

    return {"properties": {"title": title}, "sheets": sheets}


def _load_sheets_service(credentials_path: Path, token_path: Path, *, allow_interactive_auth: bool) -> Any:
    try:
        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build
    except ImportError as exc:
        raise RuntimeError("Missing Google API dependencies. Install the project dependencies") from exc

    creds = None
    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        elif allow_interactive_auth:
            if not credentials_path.exists():
                raise RuntimeError(f"Credentials file not found: {credentials_path}")
            flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
            try:
                creds = flow.run_local_server(port=0)
            except (PermissionError, OSError):
                # localhost bind is blocked in some environments
                creds = flow.run_console()
        else:
            raise RuntimeError("Google Sheets token missing/expired. Rerun with interactive auth to reconnect.")
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json(), encoding="utf-8")

    return build("sheets", "v4", credentials=creds)


def export_report(
    *,
    title: str,
    stats: StatsRows,
    red_flags: RedFlagRows,
    credentials_path: str = "credentials.json",
    token_dir: str = ".tokens",
    allow_interactive_auth: bool = True,
    service: Optional[Any] = None,
) -> str:
    """Create a spreadsheet holding the report and return its URL."""
    if service is None:
        credentials = Path(credentials_path).expanduser().resolve()
        token_path = Path(token_dir).expanduser().resolve() / TOKEN_FILE
        service = _load_sheets_service(credentials, token_path, allow_interactive_auth=allow_interactive_auth)

    body = build_spreadsheet_body(title, stats, red_flags)
    response = service.spreadsheets().create(body=body, fields="spreadsheetId,spreadsheetUrl").execute()
    url = response.get("spreadsheetUrl") if isinstance(response, dict) else None
    if not url:
        raise RuntimeError("Google Sheets did not return a spreadsheet URL")
    return str(url)

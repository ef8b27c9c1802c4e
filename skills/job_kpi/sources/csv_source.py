"""CSV source adapter returning jobs from a flat spreadsheet export."""

from __future__ import annotations

import csv
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

from skills.job_kpi.types import Job, MilestoneDates

TRUTHY = {"true", "yes", "y", "1", "x"}


def _text(row: dict[str, Optional[str]], key: str) -> Optional[str]:
    value = (row.get(key) or "").strip()
    return value or None


def _parse_when(raw: Optional[str], *, column: str, line: int) -> Optional[datetime]:
    if not raw:
        return None
    try:
        if "T" in raw or " " in raw:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        d = date.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {column} '{raw}' on CSV line {line}") from exc
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def load_csv_jobs(csv_path: str) -> list[Job]:
    path = Path(csv_path).expanduser().resolve()
    if not path.exists():
        raise ValueError(f"CSV file not found: {path}")

    out: list[Job] = []
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        # line 1 is the header
        for line, row in enumerate(reader, start=2):
            jnid = _text(row, "jnid") or f"csv-{line - 1}"

            def when(column: str) -> Optional[datetime]:
                return _parse_when(_text(row, column), column=column, line=line)

            out.append(
                Job(
                    jnid=jnid,
                    job_number=_text(row, "number"),
                    job_name=_text(row, "name"),
                    sales_rep=_text(row, "sales_rep_name"),
                    insurance_checkbox=(_text(row, "insurance") or "").lower() in TRUTHY,
                    insurance_company_name=_text(row, "insurance_company"),
                    insurance_claim_number=_text(row, "claim_number"),
                    milestone_dates=MilestoneDates(
                        appointment_date=when("appointment_date"),
                        contingency_date=when("contingency_date"),
                        contract_date=when("contract_date"),
                        install_date=when("install_date"),
                        loss_date=when("loss_date"),
                    ),
                )
            )

    return out

"""Sample source for local demo without a JobNimbus account."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from skills.job_kpi.types import Job, MilestoneDates


def _days_ago(now: datetime, days: Optional[int]) -> Optional[datetime]:
    if days is None:
        return None
    return now - timedelta(days=days)


def _job(
    now: datetime,
    idx: int,
    rep: Optional[str],
    *,
    insurance: bool = False,
    appt: Optional[int] = None,
    contingency: Optional[int] = None,
    contract: Optional[int] = None,
    install: Optional[int] = None,
    lost: Optional[int] = None,
    company: Optional[str] = None,
) -> Job:
    return Job(
        jnid=f"sample-{idx}",
        job_number=str(1000 + idx),
        job_name=f"Sample Job {idx}",
        sales_rep=rep,
        insurance_checkbox=insurance,
        insurance_company_name=company,
        milestone_dates=MilestoneDates(
            appointment_date=_days_ago(now, appt),
            contingency_date=_days_ago(now, contingency),
            contract_date=_days_ago(now, contract),
            install_date=_days_ago(now, install),
            loss_date=_days_ago(now, lost),
        ),
    )


def load_sample_jobs() -> list[Job]:
    now = datetime.now(timezone.utc)
    return [
        _job(now, 1, "Alice", insurance=True, appt=60, contingency=55, contract=40, install=20, company="State Farm"),
        _job(now, 2, "Alice", insurance=True, appt=50, contract=35, install=10),
        _job(now, 3, "Alice", appt=45, contract=30, install=5),
        _job(now, 4, "Alice", insurance=True, appt=40, contingency=38, lost=25),
        _job(now, 5, "Bob", appt=30, lost=28),
        _job(now, 6, "Bob", appt=28, contract=20, install=2),
        # retail job that signed a contingency
        _job(now, 7, "Bob", appt=26, contingency=24, contract=15, install=3),
        # still in progress
        _job(now, 8, "Bob", insurance=True, appt=12),
        _job(now, 9, None, appt=22, contract=12, install=4),
        # install recorded before the contract
        _job(now, 10, None, appt=20, contract=6, install=8),
        _job(now, 11, "Carol", appt=18, company="Allstate", lost=9),
    ]

"""Job analysis: milestone retracing, kind classification and red flags."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from .types import (
    AnalyzedJob,
    Anomaly,
    AnomalyKind,
    Job,
    JobAnalysis,
    JobKind,
    Milestone,
    MilestoneDates,
    Timestamp,
)

KEY_JNID = "jnid"
KEY_SALES_REP = "sales_rep_name"
KEY_INSURANCE_CHECKBOX = "Insurance Job?"
KEY_INSURANCE_COMPANY_NAME = "Insurance Company"
KEY_INSURANCE_CLAIM_NUMBER = "Claim #"
KEY_JOB_NUMBER = "number"
KEY_JOB_NAME = "name"
KEY_APPOINTMENT_DATE = "Sales Appt #1 Date"
KEY_CONTINGENCY_DATE = "Signed Contingency Date"
KEY_CONTRACT_DATE = "Signed Contract Date"
KEY_INSTALL_DATE = "Install Date"
KEY_LOSS_DATE = "Job Lost Date (if applicable)"


class JobFromJsonError(ValueError):
    """Raised when a job payload is not an object or has no jnid."""


def _initial_kind(job: Job, errors: list[Anomaly]) -> JobKind:
    # Assume insurance jobs need a contingency; revised once retracing shows it was skipped.
    if job.insurance_checkbox:
        return JobKind.INSURANCE_WITH_CONTINGENCY
    if job.insurance_company_name is not None or job.insurance_claim_number is not None:
        errors.append(Anomaly(AnomalyKind.INCONSISTENT_INSURANCE_INFO))
        return JobKind.INSURANCE_WITH_CONTINGENCY
    return JobKind.RETAIL


def analyze_job(job: Job) -> tuple[AnalyzedJob, list[Anomaly]]:
    """Retrace a job's milestones and classify it.

    Out-of-order and skipped dates abort the analysis (``analysis`` is None);
    inconsistent insurance info and invalid losses are only recorded.
    """
    errors: list[Anomaly] = []
    dates = job.milestone_dates
    kind = _initial_kind(job, errors)

    previous_date: Optional[Timestamp] = None
    current_milestone = Milestone.LEAD_ACQUIRED
    in_progress = True
    for milestone in list(Milestone)[1:]:
        date = dates[milestone]

        if not in_progress:
            # an earlier milestone had no date, so every later one must be empty too
            if date is not None:
                errors.append(Anomaly(AnomalyKind.SKIPPED_DATES, milestone))
                return AnalyzedJob(job=job, analysis=None), errors
            continue

        if date is None:
            # contingencies are optional, so a gap there does not end the history
            if milestone != Milestone.CONTINGENCY_SIGNED:
                in_progress = False
            continue

        current_milestone = milestone
        if milestone == Milestone.CONTINGENCY_SIGNED and kind == JobKind.RETAIL:
            kind = JobKind.INSURANCE_WITH_CONTINGENCY
            errors.append(Anomaly(AnomalyKind.CONTINGENCY_WITHOUT_INSURANCE))
        if (
            milestone > Milestone.CONTINGENCY_SIGNED
            and dates.contingency_date is None
            and kind == JobKind.INSURANCE_WITH_CONTINGENCY
        ):
            kind = JobKind.INSURANCE_WITHOUT_CONTINGENCY

        if previous_date is not None and date < previous_date:
            errors.append(Anomaly(AnomalyKind.OUT_OF_ORDER_DATES, milestone))
            return AnalyzedJob(job=job, analysis=None), errors
        previous_date = date

    if dates.loss_date is not None:
        if previous_date is not None and dates.loss_date < previous_date:
            errors.append(Anomaly(AnomalyKind.OUT_OF_ORDER_DATES, None))
            return AnalyzedJob(job=job, analysis=None), errors
        # a job cannot be lost once a contract is signed
        if current_milestone >= Milestone.CONTRACT_SIGNED:
            errors.append(Anomaly(AnomalyKind.INVALID_LOSS))

    analysis = JobAnalysis(
        kind=kind,
        timestamps=dates.timestamps_up_to(current_milestone),
        loss_timestamp=dates.loss_date,
    )
    return AnalyzedJob(job=job, analysis=analysis), errors


def _owned_nonempty(payload: dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if isinstance(value, str) and value:
        return value
    return None


def _timestamp_nonzero(payload: dict[str, Any], key: str) -> Optional[Timestamp]:
    # JobNimbus reports an unset date field as 0; non-integers count as unset too
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value == 0:
        return None
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def job_from_json(payload: Any) -> Job:
    if not isinstance(payload, dict):
        raise JobFromJsonError(f"Expected a JSON object, but got {payload!r}")
    jnid = payload.get(KEY_JNID)
    if not isinstance(jnid, str):
        raise JobFromJsonError(f"Expected a '{KEY_JNID}' field in the JSON object")

    checkbox = payload.get(KEY_INSURANCE_CHECKBOX)
    return Job(
        jnid=jnid,
        sales_rep=_owned_nonempty(payload, KEY_SALES_REP),
        insurance_checkbox=checkbox if isinstance(checkbox, bool) else False,
        insurance_company_name=_owned_nonempty(payload, KEY_INSURANCE_COMPANY_NAME),
        insurance_claim_number=_owned_nonempty(payload, KEY_INSURANCE_CLAIM_NUMBER),
        job_number=_owned_nonempty(payload, KEY_JOB_NUMBER),
        job_name=_owned_nonempty(payload, KEY_JOB_NAME),
        milestone_dates=MilestoneDates(
            appointment_date=_timestamp_nonzero(payload, KEY_APPOINTMENT_DATE),
            contingency_date=_timestamp_nonzero(payload, KEY_CONTINGENCY_DATE),
            contract_date=_timestamp_nonzero(payload, KEY_CONTRACT_DATE),
            install_date=_timestamp_nonzero(payload, KEY_INSTALL_DATE),
            loss_date=_timestamp_nonzero(payload, KEY_LOSS_DATE),
        ),
    )

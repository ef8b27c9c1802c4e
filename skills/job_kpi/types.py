"""Public typed contracts for job_kpi."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Literal, Optional

SourceType = Literal["jobnimbus", "json", "csv", "sample"]
OutputFormat = Literal["human", "csv", "google-sheets"]

Timestamp = datetime


class Milestone(IntEnum):
    LEAD_ACQUIRED = 0
    APPOINTMENT_MADE = 1
    CONTINGENCY_SIGNED = 2
    CONTRACT_SIGNED = 3
    INSTALLED = 4

    def __str__(self) -> str:
        return MILESTONE_LABELS[self]


MILESTONE_LABELS = {
    Milestone.LEAD_ACQUIRED: "Lead Acquired",
    Milestone.APPOINTMENT_MADE: "Appointment Made",
    Milestone.CONTINGENCY_SIGNED: "Contingency Signed",
    Milestone.CONTRACT_SIGNED: "Contract Signed",
    Milestone.INSTALLED: "Installed",
}

NUM_MILESTONES = len(Milestone)


class JobKind(IntEnum):
    INSURANCE_WITH_CONTINGENCY = 0
    INSURANCE_WITHOUT_CONTINGENCY = 1
    RETAIL = 2


NUM_JOB_KINDS = len(JobKind)


@dataclass(frozen=True, slots=True)
class MilestoneDates:
    appointment_date: Optional[Timestamp] = None
    contingency_date: Optional[Timestamp] = None
    contract_date: Optional[Timestamp] = None
    install_date: Optional[Timestamp] = None
    loss_date: Optional[Timestamp] = None

    def __getitem__(self, milestone: Milestone) -> Optional[Timestamp]:
        if milestone == Milestone.APPOINTMENT_MADE:
            return self.appointment_date
        if milestone == Milestone.CONTINGENCY_SIGNED:
            return self.contingency_date
        if milestone == Milestone.CONTRACT_SIGNED:
            return self.contract_date
        if milestone == Milestone.INSTALLED:
            return self.install_date
        return None

    def timestamps_up_to(self, milestone: Milestone) -> tuple[Optional[Timestamp], ...]:
        return tuple(self[m] for m in Milestone if m <= milestone)


@dataclass(frozen=True, slots=True)
class Job:
    jnid: str
    milestone_dates: MilestoneDates = field(default_factory=MilestoneDates)
    sales_rep: Optional[str] = None
    insurance_checkbox: bool = False
    insurance_claim_number: Optional[str] = None
    insurance_company_name: Optional[str] = None
    job_number: Optional[str] = None
    job_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class JobAnalysis:
    # May be inaccurate for jobs that are not settled yet.
    kind: JobKind
    # One entry per milestone reached, in order; None is the earliest in-order time.
    timestamps: tuple[Optional[Timestamp], ...]
    loss_timestamp: Optional[Timestamp] = None

    def is_settled(self) -> bool:
        return self.loss_timestamp is not None or len(self.timestamps) == NUM_MILESTONES

    def date_settled(self) -> Optional[Timestamp]:
        if self.loss_timestamp is not None:
            return self.loss_timestamp
        if len(self.timestamps) == NUM_MILESTONES:
            return self.timestamps[-1]
        return None


@dataclass(frozen=True, slots=True)
class AnalyzedJob:
    job: Job
    # None when the job's history was too inconsistent to analyze.
    analysis: Optional[JobAnalysis] = None

    @property
    def display_number(self) -> str:
        return self.job.job_number or self.job.jnid


class AnomalyKind(str, Enum):
    CONTINGENCY_WITHOUT_INSURANCE = "contingency_without_insurance"
    INCONSISTENT_INSURANCE_INFO = "inconsistent_insurance_info"
    OUT_OF_ORDER_DATES = "out_of_order_dates"
    SKIPPED_DATES = "skipped_dates"
    INVALID_LOSS = "invalid_loss"


@dataclass(frozen=True, slots=True)
class Anomaly:
    """A red flag found in a job's recorded history. Never fatal to a run."""

    kind: AnomalyKind
    milestone: Optional[Milestone] = None

    @property
    def message(self) -> str:
        if self.kind == AnomalyKind.CONTINGENCY_WITHOUT_INSURANCE:
            return "This job has signed a contingency form, but is not an insurance job."
        if self.kind == AnomalyKind.INCONSISTENT_INSURANCE_INFO:
            return (
                "This job's insurance checkbox isn't checked, but it has an insurance "
                "company name and/or claim number."
            )
        if self.kind == AnomalyKind.OUT_OF_ORDER_DATES:
            label = str(self.milestone) if self.milestone is not None else "Job Lost"
            return f"The date for {label} does not follow previous dates."
        if self.kind == AnomalyKind.SKIPPED_DATES:
            return f"This job has skipped date(s) prior to the milestone {str(self.milestone)}."
        return "This job has a loss date, but it has already been installed/contracted."

    def __str__(self) -> str:
        return self.message


RedFlag = tuple[AnalyzedJob, Anomaly]


@dataclass(slots=True)
class KpiRunResult:
    run_id: str
    stats: dict[str, Any]
    red_flags: list[dict[str, str]]
    artifacts: dict[str, str]
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

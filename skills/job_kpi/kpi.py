"""Per-subject KPI trackers, conversion stats and date range parsing."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Iterable, Optional

from .job_tracker import Bucket, JobTracker
from .jobs import analyze_job
from .types import AnalyzedJob, Job, JobKind, Milestone, RedFlag, Timestamp

IWC = JobKind.INSURANCE_WITH_CONTINGENCY
IWO = JobKind.INSURANCE_WITHOUT_CONTINGENCY
RET = JobKind.RETAIL

TRACKER_MASK = (
    (True, True, True, True, True),
    (True, True, False, True, True),
    (True, True, False, True, True),
)

CONVERSION_NAMES = (
    "All Losses",
    "(I) Appt to Contingency",
    "(I) Appt to Contract",
    "(I) Contingency to Contract",
    "(R) Appt to Contract",
    "(I) Contract to Installation",
    "(R) Contract to Installation",
)

DATE_FORMAT_HELP = "Use 'forever', 'ytd', 'today', or '%Y-%m-%d'."


@dataclass(frozen=True, slots=True, order=True)
class KpiSubject:
    """Who a tracker reports on. Sorts as global, sales reps by name, unknown."""

    rank: int
    rep_name: str = ""

    GLOBAL: ClassVar[KpiSubject]
    UNKNOWN: ClassVar[KpiSubject]

    @classmethod
    def sales_rep(cls, name: str) -> KpiSubject:
        return cls(1, name)

    @classmethod
    def for_job(cls, job: Job) -> KpiSubject:
        return cls.sales_rep(job.sales_rep) if job.sales_rep is not None else cls.UNKNOWN

    @property
    def is_global(self) -> bool:
        return self.rank == 0

    def __str__(self) -> str:
        if self.rank == 0:
            return "[Global]"
        if self.rank == 2:
            return "[Unknown]"
        return self.rep_name


KpiSubject.GLOBAL = KpiSubject(0)
KpiSubject.UNKNOWN = KpiSubject(2)


@dataclass(slots=True)
class ProcessJobsResult:
    trackers: dict[KpiSubject, JobTracker] = field(default_factory=dict)
    red_flags: dict[KpiSubject, list[RedFlag]] = field(default_factory=dict)

    def sorted_trackers(self) -> list[tuple[KpiSubject, JobTracker]]:
        return sorted(self.trackers.items(), key=lambda item: item[0])

    def sorted_red_flags(self) -> list[tuple[KpiSubject, list[RedFlag]]]:
        return sorted(self.red_flags.items(), key=lambda item: item[0])


@dataclass(slots=True)
class ConversionStats:
    achieved: list[AnalyzedJob]
    # None when nothing could have made the conversion.
    conversion_rate: Optional[float]
    average_time_to_achieve: timedelta


@dataclass(slots=True)
class JobTrackerStats:
    appt_count: int
    install_count: int
    loss_conv: ConversionStats
    appt_continge_conv: ConversionStats
    appt_contract_insure_conv: ConversionStats
    continge_contract_conv: ConversionStats
    appt_contract_retail_conv: ConversionStats
    install_insure_conv: ConversionStats
    install_retail_conv: ConversionStats

    def conversions(self) -> list[tuple[str, ConversionStats]]:
        return list(
            zip(
                CONVERSION_NAMES,
                (
                    self.loss_conv,
                    self.appt_continge_conv,
                    self.appt_contract_insure_conv,
                    self.continge_contract_conv,
                    self.appt_contract_retail_conv,
                    self.install_insure_conv,
                    self.install_retail_conv,
                ),
            )
        )


@dataclass(slots=True)
class FunnelFlows:
    appointments: int
    contingencies: int
    contracts: int
    installs: int
    appt_to_contingency: int
    appt_to_contract: int
    contingency_to_contract: int
    lost_after_appt: int
    lost_after_contingency: int
    lost_after_contract: int


def build_job_tracker() -> JobTracker:
    return JobTracker(TRACKER_MASK)


def _log(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def _in_range(date: Timestamp, from_dt: Optional[Timestamp], to_dt: Optional[Timestamp]) -> bool:
    return (from_dt is None or date >= from_dt) and (to_dt is None or date <= to_dt)


def process_jobs(
    jobs: Iterable[Job],
    date_range: tuple[Optional[Timestamp], Optional[Timestamp]] = (None, None),
) -> ProcessJobsResult:
    """Analyze jobs and sort them into the global tracker and one tracker per subject.

    Only settled jobs whose settle date falls inside ``date_range`` (inclusive,
    either end may be None) are tracked. Red flags are kept for every job.
    """
    from_dt, to_dt = date_range
    _log(
        "Processing jobs settled between "
        f"{from_dt.isoformat() if from_dt else 'the beginning of time'} and "
        f"{to_dt.isoformat() if to_dt else 'the end of time'}"
    )

    result = ProcessJobsResult()
    for job in jobs:
        analyzed, errors = analyze_job(job)
        subject = KpiSubject.for_job(job)
        analysis = analyzed.analysis
        if analysis is not None:
            date_settled = analysis.date_settled()
            if date_settled is not None and _in_range(date_settled, from_dt, to_dt):
                for target in (KpiSubject.GLOBAL, subject):
                    tracker = result.trackers.get(target)
                    if tracker is None:
                        tracker = result.trackers[target] = build_job_tracker()
                    tracker.add_job(analyzed, analysis.kind, analysis.timestamps, analysis.loss_timestamp)

        if errors:
            result.red_flags.setdefault(subject, []).extend((analyzed, error) for error in errors)

    return result


def _bucket_conversion(bucket: Bucket, potential: int) -> ConversionStats:
    num_achieved = len(bucket.achieved)
    return ConversionStats(
        achieved=list(bucket.achieved),
        conversion_rate=num_achieved / potential if potential else None,
        average_time_to_achieve=bucket.cum_achieve_time / num_achieved if num_achieved else timedelta(0),
    )


def _calc_conversion(tracker: JobTracker, milestone: Milestone, kinds: list[JobKind]) -> ConversionStats:
    stats = tracker.calc_stats(milestone, kinds)
    return ConversionStats(
        achieved=stats.achieved,
        conversion_rate=stats.conversion_rate,
        average_time_to_achieve=stats.average_time_to_achieve,
    )


def calculate_job_tracker_stats(tracker: JobTracker) -> JobTrackerStats:
    appt_count = tracker.calc_stats(Milestone.APPOINTMENT_MADE, [IWC, IWO, RET]).num_total
    install_count = tracker.calc_stats(Milestone.INSTALLED, [IWC, IWO, RET]).num_total
    num_insure_appts = tracker.calc_stats(Milestone.APPOINTMENT_MADE, [IWC, IWO]).num_total

    loss = tracker.calc_stats_of_loss()
    loss_conv = ConversionStats(
        achieved=loss.lost,
        conversion_rate=loss.num_total / appt_count if appt_count else None,
        average_time_to_achieve=loss.average_time_to_lose,
    )

    return JobTrackerStats(
        appt_count=appt_count,
        install_count=install_count,
        loss_conv=loss_conv,
        appt_continge_conv=_bucket_conversion(
            tracker.get_bucket(IWC, Milestone.CONTINGENCY_SIGNED), num_insure_appts
        ),
        appt_contract_insure_conv=_bucket_conversion(
            tracker.get_bucket(IWO, Milestone.CONTRACT_SIGNED), num_insure_appts
        ),
        continge_contract_conv=_calc_conversion(tracker, Milestone.CONTRACT_SIGNED, [IWC]),
        appt_contract_retail_conv=_calc_conversion(tracker, Milestone.CONTRACT_SIGNED, [RET]),
        install_insure_conv=_calc_conversion(tracker, Milestone.INSTALLED, [IWC, IWO]),
        install_retail_conv=_calc_conversion(tracker, Milestone.INSTALLED, [RET]),
    )


def calculate_report_stats(result: ProcessJobsResult) -> list[tuple[KpiSubject, JobTrackerStats]]:
    """Stats for every subject with at least one appointment, in report order."""
    rows = []
    for subject, tracker in result.sorted_trackers():
        stats = calculate_job_tracker_stats(tracker)
        if stats.appt_count > 0:
            rows.append((subject, stats))
    return rows


def _achieved(tracker: JobTracker, kind: JobKind, milestone: Milestone) -> int:
    bucket = tracker.get_bucket(kind, milestone)
    return len(bucket.achieved) if bucket is not None else 0


def build_funnel_flows(tracker: JobTracker) -> FunnelFlows:
    appt = {kind: _achieved(tracker, kind, Milestone.APPOINTMENT_MADE) for kind in JobKind}
    contract = {kind: _achieved(tracker, kind, Milestone.CONTRACT_SIGNED) for kind in JobKind}
    contingencies = _achieved(tracker, IWC, Milestone.CONTINGENCY_SIGNED)
    installs = sum(_achieved(tracker, kind, Milestone.INSTALLED) for kind in JobKind)
    contracts = sum(contract.values())
    direct_contracts = contract[IWO] + contract[RET]

    return FunnelFlows(
        appointments=sum(appt.values()),
        contingencies=contingencies,
        contracts=contracts,
        installs=installs,
        appt_to_contingency=contingencies,
        appt_to_contract=direct_contracts,
        contingency_to_contract=contract[IWC],
        lost_after_appt=(appt[IWC] - contingencies) + (appt[IWO] - contract[IWO]) + (appt[RET] - contract[RET]),
        lost_after_contingency=contingencies - contract[IWC],
        lost_after_contract=contracts - installs,
    )


def _job_numbers(jobs: list[AnalyzedJob]) -> list[str]:
    return [job.display_number for job in jobs]


def stats_to_dict(subject: KpiSubject, stats: JobTrackerStats) -> dict[str, Any]:
    return {
        "subject": str(subject),
        "appt_count": stats.appt_count,
        "install_count": stats.install_count,
        "conversions": [
            {
                "name": name,
                "rate": conv.conversion_rate,
                "total": len(conv.achieved),
                "avg_time_days": round(conv.average_time_to_achieve.total_seconds() / 86400, 4),
                "jobs": _job_numbers(conv.achieved),
            }
            for name, conv in stats.conversions()
        ],
    }


def red_flags_to_rows(red_flags: list[tuple[KpiSubject, list[RedFlag]]]) -> list[dict[str, str]]:
    rows = []
    for subject, flags in red_flags:
        for analyzed, anomaly in flags:
            rows.append(
                {
                    "sales_rep": str(subject),
                    "job_number": analyzed.job.job_number or "unknown job #",
                    "kind": anomaly.kind.value,
                    "error": anomaly.message,
                }
            )
    return rows


def _midnight_utc(raw: str) -> datetime:
    try:
        day = datetime.strptime(raw, "%Y-%m-%d")
    except ValueError as exc:
        raise ValueError(f"Invalid date '{raw}'. {DATE_FORMAT_HELP}") from exc
    return day.replace(tzinfo=timezone.utc)


def parse_date_bound(raw: str, *, allow_ytd: bool, now: Optional[datetime] = None) -> Optional[datetime]:
    value = (raw or "").strip().lower()
    current = now or datetime.now(timezone.utc)
    if value == "forever":
        return None
    if value == "today":
        return current
    if value == "ytd":
        if not allow_ytd:
            raise ValueError(f"'ytd' is only valid as a start date. {DATE_FORMAT_HELP}")
        return datetime(current.year, 1, 1, tzinfo=timezone.utc)
    return _midnight_utc(value)


def parse_date_range(from_raw: str, to_raw: str, now: Optional[datetime] = None) -> tuple[Optional[datetime], Optional[datetime]]:
    from_dt = parse_date_bound(from_raw, allow_ytd=True, now=now)
    to_dt = parse_date_bound(to_raw, allow_ytd=False, now=now)
    if from_dt is not None and to_dt is not None and from_dt > to_dt:
        raise ValueError("--to must not be earlier than --from")
    return from_dt, to_dt

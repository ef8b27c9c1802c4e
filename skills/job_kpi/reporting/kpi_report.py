"""Human-readable and CSV KPI reports, to stdout or one file per subject."""

from __future__ import annotations

import csv
import io
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional, TextIO

from ..kpi import JobTrackerStats, KpiSubject
from ..types import AnalyzedJob, OutputFormat, RedFlag

SECONDS_PER_DAY = 86400.0
STATS_CSV_COLUMNS = ["Conversion", "Rate", "Total", "Avg Time (days)", "Jobs"]
RED_FLAG_CSV_COLUMNS = ["Sales Rep", "Job Number", "Error"]

StatsRows = list[tuple[KpiSubject, JobTrackerStats]]
RedFlagRows = list[tuple[KpiSubject, list[RedFlag]]]


def into_days(time: timedelta) -> float:
    return int(time.total_seconds()) / SECONDS_PER_DAY


def percent_or_na(rate: Optional[float]) -> str:
    return f"{rate * 100:6.2f}%" if rate is not None else "    N/A"


def job_numbers(jobs: list[AnalyzedJob]) -> str:
    return ", ".join(job.display_number for job in jobs)


def red_flag_job_number(job: AnalyzedJob) -> str:
    return job.job.job_number or "unknown job #"


def format_stats_human(subject: KpiSubject, stats: JobTrackerStats) -> str:
    lines = [
        f"Tracker for {subject}: ================",
        f"Appts {stats.appt_count} | Installed {stats.install_count}",
    ]
    for name, conv in stats.conversions():
        lines.append(
            f"{name:30}    Rate {percent_or_na(conv.conversion_rate)} | "
            f"Total {len(conv.achieved):2} | Avg Time {into_days(conv.average_time_to_achieve):.2f} days"
        )
        if not subject.is_global:
            lines.append(f"    - {job_numbers(conv.achieved)}")
    return "\n".join(lines) + "\n\n"


def format_red_flags_human(red_flags: RedFlagRows) -> str:
    out = []
    for subject, flags in red_flags:
        out.append(f"Red flags for {subject}: ===============")
        for job, anomaly in flags:
            out.append(f"{red_flag_job_number(job)}: {anomaly}")
        out.append("")
    return "\n".join(out) + ("\n" if out else "")


def stats_csv_rows(stats: JobTrackerStats) -> list[list[str]]:
    rows = [list(STATS_CSV_COLUMNS)]
    for name, conv in stats.conversions():
        rows.append(
            [
                name,
                percent_or_na(conv.conversion_rate),
                str(len(conv.achieved)),
                str(into_days(conv.average_time_to_achieve)),
                job_numbers(conv.achieved),
            ]
        )
    rows.append(["Appts", str(stats.appt_count), "", "Installed", str(stats.install_count)])
    return rows


def red_flag_csv_rows(red_flags: RedFlagRows) -> list[list[str]]:
    rows = [list(RED_FLAG_CSV_COLUMNS)]
    for subject, flags in red_flags:
        for job, anomaly in flags:
            rows.append([str(subject), red_flag_job_number(job), anomaly.message])
    return rows


def _csv_text(rows: list[list[str]]) -> str:
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\n").writerows(rows)
    return buf.getvalue()


def stats_file_name(subject: KpiSubject, ext: str) -> str:
    # rep names may contain path separators
    safe = str(subject).replace("/", "_").replace("\\", "_")
    return f"rep-{safe}-stats.{ext}"


def _write_text(path: Path, text: str) -> str:
    path.write_text(text, encoding="utf-8")
    return str(path)


def write_report(
    stats: StatsRows,
    red_flags: RedFlagRows,
    fmt: OutputFormat = "human",
    output_dir: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> dict[str, str]:
    """Write the stats for every subject and the red flags.

    Without ``output_dir`` (or with "-") everything is concatenated to
    ``stream``. Returns the written paths keyed by artifact name.
    """
    if fmt not in {"human", "csv"}:
        raise ValueError(f"Unsupported report format: {fmt}")
    ext = "txt" if fmt == "human" else "csv"

    def render_stats(subject: KpiSubject, subject_stats: JobTrackerStats) -> str:
        if fmt == "human":
            return format_stats_human(subject, subject_stats)
        return _csv_text(stats_csv_rows(subject_stats))

    flags_text = format_red_flags_human(red_flags) if fmt == "human" else _csv_text(red_flag_csv_rows(red_flags))

    if not output_dir or output_dir == "-":
        out = stream or sys.stdout
        for subject, subject_stats in stats:
            out.write(render_stats(subject, subject_stats))
        out.write(flags_text)
        out.flush()
        return {}

    root = Path(output_dir).expanduser().resolve()
    root.mkdir(parents=True, exist_ok=True)
    artifacts: dict[str, str] = {}
    for subject, subject_stats in stats:
        artifacts[f"stats:{subject}"] = _write_text(root / stats_file_name(subject, ext), render_stats(subject, subject_stats))
    artifacts["red_flags"] = _write_text(root / f"red-flags.{ext}", flags_text)
    return artifacts

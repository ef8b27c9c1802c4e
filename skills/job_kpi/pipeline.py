"""Main KPI report orchestrator."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TextIO

from .kpi import (
    KpiSubject,
    build_funnel_flows,
    calculate_report_stats,
    parse_date_range,
    process_jobs,
    red_flags_to_rows,
    stats_to_dict,
)
from .reporting.google_sheets import export_report
from .reporting.kpi_report import write_report
from .sankey import render_funnel_sankey
from .sources.api_key import get_api_key
from .sources.csv_source import load_csv_jobs
from .sources.job_nimbus import fetch_jobs, load_jobs_from_file
from .sources.sample_source import load_sample_jobs
from .types import Job, KpiRunResult, OutputFormat, SourceType


def _run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _read_filter(filter_path: Optional[str]) -> Optional[str]:
    if not filter_path:
        return None
    path = Path(filter_path).expanduser().resolve()
    if not path.exists():
        raise ValueError(f"Filter file not found: {path}")
    return path.read_text(encoding="utf-8").strip() or None


def load_jobs(
    source: SourceType,
    *,
    api_key: Optional[str] = None,
    input_path: Optional[str] = None,
    filter_text: Optional[str] = None,
    token_dir: str = ".tokens",
) -> list[Job]:
    if source == "jobnimbus":
        return fetch_jobs(get_api_key(api_key, token_dir), filter_text)
    if source == "json":
        if not input_path:
            raise ValueError("input_path is required for source='json'")
        return load_jobs_from_file(input_path)
    if source == "csv":
        if not input_path:
            raise ValueError("input_path is required for source='csv'")
        return load_csv_jobs(input_path)
    if source == "sample":
        return load_sample_jobs()
    raise ValueError(f"Unsupported source: {source}")


def _save_result_json(path: Path, result: KpiRunResult) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")


def run(
    source: SourceType = "jobnimbus",
    from_date: str = "forever",
    to_date: str = "today",
    *,
    api_key: Optional[str] = None,
    input_path: Optional[str] = None,
    filter_path: Optional[str] = None,
    filter_text: Optional[str] = None,
    fmt: OutputFormat = "human",
    output: Optional[str] = None,
    title: str = "Job KPI Report",
    sankey_path: Optional[str] = None,
    json_path: Optional[str] = None,
    credentials_path: str = "credentials.json",
    token_dir: str = ".tokens",
    allow_interactive_auth: bool = True,
    write_reports: bool = True,
    stream: Optional[TextIO] = None,
) -> KpiRunResult:
    date_range = parse_date_range(from_date, to_date)
    if filter_text is None:
        filter_text = _read_filter(filter_path)

    jobs = load_jobs(source, api_key=api_key, input_path=input_path, filter_text=filter_text, token_dir=token_dir)
    processed = process_jobs(jobs, date_range)
    stats = calculate_report_stats(processed)
    red_flags = processed.sorted_red_flags()

    result = KpiRunResult(
        run_id=_run_id(),
        stats={
            "jobs_loaded": len(jobs),
            "from": date_range[0].isoformat() if date_range[0] else None,
            "to": date_range[1].isoformat() if date_range[1] else None,
            "subjects": [stats_to_dict(subject, subject_stats) for subject, subject_stats in stats],
        },
        red_flags=red_flags_to_rows(red_flags),
        artifacts={},
    )

    if write_reports:
        if fmt == "google-sheets":
            result.artifacts["google_sheet_url"] = export_report(
                title=title,
                stats=stats,
                red_flags=red_flags,
                credentials_path=credentials_path,
                token_dir=token_dir,
                allow_interactive_auth=allow_interactive_auth,
            )
        else:
            result.artifacts.update(write_report(stats, red_flags, fmt, output, stream=stream))

    if sankey_path:
        global_tracker = processed.trackers.get(KpiSubject.GLOBAL)
        if global_tracker is None:
            result.warnings.append("sankey_skipped: no settled jobs in the date range")
        else:
            try:
                result.artifacts["sankey_png_path"] = render_funnel_sankey(
                    build_funnel_flows(global_tracker), title, sankey_path
                )
            except Exception as exc:  # noqa: BLE001
                result.warnings.append(f"sankey_render_failed: {exc}")

    if json_path:
        out = Path(json_path).expanduser().resolve()
        result.artifacts["json_path"] = str(out)
        _save_result_json(out, result)

    return result

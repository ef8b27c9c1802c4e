"""CLI for job_kpi package."""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from .pipeline import run
from .sources.job_nimbus import JobNimbusError


def _status(message: str) -> None:
    # stdout carries the report itself
    print(message, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="jobkpi", description="Job milestone KPI reports")
    parser.add_argument("--api-key", help="JobNimbus API key; cached for later runs once given")
    subparsers = parser.add_subparsers(dest="command", required=True)

    kpi = subparsers.add_parser("kpi", help="Report conversion rates per sales rep")
    kpi.add_argument("--source", choices=["jobnimbus", "json", "csv", "sample"], default="jobnimbus")
    kpi.add_argument("--input", dest="input_path", help="Job file for --source json/csv")
    kpi.add_argument("-f", "--filter", dest="filter_path", help="File holding an ElasticSearch filter for JobNimbus")
    kpi.add_argument(
        "--from",
        dest="from_date",
        default="forever",
        help="Only jobs settled on/after this date: YYYY-MM-DD, 'ytd', 'today' or 'forever'",
    )
    kpi.add_argument(
        "--to",
        dest="to_date",
        default="today",
        help="Only jobs settled on/before this date: YYYY-MM-DD, 'today' or 'forever'",
    )
    kpi.add_argument("--format", dest="fmt", choices=["human", "csv", "google-sheets"], default="human")
    kpi.add_argument("-o", "--output", default="-", help="Directory for one file per sales rep, or '-' for stdout")
    kpi.add_argument("--title", default="Job KPI Report")
    kpi.add_argument("--sankey", dest="sankey_path", help="Write a funnel sankey PNG of the global stats")
    kpi.add_argument("--json", dest="json_path", help="Write the run result as JSON")
    kpi.add_argument("--credentials", default="credentials.json")
    kpi.add_argument("--token-dir", default=".tokens")
    kpi.add_argument(
        "--no-interactive-auth",
        action="store_true",
        help="Disable browser/console OAuth fallback and require an existing Google token",
    )
    return parser


def _print_summary(result) -> None:
    subjects = result.stats.get("subjects", [])
    _status(f"Run ID: {result.run_id}")
    _status(
        f"jobs_loaded={result.stats.get('jobs_loaded', 0)} subjects={len(subjects)} "
        f"red_flags={len(result.red_flags)}"
    )
    for name, path in result.artifacts.items():
        _status(f"{name}: {path}")
    if result.warnings:
        _status("Warnings:")
        for warning in result.warnings:
            _status(f"- {warning}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.source == "jobnimbus":
        _status("KPI run started. Status: fetching jobs from JobNimbus...")
    else:
        _status("KPI run started.")

    try:
        result = run(
            source=args.source,
            from_date=args.from_date,
            to_date=args.to_date,
            api_key=args.api_key,
            input_path=args.input_path,
            filter_path=args.filter_path,
            fmt=args.fmt,
            output=args.output,
            title=args.title,
            sankey_path=args.sankey_path,
            json_path=args.json_path,
            credentials_path=args.credentials,
            token_dir=args.token_dir,
            allow_interactive_auth=not args.no_interactive_auth,
        )
    except (ValueError, JobNimbusError) as exc:
        parser.exit(1, f"error: {exc}\n")

    _print_summary(result)


if __name__ == "__main__":
    main()

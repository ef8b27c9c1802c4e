"""JobNimbus REST source and JSON dump loader returning parsed jobs."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request as UrlRequest
from urllib.request import urlopen

from ..jobs import job_from_json
from ..types import Job

ENDPOINT_JOBS = "https://app.jobnimbus.com/api1/jobs"


class JobNimbusError(RuntimeError):
    pass


class JobNimbusAuthError(JobNimbusError):
    pass


def _log(message: str) -> None:
    print(message, file=sys.stderr, flush=True)


def _build_jobs_url(size: int, filter_text: Optional[str]) -> str:
    params = {"size": str(size)}
    if filter_text:
        params["filter"] = filter_text
    return f"{ENDPOINT_JOBS}?{urlencode(params)}"


def _request_jobs(api_key: str, size: int, filter_text: Optional[str]) -> dict[str, Any]:
    req = UrlRequest(
        _build_jobs_url(size, filter_text),
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        },
        method="GET",
    )
    try:
        with urlopen(req, timeout=30) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="ignore")
        if exc.code in {401, 403}:
            raise JobNimbusAuthError(f"JobNimbus rejected the API key ({exc.code}): {raw[:300]}") from exc
        raise JobNimbusError(f"JobNimbus request failed ({exc.code}): {raw[:300]}") from exc
    except (URLError, TimeoutError, json.JSONDecodeError) as exc:
        raise JobNimbusError(f"JobNimbus request failed: {exc}") from exc

    if not isinstance(payload, dict):
        raise JobNimbusError("JobNimbus response is not a JSON object")
    return payload


def _response_count(payload: dict[str, Any]) -> int:
    count = payload.get("count")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise JobNimbusError(f"JobNimbus response has an invalid count: {count!r}")
    return count


def _parse_results(results: Any) -> list[Job]:
    if not isinstance(results, list):
        raise JobNimbusError("JobNimbus response has no results list")
    return [job_from_json(item) for item in results]


def fetch_jobs(api_key: str, filter_text: Optional[str] = None) -> list[Job]:
    """Fetch every job matching ``filter_text`` (ElasticSearch syntax)."""
    _log("Getting all jobs from JobNimbus")

    # the first request only learns how many jobs there are
    count = _response_count(_request_jobs(api_key, 1, filter_text))
    _log(f"Detected {count} jobs in JobNimbus")
    if count == 0:
        return []

    payload = _request_jobs(api_key, count, filter_text)
    received = _response_count(payload)
    _log(f"Received {received} jobs from JobNimbus")
    if received != count:
        raise JobNimbusError(f"JobNimbus job count changed between requests ({count} then {received})")
    return _parse_results(payload.get("results"))


def load_jobs_from_file(json_path: str) -> list[Job]:
    path = Path(json_path).expanduser().resolve()
    if not path.exists():
        raise ValueError(f"JSON file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("results")
    if not isinstance(payload, list):
        raise ValueError(f"Expected a list of jobs or a JobNimbus response object in {path}")
    return [job_from_json(item) for item in payload]

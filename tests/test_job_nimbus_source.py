import io
import json
from urllib.error import HTTPError
from urllib.parse import parse_qs, urlparse

import pytest

from skills.job_kpi.sources.job_nimbus import (
    JobNimbusAuthError,
    JobNimbusError,
    fetch_jobs,
    load_jobs_from_file,
)


class _FakeResponse:
    def __init__(self, payload: object):
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _job_payload(jnid: str) -> dict:
    return {"jnid": jnid, "number": jnid.upper(), "Sales Appt #1 Date": 1_700_000_000}


def _install_fake_urlopen(monkeypatch, responses: list[object]) -> list:
    requests = []

    def fake_urlopen(req, timeout=30):  # noqa: ANN001
        requests.append(req)
        payload = responses.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return _FakeResponse(payload)

    monkeypatch.setattr("skills.job_kpi.sources.job_nimbus.urlopen", fake_urlopen)
    return requests


def test_fetch_jobs_counts_then_fetches_everything(monkeypatch):
    requests = _install_fake_urlopen(
        monkeypatch,
        [
            {"count": 2, "results": [_job_payload("a")]},
            {"count": 2, "results": [_job_payload("a"), _job_payload("b")]},
        ],
    )

    jobs = fetch_jobs("key-1", '{"must":[{"term":{"status_name":"Paid"}}]}')

    assert [job.jnid for job in jobs] == ["a", "b"]
    sizes = [parse_qs(urlparse(req.full_url).query)["size"][0] for req in requests]
    assert sizes == ["1", "2"]
    assert parse_qs(urlparse(requests[0].full_url).query)["filter"][0].startswith('{"must"')
    assert requests[0].get_header("Authorization") == "Bearer key-1"


def test_fetch_jobs_without_filter_omits_parameter(monkeypatch):
    requests = _install_fake_urlopen(monkeypatch, [{"count": 0, "results": []}])

    assert fetch_jobs("key-1") == []
    assert "filter" not in parse_qs(urlparse(requests[0].full_url).query)
    assert len(requests) == 1


def test_fetch_jobs_rejects_count_change(monkeypatch):
    _install_fake_urlopen(
        monkeypatch,
        [{"count": 1, "results": []}, {"count": 3, "results": []}],
    )

    with pytest.raises(JobNimbusError, match="count changed"):
        fetch_jobs("key-1")


def test_fetch_jobs_maps_unauthorized_to_auth_error(monkeypatch):
    error = HTTPError("https://app.jobnimbus.com/api1/jobs", 401, "Unauthorized", {}, io.BytesIO(b"bad key"))
    _install_fake_urlopen(monkeypatch, [error])

    with pytest.raises(JobNimbusAuthError):
        fetch_jobs("bad")


def test_fetch_jobs_reports_server_errors_with_body(monkeypatch):
    error = HTTPError("https://app.jobnimbus.com/api1/jobs", 500, "Boom", {}, io.BytesIO(b"upstream exploded"))
    _install_fake_urlopen(monkeypatch, [error])

    with pytest.raises(JobNimbusError, match=r"\(500\): upstream exploded"):
        fetch_jobs("key-1")


def test_load_jobs_from_file_accepts_response_object_or_list(tmp_path):
    response_path = tmp_path / "response.json"
    response_path.write_text(json.dumps({"count": 1, "results": [_job_payload("x")]}), encoding="utf-8")
    list_path = tmp_path / "list.json"
    list_path.write_text(json.dumps([_job_payload("y"), _job_payload("z")]), encoding="utf-8")

    assert [job.jnid for job in load_jobs_from_file(str(response_path))] == ["x"]
    assert [job.jnid for job in load_jobs_from_file(str(list_path))] == ["y", "z"]


def test_load_jobs_from_file_errors(tmp_path):
    with pytest.raises(ValueError, match="not found"):
        load_jobs_from_file(str(tmp_path / "missing.json"))

    bad = tmp_path / "bad.json"
    bad.write_text('{"count": 1}', encoding="utf-8")
    with pytest.raises(ValueError):
        load_jobs_from_file(str(bad))


def test_load_jobs_from_file_treats_non_finite_dates_as_unset(tmp_path):
    dump = tmp_path / "jobs.json"
    dump.write_text('[{"jnid": "a", "Sales Appt #1 Date": Infinity, "Install Date": NaN}]', encoding="utf-8")

    [job] = load_jobs_from_file(str(dump))

    assert job.milestone_dates.appointment_date is None
    assert job.milestone_dates.install_date is None

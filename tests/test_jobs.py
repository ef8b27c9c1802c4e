import json
from datetime import datetime, timedelta, timezone

import pytest

from skills.job_kpi.jobs import JobFromJsonError, analyze_job, job_from_json
from skills.job_kpi.types import AnomalyKind, Job, JobKind, Milestone, MilestoneDates

BASE = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _day(n: int) -> datetime:
    return BASE + timedelta(days=n)


def _job(
    *,
    insurance: bool = False,
    company: str | None = None,
    claim: str | None = None,
    appt: int | None = None,
    contingency: int | None = None,
    contract: int | None = None,
    install: int | None = None,
    lost: int | None = None,
) -> Job:
    def at(n: int | None):
        return _day(n) if n is not None else None

    return Job(
        jnid="jn-1",
        job_number="1001",
        insurance_checkbox=insurance,
        insurance_company_name=company,
        insurance_claim_number=claim,
        milestone_dates=MilestoneDates(
            appointment_date=at(appt),
            contingency_date=at(contingency),
            contract_date=at(contract),
            install_date=at(install),
            loss_date=at(lost),
        ),
    )


def _kinds(anomalies) -> list[AnomalyKind]:
    return [a.kind for a in anomalies]


def test_retail_job_without_contingency_is_settled():
    analyzed, anomalies = analyze_job(_job(appt=1, contract=3, install=4))

    assert anomalies == []
    assert analyzed.analysis is not None
    assert analyzed.analysis.kind == JobKind.RETAIL
    assert analyzed.analysis.timestamps == (None, _day(1), None, _day(3), _day(4))
    assert analyzed.analysis.is_settled()
    assert analyzed.analysis.date_settled() == _day(4)


def test_complete_insurance_job_spans_every_milestone():
    analyzed, anomalies = analyze_job(_job(insurance=True, appt=1, contingency=2, contract=3, install=5))

    assert anomalies == []
    assert analyzed.analysis.kind == JobKind.INSURANCE_WITH_CONTINGENCY
    assert len(analyzed.analysis.timestamps) == len(Milestone)
    assert analyzed.analysis.is_settled()


def test_insurance_job_with_only_appointment_is_not_settled():
    analyzed, anomalies = analyze_job(_job(insurance=True, appt=1))

    assert anomalies == []
    assert analyzed.analysis.kind == JobKind.INSURANCE_WITH_CONTINGENCY
    assert analyzed.analysis.timestamps == (None, _day(1))
    assert not analyzed.analysis.is_settled()
    assert analyzed.analysis.date_settled() is None


def test_insurance_job_skipping_contingency_is_reclassified():
    analyzed, anomalies = analyze_job(_job(insurance=True, appt=1, contract=3, install=6))

    assert anomalies == []
    assert analyzed.analysis.kind == JobKind.INSURANCE_WITHOUT_CONTINGENCY
    assert analyzed.analysis.timestamps[Milestone.CONTINGENCY_SIGNED] is None


def test_non_insurance_job_signing_contingency_is_flagged_and_reclassified():
    analyzed, anomalies = analyze_job(_job(appt=1, contingency=2))

    assert _kinds(anomalies) == [AnomalyKind.CONTINGENCY_WITHOUT_INSURANCE]
    assert analyzed.analysis is not None
    assert analyzed.analysis.kind == JobKind.INSURANCE_WITH_CONTINGENCY
    assert analyzed.analysis.timestamps == (None, _day(1), _day(2))


def test_insurance_details_without_checkbox_are_inconsistent():
    analyzed, anomalies = analyze_job(_job(claim="CLM-9", appt=1, contract=2, install=3))

    assert _kinds(anomalies) == [AnomalyKind.INCONSISTENT_INSURANCE_INFO]
    assert analyzed.analysis.kind == JobKind.INSURANCE_WITHOUT_CONTINGENCY


@pytest.mark.parametrize(
    "dates, milestone",
    [
        ({"appt": 5, "contract": 3}, Milestone.CONTRACT_SIGNED),
        ({"appt": 1, "contingency": 4, "contract": 3}, Milestone.CONTRACT_SIGNED),
        ({"appt": 1, "contract": 3, "install": 2}, Milestone.INSTALLED),
    ],
)
def test_out_of_order_dates_abort_analysis(dates, milestone):
    analyzed, anomalies = analyze_job(_job(insurance=True, **dates))

    assert analyzed.analysis is None
    assert anomalies[-1].kind == AnomalyKind.OUT_OF_ORDER_DATES
    assert anomalies[-1].milestone == milestone


def test_loss_before_last_milestone_is_out_of_order():
    analyzed, anomalies = analyze_job(_job(appt=5, lost=2))

    assert analyzed.analysis is None
    assert anomalies[-1].kind == AnomalyKind.OUT_OF_ORDER_DATES
    assert anomalies[-1].milestone is None
    assert "Job Lost" in anomalies[-1].message


def test_skipped_dates_abort_analysis():
    analyzed, anomalies = analyze_job(_job(appt=1, install=4))

    assert analyzed.analysis is None
    assert anomalies[-1].kind == AnomalyKind.SKIPPED_DATES
    assert anomalies[-1].milestone == Milestone.INSTALLED
    assert anomalies[-1].message == "This job has skipped date(s) prior to the milestone Installed."


def test_loss_after_contract_is_recorded_but_analysis_kept():
    analyzed, anomalies = analyze_job(_job(appt=1, contract=2, lost=3))

    assert _kinds(anomalies) == [AnomalyKind.INVALID_LOSS]
    assert analyzed.analysis is not None
    assert analyzed.analysis.loss_timestamp == _day(3)
    assert analyzed.analysis.date_settled() == _day(3)


def test_lost_after_appointment_is_settled_on_loss_date():
    analyzed, anomalies = analyze_job(_job(appt=1, lost=4))

    assert anomalies == []
    assert analyzed.analysis.timestamps == (None, _day(1))
    assert analyzed.analysis.is_settled()
    assert analyzed.analysis.date_settled() == _day(4)


def test_analyze_job_is_idempotent():
    job = _job(company="Acme Mutual", appt=1, contingency=2, contract=4, lost=5)

    assert analyze_job(job) == analyze_job(job)


def test_job_from_json_reads_job_nimbus_fields():
    job = job_from_json(
        {
            "jnid": "abc123",
            "number": "2041",
            "name": "Smith Roof",
            "sales_rep_name": "Dana",
            "Insurance Job?": True,
            "Insurance Company": "",
            "Claim #": "CLM-1",
            "Sales Appt #1 Date": 1_700_000_000,
            "Signed Contingency Date": 0,
            "Signed Contract Date": 1_700_086_400,
            "Install Date": 0,
        }
    )

    assert job.jnid == "abc123"
    assert job.job_number == "2041"
    assert job.sales_rep == "Dana"
    assert job.insurance_checkbox is True
    assert job.insurance_company_name is None
    assert job.insurance_claim_number == "CLM-1"
    assert job.milestone_dates.appointment_date == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    assert job.milestone_dates.contingency_date is None
    assert job.milestone_dates.install_date is None
    assert job.milestone_dates.loss_date is None


def test_job_from_json_defaults_checkbox_to_false():
    job = job_from_json({"jnid": "x", "Insurance Job?": "yes"})

    assert job.insurance_checkbox is False
    assert job.sales_rep is None


@pytest.mark.parametrize("raw", ["Infinity", "-Infinity", "NaN", "1700000000.5"])
def test_job_from_json_ignores_non_integer_dates(raw):
    payload = json.loads(f'{{"jnid": "a", "Sales Appt #1 Date": {raw}, "Install Date": {raw}}}')

    job = job_from_json(payload)

    assert job.milestone_dates.appointment_date is None
    assert job.milestone_dates.install_date is None


@pytest.mark.parametrize("payload", [[], "job", {"number": "12"}, {"jnid": 7}])
def test_job_from_json_rejects_malformed_payloads(payload):
    with pytest.raises(JobFromJsonError):
        job_from_json(payload)

import json

import pytest

from skills.job_kpi import cli
from skills.job_kpi.pipeline import run


def test_parser_defaults():
    args = cli.build_parser().parse_args(["kpi"])

    assert args.source == "jobnimbus"
    assert args.from_date == "forever"
    assert args.to_date == "today"
    assert args.fmt == "human"
    assert args.output == "-"
    assert args.api_key is None
    assert args.no_interactive_auth is False


def test_parser_reads_api_key_before_subcommand():
    args = cli.build_parser().parse_args(
        ["--api-key", "k-1", "kpi", "-f", "filter.json", "--from", "ytd", "--format", "csv", "-o", "out"]
    )

    assert args.api_key == "k-1"
    assert args.filter_path == "filter.json"
    assert args.from_date == "ytd"
    assert args.fmt == "csv"
    assert args.output == "out"


def test_main_prints_report_to_stdout_and_status_to_stderr(capsys):
    cli.main(["kpi", "--source", "sample"])

    captured = capsys.readouterr()
    assert captured.out.startswith("Tracker for [Global]: ================")
    assert "Red flags for Bob" in captured.out
    assert "Run ID:" in captured.err
    assert "Run ID:" not in captured.out


def test_main_exits_on_bad_date(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["kpi", "--source", "sample", "--to", "ytd"])

    assert exc.value.code == 1
    assert "'ytd' is only valid as a start date" in capsys.readouterr().err


def test_run_writes_directory_json_and_reads_filter_file(tmp_path, monkeypatch):
    captured = {}

    def fake_fetch_jobs(api_key, filter_text=None):  # noqa: ANN001
        captured["filter"] = filter_text
        return []

    monkeypatch.setattr("skills.job_kpi.pipeline.fetch_jobs", fake_fetch_jobs)
    filter_path = tmp_path / "filter.json"
    filter_path.write_text('{"must": [{"term": {"record_type_name": "Roof"}}]}\n', encoding="utf-8")

    result = run(
        source="jobnimbus",
        api_key="key-1",
        filter_path=str(filter_path),
        output=str(tmp_path / "out"),
        json_path=str(tmp_path / "result.json"),
        token_dir=str(tmp_path / "tokens"),
    )

    assert captured["filter"] == '{"must": [{"term": {"record_type_name": "Roof"}}]}'
    assert result.stats["subjects"] == []
    assert (tmp_path / "out" / "red-flags.txt").exists()
    saved = json.loads((tmp_path / "result.json").read_text(encoding="utf-8"))
    assert saved["run_id"] == result.run_id


def test_run_requires_input_for_file_sources():
    with pytest.raises(ValueError, match="input_path is required"):
        run(source="csv")


def test_run_sankey_failure_becomes_warning(tmp_path, monkeypatch):
    def broken_render(flows, title, out_path):  # noqa: ANN001
        raise RuntimeError("no display")

    monkeypatch.setattr("skills.job_kpi.pipeline.render_funnel_sankey", broken_render)

    result = run(source="sample", sankey_path=str(tmp_path / "s.png"), write_reports=False)

    assert result.warnings == ["sankey_render_failed: no display"]
    assert "sankey_png_path" not in result.artifacts

import os
from pathlib import Path

import pytest

from jobs.__main__ import main as cli_main
from jobs.config import JOB_GROUPS, TARGET_JOBS, get_job_by_key, resolve_jobs
from jobs.settings import ConfigurationError, load_settings
from pipelines.series import ALL_SERIES

ENV_KEYS = (
    "ARGDATA_DB_PATH",
    "CRON_SECRET_KEY",
    "EXISTENCE_BATCH_SIZE",
    "BCRA_FETCH_LIMIT",
    "BCRA_VERIFY_SSL",
    "API_CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_settings_defaults():
    settings = load_settings()

    assert settings.db_path == Path("data/argentina_datos.duckdb")
    assert settings.cron_secret is None
    assert settings.existence_batch_size == 100
    assert settings.bcra_verify_ssl is True
    assert settings.cors_origins == ("*",)


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("ARGDATA_DB_PATH", "/tmp/other.duckdb")
    monkeypatch.setenv("CRON_SECRET_KEY", "abc")
    monkeypatch.setenv("BCRA_VERIFY_SSL", "false")
    monkeypatch.setenv("BCRA_FETCH_LIMIT", "0")
    monkeypatch.setenv("API_CORS_ORIGINS", "https://a.example, https://b.example")

    settings = load_settings(require_cron_secret=True)

    assert settings.db_path == Path("/tmp/other.duckdb")
    assert settings.cron_secret == "abc"
    assert settings.bcra_verify_ssl is False
    assert settings.bcra_fetch_limit == 0
    assert settings.cors_origins == ("https://a.example", "https://b.example")


def test_missing_secret_fails_fast():
    with pytest.raises(ConfigurationError):
        load_settings(require_cron_secret=True)


@pytest.mark.parametrize("value", ["many", "0"])
def test_bad_batch_size(monkeypatch, value):
    monkeypatch.setenv("EXISTENCE_BATCH_SIZE", value)

    with pytest.raises(ConfigurationError):
        load_settings()


def test_every_series_has_a_job():
    assert {job.series.key for job in TARGET_JOBS} == {series.key for series in ALL_SERIES}


def test_groups_resolve_to_jobs():
    for group, members in JOB_GROUPS.items():
        assert [job.key for job in resolve_jobs(group)] == list(members)
    assert resolve_jobs("update-dollar") == (get_job_by_key("update-dollar"),)
    assert resolve_jobs("nope") == ()


def test_cli_lists_jobs(capsys):
    assert cli_main(["list-jobs"]) == 0

    output = capsys.readouterr().out
    assert "update-dollar: table=dollar_rates" in output
    assert "update-bcra-indices: group of update-cer, update-uva" in output


def test_cli_rejects_unknown_job():
    with pytest.raises(SystemExit):
        cli_main(["sync", "update-nothing"])


@pytest.mark.parametrize(
    ("argv", "expected_jobs"),
    [
        (["sync", "update-dollar", "--log-level", "DEBUG"], ["update-dollar"]),
        (["sync", "--log-level", "DEBUG", "update-cer", "update-uva"], ["update-cer", "update-uva"]),
        (["sync-all", "--log-level", "DEBUG"], None),
    ],
)
def test_cli_accepts_log_level_after_the_subcommand(monkeypatch, argv, expected_jobs):
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    calls = []

    def fake_run(jobs):
        calls.append(None if jobs is None else [job.key for job in jobs])
        return 0

    monkeypatch.setattr("jobs.__main__.run_load_all", fake_run)

    assert cli_main(argv) == 0
    assert calls == [expected_jobs]
    assert os.environ["LOG_LEVEL"] == "DEBUG"

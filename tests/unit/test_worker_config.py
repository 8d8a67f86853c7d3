"""
Tests for the worker entrypoint's configuration resolution.
"""

import pytest

from deploy_worker.__main__ import (
    get_database_path,
    get_max_workers,
    get_poll_interval,
    get_site_url,
    get_timeout,
    parse_args,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "DEPLOY_DB_PATH",
        "DEPLOY_MAX_WORKERS",
        "DEPLOY_POLL_INTERVAL",
        "DEPLOY_TIMEOUT_SECONDS",
        "DEPLOY_SITE_URL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    args = parse_args([])

    assert get_database_path(args) == "deploy_jobs.db"
    assert get_max_workers(args) == 3
    assert get_poll_interval(args) == 1.0
    assert get_timeout(args) == 1200
    assert get_site_url(args) == "http://localhost:8080"


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("DEPLOY_MAX_WORKERS", "5")
    monkeypatch.setenv("DEPLOY_TIMEOUT_SECONDS", "60")
    monkeypatch.setenv("DEPLOY_DB_PATH", "/tmp/x.db")

    args = parse_args([])

    assert get_max_workers(args) == 5
    assert get_timeout(args) == 60
    assert get_database_path(args) == "/tmp/x.db"


def test_cli_overrides_environment(monkeypatch):
    monkeypatch.setenv("DEPLOY_MAX_WORKERS", "5")

    args = parse_args(["--max-workers", "2", "--interval", "0.5"])

    assert get_max_workers(args) == 2
    assert get_poll_interval(args) == 0.5


@pytest.mark.parametrize("value", ["abc", "0", "-3"])
def test_invalid_values_fall_back_to_default(monkeypatch, value):
    monkeypatch.setenv("DEPLOY_MAX_WORKERS", value)

    assert get_max_workers(parse_args([])) == 3

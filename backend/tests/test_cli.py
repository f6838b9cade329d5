from __future__ import annotations

from app import cli
from app.settings import settings


def test_worker_argv_targets_originality_queue() -> None:
    argv = cli.worker_argv(concurrency=0, log_level="info")

    assert argv[0] == "worker"
    assert "--loglevel=INFO" in argv
    assert "--concurrency=1" in argv
    assert f"--queues={settings.queue_name}" in argv


def test_main_prepares_tables_then_runs_celery_worker(isolated_db, monkeypatch) -> None:
    calls: list[list[str]] = []
    monkeypatch.setattr(cli.celery_app, "worker_main", calls.append)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)

    assert cli.main(["--concurrency", "3", "--log-level", "warning"]) == 0

    assert len(calls) == 1
    assert "--concurrency=3" in calls[0]
    assert "--loglevel=WARNING" in calls[0]

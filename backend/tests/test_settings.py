from __future__ import annotations

from app.settings import Settings


def test_data_dir_defaults_to_tmp_on_vercel(monkeypatch) -> None:
    monkeypatch.setenv("VERCEL", "1")
    monkeypatch.delenv("VERCEL_ENV", raising=False)
    monkeypatch.delenv("CAPSTONE_DATA_DIR", raising=False)
    monkeypatch.delenv("DATA_DIR", raising=False)

    settings = Settings()

    assert settings.data_path.as_posix() == "/tmp/capstone"


def test_data_dir_defaults_to_local_when_not_serverless(monkeypatch) -> None:
    monkeypatch.delenv("VERCEL", raising=False)
    monkeypatch.delenv("VERCEL_ENV", raising=False)
    monkeypatch.delenv("CAPSTONE_SERVERLESS", raising=False)
    monkeypatch.delenv("CAPSTONE_DATA_DIR", raising=False)
    monkeypatch.delenv("DATA_DIR", raising=False)

    settings = Settings()

    assert settings.data_path.as_posix().endswith("/backend/data")


def test_sqlite_path_follows_data_dir(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("CAPSTONE_SQLITE_PATH", raising=False)
    monkeypatch.delenv("SQLITE_PATH", raising=False)

    settings = Settings()

    assert settings.sqlite_url == f"sqlite:///{tmp_path / 'capstone.db'}"


def test_cors_allow_origins_defaults_to_wildcard(monkeypatch) -> None:
    monkeypatch.delenv("CAPSTONE_CORS_ALLOW_ORIGINS", raising=False)
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)

    settings = Settings()

    assert settings.cors_origin_list == ["*"]


def test_cors_allow_origins_from_env(monkeypatch) -> None:
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://frontend-a.vercel.app, https://frontend-b.vercel.app")

    settings = Settings()

    assert settings.cors_origin_list == [
        "https://frontend-a.vercel.app",
        "https://frontend-b.vercel.app",
    ]


def test_queue_and_scoring_defaults(monkeypatch) -> None:
    for name in ("CAPSTONE_QUEUE_BACKEND", "CAPSTONE_REDIS_URL", "REDIS_URL", "CAPSTONE_MAX_UPLOAD_MB"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()

    assert settings.queue_backend == "redis"
    assert settings.redis_url == "redis://127.0.0.1:6379/0"
    assert (settings.redis_backoff_base_ms, settings.redis_backoff_cap_ms) == (200, 3000)
    assert settings.title_similarity_threshold == 0.65
    assert settings.max_upload_bytes == 25 * 1024 * 1024


def test_redis_url_accepts_platform_alias(monkeypatch) -> None:
    monkeypatch.delenv("CAPSTONE_REDIS_URL", raising=False)
    monkeypatch.setenv("REDIS_URL", "redis://cache.internal:6380/2")

    assert Settings().redis_url == "redis://cache.internal:6380/2"

from __future__ import annotations

from pathlib import Path

from flowboard.shared.settings import DEFAULT_GITHUB_API_URL, get_settings


def test_defaults() -> None:
    settings = get_settings({})

    assert settings.data_dir == Path("./data")
    assert settings.store_backend == "sqlite"
    assert settings.sqlite_path == Path("./data") / "flowboard.sqlite"
    assert settings.blob_name == "workflows.json"
    assert settings.connector == "in_memory"
    assert settings.github_api_url == DEFAULT_GITHUB_API_URL
    assert settings.http_timeout_s == 5.0
    assert settings.max_workers == 8
    assert settings.max_attempts == 3
    assert settings.log_level == "INFO"


def test_overrides() -> None:
    settings = get_settings(
        {
            "FLOWBOARD_DATA_DIR": "/srv/flowboard",
            "FLOWBOARD_STORE": " HTTP ",
            "FLOWBOARD_BLOB_URL": "https://store.example.com/bucket",
            "FLOWBOARD_BLOB_NAME": "board.json",
            "FLOWBOARD_GITHUB_CONNECTOR": "API",
            "FLOWBOARD_GITHUB_API_URL": "https://ghe.example.com/api/v3/",
            "FLOWBOARD_HTTP_TIMEOUT_S": "2.5",
            "FLOWBOARD_MAX_WORKERS": "4",
            "FLOWBOARD_MAX_ATTEMPTS": "5",
            "FLOWBOARD_LOG_LEVEL": "debug",
        }
    )

    assert settings.sqlite_path == Path("/srv/flowboard") / "flowboard.sqlite"
    assert settings.store_backend == "http"
    assert settings.blob_url == "https://store.example.com/bucket"
    assert settings.blob_name == "board.json"
    assert settings.connector == "api"
    assert settings.github_api_url == "https://ghe.example.com/api/v3"
    assert settings.http_timeout_s == 2.5
    assert settings.max_workers == 4
    assert settings.max_attempts == 5
    assert settings.log_level == "DEBUG"


def test_bad_numbers_fall_back_to_defaults() -> None:
    settings = get_settings(
        {
            "FLOWBOARD_HTTP_TIMEOUT_S": "soon",
            "FLOWBOARD_MAX_WORKERS": "0",
            "FLOWBOARD_MAX_ATTEMPTS": "-2",
        }
    )

    assert settings.http_timeout_s == 5.0
    assert settings.max_workers == 8
    assert settings.max_attempts == 3

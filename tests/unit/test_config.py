# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from config import AppConfig
from spec import NEGOTIATION_TIMEOUT_MS, STUN_SERVER_URLS


ENV_KEYS = (
    "ENV", "LOG_LEVEL", "ENABLE_JSON_LOGS", "DIRECTORY_BACKEND", "FIREBASE_PROJECT_ID",
    "STUN_URLS", "TURN_URL", "TURN_USERNAME", "TURN_CREDENTIAL",
    "NEGOTIATION_TIMEOUT_MS", "SIGNALING_CLEANUP_GRACE_S", "CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_use_public_stun_and_no_turn() -> None:
    config = AppConfig.load_from_env()

    assert config.directory_backend == "memory"
    assert config.negotiation_timeout_ms == NEGOTIATION_TIMEOUT_MS
    assert config.ice_servers() == [{"urls": list(STUN_SERVER_URLS)}]
    assert config.cors_origins == ("*",)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DIRECTORY_BACKEND", "Firestore")
    monkeypatch.setenv("FIREBASE_PROJECT_ID", "demo")
    monkeypatch.setenv("STUN_URLS", "stun:a:3478, stun:b:3478")
    monkeypatch.setenv("TURN_URL", "turn:relay:3478")
    monkeypatch.setenv("TURN_USERNAME", "u")
    monkeypatch.setenv("TURN_CREDENTIAL", "p")
    monkeypatch.setenv("NEGOTIATION_TIMEOUT_MS", "5000")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example,https://b.example")

    config = AppConfig.load_from_env()

    assert config.directory_backend == "firestore"
    assert config.firebase_project_id == "demo"
    assert config.negotiation_timeout_ms == 5000
    assert config.cors_origins == ("https://a.example", "https://b.example")
    assert config.ice_servers() == [
        {"urls": ["stun:a:3478", "stun:b:3478"]},
        {"urls": ["turn:relay:3478"], "username": "u", "credential": "p"},
    ]


def test_bad_numeric_value_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NEGOTIATION_TIMEOUT_MS", "soon")

    with pytest.raises(ValueError):
        AppConfig.load_from_env()

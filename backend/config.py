"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from spec import (
    NEGOTIATION_TIMEOUT_MS,
    SIGNALING_CLEANUP_GRACE_S,
    STUN_SERVER_URLS,
)


def _split_csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the server, the directory and the session managers.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Session Directory
    # ------------------------------------------------------------------

    # "memory" | "firestore"
    directory_backend: str = "memory"
    firebase_project_id: str | None = None

    # ------------------------------------------------------------------
    # WebRTC
    # ------------------------------------------------------------------

    stun_urls: tuple[str, ...] = STUN_SERVER_URLS
    turn_url: str | None = None
    turn_username: str | None = None
    turn_credential: str | None = None

    negotiation_timeout_ms: int = NEGOTIATION_TIMEOUT_MS
    signaling_cleanup_grace_s: float = SIGNALING_CLEANUP_GRACE_S

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    cors_origins: tuple[str, ...] = ("*",)

    def ice_servers(self) -> list[dict[str, Any]]:
        """ICE server list in the RTCConfiguration wire shape."""
        servers: list[dict[str, Any]] = [{"urls": list(self.stun_urls)}]
        if self.turn_url:
            servers.append({
                "urls": [self.turn_url],
                "username": self.turn_username,
                "credential": self.turn_credential,
            })
        return servers

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            directory_backend=os.environ.get("DIRECTORY_BACKEND", "memory").lower(),
            firebase_project_id=os.environ.get("FIREBASE_PROJECT_ID"),

            stun_urls=_split_csv(os.environ.get("STUN_URLS")) or STUN_SERVER_URLS,
            turn_url=os.environ.get("TURN_URL"),
            turn_username=os.environ.get("TURN_USERNAME"),
            turn_credential=os.environ.get("TURN_CREDENTIAL"),

            negotiation_timeout_ms=int(
                os.environ.get("NEGOTIATION_TIMEOUT_MS", str(NEGOTIATION_TIMEOUT_MS))
            ),
            signaling_cleanup_grace_s=float(
                os.environ.get("SIGNALING_CLEANUP_GRACE_S", str(SIGNALING_CLEANUP_GRACE_S))
            ),

            cors_origins=_split_csv(os.environ.get("CORS_ORIGINS")) or ("*",),
        )

"""Application configuration."""

import os
import shlex
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    transport_kind: Literal["process", "inprocess"] = "process"
    process_command: str = "node robo.js --session {session_id}"
    process_workdir: str | None = None
    process_stop_timeout: float = 5.0
    auth_data_path: str = ".wwebjs_auth"
    reconnect_base_delay: float = 1.5
    reconnect_max_delay: float = 60.0
    reconnect_max_attempts: int = 5
    subscriber_send_timeout: float = 2.0
    route_prefix: str = "/wpp"
    cors_origins: str = "*"
    api_token: str | None = None
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_cors_origins(raw: str | None) -> list[str]:
    """Parse allowed CORS origins from env."""
    if raw is None:
        return ["*"]
    origins = [chunk.strip() for chunk in raw.split(",") if chunk.strip()]
    return origins or ["*"]


def build_process_argv(template: str, session_id: str, auth_path: str) -> list[str]:
    """Build the child process argv for a session.

    The template is split before substitution so an id can never introduce
    extra arguments.
    """
    return [
        part.replace("{session_id}", session_id).replace("{auth_path}", auth_path)
        for part in shlex.split(template)
    ]

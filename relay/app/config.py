"""Central configuration for the wa-relay service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-software-rasterizer",
    "--no-zygote",
    "--disable-extensions",
]


# ============================================================
# Nested Configuration Classes
# ============================================================

class ReinitSettings(BaseModel):
    """Backoff tuning for the destroy/initialize recovery cycle."""
    base_delay_seconds: float = Field(18.0, description="Delay before reinit when the last attempt succeeded")
    extended_delay_seconds: float = Field(45.0, description="Delay before reinit when the last attempt failed")
    destroy_timeout_seconds: float = Field(10.0, description="Upper bound for best-effort destroy during reinit")
    clear_destroy_timeout_seconds: float = Field(12.0, description="Upper bound for destroy during session clear")

    @model_validator(mode="after")
    def _check_tiers(self) -> "ReinitSettings":
        if self.extended_delay_seconds < self.base_delay_seconds:
            raise ValueError("extended_delay_seconds must not be shorter than base_delay_seconds")
        return self


class QrSettings(BaseModel):
    """Pairing QR rendering."""
    width: int = Field(400, description="Rendered PNG width/height (pixels)")
    margin: int = Field(2, description="Quiet-zone border (modules)")
    print_ascii: bool = Field(True, description="Also log an ASCII rendering of each new QR")


class Settings(BaseSettings):
    """Environment-driven settings for the relay."""

    # Automation gateway
    gateway_api_url: str = Field("http://127.0.0.1:8090", description="Automation gateway REST base URL")
    gateway_ws_url: str = Field("ws://127.0.0.1:8090/events", description="Automation gateway event stream URL")
    gateway_timeout_seconds: float = Field(30.0, description="HTTP timeout for gateway calls")

    # Browser automation
    puppeteer_executable_path: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("PUPPETEER_EXECUTABLE_PATH", "puppeteer_executable_path"),
        description="Path to the Chromium executable used by the gateway",
    )
    browser_headless: bool = Field(True, description="Run the automation browser headless")
    browser_args: List[str] = Field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    auth_timeout_ms: int = Field(300_000, description="How long the gateway waits for the pairing page")

    # Relay HTTP server
    relay_host: str = Field("0.0.0.0", description="Host interface for the FastAPI server")
    relay_port: int = Field(3000, description="Port for the FastAPI server")

    # Persisted session storage owned by the gateway
    session_root: Path = Field(default_factory=Path.cwd, description="Directory holding session folders")
    session_dirs: List[str] = Field(default_factory=lambda: ["session", ".wwebjs_auth"])

    # Failure classification
    extra_retryable_signatures: List[str] = Field(
        default_factory=list, description="Additional substrings treated as transient automation failures"
    )

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Optional[Path] = Field(
        ROOT_DIR / "logs", description="Log directory path; empty logs to the console only"
    )
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    reinit: ReinitSettings = Field(default_factory=ReinitSettings, description="Reinitialization backoff")
    qr: QrSettings = Field(default_factory=QrSettings, description="QR rendering")

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("log_directory", mode="before")
    @classmethod
    def _blank_log_directory(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def session_paths(self) -> List[Path]:
        root = Path(self.session_root).expanduser()
        return [root / name for name in self.session_dirs]


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()

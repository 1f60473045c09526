"""
Runtime settings for the pet dance worker.

Everything is read from the environment once at startup (after loading a
local `.env`), then handed to the container. Nothing else in the package
reads os.environ directly.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    log_level: str = "INFO"

    # ── Supabase ─────────────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # ── Redis (optional — enables the durable queue) ─────────────────────
    redis_url: Optional[str] = None

    # ── Providers ────────────────────────────────────────────────────────
    video_provider: str = "replicate"
    runway_api_key: str = ""
    runway_base_url: str = "https://api.runwayml.com/v1"
    runway_model_id: str = "gen4_turbo"
    replicate_api_token: str = ""
    replicate_base_url: str = "https://api.replicate.com/v1"
    replicate_model: str = "bytedance/seedance-1-pro-fast"
    runcomfy_api_key: str = ""
    runcomfy_base_url: str = "https://model-api.runcomfy.net"

    # ── Job loop ─────────────────────────────────────────────────────────
    poll_interval_seconds: float = 5.0
    poll_timeout_seconds: float = 600.0
    status_requery_enabled: bool = True

    # ── Blob storage (Cloudflare R2 over the S3 API) ─────────────────────
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "assets"
    r2_public_url: str = ""

    # Where the dance soundtracks are served from (RunComfy accepts audio)
    audio_base_url: str = ""

    @property
    def storage_configured(self) -> bool:
        return bool(self.r2_account_id and self.r2_access_key_id and self.r2_secret_access_key)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)


def load_settings() -> Settings:
    """Build Settings from the process environment (and `.env` if present)."""
    load_dotenv()
    return Settings(
        environment=os.environ.get("ENVIRONMENT", "development"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        supabase_url=os.environ.get("SUPABASE_URL", "") or os.environ.get("NEXT_PUBLIC_SUPABASE_URL", ""),
        supabase_service_role_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
        redis_url=os.environ.get("REDIS_URL") or None,
        video_provider=os.environ.get("VIDEO_PROVIDER", "replicate").strip().lower(),
        runway_api_key=os.environ.get("RUNWAY_API_KEY", ""),
        runway_base_url=os.environ.get("RUNWAY_BASE_URL", "https://api.runwayml.com/v1"),
        runway_model_id=os.environ.get("RUNWAY_MODEL_ID", "gen4_turbo"),
        replicate_api_token=os.environ.get("REPLICATE_API_TOKEN", ""),
        replicate_base_url=os.environ.get("REPLICATE_BASE_URL", "https://api.replicate.com/v1"),
        replicate_model=os.environ.get("REPLICATE_MODEL", "bytedance/seedance-1-pro-fast"),
        runcomfy_api_key=os.environ.get("RUNCOMFY_API_KEY", ""),
        runcomfy_base_url=os.environ.get("RUNCOMFY_BASE_URL", "https://model-api.runcomfy.net"),
        poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 5.0),
        poll_timeout_seconds=_env_float("POLL_TIMEOUT_SECONDS", 600.0),
        status_requery_enabled=_env_bool("STATUS_REQUERY_ENABLED", True),
        r2_account_id=os.environ.get("R2_ACCOUNT_ID", ""),
        r2_access_key_id=os.environ.get("R2_ACCESS_KEY_ID", ""),
        r2_secret_access_key=os.environ.get("R2_SECRET_ACCESS_KEY", ""),
        r2_bucket_name=os.environ.get("R2_BUCKET_NAME", "assets"),
        r2_public_url=os.environ.get("R2_PUBLIC_URL", ""),
        audio_base_url=os.environ.get("AUDIO_BASE_URL", ""),
    )

"""Client settings loaded from environment variables.

Environment Configuration:
    KVRP_ENV: Deployment environment (local | test | staging | prod)
    LOG_JSON: Emit JSON logs (default true); console logs when false

Supabase Configuration (required in staging/prod):
    SUPABASE_URL: Project URL, e.g. https://abcd.supabase.co
    SUPABASE_ANON_KEY: Public anon key used for REST, Realtime and Storage
    SUPABASE_REALTIME_URL: Realtime websocket URL (derived from SUPABASE_URL when unset)

Storage Configuration:
    CHAT_IMAGE_BUCKET: Bucket for chat images, voice clips and post images
    SCREENSHOT_BUCKET: Bucket for report screenshots

Limits:
    MAX_IMAGE_BYTES, MAX_VOICE_SECONDS, MAX_CHAT_CHARS, MAX_POST_CHARS

Note: local/test environments may run without Supabase; callers then get the
in-memory fakes from the client factories.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Client configuration.

    Validation rules:
    - SUPABASE_URL and SUPABASE_ANON_KEY are required in staging and prod
    - All limits must be >= 1
    """

    kvrp_env: Environment = Field(default=Environment.LOCAL, alias="KVRP_ENV")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Supabase settings
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_anon_key: str | None = Field(default=None, alias="SUPABASE_ANON_KEY")
    supabase_realtime_url: str | None = Field(default=None, alias="SUPABASE_REALTIME_URL")

    # Storage buckets
    chat_image_bucket: str = Field(default="post-images", alias="CHAT_IMAGE_BUCKET")
    screenshot_bucket: str = Field(default="screenshots", alias="SCREENSHOT_BUCKET")

    # Client-side limits
    max_image_bytes: int = Field(default=5 * 1024 * 1024, alias="MAX_IMAGE_BYTES")  # 5 MB
    max_voice_seconds: int = Field(default=30, alias="MAX_VOICE_SECONDS")
    max_chat_chars: int = Field(default=500, alias="MAX_CHAT_CHARS")
    max_post_chars: int = Field(default=2000, alias="MAX_POST_CHARS")

    # Network
    request_timeout_s: float = Field(default=15.0, alias="KVRP_REQUEST_TIMEOUT_S")
    realtime_heartbeat_s: float = Field(default=25.0, alias="REALTIME_HEARTBEAT_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure Supabase settings are present outside local/test and limits are sane."""
        if self.kvrp_env in (Environment.STAGING, Environment.PROD):
            missing = []
            if not self.supabase_url:
                missing.append("SUPABASE_URL")
            if not self.supabase_anon_key:
                missing.append("SUPABASE_ANON_KEY")
            if missing:
                raise ValueError(
                    f"Missing required Supabase settings for KVRP_ENV={self.kvrp_env.value}: "
                    f"{', '.join(missing)}"
                )

        limits = {
            "MAX_IMAGE_BYTES": self.max_image_bytes,
            "MAX_VOICE_SECONDS": self.max_voice_seconds,
            "MAX_CHAT_CHARS": self.max_chat_chars,
            "MAX_POST_CHARS": self.max_post_chars,
        }
        for name, value in limits.items():
            if value < 1:
                raise ValueError(f"{name} must be >= 1 (got {value})")

        if self.request_timeout_s <= 0:
            raise ValueError("KVRP_REQUEST_TIMEOUT_S must be > 0")

        return self

    @property
    def has_supabase(self) -> bool:
        """Whether a real Supabase project is configured."""
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def normalized_supabase_url(self) -> str | None:
        """Return project URL with trailing slash stripped."""
        if self.supabase_url:
            return self.supabase_url.rstrip("/")
        return None

    @property
    def effective_realtime_url(self) -> str | None:
        """Return the Realtime websocket URL, deriving it from SUPABASE_URL if not set."""
        if self.supabase_realtime_url:
            return self.supabase_realtime_url
        base = self.normalized_supabase_url
        if not base:
            return None
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}/realtime/v1/websocket"


@lru_cache
def get_settings() -> Settings:
    """Get cached client settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()

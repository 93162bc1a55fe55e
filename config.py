"""
Configuration resolution.

Environment variables are read once, inside load_settings() (so tests can
monkeypatch them), and turned into immutable descriptors. Code below this
layer never looks at the environment name again.
"""
import os
import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from errors import ConfigurationError, InvalidEnvironmentError

ENVIRONMENTS = ("development", "production")

DEFAULT_SYNC_SCHEDULE = "*/5 * * * *"
DEFAULT_CHAT_MODEL = "claude-sonnet-4-5-20250929"


class ConnectionDescriptor(BaseModel):
    """Where and how to reach one Supabase project."""

    model_config = ConfigDict(frozen=True)

    url: str
    service_key: str

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    environment: str
    default_store: ConnectionDescriptor
    vector_store: ConnectionDescriptor
    vector_table_name: str
    openai_api_key: str
    anthropic_api_key: str
    chat_model: str = DEFAULT_CHAT_MODEL
    api_key: Optional[str] = None
    cron_secret: Optional[str] = None
    sync_schedule: str = DEFAULT_SYNC_SCHEDULE
    sync_enabled: bool = True
    sync_batch_size: int = 100
    generation_timeout: float = 10.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def validate_environment(environment: str) -> str:
    """Return the environment name, or raise InvalidEnvironmentError."""
    if environment not in ENVIRONMENTS:
        raise InvalidEnvironmentError(environment)
    return environment


def get_vector_table_name(environment: str) -> str:
    """Embedding table for an environment. VECTOR_TABLE_NAME wins if set."""
    default_name = (
        "message_embeddings_prod" if environment == "production" else "message_embeddings_dev"
    )
    table_name = os.getenv("VECTOR_TABLE_NAME") or default_name
    # PostgREST addresses tables without the schema prefix
    return re.sub(r"^vector_store\.", "", table_name)


def _get_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"[Config] WARN: Invalid {name} value {raw!r}, using default {default}")
        return default
    if value < minimum:
        print(f"[Config] WARN: {name}={value} below minimum {minimum}, using default {default}")
        return default
    return value


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        print(f"[Config] WARN: Invalid {name} value {raw!r}, using default {default}")
        return default
    if value <= 0:
        print(f"[Config] WARN: {name} must be positive, using default {default}")
        return default
    return value


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _require(names: List[str]) -> Dict[str, str]:
    values = {name: os.getenv(name) for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            "Missing required environment variables:\n"
            + "\n".join(f"  - {name}" for name in missing)
        )
    return values


def load_settings(environment: Optional[str] = None) -> Settings:
    """
    Build Settings from the process environment.

    Args:
        environment: Overrides APP_ENV when given

    Raises:
        InvalidEnvironmentError: environment is not development/production
        ConfigurationError: a required variable is missing or a URL is malformed
    """
    environment = validate_environment(environment or os.getenv("APP_ENV", "development"))

    suffix = "PROD" if environment == "production" else "DEV"
    store_url = os.getenv(f"SUPABASE_URL_{suffix}") or os.getenv("SUPABASE_URL")
    if not store_url:
        raise ConfigurationError(
            f"Missing required environment variables:\n  - SUPABASE_URL_{suffix} (or SUPABASE_URL)"
        )

    required = _require([
        "SUPABASE_SERVICE_KEY",
        "VECTOR_SUPABASE_URL",
        "VECTOR_SUPABASE_SERVICE_KEY",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
    ])

    for name, url in (("SUPABASE_URL", store_url), ("VECTOR_SUPABASE_URL", required["VECTOR_SUPABASE_URL"])):
        if not re.match(r"^https?://.+", url):
            raise ConfigurationError(f"{name} must be a valid URL")

    settings = Settings(
        environment=environment,
        default_store=ConnectionDescriptor(
            url=store_url.rstrip("/"),
            service_key=required["SUPABASE_SERVICE_KEY"],
        ),
        vector_store=ConnectionDescriptor(
            url=required["VECTOR_SUPABASE_URL"].rstrip("/"),
            service_key=required["VECTOR_SUPABASE_SERVICE_KEY"],
        ),
        vector_table_name=get_vector_table_name(environment),
        openai_api_key=required["OPENAI_API_KEY"],
        anthropic_api_key=required["ANTHROPIC_API_KEY"],
        chat_model=os.getenv("CHAT_MODEL", DEFAULT_CHAT_MODEL),
        api_key=os.getenv("TENSAI_KEY"),
        cron_secret=os.getenv("CRON_SECRET"),
        sync_schedule=os.getenv("SYNC_SCHEDULE", DEFAULT_SYNC_SCHEDULE),
        sync_enabled=_get_bool("SYNC_ENABLED", True),
        sync_batch_size=_get_int("SYNC_BATCH_SIZE", 100),
        generation_timeout=_get_float("GENERATION_TIMEOUT", 10.0),
    )

    print(
        f"[Config] environment={environment} vector_table={settings.vector_table_name} "
        f"has_api_key={bool(settings.api_key)} has_cron_secret={bool(settings.cron_secret)}"
    )
    return settings

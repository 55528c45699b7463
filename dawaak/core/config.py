from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: dawaak/core/config.py -> dawaak/core -> dawaak -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

OPENAI_KEY_PREFIX = "sk-"


class Settings(BaseSettings):
    platform_name: str = "دوائك المنزلي"
    environment: str = "development"
    log_level: str = "INFO"
    secret_key: str = "change-me-in-production"
    # memory://  |  file:<directory> (local JSON files)  |  SQLAlchemy URL (remote database)
    storage_url: str = "file:./database"
    # The /tables routes are also served under this prefix ("" disables the alias)
    api_prefix: str = "/api"
    cors_origins: str = "*"
    rate_limit_per_minute: int = 60
    rate_limit_login_per_minute: int = 10
    session_ttl_hours: int = 24
    bcrypt_rounds: int = 12
    max_login_attempts: int = 5
    lockout_minutes: int = 15
    default_page_limit: int = 100
    max_page_limit: int = 1000
    # Default accounts are only created when their password is configured
    seed_defaults: bool = True
    seed_admin_password: str = ""
    seed_doctor_password: str = ""
    openai_api_key: str = ""
    # Comma separated; tried in order when one key is rejected or rate limited
    openai_api_keys: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_timeout: float = 30.0

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("openai_api_key", "openai_api_keys", mode="before")
    @classmethod
    def strip_openai_key(cls, v: str | None) -> str:
        return (v or "").strip()

    @field_validator("api_prefix", mode="before")
    @classmethod
    def normalize_prefix(cls, v: str | None) -> str:
        v = (v or "").strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v


settings = Settings()


def get_openai_keys() -> list[str]:
    """
    Valid OpenAI keys (``sk-`` prefixed). OPENAI_API_KEYS wins when set,
    otherwise OPENAI_API_KEY as a single entry.
    """
    keys_raw = (settings.openai_api_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip().startswith(OPENAI_KEY_PREFIX)]
        if keys:
            return keys
    single = (settings.openai_api_key or "").strip()
    if single.startswith(OPENAI_KEY_PREFIX):
        return [single]
    return []


def is_openai_configured() -> bool:
    return len(get_openai_keys()) > 0

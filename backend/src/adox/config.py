"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env relative to the project root
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_FILE = _PROJECT_ROOT / ".env"


def parse_id_list(text: str) -> list[int]:
    """Split "12, 40;7" style id lists. Raises ValueError on non-numeric ids."""
    ids: list[int] = []
    for part in text.replace(";", ",").replace(" ", ",").split(","):
        part = part.strip()
        if part:
            ids.append(int(part))
    return ids


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        env_prefix="ADOX_",
        extra="ignore",
    )

    # --- Target (all optional, prompted for when missing) ---
    organization_url: str | None = None
    project: str | None = None
    pipeline_ids_raw: str = Field("", validation_alias=AliasChoices("ADOX_PIPELINE_IDS", "pipeline_ids_raw"))
    output_dir: str = "escalation_output"

    # --- Customer metadata ---
    customer_name: str = ""
    case_number: str = ""

    # --- Authentication ---
    access_token: str | None = None
    az_cli_path: str = "az"
    token_max_age_s: int = 3000

    # --- Collection ---
    run_window: int = 20
    duplicate_preference: str = "declarative"  # declarative | classic

    # --- HTTP ---
    http_timeout_s: float = 30.0
    http_max_attempts: int = 3
    http_backoff_max_s: float = 10.0

    # --- App ---
    log_level: str = "INFO"

    @field_validator("pipeline_ids_raw")
    @classmethod
    def _numeric_pipeline_ids(cls, v: str) -> str:
        try:
            parse_id_list(v)
        except ValueError:
            raise ValueError(f"pipeline ids must be comma-separated integers, got {v!r}") from None
        return v

    @property
    def pipeline_ids(self) -> list[int]:
        return parse_id_list(self.pipeline_ids_raw)


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

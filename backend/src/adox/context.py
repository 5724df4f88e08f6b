"""Immutable per-run collection context threaded through every component."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from adox.auth import Token
from adox.config import Settings

TS_FORMAT = "%Y%m%d_%H%M%S"


class CollectionContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    organization_url: str
    project: str | None = None
    token: Token
    output_dir: Path
    timestamp_token: str
    collected_at: datetime
    run_window: int = 20
    duplicate_preference: str = "declarative"
    http_timeout_s: float = 30.0
    http_max_attempts: int = 3
    http_backoff_max_s: float = 10.0

    @classmethod
    def create(
        cls,
        settings: Settings,
        token: Token,
        organization_url: str | None = None,
        now: datetime | None = None,
    ) -> CollectionContext:
        now = now or datetime.now(timezone.utc)
        org = (organization_url or settings.organization_url or "").rstrip("/")
        return cls(
            organization_url=org,
            project=settings.project,
            token=token,
            output_dir=Path(settings.output_dir),
            timestamp_token=now.strftime(TS_FORMAT),
            collected_at=now,
            run_window=settings.run_window,
            duplicate_preference=settings.duplicate_preference,
            http_timeout_s=settings.http_timeout_s,
            http_max_attempts=settings.http_max_attempts,
            http_backoff_max_s=settings.http_backoff_max_s,
        )

    def with_project(self, project: str) -> CollectionContext:
        return self.model_copy(update={"project": project})

    def with_token(self, token: Token) -> CollectionContext:
        return self.model_copy(update={"token": token})

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token.value}",
            "Accept": "application/json",
        }

    @property
    def report_path(self) -> Path:
        return self.output_dir / f"EscalationReport_{self.timestamp_token}.json"

    @property
    def markdown_path(self) -> Path:
        return self.output_dir / f"IcM_Report_{self.timestamp_token}.md"

    @property
    def log_path(self) -> Path:
        return self.output_dir / f"CollectionLog_{self.timestamp_token}.txt"

    def pipeline_dir(self, pipeline_id: int) -> Path:
        return self.output_dir / f"Pipeline_{pipeline_id}"

"""Models for pipeline descriptors and run records."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class PipelineKind(str, Enum):
    DECLARATIVE = "declarative"  # YAML
    CLASSIC = "classic"  # Designer


class RunResult(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    PARTIALLY_SUCCEEDED = "partiallySucceeded"
    NONE = "none"


class RepositoryRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str  # azureReposGit, gitHub, ...
    id: str
    connection_id: str | None = None
    default_branch: str | None = None


class PipelineDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    kind: PipelineKind
    folder: str | None = None
    repository: RepositoryRef | None = None  # declarative only
    definition_path: str | None = None  # declarative only
    web_url: str | None = None
    last_result: RunResult | None = None

    @property
    def sort_key(self) -> tuple[str, int]:
        return (self.name, self.id)


class RunRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    pipeline_id: int
    name: str | None = None
    result: RunResult = RunResult.NONE
    status: str = "unknown"
    queued_time: datetime | None = None
    start_time: datetime | None = None
    finish_time: datetime | None = None
    source_branch: str | None = None
    web_url: str | None = None


class RunRecommendation(BaseModel):
    latest_failed: RunRecord | None = None
    prior_success: RunRecord | None = None

    @property
    def has_regression_signal(self) -> bool:
        return self.latest_failed is not None

    @property
    def run_ids(self) -> list[int]:
        return [r.id for r in (self.latest_failed, self.prior_success) if r is not None]

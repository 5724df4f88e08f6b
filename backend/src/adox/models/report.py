"""Models for the structured escalation report."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from adox.models.artifacts import ArtifactRecord, CollectionError
from adox.models.pipelines import PipelineDescriptor, RunRecommendation, RunRecord


class CustomerInfo(BaseModel):
    customer_name: str = ""
    case_number: str = ""
    organization_url: str
    project: str
    collected_at: datetime
    timestamp_token: str
    collector_version: str = "0.1.0"


class PipelineResult(BaseModel):
    descriptor: PipelineDescriptor
    recommendation: RunRecommendation | None = None
    selected_runs: list[RunRecord] = Field(default_factory=list)
    artifacts: list[ArtifactRecord] = Field(default_factory=list)
    errors: list[CollectionError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class EscalationReport(BaseModel):
    customer: CustomerInfo
    pipelines: list[PipelineResult] = Field(default_factory=list)
    all_artifacts: list[ArtifactRecord] = Field(default_factory=list)
    global_errors: list[CollectionError] = Field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.global_errors) + sum(len(p.errors) for p in self.pipelines)

"""Models for collected artifacts and scoped collection errors."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class ArtifactKind(str, Enum):
    LOG_ARCHIVE = "log_archive"
    DEFINITION = "definition"
    REPORT = "report"


class ErrorScope(str, Enum):
    PIPELINE = "pipeline"
    RUN = "run"
    GLOBAL = "global"


class ArtifactRecord(BaseModel):
    owner_pipeline_id: int | None = None
    owner_run_id: int | None = None  # None for definitions
    kind: ArtifactKind
    path: str
    size_bytes: int
    validated: bool = False


class CollectionError(BaseModel):
    scope: ErrorScope
    message: str
    category: str = "error"  # auth, discovery, definition, log, report
    pipeline_id: int | None = None
    run_id: int | None = None
    is_fatal: bool = False

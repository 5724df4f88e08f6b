"""Shared test fixtures: collection context, run factory, in-memory client."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from adox.auth import Token
from adox.context import CollectionContext
from adox.errors import TransportError
from adox.models.pipelines import RunRecord, RunResult

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
ZIP_BYTES = b"PK\x03\x04" + b"\x00" * 60


def _zero_wait_ctx(tmp_path: Path, project: str | None = "Web") -> CollectionContext:
    return CollectionContext(
        organization_url="https://dev.azure.com/contoso",
        project=project,
        token=Token(value="secret", acquired_at=T0),
        output_dir=tmp_path / "out",
        timestamp_token="20260301_080000",
        collected_at=T0 + timedelta(days=1),
        http_max_attempts=3,
        http_backoff_max_s=0,
    )


@pytest.fixture
def ctx(tmp_path: Path) -> CollectionContext:
    return _zero_wait_ctx(tmp_path)


@pytest.fixture
def make_run() -> Callable[..., RunRecord]:
    """Build a RunRecord with times given as hour offsets from T0."""

    def _make(
        run_id: int,
        result: RunResult = RunResult.SUCCEEDED,
        queued: float | None = None,
        start: float | None = None,
        finish: float | None = None,
        pipeline_id: int = 1,
    ) -> RunRecord:
        def at(h: float | None) -> datetime | None:
            return T0 + timedelta(hours=h) if h is not None else None

        return RunRecord(
            id=run_id,
            pipeline_id=pipeline_id,
            result=result,
            status="completed" if finish is not None else "inProgress",
            queued_time=at(queued),
            start_time=at(start),
            finish_time=at(finish),
            source_branch="refs/heads/main",
        )

    return _make


class FakeDevOpsClient:
    """In-memory stand-in for ``DevOpsClient``.

    ``files`` maps a download URL to bytes or to an exception to raise.
    """

    def __init__(self, ctx: CollectionContext) -> None:
        self.ctx = ctx
        self.projects: list[dict[str, Any]] = [{"name": "Web"}]
        self.pipelines: list[dict[str, Any]] = []
        self.pipeline_details: dict[int, Any] = {}
        self.definitions: list[dict[str, Any]] = []
        self.definition_exports: dict[int, Any] = {}
        self.pipeline_runs: dict[int, Any] = {}
        self.builds: dict[int, Any] = {}
        self.run_logs: dict[tuple[int, int], Any] = {}
        self.files: dict[str, Any] = {}
        self.downloads: list[tuple[str, dict]] = []
        self.unversioned: list[str] = []

    def with_context(self, ctx: CollectionContext) -> FakeDevOpsClient:
        clone = FakeDevOpsClient.__new__(FakeDevOpsClient)
        clone.__dict__.update(self.__dict__)
        clone.ctx = ctx
        return clone

    @staticmethod
    def _answer(value: Any) -> Any:
        if isinstance(value, Exception):
            raise value
        return value

    def list_projects(self) -> list[dict[str, Any]]:
        return self._answer(self.projects)

    def list_pipelines(self) -> list[dict[str, Any]]:
        return self._answer(self.pipelines)

    def get_pipeline(self, pipeline_id: int) -> dict[str, Any]:
        return self._answer(self.pipeline_details[pipeline_id])

    def list_build_definitions(self) -> list[dict[str, Any]]:
        return self._answer(self.definitions)

    def get_build_definition(self, definition_id: int) -> dict[str, Any]:
        return self._answer(self.definition_exports[definition_id])

    def list_pipeline_runs(self, pipeline_id: int, top: int) -> list[dict[str, Any]]:
        return self._answer(self.pipeline_runs.get(pipeline_id, []))[:top]

    def list_builds(self, definition_id: int, top: int) -> list[dict[str, Any]]:
        return self._answer(self.builds.get(definition_id, []))[:top]

    def get_pipeline_run_logs(self, pipeline_id: int, run_id: int) -> dict[str, Any]:
        return self._answer(self.run_logs[(pipeline_id, run_id)])

    def build_logs_zip_url(self, build_id: int) -> str:
        return f"https://build/{build_id}/logs"

    def git_item_url(self, repository_id: str) -> str:
        return f"https://git/{repository_id}/items"

    def github_file_url(self) -> str:
        return "https://github-provider/filecontents"

    def download(
        self,
        url: str,
        dest: Path,
        params: dict | None = None,
        accept: str | None = None,
        versioned: bool = True,
    ) -> int:
        self.downloads.append((url, dict(params or {})))
        if not versioned:
            self.unversioned.append(url)
        if url not in self.files:
            raise TransportError(f"GET {url} returned HTTP 404", status_code=404)
        payload = self.files[url]
        dest.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(payload, Exception):
            # Partial write before the failure, cleaned up like the real client
            dest.write_bytes(b"partial")
            dest.unlink()
            raise payload
        dest.write_bytes(payload)
        return len(payload)


@pytest.fixture
def fake_client(ctx: CollectionContext) -> FakeDevOpsClient:
    return FakeDevOpsClient(ctx)


@pytest.fixture
def zip_bytes() -> bytes:
    return ZIP_BYTES

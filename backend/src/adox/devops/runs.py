"""Run-history retrieval and normalization for both pipeline kinds."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from adox.devops.client import DevOpsClient
from adox.errors import TransportError
from adox.models.pipelines import PipelineDescriptor, PipelineKind, RunRecord, RunResult

logger = logging.getLogger(__name__)

# DevOps emits 1-7 fractional digits; fromisoformat wants exactly 6
_FRACTION_RE = re.compile(r"\.(\d+)")

RESULT_MAP: dict[str, RunResult] = {
    "succeeded": RunResult.SUCCEEDED,
    "failed": RunResult.FAILED,
    "canceled": RunResult.CANCELED,
    "cancelled": RunResult.CANCELED,
    "partiallysucceeded": RunResult.PARTIALLY_SUCCEEDED,
}


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse a DevOps ISO-8601 timestamp; unset sentinel dates become None."""
    if not raw:
        return None
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), raw.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r", raw)
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    if ts.year <= 1:
        return None
    return ts


def _result(raw: str | None) -> RunResult:
    return RESULT_MAP.get((raw or "").lower(), RunResult.NONE)


def _web_url(payload: dict[str, Any]) -> str | None:
    return payload.get("_links", {}).get("web", {}).get("href")


def run_from_build(payload: dict[str, Any], pipeline_id: int) -> RunRecord:
    """Normalize a classic build (``_apis/build/builds``) entry."""
    return RunRecord(
        id=int(payload["id"]),
        pipeline_id=pipeline_id,
        name=payload.get("buildNumber"),
        result=_result(payload.get("result")),
        status=payload.get("status") or "unknown",
        queued_time=parse_timestamp(payload.get("queueTime")),
        start_time=parse_timestamp(payload.get("startTime")),
        finish_time=parse_timestamp(payload.get("finishTime")),
        source_branch=payload.get("sourceBranch"),
        web_url=_web_url(payload),
    )


def run_from_pipeline_run(payload: dict[str, Any], pipeline_id: int) -> RunRecord:
    """Normalize a YAML pipeline run (``_apis/pipelines/{id}/runs``) entry.

    The pipelines API only reports creation and finish times; creation is
    the queue time.
    """
    repos = payload.get("resources", {}).get("repositories", {})
    branch = repos.get("self", {}).get("refName")
    return RunRecord(
        id=int(payload["id"]),
        pipeline_id=pipeline_id,
        name=payload.get("name"),
        result=_result(payload.get("result")),
        status=payload.get("state") or "unknown",
        queued_time=parse_timestamp(payload.get("createdDate")),
        start_time=parse_timestamp(payload.get("startedDate")),
        finish_time=parse_timestamp(payload.get("finishedDate")),
        source_branch=branch,
        web_url=_web_url(payload),
    )


def fetch_runs(client: DevOpsClient, descriptor: PipelineDescriptor, top: int) -> list[RunRecord]:
    """Return up to ``top`` most recent runs, newest first.

    Entries missing an id or carrying unusable fields raise ``TransportError``
    like any other malformed response.
    """
    if descriptor.kind is PipelineKind.CLASSIC:
        raw = client.list_builds(descriptor.id, top)
        normalize = run_from_build
    else:
        raw = client.list_pipeline_runs(descriptor.id, top)
        normalize = run_from_pipeline_run
    try:
        runs = [normalize(r, descriptor.id) for r in raw]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise TransportError(
            f"Malformed run history for pipeline {descriptor.id}: {type(e).__name__}: {e}"
        ) from e
    logger.debug("Pipeline %d (%s): %d run(s)", descriptor.id, descriptor.kind.value, len(runs))
    return runs

"""Markdown projection of an escalation report.

Pure function of the report: no clock, filesystem, or network access, so
re-rendering a saved report reproduces the same text.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import PurePath

from adox.models.artifacts import ArtifactRecord, CollectionError
from adox.models.pipelines import RunRecord
from adox.models.report import EscalationReport, PipelineResult


def _ts(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _cell(value: object) -> str:
    return str(value if value is not None else "-").replace("|", "\\|")


def _run_rows(runs: list[RunRecord]) -> list[str]:
    lines = [
        "| Run | Result | Status | Branch | Queued | Started | Finished |",
        "|---|---|---|---|---|---|---|",
    ]
    for r in runs:
        lines.append(
            f"| {r.id} | {r.result.value} | {_cell(r.status)} | {_cell(r.source_branch)} "
            f"| {_ts(r.queued_time)} | {_ts(r.start_time)} | {_ts(r.finish_time)} |"
        )
    return lines


def _artifact_line(a: ArtifactRecord) -> str:
    owner = f"run {a.owner_run_id}" if a.owner_run_id is not None else "pipeline"
    flag = "ok" if a.validated else "NOT VALIDATED"
    return f"- `{PurePath(a.path).name}` ({a.kind.value}, {owner}, {a.size_bytes:,} bytes, {flag})"


def _error_line(e: CollectionError) -> str:
    where = f"run {e.run_id}" if e.run_id is not None else e.scope.value
    fatal = " **fatal**" if e.is_fatal else ""
    return f"- [{e.category}] {where}: {e.message}{fatal}"


def _pipeline_section(p: PipelineResult) -> list[str]:
    d = p.descriptor
    lines = [f"### {d.name} (id {d.id}, {d.kind.value})", ""]
    if d.web_url:
        lines.append(f"- Link: {d.web_url}")
    if d.definition_path:
        lines.append(f"- Definition: `{d.definition_path}`")
    if d.repository:
        lines.append(f"- Repository: {d.repository.type} `{d.repository.id}`")
    lines.append(f"- Last result: {d.last_result.value if d.last_result else 'none'}")

    rec = p.recommendation
    if rec is None or rec.latest_failed is None:
        lines.append("- Recommendation: no regression signal")
    else:
        prior = rec.prior_success.id if rec.prior_success else "none in window"
        lines.append(f"- Recommendation: latest failure run {rec.latest_failed.id}, prior success run {prior}")
    lines.append("")

    if p.selected_runs:
        lines.append("**Selected runs**")
        lines.append("")
        lines.extend(_run_rows(p.selected_runs))
        lines.append("")
    if p.artifacts:
        lines.append("**Artifacts**")
        lines.append("")
        lines.extend(_artifact_line(a) for a in p.artifacts)
        lines.append("")
    if p.errors:
        lines.append("**Errors**")
        lines.append("")
        lines.extend(_error_line(e) for e in p.errors)
        lines.append("")
    return lines


def project_markdown(report: EscalationReport) -> str:
    c = report.customer
    lines = [
        f"# Pipeline Escalation Report {c.case_number}".rstrip(),
        "",
        "| Field | Value |",
        "|---|---|",
        f"| Customer | {_cell(c.customer_name or None)} |",
        f"| Case | {_cell(c.case_number or None)} |",
        f"| Organization | {_cell(c.organization_url)} |",
        f"| Project | {_cell(c.project)} |",
        f"| Collected at | {_ts(c.collected_at)} |",
        f"| Collector version | {c.collector_version} |",
        "",
        "## Summary",
        "",
        f"- Pipelines: {len(report.pipelines)}",
        f"- Artifacts: {len(report.all_artifacts)} "
        f"({sum(1 for a in report.all_artifacts if a.validated)} validated)",
        f"- Errors: {report.error_count}",
        "",
        "| Pipeline | Id | Kind | Last result | Runs | Artifacts | Errors |",
        "|---|---|---|---|---|---|---|",
    ]
    for p in report.pipelines:
        d = p.descriptor
        lines.append(
            f"| {_cell(d.name)} | {d.id} | {d.kind.value} "
            f"| {d.last_result.value if d.last_result else '-'} "
            f"| {len(p.selected_runs)} | {len(p.artifacts)} | {len(p.errors)} |"
        )
    lines.append("")

    if report.pipelines:
        lines.append("## Pipelines")
        lines.append("")
        for p in report.pipelines:
            lines.extend(_pipeline_section(p))

    if report.global_errors:
        lines.append("## Collection errors")
        lines.append("")
        lines.extend(_error_line(e) for e in report.global_errors)
        lines.append("")

    lines.append("## Collector diagnostics")
    lines.append("")
    lines.append(f"Operational log: `CollectionLog_{c.timestamp_token}.txt`")
    lines.append("")
    return "\n".join(lines)

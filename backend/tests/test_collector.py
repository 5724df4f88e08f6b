"""End-to-end collection flow over the in-memory client."""
from __future__ import annotations

from pathlib import Path

import pytest

from adox.collector import Collector, collect
from adox.errors import AuthError, DiscoveryError, TransportError
from adox.models.artifacts import ArtifactKind, ErrorScope
from adox.selection import PresetSelectionProvider

YAML_TEXT = b"steps:\n  - script: echo hi\n"


def _pipeline_run(run_id: int, result: str, created: str, finished: str) -> dict:
    return {
        "id": run_id,
        "result": result,
        "state": "completed",
        "createdDate": created,
        "finishedDate": finished,
        "resources": {"repositories": {"self": {"refName": "refs/heads/main"}}},
    }


@pytest.fixture
def seeded(fake_client, zip_bytes):
    fake_client.pipelines = [{"id": 12, "name": "api-ci"}]
    fake_client.pipeline_details[12] = {
        "configuration": {
            "type": "yaml",
            "path": "azure-pipelines.yml",
            "repository": {"id": "repo-12", "type": "azureReposGit"},
        },
    }
    fake_client.definitions = [{"id": 40, "name": "nightly"}]
    fake_client.definition_exports[40] = {"id": 40, "name": "nightly"}
    fake_client.builds[40] = [
        {"id": 401, "result": "succeeded", "status": "completed",
         "queueTime": "2026-02-27T10:00:00Z", "startTime": "2026-02-27T10:01:00Z",
         "finishTime": "2026-02-27T10:30:00Z"},
    ]
    fake_client.files["https://build/401/logs"] = zip_bytes
    fake_client.files["https://git/repo-12/items"] = YAML_TEXT
    fake_client.pipeline_runs[12] = [
        _pipeline_run(102, "failed", "2026-02-28T12:00:00.1234567Z", "2026-02-28T12:20:00.1234567Z"),
        _pipeline_run(101, "succeeded", "2026-02-28T09:00:00Z", "2026-02-28T09:15:00Z"),
    ]
    fake_client.run_logs[(12, 101)] = {"signedContent": {"url": "https://signed/101.zip"}}
    fake_client.run_logs[(12, 102)] = {"signedContent": {"url": "https://signed/102.zip"}}
    fake_client.files["https://signed/102.zip"] = zip_bytes
    fake_client.files["https://signed/101.zip"] = TransportError("HTTP 503", status_code=503, transient=True)
    return fake_client


def test_failed_log_download_is_scoped_to_its_run(seeded) -> None:
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web"), case_number="42")

    assert [p.descriptor.id for p in report.pipelines] == [12, 40]
    yaml_result, classic_result = report.pipelines

    logs = [a for a in yaml_result.artifacts if a.kind is ArtifactKind.LOG_ARCHIVE]
    assert len(logs) == 1
    assert logs[0].owner_run_id == 102
    assert len(yaml_result.errors) == 1
    assert yaml_result.errors[0].scope is ErrorScope.RUN
    assert yaml_result.errors[0].run_id == 101
    assert [r.id for r in yaml_result.selected_runs] == [101, 102]
    assert yaml_result.recommendation.latest_failed.id == 102

    # the next pipeline was still processed
    assert classic_result.ok
    assert {a.kind for a in classic_result.artifacts} == {ArtifactKind.DEFINITION, ArtifactKind.LOG_ARCHIVE}
    assert report.customer.case_number == "42"


def test_every_artifact_is_validated_or_has_an_error(seeded) -> None:
    seeded.files["https://signed/102.zip"] = b""
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web"))
    for p in report.pipelines:
        for a in p.artifacts:
            if a.validated:
                assert Path(a.path).stat().st_size > 0
            else:
                assert any(e.run_id == a.owner_run_id for e in p.errors)
    assert len(report.all_artifacts) == sum(len(p.artifacts) for p in report.pipelines)


def test_definition_failure_does_not_block_logs(seeded) -> None:
    seeded.files["https://git/repo-12/items"] = b'{"message": "not found"}'
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web", pipeline_ids=[12]))
    (result,) = report.pipelines
    assert result.errors[0].category == "definition"
    assert any(a.kind is ArtifactKind.LOG_ARCHIVE for a in result.artifacts)


def test_run_history_failure_recorded(seeded) -> None:
    seeded.builds[40] = TransportError("HTTP 500", status_code=500)
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web", pipeline_ids=[40]))
    (result,) = report.pipelines
    assert "runs" in [e.category for e in result.errors]
    assert result.selected_runs == []


def test_project_chosen_when_not_configured(seeded) -> None:
    ctx = seeded.ctx.model_copy(update={"project": None})
    client = seeded.with_context(ctx)
    client.projects = [{"name": "Web"}]
    report, final_ctx = collect(ctx, client, PresetSelectionProvider())
    assert final_ctx.project == "Web"
    assert report.customer.project == "Web"


def test_no_selected_pipelines_is_fatal(seeded) -> None:
    with pytest.raises(DiscoveryError):
        collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web", pipeline_ids=[999]))


def test_unexpected_error_is_isolated(seeded, monkeypatch) -> None:
    collector = Collector(seeded.ctx, seeded, PresetSelectionProvider(project="Web"))
    original = collector.process_pipeline

    def flaky(descriptor, result=None):
        if descriptor.id == 12:
            raise RuntimeError("boom")
        return original(descriptor, result)

    monkeypatch.setattr(collector, "process_pipeline", flaky)
    report = collector.run()
    assert report.pipelines[0].errors[0].category == "unexpected"
    assert report.pipelines[1].ok


def test_unexpected_error_keeps_partial_results(seeded, monkeypatch) -> None:
    collector = Collector(seeded.ctx, seeded, PresetSelectionProvider(project="Web", pipeline_ids=[12]))

    def explode(descriptor, runs, recommendation):
        raise RuntimeError("selection crashed")

    monkeypatch.setattr(collector.selection, "choose_runs", explode)
    report = collector.run()
    (result,) = report.pipelines
    assert [a.kind for a in result.artifacts] == [ArtifactKind.DEFINITION]
    assert result.artifacts[0].validated
    assert report.all_artifacts == result.artifacts
    assert result.errors[-1].category == "unexpected"
    assert "selection crashed" in result.errors[-1].message


def test_malformed_run_history_is_scoped_to_its_pipeline(seeded) -> None:
    # the newest run is fine so discovery succeeds; an older entry has no id
    seeded.pipeline_runs[12].append({"result": "failed", "state": "completed"})
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web"))
    yaml_result, classic_result = report.pipelines
    assert [e.category for e in yaml_result.errors] == ["runs"]
    assert [a.kind for a in yaml_result.artifacts] == [ArtifactKind.DEFINITION]
    assert classic_result.ok


def test_malformed_last_run_does_not_abort_discovery(seeded) -> None:
    seeded.pipeline_runs[12] = [{"result": "failed", "state": "completed"}]
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web"))
    assert [p.descriptor.id for p in report.pipelines] == [12, 40]
    assert report.pipelines[0].errors[0].category == "discovery"
    assert report.pipelines[1].ok


class _ExpiringAuthenticator:
    """Refreshes once, then fails."""

    def __init__(self) -> None:
        self.calls = 0

    def ensure_fresh(self, token, now=None):
        self.calls += 1
        if self.calls > 1:
            raise AuthError("az login session expired")
        return token


def test_reauth_failure_keeps_collected_pipelines(seeded) -> None:
    report, _ = collect(
        seeded.ctx, seeded, PresetSelectionProvider(project="Web"),
        authenticator=_ExpiringAuthenticator(),
    )
    assert [p.descriptor.id for p in report.pipelines] == [12]
    assert report.pipelines[0].artifacts
    (auth,) = [e for e in report.global_errors if e.category == "auth"]
    assert auth.is_fatal
    assert auth.scope is ErrorScope.GLOBAL


def test_duplicate_ids_surface_as_global_errors(seeded) -> None:
    seeded.definitions.append({"id": 12, "name": "old-classic"})
    report, _ = collect(seeded.ctx, seeded, PresetSelectionProvider(project="Web"))
    assert [p.descriptor.id for p in report.pipelines].count(12) == 1
    assert report.global_errors[0].pipeline_id == 12

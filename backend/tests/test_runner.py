"""CLI commands."""
from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from adox.config import Settings
from adox.models.artifacts import CollectionError, ErrorScope
from adox.models.pipelines import PipelineDescriptor, PipelineKind
from adox.models.report import CustomerInfo, EscalationReport, PipelineResult
from adox.report.builder import write_report
from adox.runner import app

from conftest import T0

runner = CliRunner()


def test_render_reproduces_saved_markdown(tmp_path: Path) -> None:
    report = EscalationReport(
        customer=CustomerInfo(
            organization_url="https://dev.azure.com/contoso",
            project="Web",
            collected_at=T0,
            timestamp_token="20260301_080000",
        ),
        pipelines=[PipelineResult(descriptor=PipelineDescriptor(id=1, name="a", kind=PipelineKind.CLASSIC))],
    )
    json_path = tmp_path / "EscalationReport_20260301_080000.json"
    md_path = tmp_path / "IcM_Report_20260301_080000.md"
    write_report(report, json_path, md_path)
    original = md_path.read_text(encoding="utf-8")
    md_path.unlink()

    result = runner.invoke(app, ["render", str(json_path)])
    assert result.exit_code == 0, result.output
    assert md_path.read_text(encoding="utf-8") == original


def test_render_missing_report(tmp_path: Path) -> None:
    result = runner.invoke(app, ["render", str(tmp_path / "nope.json")])
    assert result.exit_code == 1


def test_collect_requires_org_when_non_interactive(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("ADOX_ORGANIZATION_URL", raising=False)
    monkeypatch.setattr("adox.runner.get_settings", lambda: Settings(_env_file=None))
    result = runner.invoke(app, ["collect", "--non-interactive", "--output-dir", str(tmp_path)])
    assert result.exit_code == 1
    assert "Organization URL is required" in result.output


def test_non_numeric_pipeline_ids_rejected(monkeypatch) -> None:
    monkeypatch.setattr("adox.runner.get_settings", lambda: Settings(_env_file=None))
    result = runner.invoke(app, ["collect", "--non-interactive", "--pipelines", "12,abc"])
    assert result.exit_code == 2
    assert "--pipelines" in result.output
    assert not isinstance(result.exception, ValueError)


def test_non_numeric_pipeline_ids_in_environment(monkeypatch) -> None:
    monkeypatch.setenv("ADOX_PIPELINE_IDS", "12;abc")
    monkeypatch.setattr("adox.runner.get_settings", lambda: Settings(_env_file=None))
    result = runner.invoke(app, ["collect", "--non-interactive"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_stopped_collection_still_writes_partial_report(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr("adox.runner.get_settings", lambda: Settings(_env_file=None))
    monkeypatch.setattr("adox.runner._add_file_log", lambda path: None)

    def stopped(ctx, client, selection, **kwargs):
        report = EscalationReport(
            customer=CustomerInfo(
                organization_url=ctx.organization_url,
                project="Web",
                collected_at=ctx.collected_at,
                timestamp_token=ctx.timestamp_token,
            ),
            pipelines=[PipelineResult(descriptor=PipelineDescriptor(id=1, name="a", kind=PipelineKind.CLASSIC))],
            global_errors=[CollectionError(
                scope=ErrorScope.GLOBAL, category="auth", message="token expired", is_fatal=True,
            )],
        )
        return report, ctx

    monkeypatch.setattr("adox.runner.run_collection", stopped)
    result = runner.invoke(app, [
        "collect", "--non-interactive", "--org", "https://dev.azure.com/contoso",
        "--project", "Web", "--token", "secret", "--output-dir", str(tmp_path),
    ])
    assert result.exit_code == 1
    assert "stopped early" in result.output
    assert len(list(tmp_path.glob("EscalationReport_*.json"))) == 1
    assert len(list(tmp_path.glob("IcM_Report_*.md"))) == 1

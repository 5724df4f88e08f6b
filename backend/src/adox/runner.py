"""CLI entry point for escalation data collection.

Usage:
    python -m adox.runner collect --org https://dev.azure.com/contoso --project Web
    python -m adox.runner collect --non-interactive --pipelines 12,40 --archive
    python -m adox.runner render escalation_output/EscalationReport_20260101_120000.json
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from adox.auth import Authenticator
from adox.collector import collect as run_collection
from adox.config import get_settings, parse_id_list
from adox.context import CollectionContext
from adox.devops.client import DevOpsClient
from adox.errors import AuthError, DiscoveryError, ReportWriteError
from adox.models.report import EscalationReport
from adox.report.builder import load_report, write_report
from adox.report.markdown import project_markdown
from adox.selection import ConsoleSelectionProvider, PresetSelectionProvider

app = typer.Typer(help="Azure DevOps escalation data collector")
console = Console()

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_LOG_FORMAT,
        datefmt=_LOG_DATEFMT,
    )


def _add_file_log(log_file: Path) -> None:
    """Mirror the operational log into CollectionLog_<TS>.txt."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, _LOG_DATEFMT))
    logging.getLogger().addHandler(handler)


def _check_pipeline_ids(value: Optional[str]) -> Optional[str]:
    if value is not None:
        try:
            parse_id_list(value)
        except ValueError:
            raise typer.BadParameter(f"expected comma-separated pipeline ids, got {value!r}")
    return value


def _print_summary(report: EscalationReport) -> None:
    table = Table(title="Collection Summary")
    table.add_column("Pipeline")
    table.add_column("Kind")
    table.add_column("Runs", justify="right")
    table.add_column("Artifacts", justify="right")
    table.add_column("Errors", justify="right")
    for p in report.pipelines:
        table.add_row(
            f"{p.descriptor.name} ({p.descriptor.id})",
            p.descriptor.kind.value,
            str(len(p.selected_runs)),
            str(len(p.artifacts)),
            str(len(p.errors)),
        )
    console.print(table)


@app.command()
def collect(
    org: Optional[str] = typer.Option(None, "--org", help="Organization URL, e.g. https://dev.azure.com/contoso"),
    project: Optional[str] = typer.Option(None, "--project", help="Project name"),
    pipelines: Optional[str] = typer.Option(
        None, "--pipelines", help="Comma-separated pipeline ids", callback=_check_pipeline_ids,
    ),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", help="Output directory"),
    customer: Optional[str] = typer.Option(None, "--customer", help="Customer name for the report"),
    case: Optional[str] = typer.Option(None, "--case", help="Support case number"),
    token: Optional[str] = typer.Option(None, "--token", help="Use this bearer token instead of the Azure CLI"),
    non_interactive: bool = typer.Option(False, "--non-interactive", help="Never prompt; use configured values"),
    archive: bool = typer.Option(False, "--archive", help="Zip the output directory when done"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
) -> None:
    """Collect definitions, run logs and a report for failing pipelines."""
    overrides = {
        k: v for k, v in {
            "organization_url": org,
            "project": project,
            "pipeline_ids_raw": pipelines,
            "output_dir": str(output_dir) if output_dir else None,
            "customer_name": customer,
            "case_number": case,
            "access_token": token,
            "log_level": log_level,
        }.items() if v is not None
    }
    try:
        settings = get_settings().model_copy(update=overrides)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    org_url = settings.organization_url
    if not org_url:
        if non_interactive:
            console.print("[red]Organization URL is required (--org or ADOX_ORGANIZATION_URL)[/red]")
            raise typer.Exit(1)
        org_url = Prompt.ask("Organization URL", console=console)

    authenticator = Authenticator(
        az_cli_path=settings.az_cli_path,
        static_token=settings.access_token,
        max_age_s=settings.token_max_age_s,
    )
    _setup_logging(settings.log_level)
    # Token first: the context (and its TS token) cannot exist without it
    try:
        bearer = authenticator.acquire_token()
    except AuthError as e:
        console.print(f"[red]Authentication failed: {e.detail}[/red]")
        raise typer.Exit(1)

    ctx = CollectionContext.create(settings, bearer, organization_url=org_url)
    _add_file_log(ctx.log_path)
    ctx.output_dir.mkdir(parents=True, exist_ok=True)

    console.print("[bold]═══ Pipeline Escalation Collector ═══[/bold]")
    console.print(f"[bold]Organization:[/bold] {ctx.organization_url}")
    console.print(f"[bold]Output:[/bold]       {ctx.output_dir}")
    console.print()

    if non_interactive:
        selection = PresetSelectionProvider(
            project=settings.project,
            pipeline_ids=settings.pipeline_ids,
        )
    else:
        selection = ConsoleSelectionProvider(console, pipeline_ids=settings.pipeline_ids)

    customer_name = settings.customer_name
    case_number = settings.case_number
    if not non_interactive:
        customer_name = customer_name or Prompt.ask("Customer name", default="", console=console)
        case_number = case_number or Prompt.ask("Case number", default="", console=console)

    def on_progress(msg: str) -> None:
        console.print(f"  [dim]{msg}[/dim]")

    try:
        report, ctx = run_collection(
            ctx,
            DevOpsClient(ctx),
            selection,
            customer_name=customer_name,
            case_number=case_number,
            authenticator=authenticator,
            progress=on_progress,
        )
    except (AuthError, DiscoveryError) as e:
        console.print(f"[red]Collection aborted: {e.detail}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    try:
        write_report(report, ctx.report_path, ctx.markdown_path)
    except ReportWriteError as e:
        console.print(f"[red]{e.detail}. See {ctx.log_path} for the in-memory results.[/red]")
        raise typer.Exit(1)

    console.print()
    _print_summary(report)
    console.print(f"[bold]Report:[/bold]   {ctx.report_path}")
    console.print(f"[bold]Markdown:[/bold] {ctx.markdown_path}")

    if archive:
        zip_path = shutil.make_archive(str(ctx.output_dir), "zip", root_dir=ctx.output_dir)
        console.print(f"[bold]Archive:[/bold]  {zip_path}")

    if report.error_count > 0:
        console.print(f"[yellow]⚠ {report.error_count} error(s) recorded in the report.[/yellow]")
    else:
        console.print("[green]✓ Collection complete, no errors.[/green]")

    fatal = [e for e in report.global_errors if e.is_fatal]
    if fatal:
        console.print(f"[red]Collection stopped early: {fatal[0].message}. The report is partial.[/red]")
        raise typer.Exit(1)


@app.command()
def render(
    report_path: Path = typer.Argument(..., help="Saved EscalationReport_<TS>.json"),
    out: Optional[Path] = typer.Option(None, "--out", help="Markdown path (default: beside the report)"),
) -> None:
    """Re-render the markdown summary from a saved report."""
    try:
        report = load_report(report_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Could not load report: {e}[/red]")
        raise typer.Exit(1)
    target = out or report_path.with_name(f"IcM_Report_{report.customer.timestamp_token}.md")
    target.write_text(project_markdown(report), encoding="utf-8")
    console.print(f"[green]✓ Wrote {target}[/green]")


@app.command("projects")
def list_projects_cmd(
    org: Optional[str] = typer.Option(None, "--org", help="Organization URL"),
    token: Optional[str] = typer.Option(None, "--token", help="Bearer token"),
) -> None:
    """List projects visible to the current identity."""
    settings = get_settings()
    org_url = org or settings.organization_url
    if not org_url:
        console.print("[red]Organization URL is required[/red]")
        raise typer.Exit(1)
    authenticator = Authenticator(az_cli_path=settings.az_cli_path, static_token=token or settings.access_token)
    try:
        ctx = CollectionContext.create(settings, authenticator.acquire_token(), organization_url=org_url)
        from adox.devops.catalog import PipelineCatalog

        names = PipelineCatalog(DevOpsClient(ctx)).list_projects()
    except (AuthError, DiscoveryError) as e:
        console.print(f"[red]{e.detail}[/red]")
        raise typer.Exit(1)
    for name in names:
        console.print(name)


if __name__ == "__main__":
    app()

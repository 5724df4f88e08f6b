"""Selection providers: where projects, pipelines and runs get chosen.

The collector only talks to the ``SelectionProvider`` protocol, so the
same flow runs interactively or from pre-seeded choices.
"""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from adox.config import parse_id_list
from adox.history import RunHistoryAnalyzer, effective_time
from adox.models.pipelines import PipelineDescriptor, RunRecommendation, RunRecord

logger = logging.getLogger(__name__)


class SelectionProvider(Protocol):
    def choose_project(self, projects: list[str]) -> str: ...

    def choose_pipelines(self, descriptors: list[PipelineDescriptor]) -> list[PipelineDescriptor]: ...

    def choose_runs(
        self,
        descriptor: PipelineDescriptor,
        runs: list[RunRecord],
        recommendation: RunRecommendation,
    ) -> list[RunRecord]: ...


def default_runs(runs: list[RunRecord], recommendation: RunRecommendation) -> list[RunRecord]:
    """Recommended pair, or the most recent run when nothing failed."""
    if recommendation.has_regression_signal:
        return [r for r in (recommendation.prior_success, recommendation.latest_failed) if r is not None]
    return runs[-1:]


class PresetSelectionProvider:
    """Non-interactive selection from configured values."""

    def __init__(
        self,
        project: str | None = None,
        pipeline_ids: list[int] | None = None,
        run_ids: dict[int, list[int]] | None = None,
    ) -> None:
        self.project = project
        self.pipeline_ids = pipeline_ids or []
        self.run_ids = run_ids or {}

    def choose_project(self, projects: list[str]) -> str:
        if self.project:
            if self.project not in projects:
                logger.warning("Configured project %r not in listing; using it anyway", self.project)
            return self.project
        if len(projects) == 1:
            return projects[0]
        raise ValueError("No project configured and more than one is available")

    def choose_pipelines(self, descriptors: list[PipelineDescriptor]) -> list[PipelineDescriptor]:
        if not self.pipeline_ids:
            return list(descriptors)
        by_id = {d.id: d for d in descriptors}
        missing = [pid for pid in self.pipeline_ids if pid not in by_id]
        if missing:
            logger.warning("Configured pipeline id(s) not found: %s", missing)
        return [by_id[pid] for pid in self.pipeline_ids if pid in by_id]

    def choose_runs(
        self,
        descriptor: PipelineDescriptor,
        runs: list[RunRecord],
        recommendation: RunRecommendation,
    ) -> list[RunRecord]:
        wanted = self.run_ids.get(descriptor.id)
        if wanted:
            return [r for r in runs if r.id in wanted]
        return default_runs(runs, recommendation)


class ConsoleSelectionProvider:
    """Interactive selection with rich tables and prompts."""

    def __init__(
        self,
        console: Console | None = None,
        analyzer: RunHistoryAnalyzer | None = None,
        pipeline_ids: list[int] | None = None,
    ) -> None:
        self.console = console or Console()
        self.analyzer = analyzer or RunHistoryAnalyzer()
        self.pipeline_ids = pipeline_ids or []

    def choose_project(self, projects: list[str]) -> str:
        if len(projects) == 1:
            self.console.print(f"[bold]Project:[/bold] {projects[0]}")
            return projects[0]
        for idx, name in enumerate(projects, start=1):
            self.console.print(f"  [cyan]{idx:>3}[/cyan]  {name}")
        choice = Prompt.ask(
            "Select project number",
            choices=[str(i) for i in range(1, len(projects) + 1)],
            console=self.console,
        )
        return projects[int(choice) - 1]

    def choose_pipelines(self, descriptors: list[PipelineDescriptor]) -> list[PipelineDescriptor]:
        if self.pipeline_ids:
            return PresetSelectionProvider(pipeline_ids=self.pipeline_ids).choose_pipelines(descriptors)
        table = Table(title="Pipelines")
        table.add_column("Id", justify="right")
        table.add_column("Name")
        table.add_column("Kind")
        table.add_column("Last result")
        for d in descriptors:
            last = d.last_result.value if d.last_result else "-"
            color = "red" if last == "failed" else "green" if last == "succeeded" else "white"
            table.add_row(str(d.id), d.name, d.kind.value, f"[{color}]{last}[/{color}]")
        self.console.print(table)

        by_id = {d.id: d for d in descriptors}
        while True:
            answer = Prompt.ask("Pipeline ids (comma-separated, 'all')", default="all", console=self.console)
            if answer.strip().lower() == "all":
                return list(descriptors)
            try:
                ids = parse_id_list(answer)
            except ValueError:
                self.console.print("[red]Ids must be numbers[/red]")
                continue
            unknown = [i for i in ids if i not in by_id]
            if unknown:
                self.console.print(f"[red]Unknown pipeline id(s): {unknown}[/red]")
                continue
            return [by_id[i] for i in ids]

    def choose_runs(
        self,
        descriptor: PipelineDescriptor,
        runs: list[RunRecord],
        recommendation: RunRecommendation,
    ) -> list[RunRecord]:
        if not runs:
            self.console.print(f"[yellow]No runs for {descriptor.name}[/yellow]")
            return []
        marked = set(recommendation.run_ids)
        table = Table(title=f"Runs of {descriptor.name}")
        table.add_column("Run", justify="right")
        table.add_column("Result")
        table.add_column("Branch")
        table.add_column("When")
        table.add_column("")
        for r in runs:
            when = effective_time(r, self.analyzer.now).strftime("%Y-%m-%d %H:%M")
            table.add_row(str(r.id), r.result.value, r.source_branch or "-", when, "★" if r.id in marked else "")
        self.console.print(table)
        self.console.print(f"[dim]{RunHistoryAnalyzer.describe(recommendation)}[/dim]")

        default = default_runs(runs, recommendation)
        by_id = {r.id: r for r in runs}
        while True:
            answer = Prompt.ask(
                "Run ids to collect",
                default=",".join(str(r.id) for r in default),
                console=self.console,
            )
            try:
                ids = parse_id_list(answer)
            except ValueError:
                self.console.print("[red]Ids must be numbers[/red]")
                continue
            unknown = [i for i in ids if i not in by_id]
            if unknown:
                self.console.print(f"[red]Unknown run id(s): {unknown}[/red]")
                continue
            return [by_id[i] for i in ids]

"""Escalation data collection flow.

Flow:
  1. Resolve the project (configured or chosen)
  2. Discover pipelines of both kinds, annotate last run results
  3. For each selected pipeline, sequentially:
     a. fetch the definition source
     b. fetch run history and recommend the triage pair
     c. download combined logs for each selected run
     d. record the pipeline result, errors included
  4. Finalize the report

Errors below the pipeline level are recorded and never stop siblings.
Auth failure before collection starts and empty discovery abort the run;
a token refresh failing later ends the loop with a partial report.
"""

from __future__ import annotations

import logging
from typing import Callable

from adox.auth import Authenticator
from adox.context import CollectionContext
from adox.devops.catalog import PipelineCatalog
from adox.devops.client import DevOpsClient
from adox.devops.retriever import ArtifactRetriever
from adox.devops.runs import fetch_runs
from adox.errors import AuthError, DefinitionError, DiscoveryError, LogError, TransportError
from adox.history import RunHistoryAnalyzer
from adox.models.artifacts import CollectionError, ErrorScope
from adox.models.pipelines import PipelineDescriptor
from adox.models.report import CustomerInfo, EscalationReport, PipelineResult
from adox.report.builder import EscalationReportBuilder
from adox.selection import SelectionProvider

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class Collector:
    def __init__(
        self,
        ctx: CollectionContext,
        client: DevOpsClient,
        selection: SelectionProvider,
        analyzer: RunHistoryAnalyzer | None = None,
        authenticator: Authenticator | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.ctx = ctx
        self.client = client
        self.selection = selection
        self.analyzer = analyzer or RunHistoryAnalyzer(now=ctx.collected_at)
        self.authenticator = authenticator
        self.progress = progress or (lambda msg: None)
        self.catalog = PipelineCatalog(client, ctx.duplicate_preference)

    # ── Setup ───────────────────────────────────────────────────────────────

    def _rebind(self, ctx: CollectionContext) -> None:
        self.ctx = ctx
        self.client = self.client.with_context(ctx)
        errors = self.catalog.errors
        self.catalog = PipelineCatalog(self.client, ctx.duplicate_preference)
        self.catalog.errors = errors

    def _refresh_token(self) -> None:
        if self.authenticator is None:
            return
        token = self.authenticator.ensure_fresh(self.ctx.token)
        if token is not self.ctx.token:
            self._rebind(self.ctx.with_token(token))

    def resolve_project(self) -> str:
        if self.ctx.project:
            return self.ctx.project
        projects = self.catalog.list_projects()
        project = self.selection.choose_project(projects)
        self._rebind(self.ctx.with_project(project))
        logger.info("Project selected: %s", project)
        return project

    def discover(self) -> list[PipelineDescriptor]:
        descriptors = self.catalog.annotate_all(self.catalog.list())
        chosen = self.selection.choose_pipelines(descriptors)
        if not chosen:
            raise DiscoveryError("No pipelines selected for collection")
        logger.info("%d of %d pipeline(s) selected", len(chosen), len(descriptors))
        return chosen

    # ── Per pipeline ────────────────────────────────────────────────────────

    def process_pipeline(
        self, descriptor: PipelineDescriptor, result: PipelineResult | None = None,
    ) -> PipelineResult:
        """Collect one pipeline into ``result``.

        The caller may pass the result in so that whatever was gathered
        before an unexpected exception is still reported.
        """
        pid = descriptor.id
        if result is None:
            result = PipelineResult(descriptor=descriptor)
        retriever = ArtifactRetriever(self.client)

        scoped = self.catalog.errors.get(pid)
        if scoped is not None:
            result.errors.append(scoped.to_collection_error())

        self.progress(f"{descriptor.name}: definition")
        try:
            result.artifacts.append(retriever.fetch_definition(descriptor))
        except DefinitionError as e:
            logger.warning("%s", e.detail)
            result.errors.append(e.to_collection_error())

        self.progress(f"{descriptor.name}: run history")
        try:
            runs = fetch_runs(self.client, descriptor, self.ctx.run_window)
        except TransportError as e:
            logger.warning("Run history for pipeline %d unavailable: %s", pid, e.detail)
            result.errors.append(CollectionError(
                scope=ErrorScope.PIPELINE,
                category="runs",
                message=f"Could not list runs: {e.detail}",
                pipeline_id=pid,
            ))
            return result

        recommendation, ordered = self.analyzer.analyze(runs)
        result.recommendation = recommendation
        logger.info("Pipeline %d: %s", pid, RunHistoryAnalyzer.describe(recommendation))

        selected = self.selection.choose_runs(descriptor, ordered, recommendation)
        result.selected_runs = list(selected)

        for run in selected:
            self.progress(f"{descriptor.name}: logs for run {run.id}")
            try:
                result.artifacts.append(retriever.fetch_logs(pid, run.id, descriptor.kind))
            except LogError as e:
                logger.warning("%s", e.detail)
                if e.artifact is not None:
                    result.artifacts.append(e.artifact)
                result.errors.append(e.to_collection_error())
        return result

    # ── Whole run ───────────────────────────────────────────────────────────

    def run(self, customer_name: str = "", case_number: str = "") -> EscalationReport:
        project = self.resolve_project()
        pipelines = self.discover()

        builder = EscalationReportBuilder(CustomerInfo(
            customer_name=customer_name,
            case_number=case_number,
            organization_url=self.ctx.organization_url,
            project=project,
            collected_at=self.ctx.collected_at,
            timestamp_token=self.ctx.timestamp_token,
        ))
        for err in self.catalog.listing_errors:
            builder.record_global_error(err)
        for pid in self.catalog.duplicates:
            builder.record_global_error(CollectionError(
                scope=ErrorScope.GLOBAL,
                category="discovery",
                message=f"Pipeline id {pid} listed under both kinds; kept {self.ctx.duplicate_preference}",
                pipeline_id=pid,
            ))

        for idx, descriptor in enumerate(pipelines, start=1):
            logger.info("[%d/%d] Processing pipeline %d (%s)", idx, len(pipelines), descriptor.id, descriptor.name)
            try:
                self._refresh_token()
            except AuthError as e:
                # Keep what was collected so far; the remaining pipelines are skipped
                logger.error(
                    "Re-authentication failed before pipeline %d, stopping with %d of %d collected: %s",
                    descriptor.id, idx - 1, len(pipelines), e.detail,
                )
                builder.record_global_error(e.to_collection_error())
                break
            result = PipelineResult(descriptor=descriptor)
            try:
                self.process_pipeline(descriptor, result)
            except Exception as e:
                logger.error("Error processing pipeline %d: %s", descriptor.id, e, exc_info=True)
                result.errors.append(CollectionError(
                    scope=ErrorScope.PIPELINE,
                    category="unexpected",
                    message=str(e)[:2000],
                    pipeline_id=descriptor.id,
                ))
            builder.record_pipeline(result)

        return builder.finalize()


def collect(
    ctx: CollectionContext,
    client: DevOpsClient,
    selection: SelectionProvider,
    customer_name: str = "",
    case_number: str = "",
    authenticator: Authenticator | None = None,
    progress: ProgressCallback | None = None,
) -> tuple[EscalationReport, CollectionContext]:
    """Run one collection. Returns the report and the final context."""
    collector = Collector(ctx, client, selection, authenticator=authenticator, progress=progress)
    report = collector.run(customer_name, case_number)
    return report, collector.ctx

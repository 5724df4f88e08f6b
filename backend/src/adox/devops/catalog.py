"""Pipeline catalog discovery across YAML and Designer definitions.

Flow:
  1. List YAML pipelines and fetch each one's configuration (path, repo)
  2. List Designer build definitions
  3. Merge by id, resolving duplicates by the configured preference
  4. Annotate each descriptor with its most recent run result
"""

from __future__ import annotations

import logging
from typing import Any

from adox.devops.client import DevOpsClient
from adox.devops.runs import fetch_runs
from adox.errors import DiscoveryError, TransportError
from adox.models.pipelines import PipelineDescriptor, PipelineKind, RepositoryRef

logger = logging.getLogger(__name__)


def _repository_ref(repo: dict[str, Any] | None) -> RepositoryRef | None:
    if not repo:
        return None
    repo_id = repo.get("id") or repo.get("fullName")
    if not repo_id:
        return None
    return RepositoryRef(
        type=repo.get("type", "unknown"),
        id=str(repo_id),
        connection_id=(repo.get("connection") or {}).get("id"),
        default_branch=repo.get("defaultBranch"),
    )


def _web_url(payload: dict[str, Any]) -> str | None:
    return payload.get("_links", {}).get("web", {}).get("href")


class PipelineCatalog:
    """Lists and normalizes pipeline definitions for one project.

    Detail failures for single descriptors are kept in ``errors`` (keyed by
    pipeline id) rather than raised; the descriptor is still listed.
    """

    def __init__(self, client: DevOpsClient, duplicate_preference: str = "declarative") -> None:
        if duplicate_preference not in ("declarative", "classic"):
            raise ValueError(f"Unknown duplicate_preference: {duplicate_preference!r}")
        self.client = client
        self.duplicate_preference = duplicate_preference
        self.errors: dict[int, DiscoveryError] = {}
        self.listing_errors: list[DiscoveryError] = []
        self.duplicates: list[int] = []

    def for_project(self, project: str) -> PipelineCatalog:
        ctx = self.client.ctx.with_project(project)
        return PipelineCatalog(self.client.with_context(ctx), self.duplicate_preference)

    # ── Projects ────────────────────────────────────────────────────────────

    def list_projects(self) -> list[str]:
        try:
            raw = self.client.list_projects()
        except TransportError as e:
            raise DiscoveryError(f"Could not list projects: {e.detail}") from e
        names = sorted(p["name"] for p in raw if p.get("name"))
        if not names:
            raise DiscoveryError("No projects visible in organization")
        logger.info("Found %d project(s)", len(names))
        return names

    # ── Pipelines ───────────────────────────────────────────────────────────

    def _declarative(self) -> list[PipelineDescriptor]:
        descriptors: list[PipelineDescriptor] = []
        for item in self.client.list_pipelines():
            pid = int(item["id"])
            name = item.get("name", f"pipeline-{pid}")
            repository = None
            path = None
            try:
                detail = self.client.get_pipeline(pid)
                config = detail.get("configuration", {}) or {}
                config_type = (config.get("type") or "yaml").lower()
                if config_type == "yaml":
                    path = config.get("path")
                    repository = _repository_ref(config.get("repository"))
                else:
                    logger.debug("Pipeline %d has configuration type %s", pid, config_type)
            except TransportError as e:
                logger.warning("Detail fetch failed for pipeline %d: %s", pid, e.detail)
                self.errors[pid] = DiscoveryError(
                    f"Could not fetch pipeline detail: {e.detail}", pipeline_id=pid,
                )
            descriptors.append(PipelineDescriptor(
                id=pid,
                name=name,
                kind=PipelineKind.DECLARATIVE,
                folder=item.get("folder"),
                repository=repository,
                definition_path=path,
                web_url=_web_url(item),
            ))
        return descriptors

    def _classic(self) -> list[PipelineDescriptor]:
        return [
            PipelineDescriptor(
                id=int(item["id"]),
                name=item.get("name", f"definition-{item['id']}"),
                kind=PipelineKind.CLASSIC,
                folder=item.get("path"),
                web_url=_web_url(item),
            )
            for item in self.client.list_build_definitions()
        ]

    def merge(
        self,
        declarative: list[PipelineDescriptor],
        classic: list[PipelineDescriptor],
    ) -> list[PipelineDescriptor]:
        """Merge both kind buckets by id, ordered by name then id."""
        preferred, other = (
            (declarative, classic) if self.duplicate_preference == "declarative"
            else (classic, declarative)
        )
        merged: dict[int, PipelineDescriptor] = {d.id: d for d in other}
        for d in preferred:
            if d.id in merged:
                dropped = merged[d.id]
                logger.warning(
                    "Pipeline id %d listed as both %s (%r) and %s (%r); keeping %s",
                    d.id, d.kind.value, d.name, dropped.kind.value, dropped.name, d.kind.value,
                )
                self.duplicates.append(d.id)
            merged[d.id] = d
        return sorted(merged.values(), key=lambda d: d.sort_key)

    def list(self, project: str | None = None) -> list[PipelineDescriptor]:
        if project is not None and project != self.client.ctx.project:
            return self._bound(project).list()

        buckets: dict[str, list[PipelineDescriptor]] = {}
        for label, fetch in (("declarative", self._declarative), ("classic", self._classic)):
            try:
                buckets[label] = fetch()
            except TransportError as e:
                logger.error("Listing %s pipelines failed: %s", label, e.detail)
                self.listing_errors.append(DiscoveryError(f"Listing {label} pipelines failed: {e.detail}"))
                buckets[label] = []
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error("Listing %s pipelines returned a malformed entry: %s", label, e)
                self.listing_errors.append(DiscoveryError(
                    f"Listing {label} pipelines failed: malformed response ({type(e).__name__}: {e})"
                ))
                buckets[label] = []

        merged = self.merge(buckets["declarative"], buckets["classic"])
        if not merged:
            detail = "; ".join(e.detail for e in self.listing_errors) or "project has no pipelines"
            raise DiscoveryError(f"No pipelines resolved: {detail}")
        logger.info(
            "Catalog: %d declarative, %d classic, %d merged",
            len(buckets["declarative"]), len(buckets["classic"]), len(merged),
        )
        return merged

    def _bound(self, project: str) -> PipelineCatalog:
        bound = self.for_project(project)
        bound.errors = self.errors
        bound.listing_errors = self.listing_errors
        bound.duplicates = self.duplicates
        return bound

    # ── Last-run annotation ─────────────────────────────────────────────────

    def annotate_last_run(self, descriptor: PipelineDescriptor) -> PipelineDescriptor:
        try:
            runs = fetch_runs(self.client, descriptor, top=1)
        except TransportError as e:
            logger.warning("Could not fetch last run for pipeline %d: %s", descriptor.id, e.detail)
            self.errors.setdefault(
                descriptor.id,
                DiscoveryError(f"Could not fetch last run: {e.detail}", pipeline_id=descriptor.id),
            )
            return descriptor
        last = runs[0].result if runs else None
        return descriptor.model_copy(update={"last_result": last})

    def annotate_all(self, descriptors: list[PipelineDescriptor]) -> list[PipelineDescriptor]:
        return [self.annotate_last_run(d) for d in descriptors]

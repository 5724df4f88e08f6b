"""Artifact retrieval: pipeline definitions and combined run log archives.

The endpoint family is chosen once from ``PipelineDescriptor.kind``:

  Definition  YAML      → raw repository file (git items / GitHub provider)
              Designer  → exported build definition JSON
  Logs        YAML      → pipelines API signed combined-archive URL
              Designer  → build API ``logs?$format=zip``

Every downloaded file passes ``validate_content`` before it is recorded.
"""

from __future__ import annotations

import json
import logging
import re
from enum import Enum
from pathlib import Path, PurePosixPath

from adox.devops.client import DevOpsClient
from adox.errors import DefinitionError, LogError, TransportError
from adox.models.artifacts import ArtifactKind, ArtifactRecord
from adox.models.pipelines import PipelineDescriptor, PipelineKind

logger = logging.getLogger(__name__)

_ZIP_MAGIC = (b"PK\x03\x04", b"PK\x05\x06")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")

EMPTY_ARCHIVE = "empty archive"
CONTENT_MISMATCH = "content mismatch"


class ContentKind(str, Enum):
    DEFINITION_TEXT = "definition_text"
    JSON_DOCUMENT = "json_document"
    LOG_ARCHIVE = "log_archive"


def validate_content(data: bytes, expected: ContentKind) -> str | None:
    """Return the reason ``data`` is not ``expected``, or None when it is.

    The repository file endpoint can answer HTTP 200 with a JSON error
    object, so definition text that parses as a JSON object is rejected.
    """
    if expected is ContentKind.LOG_ARCHIVE:
        if not data:
            return EMPTY_ARCHIVE
        return None if data[:4] in _ZIP_MAGIC else CONTENT_MISMATCH

    if not data.strip():
        return "empty file"
    try:
        parsed = json.loads(data)
    except (ValueError, UnicodeDecodeError):
        parsed = None

    if expected is ContentKind.DEFINITION_TEXT:
        return CONTENT_MISMATCH if isinstance(parsed, dict) else None
    return None if isinstance(parsed, dict) else CONTENT_MISMATCH


def validate_file(path: Path, expected: ContentKind) -> str | None:
    with open(path, "rb") as fh:
        data = fh.read(4) if expected is ContentKind.LOG_ARCHIVE else fh.read()
    return validate_content(data, expected)


def safe_filename(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name).strip("_") or "unnamed"


def _branch_name(ref: str | None) -> str | None:
    if ref and ref.startswith("refs/heads/"):
        return ref[len("refs/heads/"):]
    return ref


class ArtifactRetriever:
    def __init__(self, client: DevOpsClient) -> None:
        self.client = client
        self.ctx = client.ctx

    # ── Definitions ─────────────────────────────────────────────────────────

    def fetch_definition(self, descriptor: PipelineDescriptor) -> ArtifactRecord:
        if descriptor.kind is PipelineKind.CLASSIC:
            return self._fetch_classic_definition(descriptor)
        return self._fetch_yaml_definition(descriptor)

    def _fetch_yaml_definition(self, descriptor: PipelineDescriptor) -> ArtifactRecord:
        pid = descriptor.id
        repo = descriptor.repository
        if not descriptor.definition_path:
            raise DefinitionError("definition path unknown", pid)
        if repo is None:
            raise DefinitionError("repository unknown", pid)

        path = descriptor.definition_path
        filename = safe_filename(PurePosixPath(path).name)
        dest = self.ctx.output_dir / f"{pid}-{filename}"

        if repo.type == "azureReposGit":
            url = self.client.git_item_url(repo.id)
            params = {"path": path, "download": "true", "includeContent": "true"}
        elif repo.type == "gitHub":
            if not repo.connection_id:
                raise DefinitionError("GitHub repository has no service connection", pid)
            url = self.client.github_file_url()
            params = {
                "serviceEndpointId": repo.connection_id,
                "repository": repo.id,
                "commitOrBranch": _branch_name(repo.default_branch) or "main",
                "path": path,
            }
        else:
            raise DefinitionError(f"unsupported repository type {repo.type!r}", pid)

        logger.info("Fetching definition %s for pipeline %d", path, pid)
        try:
            self.client.download(url, dest, params=params, accept="text/plain")
        except TransportError as e:
            raise DefinitionError(e.detail, pid) from e
        except OSError as e:
            raise DefinitionError(f"write failed: {e}", pid) from e

        reason = validate_file(dest, ContentKind.DEFINITION_TEXT)
        if reason is not None:
            dest.unlink(missing_ok=True)
            raise DefinitionError(reason, pid)
        return self._record(dest, ArtifactKind.DEFINITION, pid)

    def _fetch_classic_definition(self, descriptor: PipelineDescriptor) -> ArtifactRecord:
        pid = descriptor.id
        dest = self.ctx.output_dir / f"{pid}-{safe_filename(descriptor.name)}-definition.json"
        logger.info("Exporting classic definition for pipeline %d", pid)
        try:
            payload = self.client.get_build_definition(pid)
        except TransportError as e:
            raise DefinitionError(e.detail, pid) from e

        body = json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")
        reason = validate_content(body, ContentKind.JSON_DOCUMENT)
        if reason is not None:
            raise DefinitionError(reason, pid)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(body)
        except OSError as e:
            dest.unlink(missing_ok=True)
            raise DefinitionError(f"write failed: {e}", pid) from e
        return self._record(dest, ArtifactKind.DEFINITION, pid)

    # ── Logs ────────────────────────────────────────────────────────────────

    def log_path(self, pipeline_id: int, run_id: int) -> Path:
        return self.ctx.pipeline_dir(pipeline_id) / f"run{run_id}_logs.zip"

    def _log_archive_url(self, pipeline_id: int, run_id: int, kind: PipelineKind) -> tuple[str, dict]:
        if kind is PipelineKind.CLASSIC:
            return self.client.build_logs_zip_url(run_id), {"$format": "zip"}

        meta = self.client.get_pipeline_run_logs(pipeline_id, run_id)
        signed = meta.get("signedContent") if isinstance(meta, dict) else None
        url = (signed or {}).get("url")
        if not url:
            raise TransportError(f"No signed log archive URL for run {run_id}")
        return url, {}

    def fetch_logs(self, pipeline_id: int, run_id: int, kind: PipelineKind) -> ArtifactRecord:
        """Download the combined log archive for one run.

        Transport or content failures remove the file. An empty archive is
        kept and raised with an unvalidated artifact attached.
        """
        dest = self.log_path(pipeline_id, run_id)
        logger.info("Downloading logs for pipeline %d run %d", pipeline_id, run_id)
        try:
            url, params = self._log_archive_url(pipeline_id, run_id, kind)
            # signed archive URLs must be requested verbatim
            self.client.download(
                url, dest, params=params, accept="application/zip",
                versioned=kind is PipelineKind.CLASSIC,
            )
        except TransportError as e:
            dest.unlink(missing_ok=True)
            raise LogError(e.detail, pipeline_id, run_id) from e
        except OSError as e:
            dest.unlink(missing_ok=True)
            raise LogError(f"write failed: {e}", pipeline_id, run_id) from e

        reason = validate_file(dest, ContentKind.LOG_ARCHIVE)
        if reason == EMPTY_ARCHIVE:
            artifact = self._record(dest, ArtifactKind.LOG_ARCHIVE, pipeline_id, run_id, validated=False)
            logger.warning("Empty log archive kept for inspection: %s", dest)
            raise LogError(reason, pipeline_id, run_id, artifact=artifact)
        if reason is not None:
            dest.unlink(missing_ok=True)
            raise LogError(reason, pipeline_id, run_id)
        return self._record(dest, ArtifactKind.LOG_ARCHIVE, pipeline_id, run_id)

    @staticmethod
    def _record(
        path: Path,
        kind: ArtifactKind,
        pipeline_id: int,
        run_id: int | None = None,
        validated: bool = True,
    ) -> ArtifactRecord:
        return ArtifactRecord(
            owner_pipeline_id=pipeline_id,
            owner_run_id=run_id,
            kind=kind,
            path=str(path),
            size_bytes=path.stat().st_size,
            validated=validated,
        )

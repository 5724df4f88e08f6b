"""Exception taxonomy for the collector.

Fatal errors (auth, discovery with nothing to collect, final report write)
stop the run. Definition and log errors are scoped to one pipeline or run
and end up in the report as ``CollectionError`` entries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from adox.models.artifacts import CollectionError, ErrorScope

if TYPE_CHECKING:
    from adox.models.artifacts import ArtifactRecord


class CollectorError(Exception):
    """Base collector error."""

    category = "error"
    is_fatal = False

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)

    def to_collection_error(self) -> CollectionError:
        return CollectionError(
            scope=ErrorScope.GLOBAL,
            message=self.detail,
            category=self.category,
            is_fatal=self.is_fatal,
        )


class TransportError(CollectorError):
    """HTTP failure: non-2xx status, timeout, or malformed response."""

    category = "transport"

    def __init__(
        self, detail: str, status_code: int | None = None, transient: bool = False,
    ) -> None:
        self.status_code = status_code
        self.transient = transient
        super().__init__(detail)


class AuthError(CollectorError):
    """No usable bearer token. Always fatal."""

    category = "auth"
    is_fatal = True


class DiscoveryError(CollectorError):
    """Project or pipeline enumeration failed.

    Fatal when nothing resolves; scoped to one pipeline when only that
    descriptor's detail fetch failed.
    """

    category = "discovery"

    def __init__(self, detail: str, pipeline_id: int | None = None) -> None:
        self.pipeline_id = pipeline_id
        super().__init__(detail)

    @property
    def is_fatal(self) -> bool:  # type: ignore[override]
        return self.pipeline_id is None

    def to_collection_error(self) -> CollectionError:
        return CollectionError(
            scope=ErrorScope.GLOBAL if self.pipeline_id is None else ErrorScope.PIPELINE,
            message=self.detail,
            category=self.category,
            pipeline_id=self.pipeline_id,
            is_fatal=self.is_fatal,
        )


class DefinitionError(CollectorError):
    """Definition source could not be fetched or failed validation."""

    category = "definition"

    def __init__(self, reason: str, pipeline_id: int) -> None:
        self.reason = reason
        self.pipeline_id = pipeline_id
        super().__init__(f"definition for pipeline {pipeline_id}: {reason}")

    def to_collection_error(self) -> CollectionError:
        return CollectionError(
            scope=ErrorScope.PIPELINE,
            message=self.detail,
            category=self.category,
            pipeline_id=self.pipeline_id,
        )


class LogError(CollectorError):
    """Log archive could not be fetched or failed validation.

    ``artifact`` is set when a file was kept for inspection even though it
    did not validate (empty archive).
    """

    category = "log"

    def __init__(
        self,
        reason: str,
        pipeline_id: int,
        run_id: int,
        artifact: ArtifactRecord | None = None,
    ) -> None:
        self.reason = reason
        self.pipeline_id = pipeline_id
        self.run_id = run_id
        self.artifact = artifact
        super().__init__(f"logs for pipeline {pipeline_id} run {run_id}: {reason}")

    def to_collection_error(self) -> CollectionError:
        return CollectionError(
            scope=ErrorScope.RUN,
            message=self.detail,
            category=self.category,
            pipeline_id=self.pipeline_id,
            run_id=self.run_id,
        )


class ReportWriteError(CollectorError):
    """Final report could not be written. Fatal, after collection finished."""

    category = "report"
    is_fatal = True

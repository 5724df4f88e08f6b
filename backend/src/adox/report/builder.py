"""Incremental escalation report assembly and serialization."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from adox.errors import CollectorError, ReportWriteError
from adox.models.artifacts import ArtifactKind, ArtifactRecord, CollectionError
from adox.models.report import CustomerInfo, EscalationReport, PipelineResult
from adox.report.markdown import project_markdown

logger = logging.getLogger(__name__)


class EscalationReportBuilder:
    """Append-only accumulator for pipeline results.

    ``record_pipeline`` never raises and is safe to call from several
    threads; results keep their append order.
    """

    def __init__(self, customer: CustomerInfo) -> None:
        self._customer = customer
        self._pipelines: list[PipelineResult] = []
        self._global_errors: list[CollectionError] = []
        self._lock = threading.Lock()
        self._finalized: EscalationReport | None = None

    def record_pipeline(self, result: PipelineResult) -> None:
        with self._lock:
            if self._finalized is not None:
                logger.error("Report already finalized; dropping late result for pipeline %d", result.descriptor.id)
                return
            self._pipelines.append(result)
        logger.info(
            "Recorded pipeline %d: %d artifact(s), %d error(s)",
            result.descriptor.id, len(result.artifacts), len(result.errors),
        )

    def record_global_error(self, error: CollectorError | CollectionError) -> None:
        entry = error.to_collection_error() if isinstance(error, CollectorError) else error
        with self._lock:
            self._global_errors.append(entry)

    def finalize(self) -> EscalationReport:
        with self._lock:
            if self._finalized is None:
                artifacts = [a for p in self._pipelines for a in p.artifacts]
                self._finalized = EscalationReport(
                    customer=self._customer,
                    pipelines=list(self._pipelines),
                    all_artifacts=artifacts,
                    global_errors=list(self._global_errors),
                )
            return self._finalized


def load_report(path: Path) -> EscalationReport:
    return EscalationReport.model_validate_json(Path(path).read_text(encoding="utf-8"))


def write_report(report: EscalationReport, json_path: Path, markdown_path: Path) -> list[ArtifactRecord]:
    """Serialize the report and its markdown projection.

    Returns REPORT artifact records for both files.
    """
    try:
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        markdown_path.write_text(project_markdown(report), encoding="utf-8")
    except OSError as e:
        logger.error(
            "Report write failed (%s). In-memory summary: %s",
            e, report.model_dump_json(exclude={"customer"}),
        )
        raise ReportWriteError(f"Could not write report: {e}") from e

    logger.info("Report written to %s and %s", json_path, markdown_path)
    return [
        ArtifactRecord(
            kind=ArtifactKind.REPORT,
            path=str(p),
            size_bytes=p.stat().st_size,
            validated=True,
        )
        for p in (json_path, markdown_path)
    ]

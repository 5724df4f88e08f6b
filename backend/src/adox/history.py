"""Run-history analysis: pick the runs most useful for triage.

The recommendation is the latest completed failure plus the closest
success that finished before that failure began.
"""

from __future__ import annotations

from datetime import datetime, timezone

from adox.models.pipelines import RunRecommendation, RunRecord, RunResult

NO_SIGNAL = "no regression signal"


def effective_time(run: RunRecord, now: datetime) -> datetime:
    """finish, else start, else queued, else ``now`` (sorts last)."""
    return run.finish_time or run.start_time or run.queued_time or now


def failure_reference_time(run: RunRecord) -> datetime | None:
    return run.start_time or run.queued_time or run.finish_time


class RunHistoryAnalyzer:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime.now(timezone.utc)

    def recommend(self, runs: list[RunRecord]) -> RunRecommendation:
        latest_failed: RunRecord | None = None
        for run in runs:
            if run.result is not RunResult.FAILED or run.finish_time is None:
                continue
            if latest_failed is None or (run.finish_time, run.id) > (latest_failed.finish_time, latest_failed.id):
                latest_failed = run

        if latest_failed is None:
            return RunRecommendation()

        reference = failure_reference_time(latest_failed)
        prior_success: RunRecord | None = None
        for run in runs:
            if run.result is not RunResult.SUCCEEDED or run.finish_time is None:
                continue
            if reference is not None and run.finish_time >= reference:
                continue
            if prior_success is None or (run.finish_time, run.id) > (prior_success.finish_time, prior_success.id):
                prior_success = run

        return RunRecommendation(latest_failed=latest_failed, prior_success=prior_success)

    def display_order(self, runs: list[RunRecord]) -> list[RunRecord]:
        """Runs by ascending effective time, ties by id."""
        return sorted(runs, key=lambda r: (effective_time(r, self.now), r.id))

    def analyze(self, runs: list[RunRecord]) -> tuple[RunRecommendation, list[RunRecord]]:
        return self.recommend(runs), self.display_order(runs)

    @staticmethod
    def describe(rec: RunRecommendation) -> str:
        if not rec.has_regression_signal:
            return NO_SIGNAL
        failed = rec.latest_failed
        text = f"latest failure: run {failed.id}"
        if rec.prior_success is not None:
            text += f"; last good run before it: run {rec.prior_success.id}"
        else:
            text += "; no earlier successful run in window"
        return text

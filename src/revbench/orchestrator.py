"""Top-level collection run.

A run has two phases, executed once each:

1. RETRY: every revision whose stored record is a failure is measured
   again, oldest first.
2. SWEEP: revisions without any record are selected (dense for small
   gaps, sparse for large backlogs) and measured in history order.

Revisions are processed strictly one at a time.  A revision that fails to
install or benchmark is recorded as a failure and the run continues; store
or history errors abort the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from revbench.benchmarks import BenchmarkDefinition
from revbench.errors import CollectorError, RunAborted
from revbench.logging import get_logger
from revbench.measure import MeasurementRunner
from revbench.records import MeasurementRecord
from revbench.revisions import Revision
from revbench.selector import DENSE_THRESHOLD, SPARSE_STEP, select_revisions
from revbench.store import ResultStore

log = get_logger("orchestrator")

PHASE_RETRY = "retry"
PHASE_SWEEP = "sweep"


@dataclass
class RunSummary:
    """What a collection run did."""

    retried: list[MeasurementRecord] = field(default_factory=list)
    swept: list[MeasurementRecord] = field(default_factory=list)
    missing: int = 0  # Unrecorded revisions seen by the sweep

    @property
    def records(self) -> list[MeasurementRecord]:
        return self.retried + self.swept

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.records if r.is_success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.records if r.is_failure)

    @property
    def nothing_to_do(self) -> bool:
        return not self.records


class Orchestrator:
    """Drives retry then sweep over one revision history and one store.

    Usage::

        orchestrator = Orchestrator(revisions, store, measurer, benchmarks)
        summary = orchestrator.run()
    """

    def __init__(
        self,
        revisions: Sequence[Revision],
        store: ResultStore,
        measurer: MeasurementRunner,
        benchmarks: Sequence[BenchmarkDefinition],
        *,
        dense_threshold: int = DENSE_THRESHOLD,
        sparse_step: int = SPARSE_STEP,
    ) -> None:
        self.revisions = list(revisions)
        self.store = store
        self.measurer = measurer
        self.benchmarks = list(benchmarks)
        self.dense_threshold = dense_threshold
        self.sparse_step = sparse_step
        self._by_id = {rev.id: rev for rev in self.revisions}

    def run(self) -> RunSummary:
        """Run both phases.

        Raises:
            RunAborted: On any fatal error, naming the phase and revision.
        """
        summary = RunSummary()
        self.retry(summary)
        self.sweep(summary)
        log.info(
            "Run complete: %d measured (%d succeeded, %d failed)",
            len(summary.records),
            summary.succeeded,
            summary.failed,
        )
        return summary

    def retry(self, summary: RunSummary) -> None:
        while True:
            try:
                rev_id = self.store.next_retry()
            except CollectorError as exc:
                raise RunAborted(str(exc), phase=PHASE_RETRY) from exc
            if rev_id is None:
                return
            revision = self._by_id.get(rev_id)
            if revision is None:
                # A recorded failure must belong to the history being processed.
                raise RunAborted(
                    f"Recorded failure {rev_id} is not in the revision history",
                    phase=PHASE_RETRY,
                    revision_id=rev_id,
                )
            log.info("Retrying %s", revision.short)
            summary.retried.append(self._process(PHASE_RETRY, revision))

    def sweep(self, summary: RunSummary) -> None:
        if not self.revisions:
            log.info("Nothing to do; no revisions.")
            return
        missing = self.store.find_missing(self.revisions)
        summary.missing = len(missing)
        to_process = select_revisions(
            self.revisions,
            missing,
            dense_threshold=self.dense_threshold,
            sparse_step=self.sparse_step,
        )
        if not to_process:
            log.info("Nothing to do; all %d revisions are recorded.", len(self.revisions))
            return
        log.info("Processing %d of %d unrecorded revisions", len(to_process), len(missing))
        for revision in to_process:
            summary.swept.append(self._process(PHASE_SWEEP, revision))

    def _process(self, phase: str, revision: Revision) -> MeasurementRecord:
        try:
            record = self.measurer.run(revision, self.benchmarks)
            self.store.record(record)
        except (CollectorError, OSError) as exc:
            raise RunAborted(str(exc), phase=phase, revision_id=revision.id) from exc
        if record.is_failure:
            error = record.outcome.error  # type: ignore[union-attr]
            log.warning("%s recorded as failed: %s", revision.short, error)
        return record

"""Measuring a single revision.

Installs the toolchain, runs every benchmark against it, and turns the
result into one :class:`MeasurementRecord`.  The record is binary: if the
install or any benchmark fails, the whole revision is a failure and no
partial metrics are kept.
"""

from __future__ import annotations

from typing import Iterable

from revbench.benchmarks import BenchmarkDefinition, Executor
from revbench.errors import BenchmarkError, InstallError
from revbench.logging import get_logger
from revbench.records import BenchmarkOutcome, MeasurementRecord, failure_record, success_record
from revbench.revisions import Revision
from revbench.toolchain import Installer

log = get_logger("measure")


class MeasurementRunner:
    """Produces a record for one revision from an installer and an executor."""

    def __init__(
        self,
        installer: Installer,
        executor: Executor,
        *,
        target_triple: str,
        preserve: bool = False,
    ) -> None:
        self.installer = installer
        self.executor = executor
        self.target_triple = target_triple
        self.preserve = preserve

    def run(
        self,
        revision: Revision,
        benchmarks: Iterable[BenchmarkDefinition],
    ) -> MeasurementRecord:
        log.info(
            "Benchmarking %s (%s) for %s",
            revision.id,
            revision.timestamp.isoformat(),
            self.target_triple,
        )
        try:
            handle = self.installer.install(revision, self.target_triple, self.preserve)
        except InstallError as exc:
            log.warning("Install failed for %s: %s", revision.short, exc)
            return self._failure(revision, f"toolchain install failed: {exc}")

        outcomes: list[BenchmarkOutcome] = []
        with handle:
            for benchmark in sorted(benchmarks, key=lambda b: b.name):
                try:
                    outcome = self.executor.execute(handle, benchmark)
                except BenchmarkError as exc:
                    outcome = BenchmarkOutcome(name=benchmark.name, error=str(exc))
                if not outcome.ok:
                    # One broken benchmark fails the revision; skip the rest.
                    return self._failure(revision, f"{outcome.name}: {outcome.error}")
                outcomes.append(outcome)

        return success_record(revision.id, self.target_triple, revision.timestamp, outcomes)

    def _failure(self, revision: Revision, error: str) -> MeasurementRecord:
        return failure_record(revision.id, self.target_triple, revision.timestamp, error)

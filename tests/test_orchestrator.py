"""Tests for revbench.orchestrator — retry and sweep phases."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from revbench.benchmarks import BenchmarkDefinition, BenchmarkRunner
from revbench.errors import RunAborted, StoreError
from revbench.measure import MeasurementRunner
from revbench.orchestrator import PHASE_RETRY, PHASE_SWEEP, Orchestrator, RunSummary
from revbench.store import MemoryTree, ResultStore

from revbench_test_helpers import (
    TRIPLE,
    FakeExecutor,
    FakeInstaller,
    make_benchmarks,
    make_failure,
    make_revision,
    make_revisions,
    make_success,
)


def _orchestrator(
    revisions,  # type: ignore[no-untyped-def]
    store: ResultStore,
    installer: FakeInstaller | None = None,
    executor: FakeExecutor | None = None,
    **kwargs,
) -> Orchestrator:
    measurer = MeasurementRunner(
        installer or FakeInstaller(), executor or FakeExecutor(), target_triple=TRIPLE
    )
    return Orchestrator(revisions, store, measurer, make_benchmarks("a", "b"), **kwargs)


def _seed(tree: MemoryTree, *records) -> None:  # type: ignore[no-untyped-def]
    store = ResultStore(tree, TRIPLE)
    for record in records:
        store.record(record)


class TestRunSummary(unittest.TestCase):
    def test_counts(self) -> None:
        revs = make_revisions(3)
        summary = RunSummary(
            retried=[make_success(revs[0])],
            swept=[make_failure(revs[1]), make_success(revs[2])],
        )
        self.assertEqual(summary.succeeded, 2)
        self.assertEqual(summary.failed, 1)
        self.assertEqual(len(summary.records), 3)
        self.assertFalse(summary.nothing_to_do)

    def test_empty_is_nothing_to_do(self) -> None:
        self.assertTrue(RunSummary().nothing_to_do)


class TestSweep(unittest.TestCase):
    def test_empty_store_processes_all_in_order(self) -> None:
        revs = make_revisions(3)
        installer = FakeInstaller()
        tree = MemoryTree()
        summary = _orchestrator(revs, ResultStore(tree, TRIPLE), installer).run()
        self.assertEqual(installer.installed, ["c1", "c2", "c3"])
        self.assertEqual([r.revision_id for r in summary.swept], ["c1", "c2", "c3"])
        self.assertEqual(summary.retried, [])
        self.assertEqual(summary.missing, 3)
        self.assertEqual(len(tree.commits), 3)

    def test_large_backlog_is_sampled(self) -> None:
        revs = make_revisions(40)
        installer = FakeInstaller()
        summary = _orchestrator(revs, ResultStore(MemoryTree(), TRIPLE), installer).run()
        self.assertEqual(installer.installed, ["c1", "c31"])
        self.assertEqual(summary.missing, 40)

    def test_custom_selection_settings(self) -> None:
        revs = make_revisions(8)
        installer = FakeInstaller()
        _orchestrator(
            revs, ResultStore(MemoryTree(), TRIPLE), installer, dense_threshold=2, sparse_step=3
        ).run()
        self.assertEqual(installer.installed, ["c1", "c4", "c7"])

    def test_nothing_to_do_when_all_recorded(self) -> None:
        revs = make_revisions(2)
        tree = MemoryTree()
        _seed(tree, make_success(revs[0]), make_success(revs[1]))
        installer = FakeInstaller()
        summary = _orchestrator(revs, ResultStore(tree, TRIPLE), installer).run()
        self.assertTrue(summary.nothing_to_do)
        self.assertEqual(installer.installed, [])

    def test_no_revisions_is_nothing_to_do(self) -> None:
        summary = _orchestrator([], ResultStore(MemoryTree(), TRIPLE)).run()
        self.assertTrue(summary.nothing_to_do)

    def test_failure_is_recorded_and_run_continues(self) -> None:
        revs = make_revisions(3)
        tree = MemoryTree()
        installer = FakeInstaller(fail_for={"c2"})
        summary = _orchestrator(revs, ResultStore(tree, TRIPLE), installer).run()
        self.assertEqual(installer.installed, ["c1", "c2", "c3"])
        self.assertEqual([r.status for r in summary.swept], ["success", "failure", "success"])
        reopened = ResultStore(tree, TRIPLE)
        self.assertEqual(reopened.next_retry(), "c2")

    def test_rerun_does_no_duplicate_work(self) -> None:
        revs = make_revisions(3)
        tree = MemoryTree()
        _orchestrator(revs, ResultStore(tree, TRIPLE)).run()
        installer = FakeInstaller()
        summary = _orchestrator(revs, ResultStore(tree, TRIPLE), installer).run()
        self.assertTrue(summary.nothing_to_do)
        self.assertEqual(installer.installed, [])


class TestRetry(unittest.TestCase):
    def test_retry_then_sweep(self) -> None:
        c1, c2, c3 = make_revisions(3)
        tree = MemoryTree()
        _seed(tree, make_success(c1), make_failure(c2))
        installer = FakeInstaller()
        store = ResultStore(tree, TRIPLE)
        summary = _orchestrator([c1, c2, c3], store, installer).run()

        self.assertEqual(installer.installed, ["c2", "c3"])
        self.assertEqual([r.revision_id for r in summary.retried], ["c2"])
        self.assertEqual([r.revision_id for r in summary.swept], ["c3"])
        self.assertTrue(store.get("c2").is_success)  # type: ignore[union-attr]
        self.assertIsNone(ResultStore(tree, TRIPLE).next_retry())

    def test_failed_retry_is_attempted_once_per_run(self) -> None:
        c1, c2 = make_revisions(2)
        tree = MemoryTree()
        _seed(tree, make_failure(c1), make_success(c2))
        installer = FakeInstaller(fail_for={"c1"})
        summary = _orchestrator([c1, c2], ResultStore(tree, TRIPLE), installer).run()
        self.assertEqual(installer.installed, ["c1"])
        self.assertEqual(summary.failed, 1)
        # Still queued for the next run.
        self.assertEqual(ResultStore(tree, TRIPLE).next_retry(), "c1")

    def test_retries_oldest_recorded_first(self) -> None:
        c1, c2, c3 = make_revisions(3)
        tree = MemoryTree()
        _seed(tree, make_failure(c3), make_failure(c1), make_success(c2))
        installer = FakeInstaller()
        _orchestrator([c1, c2, c3], ResultStore(tree, TRIPLE), installer).run()
        self.assertEqual(installer.installed, ["c3", "c1"])

    def test_unknown_failure_aborts(self) -> None:
        tree = MemoryTree()
        _seed(tree, make_failure(make_revision("gone")))
        installer = FakeInstaller()
        with self.assertRaises(RunAborted) as ctx:
            _orchestrator(make_revisions(2), ResultStore(tree, TRIPLE), installer).run()
        self.assertEqual(ctx.exception.phase, PHASE_RETRY)
        self.assertEqual(ctx.exception.revision_id, "gone")
        self.assertEqual(installer.installed, [])


class TestFatalErrors(unittest.TestCase):
    def test_store_write_failure_aborts_with_context(self) -> None:
        revs = make_revisions(3)
        tree = MemoryTree()
        store = ResultStore(tree, TRIPLE)
        installer = FakeInstaller()
        original = tree.write

        def write(path: str, text: str, message: str) -> None:
            if "c2" in path:
                raise StoreError("disk full")
            original(path, text, message)

        with patch.object(tree, "write", side_effect=write):
            with self.assertRaises(RunAborted) as ctx:
                _orchestrator(revs, store, installer).run()
        self.assertEqual(ctx.exception.phase, PHASE_SWEEP)
        self.assertEqual(ctx.exception.revision_id, "c2")
        self.assertIn("disk full", str(ctx.exception))
        # c1 was durably recorded; c3 was never attempted.
        self.assertEqual(installer.installed, ["c1", "c2"])
        self.assertEqual(ResultStore(tree, TRIPLE).find_missing(revs), revs[1:])


class TestRealBenchmarkFailures(unittest.TestCase):
    def test_undecodable_benchmark_output_is_recorded_as_failure(self) -> None:
        revs = make_revisions(2)
        tree = MemoryTree()
        with tempfile.TemporaryDirectory() as tmp:
            location = Path(tmp) / "garbled"
            location.mkdir()
            executor = BenchmarkRunner(
                command="printf '\\377\\376' 1>&2; exit 1", iterations=1, timeout=30
            )
            measurer = MeasurementRunner(FakeInstaller(), executor, target_triple=TRIPLE)
            benchmarks = [BenchmarkDefinition(name="garbled", location=location)]
            summary = Orchestrator(revs, ResultStore(tree, TRIPLE), measurer, benchmarks).run()

        self.assertEqual(summary.failed, 2)
        reopened = ResultStore(tree, TRIPLE)
        self.assertEqual([r.revision_id for r in reopened.failures()], ["c1", "c2"])
        error = reopened.get("c1").outcome.error  # type: ignore[union-attr]
        self.assertIn("garbled", error)
        self.assertIn("status 1", error)


if __name__ == "__main__":
    unittest.main()

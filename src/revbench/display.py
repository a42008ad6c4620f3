"""Plain-text summaries for the CLI."""

from __future__ import annotations

from revbench.orchestrator import RunSummary
from revbench.records import MeasurementRecord, Success
from revbench.store import ResultStore


def format_record_line(record: MeasurementRecord) -> str:
    """One line per record: short id, date, status and detail."""
    date = record.timestamp.strftime("%Y-%m-%d")
    outcome = record.outcome
    if isinstance(outcome, Success):
        detail = f"{len(outcome.benchmarks)} benchmarks"
    else:
        detail = outcome.error.splitlines()[0][:80] if outcome.error else ""
    return f"  {record.revision_id[:7]}  {date}  {record.status:<8} {detail}"


def format_summary(summary: RunSummary) -> str:
    if summary.nothing_to_do:
        return "Nothing to do; every revision is already recorded."
    lines = [
        f"Retried:   {len(summary.retried)}",
        f"Swept:     {len(summary.swept)} (of {summary.missing} unrecorded)",
        f"Succeeded: {summary.succeeded}",
        f"Failed:    {summary.failed}",
    ]
    failed = [r for r in summary.records if r.is_failure]
    if failed:
        lines.append("")
        lines.append("Failures:")
        lines.extend(format_record_line(r) for r in failed)
    return "\n".join(lines)


def format_status(store: ResultStore, *, limit: int = 20) -> str:
    """Counts of stored records and the pending retry queue."""
    failures = store.failures()
    lines = [
        f"Target triple: {store.target_triple}",
        f"Records:       {len(store)}",
        f"  Succeeded:   {len(store.successes())}",
        f"  Failed:      {len(failures)}",
    ]
    if failures:
        lines.append("")
        lines.append("Pending retries (oldest first):")
        lines.extend(format_record_line(r) for r in failures[:limit])
        if len(failures) > limit:
            lines.append(f"  ... and {len(failures) - limit} more")
    return "\n".join(lines)

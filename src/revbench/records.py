"""Measurement record data structures and serialization.

Hierarchy::

    MeasurementRecord (one revision on one target triple)
      → outcome: Success | Failure
        Success.benchmarks: dict[benchmark name, metrics]
        Failure.error: description of what went wrong

A record is binary: either every benchmark was measured or the revision
is a failure.  Serialized as a single JSON document whose ``status`` field
tells the two apart.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from revbench.revisions import parse_timestamp

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


@dataclass(frozen=True)
class BenchmarkOutcome:
    """Result of running one benchmark: metrics or an error, never both."""

    name: str
    metrics: dict[str, Any] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.metrics is None) == (self.error is None):
            raise ValueError(f"Outcome for {self.name!r} needs exactly one of metrics or error")

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Success:
    """Every benchmark produced metrics."""

    benchmarks: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class Failure:
    """The revision could not be fully measured."""

    revision_id: str
    error: str


Outcome = Union[Success, Failure]


@dataclass(frozen=True)
class MeasurementRecord:
    """Outcome of measuring one revision for one target triple."""

    revision_id: str
    target_triple: str
    timestamp: datetime
    outcome: Outcome

    @property
    def key(self) -> tuple[str, str]:
        return (self.revision_id, self.target_triple)

    @property
    def is_success(self) -> bool:
        return isinstance(self.outcome, Success)

    @property
    def is_failure(self) -> bool:
        return isinstance(self.outcome, Failure)

    @property
    def status(self) -> str:
        return STATUS_SUCCESS if self.is_success else STATUS_FAILURE

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {
            "revision": self.revision_id,
            "triple": self.target_triple,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status,
        }
        if isinstance(self.outcome, Success):
            d["benchmarks"] = self.outcome.benchmarks
        else:
            d["error"] = self.outcome.error
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MeasurementRecord:
        """Deserialize from a dict, ignoring unknown fields.

        Raises:
            ValueError: If required fields are missing or the status is unknown.
        """
        try:
            revision_id = data["revision"]
            triple = data["triple"]
            timestamp = parse_timestamp(data["timestamp"])
            status = data["status"]
        except KeyError as exc:
            raise ValueError(f"Record is missing field {exc.args[0]!r}") from None
        except (TypeError, AttributeError):
            raise ValueError("Record timestamp must be a string") from None

        outcome: Outcome
        if status == STATUS_SUCCESS:
            benchmarks = data.get("benchmarks", {})
            if not isinstance(benchmarks, dict):
                raise ValueError("Record 'benchmarks' must be a mapping")
            outcome = Success(benchmarks=benchmarks)
        elif status == STATUS_FAILURE:
            if "error" not in data:
                raise ValueError("Failure record is missing field 'error'")
            outcome = Failure(revision_id=revision_id, error=str(data["error"]))
        else:
            raise ValueError(f"Unknown record status: {status!r}")

        return cls(
            revision_id=revision_id,
            target_triple=triple,
            timestamp=timestamp,
            outcome=outcome,
        )

    def dumps(self, **extra: Any) -> str:
        """Serialize to JSON text.  *extra* keys are stored alongside."""
        data = self.to_dict()
        data.update(extra)
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    @classmethod
    def loads(cls, text: str) -> MeasurementRecord:
        """Parse JSON text produced by :meth:`dumps`."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Record is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Record must be a JSON object, got {type(data).__name__}")
        return cls.from_dict(data)


def success_record(
    revision_id: str,
    target_triple: str,
    timestamp: datetime,
    outcomes: list[BenchmarkOutcome],
) -> MeasurementRecord:
    """Aggregate successful benchmark outcomes into a record."""
    benchmarks: dict[str, dict[str, Any]] = {}
    for outcome in outcomes:
        if outcome.metrics is None:
            raise ValueError(f"Benchmark {outcome.name!r} has no metrics")
        benchmarks[outcome.name] = outcome.metrics
    return MeasurementRecord(
        revision_id=revision_id,
        target_triple=target_triple,
        timestamp=timestamp,
        outcome=Success(benchmarks=benchmarks),
    )


def failure_record(
    revision_id: str,
    target_triple: str,
    timestamp: datetime,
    error: str,
) -> MeasurementRecord:
    return MeasurementRecord(
        revision_id=revision_id,
        target_triple=target_triple,
        timestamp=timestamp,
        outcome=Failure(revision_id=revision_id, error=error),
    )

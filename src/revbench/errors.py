"""Exception hierarchy for revbench.

Errors fall into three groups:

- Collaborator-fatal (:class:`StoreError`, :class:`RevisionSourceError`,
  :class:`ConfigError`): the run cannot continue and aborts.
- Per-revision (:class:`InstallError`, :class:`BenchmarkError`): recorded as
  a failure for that revision; the run moves on.
- Input validation (:class:`RevisionNotFoundError`): a revision named by the
  caller could not be resolved; nothing is recorded.
"""

from __future__ import annotations


class CollectorError(Exception):
    """Base class for all revbench errors."""


class ConfigError(CollectorError):
    """A required configuration value is missing or invalid."""


class StoreError(CollectorError):
    """The result store could not be read or written."""


class RevisionSourceError(CollectorError):
    """The revision history could not be fetched or listed."""


class RevisionNotFoundError(CollectorError):
    """A revision id does not match any known revision."""


class InstallError(CollectorError):
    """A toolchain could not be installed for a revision."""


class BenchmarkError(CollectorError):
    """A benchmark could not be executed."""


class RunAborted(CollectorError):
    """A collection run stopped on a fatal error.

    Carries the phase and revision being processed so the operator can
    tell where to resume.
    """

    def __init__(self, message: str, *, phase: str, revision_id: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase
        self.revision_id = revision_id

    def __str__(self) -> str:
        where = f"phase={self.phase}"
        if self.revision_id:
            where += f" revision={self.revision_id}"
        return f"{super().__str__()} ({where})"

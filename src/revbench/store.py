"""Durable result store.

Records live in a file tree, one JSON file per (revision, target triple)::

    times/<revision>-<triple>.json

Each file holds the serialized :class:`MeasurementRecord` plus a
``sequence`` number giving the order in which records were written.  The
tree is normally a git work tree and every write is one commit, so the
history of the store is the audit trail of every measurement.

The retry queue is not stored separately: it is the set of failure
records, oldest-written first.
"""

from __future__ import annotations

import abc
import json
import os
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from revbench.errors import StoreError
from revbench.logging import get_logger
from revbench.records import MeasurementRecord, failure_record
from revbench.revisions import Revision

log = get_logger("store")

RECORDS_DIR = "times"


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class FileTree(abc.ABC):
    """Minimal file-tree interface the store is written against.

    Paths are ``/``-separated and relative to the tree root.
    """

    @abc.abstractmethod
    def list(self, directory: str) -> list[str]:
        """Return the file names directly inside *directory* (empty if absent)."""

    @abc.abstractmethod
    def read(self, path: str) -> str:
        """Return the text of *path*."""

    @abc.abstractmethod
    def write(self, path: str, text: str, message: str) -> None:
        """Create or replace *path*; *message* describes the change."""


class MemoryTree(FileTree):
    """In-memory tree.  ``commits`` logs every write as (path, message)."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.commits: list[tuple[str, str]] = []

    def list(self, directory: str) -> list[str]:
        prefix = directory.rstrip("/") + "/"
        return sorted(
            path[len(prefix) :]
            for path in self.files
            if path.startswith(prefix) and "/" not in path[len(prefix) :]
        )

    def read(self, path: str) -> str:
        try:
            return self.files[path]
        except KeyError:
            raise StoreError(f"No such record file: {path}") from None

    def write(self, path: str, text: str, message: str) -> None:
        self.files[path] = text
        self.commits.append((path, message))


class DirectoryTree(FileTree):
    """A plain directory on disk."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def list(self, directory: str) -> list[str]:
        target = self.root / directory
        if not target.is_dir():
            return []
        try:
            return sorted(p.name for p in target.iterdir() if p.is_file())
        except OSError as exc:
            raise StoreError(f"Cannot list {target}: {exc}") from exc

    def read(self, path: str) -> str:
        try:
            return (self.root / path).read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot read {self.root / path}: {exc}") from exc

    def write(self, path: str, text: str, message: str) -> None:
        target = self.root / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            # Write-then-rename so a crash never leaves a truncated record.
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp, target)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StoreError(f"Cannot write {target}: {exc}") from exc
        log.debug("Wrote %s (%s)", target, message)


class GitTree(DirectoryTree):
    """A git work tree where every write becomes one commit.

    With *push*, the tree is rebased on its upstream when opened and every
    commit is pushed immediately.
    """

    def __init__(self, root: Path, *, push: bool = False) -> None:
        super().__init__(root)
        self.push = push

    def open(self) -> GitTree:
        """Check the work tree and bring it up to date.

        Raises:
            StoreError: If *root* is not a git work tree or the pull fails.
        """
        if not self.root.is_dir():
            raise StoreError(f"Output repository does not exist: {self.root}")
        inside = self._git(["rev-parse", "--is-inside-work-tree"], check=False)
        if inside.returncode != 0 or inside.stdout.strip() != "true":
            raise StoreError(f"Output repository is not a git work tree: {self.root}")
        if self.push:
            log.info("Pulling %s", self.root)
            self._git(["pull", "--rebase"])
        return self

    def write(self, path: str, text: str, message: str) -> None:
        super().write(path, text, message)
        self._git(["add", "--", path])
        self._git(["commit", "--quiet", "-m", message, "--", path])
        if self.push:
            self._git(["push"])

    def _git(self, args: list[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            proc = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                cwd=str(self.root),
                timeout=300,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise StoreError(f"git {args[0]} failed in {self.root}: {exc}") from exc
        if check and proc.returncode != 0:
            raise StoreError(
                f"git {args[0]} failed in {self.root}: {proc.stderr.strip()[:500]}"
            )
        return proc


# ---------------------------------------------------------------------------
# ResultStore
# ---------------------------------------------------------------------------


@dataclass
class _Entry:
    sequence: int
    record: MeasurementRecord


def record_path(revision_id: str, target_triple: str) -> str:
    return f"{RECORDS_DIR}/{revision_id}-{target_triple}.json"


class ResultStore:
    """Per-revision measurement outcomes for one target triple.

    The store is the only authority on what has been measured.  All
    records for the triple are indexed when the store is constructed;
    writes go to the tree first and update the index only once durable.

    Usage::

        store = ResultStore(GitTree(path).open(), "x86_64-unknown-linux-gnu")
        missing = store.find_missing(revisions)
        while (rev_id := store.next_retry()) is not None:
            ...
            store.record(record)
    """

    def __init__(self, tree: FileTree, target_triple: str) -> None:
        self.tree = tree
        self.target_triple = target_triple
        self._entries: dict[str, _Entry] = {}
        # Revisions written by this instance; each failure is retried once.
        self._recorded_this_session: set[str] = set()
        self._load()

    def _load(self) -> None:
        suffix = f"-{self.target_triple}.json"
        for name in self.tree.list(RECORDS_DIR):
            if not name.endswith(suffix):
                continue
            path = f"{RECORDS_DIR}/{name}"
            try:
                data = json.loads(self.tree.read(path))
                if not isinstance(data, dict):
                    raise ValueError(f"expected a JSON object, got {type(data).__name__}")
                record = MeasurementRecord.from_dict(data)
                sequence = data.get("sequence", 0)
                if not isinstance(sequence, int):
                    raise ValueError(f"sequence must be an integer, got {sequence!r}")
            except ValueError as exc:
                raise StoreError(f"Corrupt record {path}: {exc}") from exc
            if record.target_triple != self.target_triple:
                # Suffix match on a shorter triple name.
                continue
            self._entries[record.revision_id] = _Entry(sequence=sequence, record=record)
        log.debug(
            "Loaded %d records for %s (%d failures)",
            len(self._entries),
            self.target_triple,
            len(self.failures()),
        )

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, revision_id: str) -> MeasurementRecord | None:
        entry = self._entries.get(revision_id)
        return entry.record if entry else None

    def _ordered(self) -> list[MeasurementRecord]:
        return [e.record for e in sorted(self._entries.values(), key=lambda e: e.sequence)]

    def successes(self) -> list[MeasurementRecord]:
        return [r for r in self._ordered() if r.is_success]

    def failures(self) -> list[MeasurementRecord]:
        """Failure records, oldest-written first."""
        return [r for r in self._ordered() if r.is_failure]

    def find_missing(self, revisions: Iterable[Revision]) -> list[Revision]:
        """Return revisions with no record, in input order."""
        recorded = set(self._entries)
        return [rev for rev in revisions if rev.id not in recorded]

    def next_retry(self) -> str | None:
        """Return the oldest failed revision not yet retried by this store.

        Once a revision has been recorded through this instance it is not
        offered again, so a retry that fails again does not loop.
        """
        for record in self.failures():
            if record.revision_id not in self._recorded_this_session:
                return record.revision_id
        return None

    def record(self, record: MeasurementRecord) -> None:
        """Persist *record*, replacing any earlier record for its revision."""
        if record.target_triple != self.target_triple:
            raise StoreError(
                f"Record for triple {record.target_triple!r} given to store "
                f"for {self.target_triple!r}"
            )
        sequence = max((e.sequence for e in self._entries.values()), default=0) + 1
        path = record_path(record.revision_id, record.target_triple)
        message = f"{record.status}: {record.revision_id} on {record.target_triple}"
        if record.is_failure:
            message += f"\n\n{record.outcome.error}"  # type: ignore[union-attr]
        self.tree.write(path, record.dumps(sequence=sequence), message)
        self._entries[record.revision_id] = _Entry(sequence=sequence, record=record)
        self._recorded_this_session.add(record.revision_id)
        log.info("Recorded %s for %s", record.status, record.revision_id)

    def record_success(self, record: MeasurementRecord) -> None:
        if not record.is_success:
            raise ValueError(f"Expected a success record for {record.revision_id}")
        self.record(record)

    def record_failure(self, revision: Revision, error: str) -> None:
        self.record(failure_record(revision.id, self.target_triple, revision.timestamp, error))

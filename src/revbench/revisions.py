"""Compiler revision history.

Keeps a local mirror of the compiler repository and lists its first-parent
history oldest-first.  Each merge on the tracked branch is one
:class:`Revision` to be measured.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from revbench.errors import RevisionNotFoundError, RevisionSourceError
from revbench.logging import get_logger

log = get_logger("revisions")

# Unit separator: cannot appear in a commit subject line.
_FIELD_SEP = "\x1f"


@dataclass(frozen=True)
class Revision:
    """One point in the compiler's history."""

    id: str
    timestamp: datetime
    summary: str = ""

    @property
    def short(self) -> str:
        return self.id[:7]


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 date, treating naive values as UTC.

    Raises:
        ValueError: If *value* is not a valid ISO 8601 date.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(
            f"Invalid date {value!r}: expected YYYY-MM-DDTHH:MM:SS format"
        ) from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def synthetic_revision(revision_id: str, date: str) -> Revision:
    """Build a revision that does not come from the repository.

    Used to attach results for a locally built compiler to a chosen id
    and date.
    """
    if not revision_id.strip():
        raise ValueError("Revision id cannot be empty.")
    return Revision(id=revision_id.strip(), timestamp=parse_timestamp(date))


def find_revision(revisions: Sequence[Revision], rev_id: str) -> Revision:
    """Find a revision by full id or unique prefix.

    Raises:
        RevisionNotFoundError: If nothing matches or the prefix is ambiguous.
    """
    for rev in revisions:
        if rev.id == rev_id:
            return rev
    matches = [rev for rev in revisions if rev.id.startswith(rev_id)] if len(rev_id) >= 7 else []
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise RevisionNotFoundError(
            f"Revision prefix {rev_id!r} is ambiguous ({len(matches)} matches)"
        )
    raise RevisionNotFoundError(f"Revision {rev_id!r} not found in history")


# ---------------------------------------------------------------------------
# Git mirror
# ---------------------------------------------------------------------------


def _git(args: list[str], *, cwd: Path | None = None, timeout: int = 600) -> str:
    try:
        proc = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=str(cwd) if cwd else None,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise RevisionSourceError(f"git {args[0]} failed: {exc}") from exc
    if proc.returncode != 0:
        raise RevisionSourceError(f"git {args[0]} failed: {proc.stderr.strip()[:500]}")
    return proc.stdout


def sync_repository(repo_dir: Path, url: str) -> None:
    """Clone *url* into *repo_dir* as a bare mirror, or fetch if present."""
    if (repo_dir / "HEAD").exists() or (repo_dir / ".git").exists():
        log.info("Fetching %s", repo_dir)
        _git(["fetch", "--prune", "origin", "+refs/heads/*:refs/heads/*"], cwd=repo_dir)
        return
    if not url:
        raise RevisionSourceError(
            f"No repository at {repo_dir} and no repository URL configured to clone from"
        )
    log.info("Cloning %s into %s", url, repo_dir)
    repo_dir.parent.mkdir(parents=True, exist_ok=True)
    _git(["clone", "--bare", url, str(repo_dir)], timeout=3600)


class GitRevisionSource:
    """Lists the first-parent history of one branch, oldest first."""

    def __init__(self, repo_dir: Path, branch: str = "master", *, since: str | None = None) -> None:
        self.repo_dir = repo_dir
        self.branch = branch
        self.since = since

    def list_revisions(self) -> list[Revision]:
        if not self.repo_dir.exists():
            raise RevisionSourceError(f"Repository not found: {self.repo_dir}")
        args = [
            "log",
            "--first-parent",
            "--reverse",
            f"--format=%H{_FIELD_SEP}%cI{_FIELD_SEP}%s",
        ]
        if self.since:
            args.append(f"--since={self.since}")
        args.append(self.branch)
        output = _git(args, cwd=self.repo_dir)
        revisions = parse_log(output)
        log.info("Found %d revisions on %s", len(revisions), self.branch)
        return revisions


def parse_log(output: str) -> list[Revision]:
    """Parse ``git log`` output produced with the revision format."""
    revisions: list[Revision] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(_FIELD_SEP, 2)
        if len(parts) != 3:
            raise RevisionSourceError(f"Unexpected git log line: {line[:200]!r}")
        sha, date, summary = parts
        try:
            timestamp = parse_timestamp(date)
        except ValueError as exc:
            raise RevisionSourceError(f"Bad commit date for {sha}: {exc}") from exc
        revisions.append(Revision(id=sha, timestamp=timestamp, summary=summary))
    return revisions

"""Tests for revbench.revisions — revision history from git."""

from __future__ import annotations

import subprocess
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

from revbench.errors import RevisionNotFoundError, RevisionSourceError
from revbench.revisions import (
    GitRevisionSource,
    Revision,
    find_revision,
    parse_log,
    parse_timestamp,
    sync_repository,
    synthetic_revision,
)

from revbench_test_helpers import make_revision

SEP = "\x1f"


def _completed(
    stdout: str = "", returncode: int = 0, stderr: str = ""
) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestParseTimestamp(unittest.TestCase):
    def test_naive_is_utc(self) -> None:
        self.assertEqual(
            parse_timestamp("2024-05-01T10:00:00"),
            datetime(2024, 5, 1, 10, tzinfo=timezone.utc),
        )

    def test_z_suffix(self) -> None:
        self.assertEqual(
            parse_timestamp("2024-05-01T10:00:00Z"),
            datetime(2024, 5, 1, 10, tzinfo=timezone.utc),
        )

    def test_offset_converted_to_utc(self) -> None:
        parsed = parse_timestamp("2024-05-01T12:00:00+02:00")
        self.assertEqual(parsed, datetime(2024, 5, 1, 10, tzinfo=timezone.utc))
        self.assertEqual(parsed.utcoffset().total_seconds(), 0)  # type: ignore[union-attr]

    def test_invalid(self) -> None:
        with self.assertRaises(ValueError):
            parse_timestamp("yesterday")


class TestSyntheticRevision(unittest.TestCase):
    def test_builds_revision(self) -> None:
        rev = synthetic_revision("deadbeef", "2024-05-01T10:00:00")
        self.assertEqual(rev.id, "deadbeef")
        self.assertEqual(rev.summary, "")
        self.assertEqual(rev.timestamp.year, 2024)

    def test_empty_id(self) -> None:
        with self.assertRaises(ValueError):
            synthetic_revision("  ", "2024-05-01T10:00:00")

    def test_bad_date(self) -> None:
        with self.assertRaises(ValueError):
            synthetic_revision("deadbeef", "05/01/2024")


class TestFindRevision(unittest.TestCase):
    def setUp(self) -> None:
        self.revs = [
            make_revision("abcdef0123456789"),
            make_revision("abcdef0999999999"),
            make_revision("1234567890abcdef"),
        ]

    def test_exact(self) -> None:
        self.assertEqual(find_revision(self.revs, "1234567890abcdef"), self.revs[2])

    def test_unique_prefix(self) -> None:
        self.assertEqual(find_revision(self.revs, "1234567"), self.revs[2])

    def test_ambiguous_prefix(self) -> None:
        with self.assertRaisesRegex(RevisionNotFoundError, "ambiguous"):
            find_revision(self.revs, "abcdef0")

    def test_short_prefix_not_accepted(self) -> None:
        with self.assertRaises(RevisionNotFoundError):
            find_revision(self.revs, "1234")

    def test_missing(self) -> None:
        with self.assertRaises(RevisionNotFoundError):
            find_revision(self.revs, "ffffffffffff")


class TestParseLog(unittest.TestCase):
    def test_parses_lines(self) -> None:
        output = (
            f"aaa{SEP}2024-01-01T00:00:00+00:00{SEP}Merge #1\n"
            f"bbb{SEP}2024-01-02T00:00:00+00:00{SEP}Merge #2: fix a | b\n"
        )
        revs = parse_log(output)
        self.assertEqual([r.id for r in revs], ["aaa", "bbb"])
        self.assertEqual(revs[1].summary, "Merge #2: fix a | b")
        self.assertIsInstance(revs[0], Revision)

    def test_skips_blank_lines(self) -> None:
        self.assertEqual(parse_log("\n\n"), [])

    def test_malformed_line(self) -> None:
        with self.assertRaises(RevisionSourceError):
            parse_log("just-a-hash\n")

    def test_bad_commit_date(self) -> None:
        with self.assertRaisesRegex(RevisionSourceError, "aaa"):
            parse_log(f"aaa{SEP}not-a-date{SEP}subject\n")


class TestGitRevisionSource(unittest.TestCase):
    @patch("revbench.revisions.subprocess.run")
    def test_lists_oldest_first(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(
            f"aaa{SEP}2024-01-01T00:00:00+00:00{SEP}one\n"
            f"bbb{SEP}2024-01-02T00:00:00+00:00{SEP}two\n"
        )
        with tempfile.TemporaryDirectory() as tmp:
            revs = GitRevisionSource(Path(tmp), "main", since="2024-01-01").list_revisions()
        self.assertEqual([r.id for r in revs], ["aaa", "bbb"])
        args = mock_run.call_args.args[0]
        self.assertIn("--first-parent", args)
        self.assertIn("--reverse", args)
        self.assertIn("--since=2024-01-01", args)
        self.assertEqual(args[-1], "main")

    @patch("revbench.revisions.subprocess.run")
    def test_git_failure(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed(returncode=128, stderr="bad revision 'main'")
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaisesRegex(RevisionSourceError, "bad revision"):
                GitRevisionSource(Path(tmp), "main").list_revisions()

    def test_missing_repository(self) -> None:
        with self.assertRaises(RevisionSourceError):
            GitRevisionSource(Path("/nonexistent/compiler.git")).list_revisions()


class TestSyncRepository(unittest.TestCase):
    @patch("revbench.revisions.subprocess.run")
    def test_clones_when_absent(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed()
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / "compiler.git"
            sync_repository(dest, "https://example.org/compiler.git")
        args = mock_run.call_args.args[0]
        self.assertEqual(args[:3], ["git", "clone", "--bare"])

    @patch("revbench.revisions.subprocess.run")
    def test_fetches_when_present(self, mock_run: MagicMock) -> None:
        mock_run.return_value = _completed()
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp)
            (dest / "HEAD").write_text("ref: refs/heads/main\n")
            sync_repository(dest, "")
        self.assertEqual(mock_run.call_args.args[0][:2], ["git", "fetch"])

    def test_no_repo_and_no_url(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(RevisionSourceError):
                sync_repository(Path(tmp) / "missing.git", "")


if __name__ == "__main__":
    unittest.main()

"""Timed subprocess execution for benchmark iterations.

Captures wall-clock time, user and system CPU time of the child processes
(via ``resource.getrusage``), and peak RSS.  When GNU ``time`` is installed
it wraps the command to report per-invocation peak RSS; otherwise the
``ru_maxrss`` of the children is used.
"""

from __future__ import annotations

import os
import resource
import shlex
import signal
import statistics
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from revbench.logging import get_logger

log = get_logger("timing")

_GNU_TIME = Path("/usr/bin/time")


@dataclass
class TimedResult:
    """Result of one timed command."""

    wall_time_s: float
    user_time_s: float
    sys_time_s: float
    peak_rss_mb: float
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    def to_metrics(self) -> dict[str, float]:
        return {
            "wall_time_s": self.wall_time_s,
            "user_time_s": self.user_time_s,
            "sys_time_s": self.sys_time_s,
            "peak_rss_mb": self.peak_rss_mb,
        }


def run_timed(
    command: str,
    *,
    cwd: Path | None = None,
    env: dict[str, str] | None = None,
    timeout: int = 600,
    use_time_wrapper: bool = True,
) -> TimedResult:
    """Run a shell command and measure it.

    Args:
        command: Shell command line.
        cwd: Working directory.
        env: Variables layered over ``os.environ``.
        timeout: Seconds before the whole process group is killed.
        use_time_wrapper: Wrap with GNU ``time -v`` when available.

    Raises:
        OSError: If the shell cannot be started.
    """
    run_env = dict(os.environ)
    if env:
        run_env.update(env)

    rss_file: str | None = None
    try:
        if use_time_wrapper and _GNU_TIME.exists():
            fd, rss_file = tempfile.mkstemp(prefix="revbench-time-", suffix=".txt")
            os.close(fd)
            command = f"{_GNU_TIME} -v -o {shlex.quote(rss_file)} sh -c {shlex.quote(command)}"

        before = resource.getrusage(resource.RUSAGE_CHILDREN)
        start = time.monotonic()

        timed_out = False
        # Benchmark output is not guaranteed to be UTF-8.
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=str(cwd) if cwd else None,
            env=run_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
            exit_code = proc.returncode
        except subprocess.TimeoutExpired:
            timed_out = True
            log.warning("Command timed out after %ds: %s", timeout, command[:200])
            stdout, stderr = _kill_and_drain(proc)
            exit_code = -1

        wall = time.monotonic() - start
        after = resource.getrusage(resource.RUSAGE_CHILDREN)
        peak_rss = _peak_rss_mb(rss_file, after)
    finally:
        if rss_file is not None:
            Path(rss_file).unlink(missing_ok=True)

    return TimedResult(
        wall_time_s=round(wall, 6),
        user_time_s=round(max(after.ru_utime - before.ru_utime, 0.0), 6),
        sys_time_s=round(max(after.ru_stime - before.ru_stime, 0.0), 6),
        peak_rss_mb=round(peak_rss, 1),
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        timed_out=timed_out,
    )


def _kill_and_drain(proc: subprocess.Popen[str]) -> tuple[str, str]:
    """Kill a timed-out command's process group and collect what it printed.

    A descendant that left the group can keep the pipes open, so draining
    is bounded; output is dropped if it never finishes.
    """
    try:
        os.killpg(os.getpgid(proc.pid), signal.SIGKILL)
    except OSError:
        proc.kill()
    try:
        return proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
    try:
        return proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        log.warning("Output pipes still open after kill; discarding output")
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                pipe.close()
        proc.wait()
        return "", ""


def _peak_rss_mb(rss_file: str | None, after: resource.struct_rusage) -> float:
    if rss_file is not None:
        try:
            rss = parse_gnu_time_rss(Path(rss_file).read_text(errors="replace"))
        except OSError:
            rss = 0.0
        if rss > 0:
            return rss
    # ru_maxrss is KB on Linux, bytes on macOS.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return after.ru_maxrss / divisor


def parse_gnu_time_rss(text: str) -> float:
    """Return peak RSS in MB from ``time -v`` output, or 0.0 if absent.

    GNU time prints a line like ``Maximum resident set size (kbytes): 123456``.
    """
    for line in text.splitlines():
        if "Maximum resident set size" in line:
            try:
                return int(line.rsplit(":", 1)[-1].strip()) / 1024
            except ValueError:
                return 0.0
    return 0.0


def summarize(values: Sequence[float]) -> dict[str, float]:
    """Min / median / mean / stdev of a sample (stdev is 0.0 for n < 2)."""
    if not values:
        return {}
    return {
        "min": round(min(values), 6),
        "median": round(statistics.median(values), 6),
        "mean": round(statistics.mean(values), 6),
        "stdev": round(statistics.stdev(values), 6) if len(values) >= 2 else 0.0,
    }

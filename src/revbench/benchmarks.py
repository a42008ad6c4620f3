"""Benchmark discovery and execution.

Each benchmark is a directory under the benchmarks directory.  It may
contain a ``benchmark.yaml`` overriding the run settings::

    command: "make build"       # timed build command
    clean_command: "make clean" # run before every iteration, untimed
    iterations: 5
    timeout: 900
    env:
      OPT_LEVEL: "2"

Anything not set there falls back to the runner's defaults.
"""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from revbench.errors import BenchmarkError, ConfigError
from revbench.logging import get_logger
from revbench.records import BenchmarkOutcome
from revbench.timing import TimedResult, run_timed, summarize
from revbench.toolchain import ToolchainHandle

log = get_logger("benchmarks")

SETTINGS_FILE = "benchmark.yaml"
_IGNORED_DIRS = frozenset({".git", "scripts"})
_SETTINGS_KEYS = frozenset({"command", "clean_command", "iterations", "timeout", "env"})


@dataclass(frozen=True)
class BenchmarkDefinition:
    """One benchmark: a named directory plus optional run settings."""

    name: str
    location: Path
    settings: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def load_settings(location: Path) -> dict[str, Any]:
    """Load ``benchmark.yaml`` from *location*, or ``{}`` if absent.

    Raises:
        ConfigError: If the file is not a mapping, has unknown keys, or
            holds a value of the wrong type.
    """
    path = location / SETTINGS_FILE
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must be a YAML mapping, got {type(data).__name__}")
    unknown = set(data) - _SETTINGS_KEYS
    if unknown:
        raise ConfigError(f"{path}: unknown keys {', '.join(sorted(unknown))}")
    _check_settings(path, data)
    return data


def _check_settings(path: Path, data: dict[str, Any]) -> None:
    for key in ("command", "clean_command"):
        if key in data and not isinstance(data[key], str):
            raise ConfigError(f"{path}: {key} must be a string, got {data[key]!r}")
    for key in ("iterations", "timeout"):
        value = data.get(key)
        if key in data and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
            raise ConfigError(f"{path}: {key} must be a positive integer, got {value!r}")
    env = data.get("env")
    if env is not None and not isinstance(env, dict):
        raise ConfigError(f"{path}: env must be a mapping, got {type(env).__name__}")


def discover_benchmarks(
    directory: Path,
    name_filter: str | None = None,
) -> list[BenchmarkDefinition]:
    """List the benchmarks in *directory*, sorted by name.

    Non-directories, hidden directories and ``scripts`` are ignored; if
    *name_filter* is given only names containing it are kept.

    Raises:
        ConfigError: If *directory* cannot be listed.
    """
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        raise ConfigError(f"Failed to list benchmarks in {directory}: {exc}") from exc

    benchmarks: list[BenchmarkDefinition] = []
    for entry in entries:
        name = entry.name
        if name in _IGNORED_DIRS or name.startswith(".") or not entry.is_dir():
            log.debug("benchmark %s - ignored", name)
            continue
        if name_filter and name_filter not in name:
            log.info("benchmark %s - filtered", name)
            continue
        log.info("benchmark %s - REGISTERED", name)
        benchmarks.append(
            BenchmarkDefinition(name=name, location=entry, settings=load_settings(entry))
        )
    return benchmarks


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class Executor(Protocol):
    def execute(
        self, handle: ToolchainHandle, benchmark: BenchmarkDefinition
    ) -> BenchmarkOutcome: ...


class BenchmarkRunner:
    """Runs benchmarks against an installed toolchain.

    Every execution works on a fresh copy of the benchmark directory so
    build artifacts from one revision never leak into the next.
    """

    def __init__(
        self,
        *,
        command: str = "make",
        clean_command: str | None = None,
        iterations: int = 3,
        timeout: int = 600,
        work_dir: Path | None = None,
    ) -> None:
        self.command = command
        self.clean_command = clean_command
        self.iterations = iterations
        self.timeout = timeout
        self.work_dir = work_dir

    def execute(self, handle: ToolchainHandle, benchmark: BenchmarkDefinition) -> BenchmarkOutcome:
        """Run *benchmark* and return its metrics, or the error that stopped it."""
        log.info("Running %s on %s", benchmark.name, handle.revision.short)
        try:
            iterations = self._run(handle, benchmark)
        except BenchmarkError as exc:
            log.warning("Benchmark %s failed on %s: %s", benchmark.name, handle.revision.short, exc)
            return BenchmarkOutcome(name=benchmark.name, error=str(exc))

        wall_times = [it.wall_time_s for it in iterations]
        return BenchmarkOutcome(
            name=benchmark.name,
            metrics={
                "iterations": [it.to_metrics() for it in iterations],
                "wall_time_s": summarize(wall_times),
            },
        )

    def _run(self, handle: ToolchainHandle, benchmark: BenchmarkDefinition) -> list[TimedResult]:
        settings = benchmark.settings
        command = settings.get("command", self.command)
        clean_command = settings.get("clean_command", self.clean_command)
        iterations = int(settings.get("iterations", self.iterations))
        timeout = int(settings.get("timeout", self.timeout))
        env = handle.env()
        env.update({str(k): str(v) for k, v in (settings.get("env") or {}).items()})

        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        try:
            with tempfile.TemporaryDirectory(
                prefix=f"revbench-{benchmark.name}-", dir=self.work_dir
            ) as tmp:
                cwd = Path(tmp) / benchmark.name
                shutil.copytree(benchmark.location, cwd, symlinks=True)
                results: list[TimedResult] = []
                for i in range(1, iterations + 1):
                    if clean_command:
                        clean = run_timed(
                            clean_command, cwd=cwd, env=env, timeout=timeout, use_time_wrapper=False
                        )
                        _check(clean, f"clean command (iteration {i})")
                    result = run_timed(command, cwd=cwd, env=env, timeout=timeout)
                    _check(result, f"iteration {i}")
                    log.debug("%s iteration %d: %.3fs", benchmark.name, i, result.wall_time_s)
                    results.append(result)
        except OSError as exc:
            raise BenchmarkError(f"cannot run benchmark: {exc}") from exc
        return results


def _check(result: TimedResult, what: str) -> None:
    if result.timed_out:
        raise BenchmarkError(f"{what} timed out after {result.wall_time_s:.0f}s")
    if result.exit_code != 0:
        tail = result.stderr.strip()[-500:]
        raise BenchmarkError(f"{what} exited with status {result.exit_code}: {tail}")

"""Collector configuration.

Handles:
- Loading settings from a YAML file.
- Merging CLI options over file values (CLI wins when given).
- Validating the result before a run starts.

Config file format::

    benchmarks_dir: ./benchmarks
    target_triple: x86_64-unknown-linux-gnu
    repo_url: https://github.com/example/compiler.git
    repo_dir: compiler.git
    branch: master
    artifact_urls:
      - "https://ci.example.org/builds/{revision}/compiler-{triple}.tar.xz"
    compiler_path: bin/cc
    benchmark_command: "make"
    iterations: 3
    dense_threshold: 5
    sparse_step: 30
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from revbench.errors import ConfigError
from revbench.logging import get_logger
from revbench.selector import DENSE_THRESHOLD, SPARSE_STEP

log = get_logger("config")

DEFAULT_TRIPLE = "x86_64-unknown-linux-gnu"

_PATH_FIELDS = frozenset({"benchmarks_dir", "repo_dir", "toolchains_dir", "work_dir"})


@dataclass
class CollectorConfig:
    """Resolved configuration for the collector."""

    # Benchmarks
    benchmarks_dir: Path | None = None
    benchmark_filter: str | None = None
    benchmark_command: str = "make"
    clean_command: str | None = None
    iterations: int = 3
    timeout: int = 600  # Per-iteration, seconds
    work_dir: Path | None = None  # Scratch space for benchmark copies

    # Toolchains
    target_triple: str = DEFAULT_TRIPLE
    artifact_urls: list[str] = field(default_factory=list)
    compiler_path: str = "bin/cc"
    strip_components: int = 1
    toolchains_dir: Path = field(default_factory=lambda: Path("toolchains"))
    download_timeout: int = 300
    preserve_toolchains: bool = False

    # Revision history
    repo_url: str = ""
    repo_dir: Path = field(default_factory=lambda: Path("compiler.git"))
    branch: str = "master"
    since: str | None = None

    # Selection
    dense_threshold: int = DENSE_THRESHOLD
    sparse_step: int = SPARSE_STEP

    # Output store
    store_push: bool = False


@dataclass
class ValidationError:
    """A single configuration problem."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a dict.

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a YAML mapping, got {type(data).__name__}")
    return data


def config_from_dict(
    data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> CollectorConfig:
    """Build a CollectorConfig from file values and CLI overrides.

    CLI overrides whose value is ``None`` are ignored, so unset options
    fall through to the file and then to the defaults.

    Raises:
        ConfigError: On unknown keys or values of the wrong type.
    """
    known = {f.name for f in fields(CollectorConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    merged = dict(data)
    for key, value in (cli_overrides or {}).items():
        if key not in known:
            raise ConfigError(f"Unknown config override: {key}")
        if value is not None:
            merged[key] = value

    for key in _PATH_FIELDS:
        if merged.get(key) is not None:
            merged[key] = Path(merged[key])

    urls = merged.get("artifact_urls")
    if isinstance(urls, str):
        merged["artifact_urls"] = [urls]
    elif urls is not None and not isinstance(urls, list):
        raise ConfigError("artifact_urls must be a string or a list of strings")

    for key in ("iterations", "timeout", "strip_components", "download_timeout",
                "dense_threshold", "sparse_step"):
        if key in merged and not isinstance(merged[key], int):
            raise ConfigError(f"{key} must be an integer, got {merged[key]!r}")

    return CollectorConfig(**merged)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_config(
    config: CollectorConfig,
    *,
    require_installer: bool = True,
    require_repo: bool = True,
) -> list[ValidationError]:
    """Check a configuration.  An empty list means it is usable.

    Args:
        require_installer: Artifact URLs are needed (not for local toolchains).
        require_repo: The revision history is needed.
    """
    errors: list[ValidationError] = []

    if config.benchmarks_dir is None:
        errors.append(
            ValidationError(
                field="benchmarks_dir",
                message="No benchmarks directory. Set --benchmarks-dir or benchmarks_dir.",
            )
        )
    elif not config.benchmarks_dir.is_dir():
        errors.append(
            ValidationError(
                field="benchmarks_dir",
                message=f"Benchmarks directory does not exist: {config.benchmarks_dir}",
            )
        )

    if require_installer and not config.artifact_urls:
        errors.append(
            ValidationError(
                field="artifact_urls",
                message="No artifact_urls configured; cannot install toolchains.",
            )
        )
    for url in config.artifact_urls:
        try:
            url.format(revision="r", triple="t")
        except (KeyError, IndexError, ValueError):
            errors.append(
                ValidationError(
                    field="artifact_urls",
                    message=f"Bad template {url!r}: only {{revision}} and {{triple}} are allowed.",
                )
            )

    if require_repo and not config.repo_url and not config.repo_dir.exists():
        errors.append(
            ValidationError(
                field="repo_url",
                message=(
                    f"Repository {config.repo_dir} does not exist and no repo_url is set "
                    f"to clone it from."
                ),
            )
        )

    if not config.target_triple.strip():
        errors.append(ValidationError(field="target_triple", message="Target triple is empty."))

    if config.iterations < 1:
        errors.append(
            ValidationError(
                field="iterations",
                message=f"Need at least 1 iteration (got {config.iterations}).",
            )
        )
    elif config.iterations < 3:
        errors.append(
            ValidationError(
                field="iterations",
                message=f"Fewer than 3 iterations gives noisy timings (got {config.iterations}).",
                severity="warning",
            )
        )

    if config.timeout <= 0:
        errors.append(
            ValidationError(
                field="timeout",
                message=f"Timeout must be positive (got {config.timeout}).",
            )
        )

    if config.sparse_step < 1:
        errors.append(
            ValidationError(
                field="sparse_step",
                message=f"sparse_step must be at least 1 (got {config.sparse_step}).",
            )
        )
    if config.dense_threshold < 0:
        errors.append(
            ValidationError(
                field="dense_threshold",
                message=f"dense_threshold cannot be negative (got {config.dense_threshold}).",
            )
        )

    if config.strip_components < 0:
        errors.append(
            ValidationError(
                field="strip_components",
                message=f"strip_components cannot be negative (got {config.strip_components}).",
            )
        )

    return errors


def check_config(config: CollectorConfig, **kwargs: bool) -> None:
    """Validate and raise on errors; warnings are logged.

    Raises:
        ConfigError: Listing every error found.
    """
    problems = validate_config(config, **kwargs)
    for w in problems:
        if w.severity == "warning":
            log.warning("Config warning: %s: %s", w.field, w.message)
    fatal = [e for e in problems if e.severity == "error"]
    if fatal:
        messages = [f"  {e.field}: {e.message}" for e in fatal]
        raise ConfigError("Invalid configuration:\n" + "\n".join(messages))

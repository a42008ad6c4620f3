"""Command-line interface for revbench.

Subcommands:
    revbench process       Retry failures, then measure unrecorded revisions
    revbench bench-commit  Measure one revision and print its record
    revbench bench-local   Measure a locally built compiler
    revbench status        Show what an output repository holds
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from revbench import __version__
from revbench.config import CollectorConfig, check_config, config_from_dict, load_config
from revbench.errors import CollectorError, RunAborted
from revbench.logging import setup_logging

if TYPE_CHECKING:
    from revbench.benchmarks import BenchmarkDefinition, BenchmarkRunner
    from revbench.revisions import Revision
    from revbench.toolchain import ArtifactInstaller


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file.",
)
@click.option(
    "--benchmarks-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory the benchmarks are found in.",
)
@click.option(
    "--filter",
    "benchmark_filter",
    type=str,
    default=None,
    help="Run only benchmarks whose name contains this.",
)
@click.option(
    "--triple",
    "target_triple",
    type=str,
    default=None,
    help="Target triple to install and record.",
)
@click.option("-p", "--preserve", is_flag=True, help="Don't delete toolchains after running.")
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option(
    "--log-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Also log at DEBUG to this file.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Path | None,
    benchmarks_dir: Path | None,
    benchmark_filter: str | None,
    target_triple: str | None,
    preserve: bool,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """revbench — Collect compiler performance data across its history."""
    try:
        setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
    except CollectorError as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj = {
        "config_path": config_path,
        "overrides": {
            "benchmarks_dir": benchmarks_dir,
            "benchmark_filter": benchmark_filter,
            "target_triple": target_triple,
            "preserve_toolchains": preserve or None,
        },
    }


def _build_config(ctx: click.Context, **overrides: Any) -> CollectorConfig:
    obj = ctx.obj or {}
    data = load_config(obj["config_path"]) if obj.get("config_path") else {}
    cli_overrides = dict(obj.get("overrides", {}))
    cli_overrides.update(overrides)
    return config_from_dict(data, cli_overrides=cli_overrides)


def _measurer_parts(config: CollectorConfig) -> tuple[list[BenchmarkDefinition], BenchmarkRunner]:
    from revbench.benchmarks import BenchmarkRunner, discover_benchmarks

    assert config.benchmarks_dir is not None
    benchmarks = discover_benchmarks(config.benchmarks_dir, config.benchmark_filter)
    if not benchmarks:
        click.echo("Warning: no benchmarks registered.", err=True)
    executor = BenchmarkRunner(
        command=config.benchmark_command,
        clean_command=config.clean_command,
        iterations=config.iterations,
        timeout=config.timeout,
        work_dir=config.work_dir,
    )
    return benchmarks, executor


def _artifact_installer(config: CollectorConfig) -> ArtifactInstaller:
    from revbench.toolchain import ArtifactInstaller

    return ArtifactInstaller(
        config.artifact_urls,
        config.toolchains_dir,
        compiler_path=config.compiler_path,
        strip_components=config.strip_components,
        timeout=config.download_timeout,
    )


def _list_revisions(config: CollectorConfig, *, sync: bool) -> list[Revision]:
    from revbench.revisions import GitRevisionSource, sync_repository

    if sync:
        sync_repository(config.repo_dir, config.repo_url)
    return GitRevisionSource(config.repo_dir, config.branch, since=config.since).list_revisions()


# ---------------------------------------------------------------------------
# process
# ---------------------------------------------------------------------------


@main.command("process")
@click.argument("output_repository", type=click.Path(path_type=Path))
@click.option("--no-sync", is_flag=True, help="Use the local repository mirror without fetching.")
@click.option("--push", "store_push", is_flag=True, help="Pull before and push after each record.")
@click.pass_context
def process_cmd(
    ctx: click.Context,
    output_repository: Path,
    no_sync: bool,
    store_push: bool,
) -> None:
    """Sync history, retry failed revisions, then measure unrecorded ones.

    OUTPUT_REPOSITORY is a git work tree; every record is one commit.
    """
    from revbench.display import format_summary
    from revbench.measure import MeasurementRunner
    from revbench.orchestrator import Orchestrator
    from revbench.store import GitTree, ResultStore

    try:
        config = _build_config(ctx, store_push=store_push or None)
        check_config(config, require_installer=True, require_repo=not no_sync)
        benchmarks, executor = _measurer_parts(config)
        revisions = _list_revisions(config, sync=not no_sync)
        store = ResultStore(
            GitTree(output_repository, push=config.store_push).open(),
            config.target_triple,
        )
        measurer = MeasurementRunner(
            _artifact_installer(config),
            executor,
            target_triple=config.target_triple,
            preserve=config.preserve_toolchains,
        )
        summary = Orchestrator(
            revisions,
            store,
            measurer,
            benchmarks,
            dense_threshold=config.dense_threshold,
            sparse_step=config.sparse_step,
        ).run()
    except RunAborted as exc:
        hint = f"Run aborted during {exc.phase}"
        if exc.revision_id:
            hint += f" at revision {exc.revision_id}"
        raise click.ClickException(f"{hint}: {exc}") from exc
    except CollectorError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(format_summary(summary))


# ---------------------------------------------------------------------------
# bench-commit
# ---------------------------------------------------------------------------


@main.command("bench-commit")
@click.argument("commit")
@click.option("--no-sync", is_flag=True, help="Use the local repository mirror without fetching.")
@click.pass_context
def bench_commit_cmd(ctx: click.Context, commit: str, no_sync: bool) -> None:
    """Measure COMMIT and print its record as JSON (nothing is stored)."""
    from revbench.measure import MeasurementRunner
    from revbench.revisions import find_revision

    try:
        config = _build_config(ctx)
        check_config(config, require_installer=True, require_repo=not no_sync)
        benchmarks, executor = _measurer_parts(config)
        revision = find_revision(_list_revisions(config, sync=not no_sync), commit)
        record = MeasurementRunner(
            _artifact_installer(config),
            executor,
            target_triple=config.target_triple,
            preserve=config.preserve_toolchains,
        ).run(revision, benchmarks)
    except CollectorError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(json.dumps(record.to_dict(), indent=2, sort_keys=True))


# ---------------------------------------------------------------------------
# bench-local
# ---------------------------------------------------------------------------


@main.command("bench-local")
@click.option(
    "--commit",
    "commit",
    required=True,
    help="Revision id to associate the results with.",
)
@click.option(
    "--date",
    "date",
    required=True,
    help="Date to associate the results with, YYYY-MM-DDTHH:MM:SS format.",
)
@click.argument("compiler", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def bench_local_cmd(ctx: click.Context, commit: str, date: str, compiler: Path) -> None:
    """Measure the local COMPILER and print the record as JSON."""
    from revbench.measure import MeasurementRunner
    from revbench.revisions import synthetic_revision
    from revbench.toolchain import LocalInstaller

    try:
        revision = synthetic_revision(commit, date)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--date / --commit") from exc

    try:
        config = _build_config(ctx)
        check_config(config, require_installer=False, require_repo=False)
        benchmarks, executor = _measurer_parts(config)
        record = MeasurementRunner(
            LocalInstaller(compiler),
            executor,
            target_triple=config.target_triple,
            preserve=config.preserve_toolchains,
        ).run(revision, benchmarks)
    except CollectorError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(json.dumps(record.to_dict(), indent=2, sort_keys=True))


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@main.command("status")
@click.argument("output_repository", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--limit", type=int, default=20, show_default=True, help="Pending retries to list.")
@click.pass_context
def status_cmd(ctx: click.Context, output_repository: Path, limit: int) -> None:
    """Show recorded successes, failures and the pending retry queue."""
    from revbench.display import format_status
    from revbench.store import DirectoryTree, ResultStore

    try:
        config = _build_config(ctx)
        store = ResultStore(DirectoryTree(output_repository), config.target_triple)
    except CollectorError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(format_status(store, limit=limit))

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Annotated

import click
import typer
from rich.console import Console

from conformgate import __version__
from conformgate.audit import AuditCallbacks, AuditTarget, prepare_target, resolve_catalog, run_audit
from conformgate.baseline import BaselineError, build_snapshot, save_snapshot
from conformgate.catalog import CatalogError, RuleCatalog, load_catalog, load_default_catalog
from conformgate.config import (
    CONFORMGATE_WORKERS_ENV,
    DEFAULT_MAX_WORKERS,
    ConfigError,
    resolve_worker_count,
)
from conformgate.engine.index import ProjectIOError
from conformgate.engine.types import ReportModel
from conformgate.git import git_head_commit
from conformgate.logging_utils import configure_logging
from conformgate.reporters.json_reporter import render_json
from conformgate.reporters.markdown import render_markdown
from conformgate.reporters.terminal import render_terminal
from conformgate.utils import resolve_under_root

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="ConformGate: static conformance scoring with baseline regression gating.",
)
console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SETUP_ERROR = 2

_SETUP_ERRORS = (ProjectIOError, CatalogError, BaselineError, ConfigError)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def _main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose logs (printed to stderr)."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Reduce non-essential output."),
    ] = False,
    progress: Annotated[
        bool,
        typer.Option("--progress/--no-progress", help="Show a progress bar while rules run.", show_default=True),
    ] = True,
) -> None:
    """ConformGate CLI."""

    if verbose and quiet:
        raise typer.BadParameter("Choose at most one: --verbose or --quiet.")
    configure_logging(verbose=verbose, quiet=quiet)
    ctx.obj = {"verbose": verbose, "quiet": quiet, "progress": progress}


def _cli_settings() -> dict[str, bool]:
    ctx = click.get_current_context(silent=True)
    if ctx is None or not isinstance(ctx.obj, dict):
        return {"verbose": False, "quiet": False, "progress": True}
    verbose = bool(ctx.obj.get("verbose", False))
    quiet = bool(ctx.obj.get("quiet", False))
    progress = bool(ctx.obj.get("progress", True))
    return {"verbose": verbose, "quiet": quiet, "progress": progress}


def exit_code_for(report: ReportModel, min_score: int) -> int:
    """
    Map a finished report to the process exit code.

    0 when the baseline did not regress and the base score reaches
    `min_score`, 1 otherwise. Setup errors (exit 2) never produce a report.
    """

    if report.verdict.is_regression:
        return EXIT_FAILED
    if report.score.base_total < min_score:
        return EXIT_FAILED
    return EXIT_OK


def _emit_output(
    fmt: str,
    *,
    report: ReportModel,
    output: Path | None,
    show_details: bool = True,
) -> None:
    if fmt == "terminal":
        if output is None:
            render_terminal(report, console=console, show_details=show_details)
            return
        with output.open("w", encoding="utf-8") as fh:
            render_terminal(report, console=Console(file=fh, width=120, no_color=True), show_details=show_details)
        return

    text = render_json(report) if fmt == "json" else render_markdown(report)
    if output is None:
        typer.echo(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")


def _normalize_format(value: str, *, allowed: tuple[str, ...]) -> str:
    normalized = value.strip().lower()
    if normalized not in allowed:
        raise typer.BadParameter(f"Unsupported format. Use: {', '.join(allowed)}.")
    return normalized


def _resolve_workers(configured: int | None, flag: int | None) -> int:
    # --workers, then $CONFORMGATE_WORKERS, then the config file, then 2x CPUs.
    if flag is not None:
        return min(flag, DEFAULT_MAX_WORKERS)
    return resolve_worker_count(os.environ.get(CONFORMGATE_WORKERS_ENV), default=configured)


def _audit_with_optional_progress(target: AuditTarget, *, show_progress: bool) -> ReportModel:
    if not show_progress:
        return run_audit(target)

    from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn

    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=Console(stderr=True),
        transient=True,
    )
    rules_task = progress.add_task("Rules", total=None)

    def _on_ready(total: int) -> None:
        progress.update(rules_task, total=total, completed=0)

    def _on_done(_rule_id: str) -> None:
        progress.advance(rules_task, 1)

    with progress:
        return run_audit(target, callbacks=AuditCallbacks(on_rules_ready=_on_ready, on_rule_done=_on_done))


@app.command()
def scan(
    path: Annotated[
        Path,
        typer.Argument(resolve_path=True, help="Project directory to score (default: current directory)."),
    ] = Path("."),
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: terminal, json, markdown.", show_default=True),
    ] = "terminal",
    min_score: Annotated[
        int | None,
        typer.Option("--min-score", min=0, max=100, help="Fail when the base score is below this value (default: config)."),
    ] = None,
    catalog: Annotated[
        Path | None,
        typer.Option("--catalog", help="Rule catalog (TOML). Default: config or the bundled catalog."),
    ] = None,
    baseline: Annotated[
        Path | None,
        typer.Option("--baseline", help="Baseline snapshot path, relative to the project root."),
    ] = None,
    baseline_ref: Annotated[
        str | None,
        typer.Option("--baseline-ref", help="Read the baseline as committed at this git ref (e.g. HEAD)."),
    ] = None,
    workers: Annotated[
        int | None,
        typer.Option("--workers", min=1, help=f"Rule worker threads (default: ${CONFORMGATE_WORKERS_ENV} or 2x CPUs)."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the report to this file instead of stdout."),
    ] = None,
) -> None:
    """
    Score a project against the rule catalog and compare with its baseline.

    Exit codes:
    - 0: pass
    - 1: base score below --min-score, or issues increased since the baseline
    - 2: configuration/setup error
    """

    settings = _cli_settings()
    fmt = _normalize_format(output_format, allowed=("terminal", "json", "markdown"))

    try:
        target = prepare_target(path)
        config = target.config
        overrides: dict[str, object] = {}
        if min_score is not None:
            overrides["min_score"] = min_score
        if catalog is not None:
            overrides["catalog"] = str(catalog.resolve())
        if baseline is not None:
            overrides["baseline"] = str(baseline)
        if baseline_ref is not None:
            overrides["baseline_ref"] = baseline_ref.strip() or None
        config = replace(config, **overrides)
        config = replace(config, workers=_resolve_workers(config.workers, workers))
        target = replace(target, config=config)
        logger.debug("using %d worker(s)", target.config.workers)

        report = _audit_with_optional_progress(
            target,
            show_progress=settings["progress"] and not settings["quiet"] and fmt == "terminal" and output is None,
        )
    except _SETUP_ERRORS as exc:
        err_console.print(f"Scan failed: {exc}")
        raise typer.Exit(code=EXIT_SETUP_ERROR) from exc

    _emit_output(fmt, report=report, output=output, show_details=not settings["quiet"])

    if report.verdict.is_regression:
        for delta in report.verdict.increased:
            logger.warning("regression: %s %d -> %d (%+d)", delta.rule_id, delta.baseline, delta.current, delta.delta)

    code = exit_code_for(report, target.config.min_score)
    if code != EXIT_OK:
        raise typer.Exit(code=code)


@app.command()
def rules(
    catalog: Annotated[
        Path | None,
        typer.Option("--catalog", help="Rule catalog (TOML). Default: the bundled catalog."),
    ] = None,
    output_format: Annotated[
        str,
        typer.Option("--format", help="Output format: terminal, json.", show_default=True),
    ] = "terminal",
) -> None:
    """
    List the rules of a catalog with their category, weight and severity.
    """

    from rich.table import Table

    fmt = _normalize_format(output_format, allowed=("terminal", "json"))
    try:
        loaded: RuleCatalog = load_catalog(catalog) if catalog is not None else load_default_catalog()
    except CatalogError as exc:
        err_console.print(f"Failed to load catalog: {exc}")
        raise typer.Exit(code=EXIT_SETUP_ERROR) from exc

    rows = [
        {
            "rule_id": rule.id,
            "version": rule.version,
            "category": rule.category,
            "weight": rule.weight,
            "severity": rule.severity,
            "kind": rule.matcher.kind,
            "baseline_suppressible": rule.baseline_suppressible,
            "title": rule.title,
        }
        for rule in loaded.rules
    ]

    if fmt == "json":
        typer.echo(json.dumps(rows, indent=2, sort_keys=True))
        return

    for message in loaded.integrity_warnings():
        err_console.print(f"[yellow]⚠ {message}[/yellow]")

    table = Table(title=f"{loaded.name} {loaded.version}")
    table.add_column("ID", style="bold")
    table.add_column("Category")
    table.add_column("Weight", justify="right")
    table.add_column("Severity")
    table.add_column("Kind")
    table.add_column("Baseline", justify="center")
    table.add_column("Title")
    for row in rows:
        table.add_row(
            str(row["rule_id"]),
            str(row["category"]),
            str(row["weight"]),
            str(row["severity"]),
            str(row["kind"]),
            "yes" if row["baseline_suppressible"] else "no",
            str(row["title"]),
        )
    console.print(table)


@app.command()
def baseline(
    path: Annotated[
        Path,
        typer.Argument(resolve_path=True, help="Project directory to snapshot (default: current directory)."),
    ] = Path("."),
    output: Annotated[
        Path | None,
        typer.Option("--output", help="Snapshot path (default: config baseline or .conformgate-baseline.json)."),
    ] = None,
    granularity: Annotated[
        str,
        typer.Option("--granularity", help="Snapshot granularity: rule, aggregate.", show_default=True),
    ] = "rule",
) -> None:
    """
    Accept the current issue counts as the new baseline.

    This is the only command that writes a snapshot. Commit the file so that
    `scan --baseline-ref HEAD` compares against the reviewed copy.
    """

    normalized = granularity.strip().lower()
    if normalized not in {"rule", "aggregate"}:
        raise typer.BadParameter("Unsupported granularity. Use: rule, aggregate.")

    try:
        target = prepare_target(path)
        catalog = resolve_catalog(target)
        report = run_audit(target, catalog=catalog, load_baseline=False)
    except _SETUP_ERRORS as exc:
        err_console.print(f"Baseline failed: {exc}")
        raise typer.Exit(code=EXIT_SETUP_ERROR) from exc

    spec = output if output is not None else Path(target.config.baseline)
    baseline_path = resolve_under_root(target.project_root, spec)
    if baseline_path is None:
        raise typer.BadParameter("Baseline output must be within the project root.")

    snapshot = build_snapshot(
        catalog,
        report.findings,
        granularity="aggregate" if normalized == "aggregate" else "rule",
        commit=git_head_commit(cwd=target.project_root),
    )
    save_snapshot(snapshot, baseline_path)
    total = sum(snapshot.counts.values())
    console.print(f"Wrote baseline with {total} accepted issue(s) across {len(snapshot.counts)} key(s): {baseline_path}")

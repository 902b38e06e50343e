from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from conformgate.baseline import (
    BaselineError,
    BaselineSnapshot,
    find_analyzer_baseline,
    load_analyzer_snapshot,
    load_analyzer_snapshot_from_ref,
    load_snapshot,
    load_snapshot_from_ref,
)
from conformgate.catalog import RuleCatalog, load_catalog, load_default_catalog
from conformgate.config import ConformGateConfig, load_config
from conformgate.engine.executor import execute
from conformgate.engine.index import FileSystemIndex, ProjectIOError
from conformgate.engine.regression import detect, detect_against, merge_verdicts
from conformgate.engine.scoring import aggregate
from conformgate.engine.types import ReportModel, Verdict
from conformgate.git import git_is_work_tree, git_ref_exists
from conformgate.utils import resolve_under_root

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuditTarget:
    project_root: Path
    config: ConformGateConfig


@dataclass(frozen=True, slots=True)
class AuditCallbacks:
    on_rules_ready: Callable[[int], None] | None = None
    on_rule_done: Callable[[str], None] | None = None


def prepare_target(project_root: Path, *, config: ConformGateConfig | None = None) -> AuditTarget:
    """
    Resolve the project root and its configuration.

    Fails with `ProjectIOError` before anything else when the root is
    unusable, so no partial report is ever produced.
    """

    if not project_root.exists():
        raise ProjectIOError("Project root does not exist", path=project_root)
    if not project_root.is_dir():
        raise ProjectIOError("Project root is not a directory", path=project_root)
    root = project_root.resolve()
    return AuditTarget(project_root=root, config=config if config is not None else load_config(root))


def resolve_catalog(target: AuditTarget) -> RuleCatalog:
    spec = target.config.catalog
    if not spec:
        return load_default_catalog()
    path = Path(spec)
    if not path.is_absolute():
        path = target.project_root / path
    return load_catalog(path)


def resolve_baseline(target: AuditTarget) -> BaselineSnapshot | None:
    """
    Load the accepted baseline for `target`, or None when there is none.

    An unreadable or malformed baseline raises `BaselineError`; only a missing
    file means "no baseline".
    """

    path = resolve_under_root(target.project_root, target.config.baseline)
    if path is None:
        raise BaselineError(f"Baseline path escapes the project root: {target.config.baseline}")

    ref = target.config.baseline_ref
    if ref:
        snapshot = load_snapshot_from_ref(target.project_root, ref, path)
        if snapshot is None:
            logger.info("no baseline committed at %s (%s)", ref, target.config.baseline)
        return snapshot

    if not path.exists():
        logger.info("no baseline found at %s", target.config.baseline)
        return None
    return load_snapshot(path)


def resolve_analyzer_verdict(target: AuditTarget) -> Verdict:
    """
    Gate the total of a committed PHPStan baseline.

    The working-tree count is compared with the count at `baseline-ref`
    (default HEAD). Projects outside git, or without a first commit, skip the
    check unless a ref was configured explicitly.
    """

    spec = target.config.analyzer_baseline
    if spec == "":
        return Verdict(status="no-baseline")
    if spec is None:
        path = find_analyzer_baseline(target.project_root)
    else:
        path = resolve_under_root(target.project_root, spec)
        if path is None:
            raise BaselineError(f"Analyzer baseline path escapes the project root: {spec}")
    if path is None or not path.is_file():
        return Verdict(status="no-baseline")

    ref = target.config.baseline_ref
    if not ref:
        ref = "HEAD"
        if not git_is_work_tree(cwd=target.project_root) or not git_ref_exists(cwd=target.project_root, ref=ref):
            logger.info("skipping analyzer baseline check: no committed history in %s", target.project_root)
            return Verdict(status="no-baseline")

    accepted = load_analyzer_snapshot_from_ref(target.project_root, ref, path)
    current = load_analyzer_snapshot(path)
    return detect(current.counts, accepted.counts)


def run_audit(
    target: AuditTarget,
    *,
    catalog: RuleCatalog | None = None,
    snapshot: BaselineSnapshot | None = None,
    load_baseline: bool = True,
    callbacks: AuditCallbacks | None = None,
) -> ReportModel:
    """
    Run one full audit: index, evaluate, score, compare with the baseline.

    Setup problems (`ProjectIOError`, `CatalogError`, `BaselineError`)
    propagate to the caller; rule failures are contained by the executor.
    """

    if catalog is None:
        catalog = resolve_catalog(target)
    warnings = list(catalog.integrity_warnings())
    for message in warnings:
        logger.warning("catalog %s: %s", catalog.name, message)

    analyzer_verdict = Verdict(status="no-baseline")
    if load_baseline:
        if snapshot is None:
            snapshot = resolve_baseline(target)
        analyzer_verdict = resolve_analyzer_verdict(target)

    config = target.config
    index = FileSystemIndex.build(
        target.project_root,
        max_file_bytes=config.max_file_bytes,
        ignore=config.ignore.paths,
    )
    if callbacks is not None and callbacks.on_rules_ready is not None:
        callbacks.on_rules_ready(len(catalog.rules))

    findings = execute(
        catalog,
        index,
        workers=config.workers or 1,
        on_rule_done=callbacks.on_rule_done if callbacks else None,
    )
    score = aggregate(catalog, findings)
    verdict = merge_verdicts(detect_against(snapshot, catalog, findings), analyzer_verdict)

    truncated = index.truncated_paths
    if truncated:
        warnings.append(
            f"{len(truncated)} file(s) exceeded {config.max_file_bytes} bytes; only the first "
            f"{config.max_file_bytes} bytes were matched"
        )
    unreadable = index.unreadable_paths
    if unreadable:
        warnings.append(f"{len(unreadable)} path(s) could not be read and were skipped")

    logger.debug(
        "score base=%d/%d bonus=%d/%d verdict=%s",
        score.base_total,
        score.base_max,
        score.bonus_total,
        score.bonus_max,
        verdict.status,
    )
    return ReportModel(
        score=score,
        findings=tuple(findings),
        verdict=verdict,
        warnings=tuple(warnings),
        truncated_paths=truncated,
        unreadable_paths=unreadable,
        files_indexed=index.file_count,
        catalog_name=catalog.name,
        catalog_version=catalog.version,
    )


def audit_path(project_root: Path, *, config: ConformGateConfig | None = None) -> ReportModel:
    return run_audit(prepare_target(project_root, config=config))

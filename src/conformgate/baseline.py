from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

from conformgate.catalog import RuleCatalog
from conformgate.engine.regression import AGGREGATE_KEY, raw_counts
from conformgate.engine.types import Finding
from conformgate.git import (
    GitError,
    git_file_exists_at,
    git_is_work_tree,
    git_ref_exists,
    git_show_file,
)
from conformgate.utils import safe_relpath

BASELINE_VERSION = 1
_SUPPORTED_BASELINE_VERSIONS = {1}
DEFAULT_BASELINE_PATH = ".conformgate-baseline.json"

Granularity = Literal["rule", "aggregate"]


class BaselineError(RuntimeError):
    """Raised when a baseline snapshot is invalid or cannot be read."""


@dataclass(frozen=True, slots=True)
class BaselineSnapshot:
    # rule_id -> accepted count, or {"*": total} for aggregate snapshots.
    counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    granularity: Granularity = "rule"
    commit: str | None = None
    captured_at: str | None = None


def build_snapshot(
    catalog: RuleCatalog,
    findings: Iterable[Finding],
    *,
    granularity: Granularity = "rule",
    commit: str | None = None,
    captured_at: datetime | None = None,
) -> BaselineSnapshot:
    """Capture the current raw counts as an accepted baseline."""

    counts = raw_counts(catalog, findings, aggregate=granularity == "aggregate")
    stamp = (captured_at or datetime.now(UTC)).isoformat()
    return BaselineSnapshot(
        counts=MappingProxyType(counts),
        granularity=granularity,
        commit=commit,
        captured_at=stamp,
    )


def load_snapshot(path: Path) -> BaselineSnapshot:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BaselineError(f"Failed to read baseline: {path}") from exc
    except UnicodeDecodeError as exc:
        raise BaselineError(f"Baseline is not valid UTF-8: {path}") from exc
    return parse_snapshot(text, source=str(path))


def load_snapshot_from_ref(project_root: Path, ref: str, path: Path) -> BaselineSnapshot | None:
    """
    Load the snapshot as committed at `ref` (e.g. HEAD).

    Returns None only when `ref` resolves to a commit that does not contain the
    file. A missing work tree or an unknown ref raises `BaselineError`.
    Working-tree edits to the snapshot are ignored.
    """

    relative = safe_relpath(path, project_root)
    text = _read_at_ref(project_root, ref, relative)
    if text is None:
        return None
    return parse_snapshot(text, source=f"{ref}:{relative}")


def _read_at_ref(project_root: Path, ref: str, relative: str) -> str | None:
    if not git_is_work_tree(cwd=project_root):
        raise BaselineError(f"baseline-ref {ref!r} needs a git work tree: {project_root}")
    if not git_ref_exists(cwd=project_root, ref=ref):
        raise BaselineError(f"Unknown baseline-ref {ref!r} in {project_root}")
    if not git_file_exists_at(cwd=project_root, ref=ref, relative_path=relative):
        return None
    try:
        return git_show_file(cwd=project_root, ref=ref, relative_path=relative)
    except GitError as exc:
        raise BaselineError(f"Failed to read {relative} at {ref!r}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise BaselineError(f"Baseline at {ref}:{relative} is not valid UTF-8") from exc


def parse_snapshot(text: str, *, source: str = "<baseline>") -> BaselineSnapshot:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BaselineError(f"Invalid baseline JSON in {source}: {exc}") from exc

    if not isinstance(data, dict):
        raise BaselineError(f"{source}: baseline must be a JSON object.")

    version = data.get("version")
    if version not in _SUPPORTED_BASELINE_VERSIONS:
        raise BaselineError(f"{source}: unsupported baseline version: {version!r}")

    # A bare total, as produced by analysers that only report one number.
    if "count" in data and "counts" not in data:
        total = data.get("count")
        if not _is_count(total):
            raise BaselineError(f"{source}: `count` must be an integer >= 0.")
        return BaselineSnapshot(
            counts=MappingProxyType({AGGREGATE_KEY: int(total)}),
            granularity="aggregate",
            commit=_optional_str(data.get("commit")),
            captured_at=_optional_str(data.get("captured_at")),
        )

    raw_counts_value = data.get("counts", {})
    if not isinstance(raw_counts_value, dict):
        raise BaselineError(f"{source}: `counts` must be an object.")

    counts: dict[str, int] = {}
    for rule_id, value in raw_counts_value.items():
        if not isinstance(rule_id, str) or not rule_id.strip():
            raise BaselineError(f"{source}: `counts` keys must be rule ids.")
        if not _is_count(value):
            raise BaselineError(f"{source}: `counts.{rule_id}` must be an integer >= 0.")
        counts[rule_id.strip()] = int(value)

    granularity = data.get("granularity")
    if granularity is None:
        granularity = "aggregate" if set(counts) == {AGGREGATE_KEY} else "rule"
    if granularity not in {"rule", "aggregate"}:
        raise BaselineError(f"{source}: `granularity` must be 'rule' or 'aggregate'.")
    if granularity == "aggregate" and set(counts) - {AGGREGATE_KEY}:
        raise BaselineError(f"{source}: aggregate baselines may only contain {AGGREGATE_KEY!r}.")

    return BaselineSnapshot(
        counts=MappingProxyType(dict(sorted(counts.items()))),
        granularity=granularity,
        commit=_optional_str(data.get("commit")),
        captured_at=_optional_str(data.get("captured_at")),
    )


def save_snapshot(snapshot: BaselineSnapshot, path: Path) -> None:
    """
    Write a snapshot to disk.

    Only the explicit `conformgate baseline` command calls this; a scan never
    updates the baseline it is compared against.
    """

    payload: dict[str, Any] = {
        "version": BASELINE_VERSION,
        "granularity": snapshot.granularity,
        "counts": dict(sorted(snapshot.counts.items())),
    }
    if snapshot.commit:
        payload["commit"] = snapshot.commit
    if snapshot.captured_at:
        payload["captured_at"] = snapshot.captured_at

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


# Wrapped static analyzer baselines, e.g. PHPStan's `ignoreErrors` list. Only
# their total `count:` is gated, under a key of its own.
ANALYZER_BASELINE_KEY = "analyzer.phpstan-baseline"
ANALYZER_BASELINE_CANDIDATES = (
    "Build/phpstan-baseline.neon",
    "phpstan-baseline.neon",
    ".phpstan/baseline.neon",
)
_NEON_COUNT_RE = re.compile(r"^\s+count:\s*(\d+)\s*$", re.MULTILINE)


def parse_neon_count(text: str) -> int:
    """Sum the `count:` entries of a PHPStan baseline (`.neon`)."""

    return sum(int(m.group(1)) for m in _NEON_COUNT_RE.finditer(text))


def find_analyzer_baseline(project_root: Path) -> Path | None:
    for candidate in ANALYZER_BASELINE_CANDIDATES:
        path = project_root / candidate
        if path.is_file():
            return path
    return None


def load_analyzer_snapshot(path: Path) -> BaselineSnapshot:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BaselineError(f"Failed to read analyzer baseline: {path}") from exc
    except UnicodeDecodeError as exc:
        raise BaselineError(f"Analyzer baseline is not valid UTF-8: {path}") from exc
    return _analyzer_snapshot(parse_neon_count(text))


def load_analyzer_snapshot_from_ref(project_root: Path, ref: str, path: Path) -> BaselineSnapshot:
    """
    Load the analyzer baseline as committed at `ref`.

    A file that is absent at `ref` counts as zero accepted errors, so a newly
    added baseline has to be empty to pass.
    """

    text = _read_at_ref(project_root, ref, safe_relpath(path, project_root))
    return _analyzer_snapshot(parse_neon_count(text) if text is not None else 0)


def _analyzer_snapshot(count: int) -> BaselineSnapshot:
    return BaselineSnapshot(counts=MappingProxyType({ANALYZER_BASELINE_KEY: count}), granularity="aggregate")

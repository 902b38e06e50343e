from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from conformgate.baseline import DEFAULT_BASELINE_PATH
from conformgate.engine.index import DEFAULT_MAX_FILE_BYTES


class ConfigError(ValueError):
    """Raised when a ConformGate configuration file is invalid."""


DEFAULT_MIN_SCORE = 60
DEFAULT_MAX_WORKERS = 32
STANDALONE_CONFIG = ".conformgate.toml"
CONFORMGATE_WORKERS_ENV = "CONFORMGATE_WORKERS"


@dataclass(frozen=True, slots=True)
class IgnoreConfig:
    paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ConformGateConfig:
    """
    Everything one run needs, resolved up front.

    Engine components receive this (or the pieces they need) explicitly;
    nothing below the CLI reads environment variables.
    """

    min_score: int = DEFAULT_MIN_SCORE
    catalog: str | None = None
    baseline: str = DEFAULT_BASELINE_PATH
    baseline_ref: str | None = None
    # None: look for a PHPStan baseline in the usual places. "": do not gate it.
    analyzer_baseline: str | None = None
    workers: int | None = None  # None: let the CLI pick (env var or CPU count)
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES
    ignore: IgnoreConfig = field(default_factory=IgnoreConfig)


def load_config(project_dir: Path | str = ".") -> ConformGateConfig:
    """
    Load configuration for the project in `project_dir`.

    `.conformgate.toml` (top-level keys) wins over `[tool.conformgate]` in
    `pyproject.toml`. Missing files or tables yield defaults.
    """

    project_dir_path = Path(project_dir)

    standalone = project_dir_path / STANDALONE_CONFIG
    if standalone.exists():
        return _parse_table(_read_toml(standalone), source=STANDALONE_CONFIG)

    pyproject_path = project_dir_path / "pyproject.toml"
    if not pyproject_path.exists():
        return ConformGateConfig()

    tool_table = _read_toml(pyproject_path).get("tool", {})
    if not isinstance(tool_table, dict):
        return ConformGateConfig()
    table = tool_table.get("conformgate", {})
    if not isinstance(table, dict) or not table:
        return ConformGateConfig()
    return _parse_table(table, source="tool.conformgate")


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"Config is not valid UTF-8: {path}") from exc


def _get(table: dict[str, Any], key: str, default: Any = None) -> Any:
    # Accept both kebab-case and snake_case keys.
    if key in table:
        return table[key]
    return table.get(key.replace("-", "_"), default)


def _parse_table(table: dict[str, Any], *, source: str) -> ConformGateConfig:
    min_score = _get(table, "min-score", DEFAULT_MIN_SCORE)
    if not isinstance(min_score, int) or isinstance(min_score, bool):
        raise ConfigError(f"`{source}.min-score` must be an integer.")
    if not (0 <= min_score <= 100):
        raise ConfigError(f"`{source}.min-score` must be between 0 and 100.")

    catalog = _optional_path(_get(table, "catalog"), field_name=f"{source}.catalog")
    baseline = _optional_path(_get(table, "baseline"), field_name=f"{source}.baseline") or DEFAULT_BASELINE_PATH

    baseline_ref = _get(table, "baseline-ref")
    if baseline_ref is not None and (not isinstance(baseline_ref, str) or not baseline_ref.strip()):
        raise ConfigError(f"`{source}.baseline-ref` must be a non-empty git ref.")

    analyzer_baseline = _parse_analyzer_baseline(_get(table, "analyzer-baseline"), source=source)

    workers = _get(table, "workers")
    if workers is not None and (not isinstance(workers, int) or isinstance(workers, bool) or workers < 1):
        raise ConfigError(f"`{source}.workers` must be an integer >= 1.")

    max_file_bytes = _get(table, "max-file-bytes", DEFAULT_MAX_FILE_BYTES)
    if not isinstance(max_file_bytes, int) or isinstance(max_file_bytes, bool) or max_file_bytes <= 0:
        raise ConfigError(f"`{source}.max-file-bytes` must be an integer > 0.")

    ignore = _parse_ignore_config(table.get("ignore"), source=source)

    return ConformGateConfig(
        min_score=min_score,
        catalog=catalog,
        baseline=baseline,
        baseline_ref=baseline_ref.strip() if isinstance(baseline_ref, str) else None,
        analyzer_baseline=analyzer_baseline,
        workers=min(workers, DEFAULT_MAX_WORKERS) if workers is not None else None,
        max_file_bytes=max_file_bytes,
        ignore=ignore,
    )


def _optional_path(value: Any, *, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"`{field_name}` must be a string path.")
    return value.strip() or None


def _parse_analyzer_baseline(value: Any, *, source: str) -> str | None:
    # true (or unset) autodetects, false disables, a string names the file.
    if value is None or value is True:
        return None
    if value is False:
        return ""
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"`{source}.analyzer-baseline` must be a path or a boolean.")
    return value.strip()


def _parse_ignore_config(value: Any, *, source: str) -> IgnoreConfig:
    if value is None:
        return IgnoreConfig()
    if not isinstance(value, dict):
        raise ConfigError(f"`{source}.ignore` must be a table.")
    paths = value.get("paths", [])
    if not isinstance(paths, list) or any(not isinstance(p, str) for p in paths):
        raise ConfigError(f"`{source}.ignore.paths` must be a list of strings.")
    return IgnoreConfig(paths=tuple(p.strip() for p in paths if p.strip()))


def resolve_worker_count(
    raw_value: str | None,
    *,
    default: int | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> int:
    """
    Resolve a safe worker count from an env var-style string.

    - None/""/"auto" fall back to the default
    - Values <= 0 fall back to the default
    - Values above `max_workers` are clamped
    """

    cpu = os.cpu_count() or 1
    resolved_default = max(1, default if default is not None else (cpu * 2))
    if raw_value is None:
        return min(resolved_default, max_workers)

    normalized = raw_value.strip().lower()
    if not normalized or normalized in {"auto", "default"}:
        return min(resolved_default, max_workers)

    try:
        workers = int(normalized)
    except ValueError:
        return min(resolved_default, max_workers)

    if workers <= 0:
        return min(resolved_default, max_workers)
    return min(workers, max_workers)

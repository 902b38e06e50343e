from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from conformgate.audit import (
    AuditCallbacks,
    audit_path,
    prepare_target,
    resolve_analyzer_verdict,
    resolve_baseline,
    resolve_catalog,
    run_audit,
)
from conformgate.baseline import BaselineError, build_snapshot, save_snapshot
from conformgate.catalog import CatalogError, load_default_catalog
from conformgate.config import ConformGateConfig
from conformgate.engine.index import ProjectIOError
from helpers import write_tree

_CATALOG = """
[catalog]
name = "small"
version = "1"

[categories.structure]
max_points = 50

[categories.architecture]
max_points = 50

[categories.tooling]
kind = "bonus"
max_points = 4

[[rules]]
id = "structure.composer-json"
category = "structure"
weight = 50
kind = "existence"
paths = ["composer.json"]

[[rules]]
id = "architecture.no-globals"
category = "architecture"
weight = 50
kind = "content"
files = ["Classes/**/*.php"]
pattern = '\\$GLOBALS\\['
baseline_suppressible = true

[[rules]]
id = "bonus.phpstan"
category = "tooling"
weight = 4
kind = "existence"
paths = ["phpstan.neon"]
"""


def _project(root: Path, *, globals_count: int = 1) -> Path:
    files = {
        "composer.json": "{}",
        "catalog.toml": _CATALOG,
    }
    for i in range(globals_count):
        files[f"Classes/C{i}.php"] = "<?php\n$GLOBALS['TYPO3_CONF_VARS'];\n"
    write_tree(root, files)
    (root / ".conformgate.toml").write_text('catalog = "catalog.toml"\n', encoding="utf-8")
    return root


def test_audit_produces_full_report(project_root: Path) -> None:
    report = audit_path(_project(project_root, globals_count=2))

    assert report.catalog_name == "small"
    assert report.score.base_total == 50
    assert report.score.bonus_total == 0
    assert report.verdict.status == "no-baseline"
    assert [f.rule_id for f in report.findings] == [
        "architecture.no-globals",
        "architecture.no-globals",
        "bonus.phpstan",
    ]
    assert report.files_indexed == 5
    assert report.warnings == ()


def test_audit_compares_against_stored_baseline(project_root: Path) -> None:
    _project(project_root, globals_count=2)
    target = prepare_target(project_root)

    catalog = resolve_catalog(target)
    first = run_audit(target, catalog=catalog, load_baseline=False)
    save_snapshot(build_snapshot(catalog, first.findings), project_root / ".conformgate-baseline.json")

    assert audit_path(project_root).verdict.status == "unchanged"

    write_tree(project_root, {"Classes/New.php": "<?php\n$GLOBALS['x'];\n"})
    regressed = audit_path(project_root)
    assert regressed.verdict.status == "increased"
    assert [(d.rule_id, d.baseline, d.current) for d in regressed.verdict.increased] == [
        ("architecture.no-globals", 2, 3)
    ]

    (project_root / "Classes" / "New.php").unlink()
    (project_root / "Classes" / "C0.php").unlink()
    assert audit_path(project_root).verdict.status == "decreased"


def test_score_does_not_depend_on_baseline(project_root: Path) -> None:
    _project(project_root, globals_count=1)
    without = audit_path(project_root)
    (project_root / ".conformgate-baseline.json").write_text(
        '{"version": 1, "counts": {"architecture.no-globals": 1}}', encoding="utf-8"
    )
    with_baseline = audit_path(project_root)

    assert with_baseline.verdict.status == "unchanged"
    assert with_baseline.score == without.score


def test_missing_root_is_a_setup_error(tmp_path: Path) -> None:
    with pytest.raises(ProjectIOError):
        audit_path(tmp_path / "missing")


def test_missing_catalog_is_a_setup_error(project_root: Path) -> None:
    config = ConformGateConfig(catalog="nope.toml")
    with pytest.raises(CatalogError, match="nope.toml"):
        audit_path(project_root, config=config)


def test_invalid_baseline_is_a_setup_error(project_root: Path) -> None:
    _project(project_root)
    (project_root / ".conformgate-baseline.json").write_text("{broken", encoding="utf-8")

    with pytest.raises(BaselineError):
        audit_path(project_root)


def test_baseline_outside_root_is_rejected(project_root: Path) -> None:
    target = prepare_target(project_root, config=ConformGateConfig(baseline="../elsewhere.json"))

    with pytest.raises(BaselineError, match="escapes the project root"):
        resolve_baseline(target)


def test_analyzer_baseline_can_be_disabled_or_absent(project_root: Path) -> None:
    (project_root / "phpstan-baseline.neon").write_text("parameters:\n\tignoreErrors: []\n", encoding="utf-8")

    disabled = prepare_target(project_root, config=ConformGateConfig(analyzer_baseline=""))
    assert resolve_analyzer_verdict(disabled).status == "no-baseline"

    missing = prepare_target(project_root, config=ConformGateConfig(analyzer_baseline="Build/other.neon"))
    assert resolve_analyzer_verdict(missing).status == "no-baseline"


def test_analyzer_baseline_outside_root_is_rejected(project_root: Path) -> None:
    target = prepare_target(project_root, config=ConformGateConfig(analyzer_baseline="../phpstan-baseline.neon"))

    with pytest.raises(BaselineError, match="escapes the project root"):
        resolve_analyzer_verdict(target)


def test_integrity_and_truncation_warnings_are_attached(project_root: Path) -> None:
    _project(project_root)
    catalog_path = project_root / "catalog.toml"
    original = catalog_path.read_text(encoding="utf-8")
    catalog_path.write_text(
        original.replace('weight = 50\nkind = "existence"', 'weight = 40\nkind = "existence"'),
        encoding="utf-8",
    )
    write_tree(project_root, {"Classes/Big.php": "<?php\n" + "x" * 200})

    target = prepare_target(project_root)
    target = replace(target, config=replace(target.config, max_file_bytes=64))
    report = run_audit(target)

    assert any("structure" in w and "sum to 40" in w for w in report.warnings)
    assert any("exceeded 64 bytes" in w for w in report.warnings)
    assert report.truncated_paths == ("Classes/Big.php",)


def test_callbacks_report_progress(project_root: Path) -> None:
    _project(project_root)
    ready: list[int] = []
    done: list[str] = []

    run_audit(
        prepare_target(project_root),
        callbacks=AuditCallbacks(on_rules_ready=ready.append, on_rule_done=done.append),
    )

    assert ready == [3]
    assert sorted(done) == ["architecture.no-globals", "bonus.phpstan", "structure.composer-json"]


def test_default_catalog_on_empty_project(project_root: Path) -> None:
    report = audit_path(project_root, config=ConformGateConfig())

    assert report.catalog_name == load_default_catalog().name
    assert report.score.base_max == 100
    assert report.score.base_total < 60
    assert report.score.bonus_total == 0

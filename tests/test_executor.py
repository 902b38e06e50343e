from __future__ import annotations

import logging
import re
from pathlib import Path

import pytest

from conformgate.engine.executor import RuleEvaluationError, evaluate_rule, execute
from conformgate.engine.index import FileSystemIndex
from conformgate.engine.matchers import ContentPatternMatcher
from helpers import ExplodingMatcher, build_index, forbid, make_catalog, make_rule


def _fixture_catalog():  # type: ignore[no-untyped-def]
    return make_catalog(
        [("structure", "base", 50), ("style", "base", 50)],
        [
            make_rule("structure.composer-json", "structure", 25),
            make_rule("structure.readme", "structure", 25),
            make_rule("style.globals", "style", 25, forbid(r"\$GLOBALS\[")),
            make_rule("style.arrays", "style", 25, forbid(r"array\(")),
        ],
    )


def _fixture_tree(root: Path) -> None:
    files = {f"Classes/C{i}.php": "<?php\n$GLOBALS['a'];\n$x = array();\n" for i in range(6)}
    files["structure.readme.marker"] = ""
    build_index(root, files)


def test_findings_are_sorted_deterministically(project_root: Path) -> None:
    _fixture_tree(project_root)

    findings = execute(_fixture_catalog(), FileSystemIndex.build(project_root))

    keys = [(f.category, f.rule_id, f.path or "", f.location.line if f.location else 0) for f in findings]
    assert keys == sorted(keys)
    assert {f.rule_id for f in findings} == {"structure.composer-json", "style.arrays", "style.globals"}


def test_parallel_matches_serial(project_root: Path) -> None:
    _fixture_tree(project_root)

    serial = execute(_fixture_catalog(), FileSystemIndex.build(project_root), workers=1)
    parallel = execute(_fixture_catalog(), FileSystemIndex.build(project_root), workers=8)

    assert parallel == serial


def test_rule_order_does_not_change_output(project_root: Path) -> None:
    _fixture_tree(project_root)

    catalog = _fixture_catalog()
    reversed_catalog = make_catalog(
        [("structure", "base", 50), ("style", "base", 50)],
        list(reversed(catalog.rules)),
    )
    index = FileSystemIndex.build(project_root)

    assert execute(catalog, index) == execute(reversed_catalog, index)


def test_broken_rule_is_isolated(project_root: Path, caplog: pytest.LogCaptureFixture) -> None:
    index = build_index(project_root, {"Classes/A.php": "<?php\n$GLOBALS['a'];\n"})
    catalog = make_catalog(
        [("style", "base", 10)],
        [
            make_rule("style.broken", "style", 5, ExplodingMatcher()),  # type: ignore[arg-type]
            make_rule("style.globals", "style", 5, forbid(r"\$GLOBALS\[")),
        ],
    )

    with caplog.at_level(logging.WARNING):
        findings = execute(catalog, index, workers=4)

    broken = [f for f in findings if f.is_internal_error]
    assert len(broken) == 1
    assert broken[0].rule_id == "style.broken.internal-error"
    assert broken[0].owner_rule_id == "style.broken"
    assert broken[0].severity == "critical"
    assert broken[0].category == "style"
    assert "RuntimeError: boom" in broken[0].message
    assert [f.rule_id for f in findings if not f.is_internal_error] == ["style.globals"]
    assert "style.broken" in caplog.text


def test_evaluate_rule_wraps_matcher_errors(project_root: Path) -> None:
    index = build_index(project_root, {"a.txt": "x"})
    rule = make_rule("style.broken", "style", 1, ExplodingMatcher())  # type: ignore[arg-type]

    with pytest.raises(RuleEvaluationError) as excinfo:
        evaluate_rule(rule, index)
    assert excinfo.value.rule_id == "style.broken"
    assert isinstance(excinfo.value.cause, RuntimeError)


def test_on_rule_done_is_called_once_per_rule(project_root: Path) -> None:
    index = build_index(project_root, {"Classes/A.php": "<?php\n"})
    catalog = make_catalog(
        [("style", "base", 2)],
        [
            make_rule("style.a", "style", 1, ContentPatternMatcher(files=("**/*.php",), pattern=re.compile("x"))),
            make_rule("style.b", "style", 1),
        ],
    )
    done: list[str] = []

    execute(catalog, index, workers=2, on_rule_done=done.append)

    assert sorted(done) == ["style.a", "style.b"]

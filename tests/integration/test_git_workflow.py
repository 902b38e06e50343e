from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conformgate.cli import app
from conformgate.git import git_head_commit

pytestmark = pytest.mark.integration

_CATALOG = """
[categories.architecture]
max_points = 100

[[rules]]
id = "architecture.no-globals"
category = "architecture"
weight = 100
kind = "content"
files = ["Classes/**/*.php"]
pattern = '\\$GLOBALS\\['
baseline_suppressible = true
"""


def _git(cwd: Path, *args: str) -> None:
    subprocess.check_call(
        ["git", *args],
        cwd=str(cwd),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


def _init_repo(repo: Path) -> None:
    repo.mkdir(parents=True, exist_ok=True)
    _git(repo, "init")
    _git(repo, "config", "user.email", "conformgate@example.test")
    _git(repo, "config", "user.name", "ConformGate Tests")


def test_head_commit_outside_repository_is_none(tmp_path: Path) -> None:
    assert git_head_commit(cwd=tmp_path) is None


def test_committed_baseline_cannot_be_widened_in_working_tree(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    _init_repo(repo)
    (repo / "catalog.toml").write_text(_CATALOG, encoding="utf-8")
    (repo / ".conformgate.toml").write_text(
        'catalog = "catalog.toml"\nmin-score = 0\nbaseline-ref = "HEAD"\n',
        encoding="utf-8",
    )
    source = repo / "Classes" / "A.php"
    source.parent.mkdir(parents=True)
    source.write_text("<?php\n$GLOBALS['a'];\n", encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "-m", "initial")

    runner = CliRunner()
    res = runner.invoke(app, ["-q", "baseline", str(repo)])
    assert res.exit_code == 0, res.output
    snapshot_path = repo / ".conformgate-baseline.json"
    saved = json.loads(snapshot_path.read_text(encoding="utf-8"))
    assert saved["counts"] == {"architecture.no-globals": 1}
    assert saved["commit"] == git_head_commit(cwd=repo)

    _git(repo, "add", ".")
    _git(repo, "commit", "-m", "accept baseline")

    # A new issue plus a hand-edited, uncommitted baseline that tolerates it.
    source.write_text("<?php\n$GLOBALS['a'];\n$GLOBALS['b'];\n", encoding="utf-8")
    snapshot_path.write_text('{"version": 1, "counts": {"architecture.no-globals": 9}}\n', encoding="utf-8")

    res = runner.invoke(app, ["-q", "scan", str(repo), "--format", "markdown"])
    assert res.exit_code == 1, res.output
    assert "| `architecture.no-globals` | 1 | 2 | +1 |" in res.output


def test_unknown_baseline_ref_is_a_setup_error(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    _init_repo(repo)
    (repo / "catalog.toml").write_text(_CATALOG, encoding="utf-8")
    (repo / ".conformgate.toml").write_text('catalog = "catalog.toml"\nmin-score = 0\n', encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "-m", "initial")

    res = CliRunner().invoke(app, ["-q", "scan", str(repo), "--baseline-ref", "origin/typo-branch"])

    assert res.exit_code == 2
    assert "origin/typo-branch" in res.output


def test_baseline_ref_outside_git_is_a_setup_error(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    (project / "catalog.toml").write_text(_CATALOG, encoding="utf-8")
    (project / ".conformgate.toml").write_text(
        'catalog = "catalog.toml"\nmin-score = 0\nbaseline-ref = "HEAD"\n',
        encoding="utf-8",
    )

    res = CliRunner().invoke(app, ["-q", "scan", str(project)])

    assert res.exit_code == 2
    assert "HEAD" in res.output


_NEON_ENTRY = "\t\t-\n\t\t\tmessage: \"#^Undefined variable#\"\n\t\t\tcount: {count}\n\t\t\tpath: ../Classes/A.php\n"


def _neon(*counts: int) -> str:
    return "parameters:\n\tignoreErrors:\n" + "".join(_NEON_ENTRY.format(count=c) for c in counts)


def test_growing_phpstan_baseline_fails_against_head(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    _init_repo(repo)
    (repo / "catalog.toml").write_text(_CATALOG, encoding="utf-8")
    (repo / ".conformgate.toml").write_text('catalog = "catalog.toml"\nmin-score = 0\n', encoding="utf-8")
    neon = repo / "Build" / "phpstan-baseline.neon"
    neon.parent.mkdir()
    neon.write_text(_neon(2, 1), encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "-m", "initial")

    runner = CliRunner()
    res = runner.invoke(app, ["-q", "scan", str(repo), "--format", "json"])
    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout)["verdict"]["status"] == "unchanged"

    neon.write_text(_neon(2, 1, 4), encoding="utf-8")
    res = runner.invoke(app, ["-q", "scan", str(repo), "--format", "markdown"])
    assert res.exit_code == 1, res.output
    assert "| `analyzer.phpstan-baseline` | 3 | 7 | +4 |" in res.output

    neon.write_text(_neon(2), encoding="utf-8")
    res = runner.invoke(app, ["-q", "scan", str(repo), "--format", "json"])
    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout)["verdict"]["status"] == "decreased"


def test_phpstan_baseline_is_skipped_outside_git(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    (project / "catalog.toml").write_text(_CATALOG, encoding="utf-8")
    (project / ".conformgate.toml").write_text('catalog = "catalog.toml"\nmin-score = 0\n', encoding="utf-8")
    (project / "phpstan-baseline.neon").write_text(_neon(5), encoding="utf-8")

    res = CliRunner().invoke(app, ["-q", "scan", str(project), "--format", "json"])

    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout)["verdict"]["status"] == "no-baseline"

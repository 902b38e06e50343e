from __future__ import annotations

import subprocess
from pathlib import Path
from typing import IO, Any


class GitError(RuntimeError):
    """Raised when a required git operation fails or git is unavailable."""


def git_check_output(
    args: list[str],
    *,
    cwd: Path,
    stderr: int | IO[Any] | None = subprocess.STDOUT,
) -> str:
    """
    Run a git command and return its stdout.

    Args are passed without the leading `git` (e.g., `['status']`).
    """

    try:
        return subprocess.check_output(
            ["git", *args],
            cwd=str(cwd),
            stderr=stderr,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        msg = (exc.output or "").strip()
        raise GitError(msg or f"git command failed: {' '.join(args)}") from exc
    except FileNotFoundError as exc:  # pragma: no cover
        raise GitError("git is unavailable") from exc


def git_head_commit(*, cwd: Path) -> str | None:
    """
    Return the commit hash of HEAD, or None outside a repository.

    Used to stamp baseline snapshots; a missing git binary or a fresh repo
    without commits is not an error.
    """

    try:
        out = git_check_output(["rev-parse", "HEAD"], cwd=cwd, stderr=subprocess.DEVNULL).strip()
    except (GitError, NotADirectoryError, PermissionError):
        return None
    return out or None


def git_show_file(*, cwd: Path, ref: str, relative_path: str) -> str:
    """Return the content of `relative_path` as committed at `ref`."""

    return git_check_output(["show", _object_spec(ref, relative_path)], cwd=cwd, stderr=subprocess.DEVNULL)


def git_is_work_tree(*, cwd: Path) -> bool:
    try:
        out = git_check_output(["rev-parse", "--is-inside-work-tree"], cwd=cwd, stderr=subprocess.DEVNULL)
    except (GitError, NotADirectoryError, PermissionError):
        return False
    return out.strip() == "true"


def git_ref_exists(*, cwd: Path, ref: str) -> bool:
    """Return True when `ref` resolves to a commit."""

    try:
        git_check_output(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=cwd, stderr=subprocess.DEVNULL)
    except GitError:
        return False
    return True


def git_file_exists_at(*, cwd: Path, ref: str, relative_path: str) -> bool:
    try:
        git_check_output(["cat-file", "-e", _object_spec(ref, relative_path)], cwd=cwd, stderr=subprocess.DEVNULL)
    except GitError:
        return False
    return True


def _object_spec(ref: str, relative_path: str) -> str:
    # `./` makes the path relative to `cwd` rather than the repository root.
    return f"{ref}:./{relative_path}"

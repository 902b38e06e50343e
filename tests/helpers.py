from __future__ import annotations

import re
from pathlib import Path

from conformgate.catalog import Category, Rule, RuleCatalog
from conformgate.engine.index import FileSystemIndex
from conformgate.engine.matchers import ContentPatternMatcher, ExistenceMatcher, Matcher
from conformgate.engine.types import Finding, Severity


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Create `files` (relative path -> content) under `root`. A trailing `/` makes a directory."""

    for relpath, content in files.items():
        path = root / relpath
        if relpath.endswith("/"):
            path.mkdir(parents=True, exist_ok=True)
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def build_index(root: Path, files: dict[str, str] | None = None, **kwargs) -> FileSystemIndex:  # type: ignore[no-untyped-def]
    if files:
        write_tree(root, files)
    return FileSystemIndex.build(root, **kwargs)


def make_rule(
    rule_id: str,
    category: str,
    weight: int,
    matcher: Matcher | None = None,
    *,
    severity: Severity = "medium",
    suppressible: bool = False,
) -> Rule:
    return Rule(
        id=rule_id,
        title=rule_id,
        category=category,
        weight=weight,
        severity=severity,
        matcher=matcher if matcher is not None else ExistenceMatcher(paths=(f"{rule_id}.marker",)),
        baseline_suppressible=suppressible,
    )


def forbid(pattern: str, *files: str) -> ContentPatternMatcher:
    return ContentPatternMatcher(files=files or ("**/*.php",), pattern=re.compile(pattern))


def make_catalog(categories: list[tuple[str, str, int]], rules: list[Rule]) -> RuleCatalog:
    """`categories` is a list of `(id, kind, max_points)`."""

    return RuleCatalog(
        categories=tuple(Category(id=cid, title=cid.title(), kind=kind, max_points=mx) for cid, kind, mx in categories),  # type: ignore[arg-type]
        rules=tuple(rules),
        name="test",
        version="1",
    )


class ExplodingMatcher:
    kind = "content"

    def match(self, rule: Rule, index: FileSystemIndex) -> list[Finding]:
        raise RuntimeError("boom")

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Literal, Protocol

from conformgate.engine.index import FileSystemIndex
from conformgate.engine.types import Finding, Location

if TYPE_CHECKING:
    from conformgate.catalog import Rule

MatcherKind = Literal["existence", "content", "structural", "aggregate"]
MATCHER_KINDS: tuple[MatcherKind, ...] = ("existence", "content", "structural", "aggregate")


class Matcher(Protocol):
    kind: MatcherKind

    def match(self, rule: Rule, index: FileSystemIndex) -> list[Finding]: ...


def _finding(rule: Rule, message: str, *, path: str | None = None, line: int | None = None, column: int | None = None) -> Finding:
    location = Location(line=line, column=column) if line is not None else None
    return Finding(
        rule_id=rule.id,
        category=rule.category,
        severity=rule.severity,
        message=message,
        path=path,
        location=location,
    )


@dataclass(frozen=True, slots=True)
class ExistenceMatcher:
    """Path globs that must (or must not) exist in the project."""

    paths: tuple[str, ...]
    must_exist: bool = True
    kind: MatcherKind = "existence"

    def match(self, rule: Rule, index: FileSystemIndex) -> list[Finding]:
        if self.must_exist:
            if any(index.exists(p) for p in self.paths):
                return []
            wanted = " or ".join(self.paths)
            return [_finding(rule, f"{rule.title}: expected {wanted}")]

        found: set[str] = set()
        for pattern in self.paths:
            found.update(index.glob(pattern))
        return [_finding(rule, f"{rule.title}: {path} must not exist", path=path) for path in sorted(found)]


@dataclass(frozen=True, slots=True)
class ContentPatternMatcher:
    """
    Regex matched line by line over the content of selected files.

    `forbid` reports every matching line once the project-wide match count
    exceeds `max_matches`. `require` reports every selected file with fewer
    than `min_matches` matching lines.
    """

    files: tuple[str, ...]
    pattern: re.Pattern[str]
    mode: Literal["forbid", "require"] = "forbid"
    exclude: re.Pattern[str] | None = None
    max_matches: int = 0
    min_matches: int = 1
    kind: MatcherKind = "content"

    def match(self, rule: Rule, index: FileSystemIndex) -> list[Finding]:
        selected: set[str] = set()
        for pattern in self.files:
            selected.update(index.files(pattern))

        if self.mode == "require":
            return self._match_require(rule, index, sorted(selected))
        return self._match_forbid(rule, index, sorted(selected))

    def _matching_lines(self, text: str) -> list[tuple[int, int]]:
        hits: list[tuple[int, int]] = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            m = self.pattern.search(line)
            if m is None:
                continue
            if self.exclude is not None and self.exclude.search(line):
                continue
            hits.append((lineno, m.start() + 1))
        return hits

    def _match_forbid(self, rule: Rule, index: FileSystemIndex, paths: list[str]) -> list[Finding]:
        hits: list[tuple[str, int, int]] = []
        for path in paths:
            text = index.content(path)
            if text is None:
                continue
            hits.extend((path, line, col) for line, col in self._matching_lines(text))

        if len(hits) <= self.max_matches:
            return []
        return [
            _finding(rule, f"{rule.title}: matches /{self.pattern.pattern}/", path=path, line=line, column=col)
            for path, line, col in hits
        ]

    def _match_require(self, rule: Rule, index: FileSystemIndex, paths: list[str]) -> list[Finding]:
        out: list[Finding] = []
        for path in paths:
            text = index.content(path)
            if text is None:
                continue
            count = len(self._matching_lines(text))
            if count < self.min_matches:
                out.append(_finding(rule, f"{rule.title}: /{self.pattern.pattern}/ not found", path=path))
        return out


@dataclass(frozen=True, slots=True)
class StructuralMatcher:
    """
    Every path selected by `source` must have a counterpart built from `expect`.

    `expect` is a `str.format` template. Placeholders are derived from the
    source path after removing the `strip` prefix: `{path}`, `{parent}`,
    `{name}`, `{stem}` and `{suffix}`.
    """

    source: str
    expect: str
    strip: str = ""
    kind: MatcherKind = "structural"

    def match(self, rule: Rule, index: FileSystemIndex) -> list[Finding]:
        out: list[Finding] = []
        for path in index.glob(self.source):
            counterpart = self.counterpart(path)
            if index.entry(counterpart) is not None:
                continue
            out.append(_finding(rule, f"{rule.title}: expected {counterpart}", path=path))
        return out

    def counterpart(self, path: str) -> str:
        rel = path
        prefix = self.strip.strip("/")
        if prefix and (rel == prefix or rel.startswith(prefix + "/")):
            rel = rel[len(prefix) :].lstrip("/")
        pure = PurePosixPath(rel) if rel else PurePosixPath(".")
        parent = pure.parent.as_posix()
        values = {
            "path": rel,
            "parent": "" if parent == "." else parent,
            "name": pure.name,
            "stem": pure.stem,
            "suffix": pure.suffix,
        }
        expected = self.expect.format(**values)
        # Empty placeholders leave doubled separators behind.
        return re.sub(r"/{2,}", "/", expected).strip("/")


@dataclass(frozen=True, slots=True)
class AggregateMatcher:
    """
    Count-based thresholds over the index.

    Fires a single project-wide finding when the number of paths matched by
    `count` leaves `[min_count, max_count]`, or when the integer percentage
    `count * 100 // per` drops below `min_ratio_percent`. A zero denominator
    never fires.
    """

    count: tuple[str, ...]
    per: tuple[str, ...] = ()
    min_count: int | None = None
    max_count: int | None = None
    min_ratio_percent: int | None = None
    kind: MatcherKind = "aggregate"

    def match(self, rule: Rule, index: FileSystemIndex) -> list[Finding]:
        numerator = _count_files(index, self.count)

        if self.min_count is not None and numerator < self.min_count:
            return [_finding(rule, f"{rule.title}: found {numerator}, expected at least {self.min_count}")]
        if self.max_count is not None and numerator > self.max_count:
            return [_finding(rule, f"{rule.title}: found {numerator}, expected at most {self.max_count}")]

        if self.min_ratio_percent is not None and self.per:
            denominator = _count_files(index, self.per)
            if denominator == 0:
                return []
            ratio = numerator * 100 // denominator
            if ratio < self.min_ratio_percent:
                return [
                    _finding(
                        rule,
                        f"{rule.title}: ratio {ratio}% ({numerator}/{denominator}) "
                        f"below {self.min_ratio_percent}%",
                    )
                ]
        return []


def _count_files(index: FileSystemIndex, patterns: tuple[str, ...]) -> int:
    selected: set[str] = set()
    for pattern in patterns:
        selected.update(index.files(pattern))
    return len(selected)

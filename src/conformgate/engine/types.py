from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Severity = Literal["info", "low", "medium", "high", "critical"]
CategoryKind = Literal["base", "bonus"]
VerdictStatus = Literal["no-baseline", "unchanged", "increased", "decreased"]

# Triage order only; scoring never looks at severity.
SEVERITY_ORDER: tuple[Severity, ...] = ("info", "low", "medium", "high", "critical")
SEVERITY_RANK = {sev: idx for idx, sev in enumerate(SEVERITY_ORDER)}

INTERNAL_ERROR_SUFFIX = ".internal-error"


@dataclass(frozen=True, slots=True)
class Location:
    line: int | None = None  # 1-based
    column: int | None = None  # 1-based


@dataclass(frozen=True, slots=True)
class Finding:
    rule_id: str
    category: str
    severity: Severity
    message: str
    path: str | None = None  # POSIX, relative to the project root
    location: Location | None = None

    @property
    def owner_rule_id(self) -> str:
        """The catalog rule responsible for this finding."""
        if self.rule_id.endswith(INTERNAL_ERROR_SUFFIX):
            return self.rule_id[: -len(INTERNAL_ERROR_SUFFIX)]
        return self.rule_id

    @property
    def is_internal_error(self) -> bool:
        return self.rule_id.endswith(INTERNAL_ERROR_SUFFIX)


def finding_sort_key(f: Finding) -> tuple[str, str, str, int, int, str]:
    line = f.location.line if f.location and f.location.line is not None else 0
    col = f.location.column if f.location and f.location.column is not None else 0
    return f.category, f.rule_id, f.path or "", line, col, f.message


@dataclass(frozen=True, slots=True)
class CategoryScore:
    category: str
    kind: CategoryKind
    points: int
    max_points: int
    failed_rules: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Score:
    categories: tuple[CategoryScore, ...]
    base_total: int
    base_max: int
    bonus_total: int
    bonus_max: int

    @property
    def grand_total(self) -> int:
        return self.base_total + self.bonus_total

    def category(self, category_id: str) -> CategoryScore | None:
        for cat in self.categories:
            if cat.category == category_id:
                return cat
        return None


@dataclass(frozen=True, slots=True)
class RuleDelta:
    rule_id: str
    baseline: int
    current: int

    @property
    def delta(self) -> int:
        return self.current - self.baseline


@dataclass(frozen=True, slots=True)
class Verdict:
    status: VerdictStatus
    increased: tuple[RuleDelta, ...] = ()
    decreased: tuple[RuleDelta, ...] = ()

    @property
    def is_regression(self) -> bool:
        return self.status == "increased"


@dataclass(frozen=True, slots=True)
class ReportModel:
    score: Score
    findings: tuple[Finding, ...]
    verdict: Verdict
    warnings: tuple[str, ...] = ()
    truncated_paths: tuple[str, ...] = ()
    unreadable_paths: tuple[str, ...] = ()
    files_indexed: int = 0
    catalog_name: str = ""
    catalog_version: str = ""

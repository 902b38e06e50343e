from __future__ import annotations

from collections.abc import Iterable

from conformgate.catalog import Category, RuleCatalog
from conformgate.engine.types import CategoryScore, Finding, Score

# Presentation thresholds for the base score, shared by all reporters.
LEVEL_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (80, "excellent"),
    (60, "good"),
    (40, "fair"),
    (0, "poor"),
)


def aggregate(catalog: RuleCatalog, findings: Iterable[Finding]) -> Score:
    """
    Reduce findings into per-category and total scores.

    Base categories start at `max_points` and lose the full weight of every
    rule with at least one finding. Bonus categories start at 0 and gain the
    weight of every rule with no finding. A rule is charged once regardless
    of how many findings it produced, and each category is clamped to
    `[0, max_points]`. Bonus points never feed into `base_total`.
    """

    failed: set[str] = set()
    for f in findings:
        rule = catalog.rule(f.owner_rule_id)
        if rule is not None:
            failed.add(rule.id)

    categories = tuple(_score_category(catalog, cat, failed) for cat in catalog.categories)
    base = [c for c in categories if c.kind == "base"]
    bonus = [c for c in categories if c.kind == "bonus"]
    return Score(
        categories=categories,
        base_total=sum(c.points for c in base),
        base_max=sum(c.max_points for c in base),
        bonus_total=sum(c.points for c in bonus),
        bonus_max=sum(c.max_points for c in bonus),
    )


def _score_category(catalog: RuleCatalog, cat: Category, failed: set[str]) -> CategoryScore:
    rules = catalog.rules_in(cat.id)
    failed_here = tuple(sorted(r.id for r in rules if r.id in failed))

    if cat.kind == "bonus":
        raw = sum(r.weight for r in rules if r.id not in failed)
    else:
        raw = cat.max_points - sum(r.weight for r in rules if r.id in failed)

    points = max(0, min(cat.max_points, raw))
    return CategoryScore(
        category=cat.id,
        kind=cat.kind,
        points=points,
        max_points=cat.max_points,
        failed_rules=failed_here,
    )


def conformance_level(base_total: int) -> str:
    for threshold, label in LEVEL_THRESHOLDS:
        if base_total >= threshold:
            return label
    return "poor"


def format_breakdown_terminal(score: Score) -> str:
    return " | ".join(f"{c.category.title()} {c.points}/{c.max_points}" for c in score.categories)


def format_breakdown_markdown(score: Score) -> str:
    return ", ".join(f"{c.category} {c.points}/{c.max_points}" for c in score.categories)

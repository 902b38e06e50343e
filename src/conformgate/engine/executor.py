from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from conformgate.catalog import Rule, RuleCatalog
from conformgate.engine.index import FileSystemIndex
from conformgate.engine.types import INTERNAL_ERROR_SUFFIX, Finding, finding_sort_key

logger = logging.getLogger(__name__)


class RuleEvaluationError(RuntimeError):
    """Raised when a single rule's matcher fails."""

    def __init__(self, rule_id: str, cause: BaseException) -> None:
        super().__init__(f"rule {rule_id} failed: {type(cause).__name__}: {cause}")
        self.rule_id = rule_id
        self.cause = cause


def evaluate_rule(rule: Rule, index: FileSystemIndex) -> list[Finding]:
    """Evaluate one rule, wrapping any matcher failure in `RuleEvaluationError`."""

    try:
        return list(rule.evaluate(index))
    except Exception as exc:  # noqa: BLE001
        raise RuleEvaluationError(rule.id, exc) from exc


def execute(
    catalog: RuleCatalog,
    index: FileSystemIndex,
    *,
    workers: int = 1,
    on_rule_done: Callable[[str], None] | None = None,
) -> list[Finding]:
    """
    Run every catalog rule against `index` and return the sorted findings.

    Rules share nothing but the read-only index, so they are evaluated on a
    bounded thread pool when `workers > 1`. A rule that raises is isolated:
    it contributes a single critical `<rule>.internal-error` finding and the
    remaining rules still run. The output is sorted by
    `(category, rule_id, path)` so it does not depend on evaluation order.
    """

    rules = list(catalog.rules)
    findings: list[Finding] = []

    if workers <= 1 or len(rules) <= 1:
        for rule in rules:
            findings.extend(_evaluate_isolated(rule, index))
            if on_rule_done is not None:
                on_rule_done(rule.id)
    else:
        max_workers = min(workers, len(rules))
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = pool.map(lambda r: _evaluate_isolated(r, index), rules)
            for rule, rule_findings in zip(rules, results, strict=True):
                findings.extend(rule_findings)
                if on_rule_done is not None:
                    on_rule_done(rule.id)

    findings.sort(key=finding_sort_key)
    logger.debug("evaluated %d rule(s), %d finding(s)", len(rules), len(findings))
    return findings


def _evaluate_isolated(rule: Rule, index: FileSystemIndex) -> list[Finding]:
    try:
        return evaluate_rule(rule, index)
    except RuleEvaluationError as exc:
        logger.warning("%s", exc)
        return [
            Finding(
                rule_id=f"{rule.id}{INTERNAL_ERROR_SUFFIX}",
                category=rule.category,
                severity="critical",
                message=f"Rule could not be evaluated: {type(exc.cause).__name__}: {exc.cause}",
            )
        ]

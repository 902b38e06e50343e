from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from conformgate.catalog import RuleCatalog
from conformgate.engine.types import Finding, RuleDelta, Verdict

if TYPE_CHECKING:
    from conformgate.baseline import BaselineSnapshot

# Snapshot key used when the baseline only records a single total.
AGGREGATE_KEY = "*"


def raw_counts(catalog: RuleCatalog, findings: Iterable[Finding], *, aggregate: bool = False) -> dict[str, int]:
    """
    Count findings of baseline-suppressible rules, before any suppression.

    Internal-error findings are not issues of the project and are never
    counted. With `aggregate=True` the counts are folded into `AGGREGATE_KEY`.
    """

    counts: Counter[str] = Counter()
    for f in findings:
        if f.is_internal_error:
            continue
        rule = catalog.rule(f.rule_id)
        if rule is None or not rule.baseline_suppressible:
            continue
        counts[rule.id] += 1

    if aggregate:
        return {AGGREGATE_KEY: sum(counts.values())}
    return dict(sorted(counts.items()))


def detect(current_raw_counts: Mapping[str, int], baseline_snapshot: Mapping[str, int] | None) -> Verdict:
    """
    Classify the current run against an accepted baseline.

    Every rule id in either map is compared, absence counting as zero. All
    increases are reported, not just the first, so the whole regression is
    visible in one run.
    """

    if baseline_snapshot is None:
        return Verdict(status="no-baseline")

    increased: list[RuleDelta] = []
    decreased: list[RuleDelta] = []
    for rule_id in sorted(set(current_raw_counts) | set(baseline_snapshot)):
        entry = RuleDelta(
            rule_id=rule_id,
            baseline=int(baseline_snapshot.get(rule_id, 0)),
            current=int(current_raw_counts.get(rule_id, 0)),
        )
        if entry.delta > 0:
            increased.append(entry)
        elif entry.delta < 0:
            decreased.append(entry)

    if increased:
        return Verdict(status="increased", increased=tuple(increased), decreased=tuple(decreased))
    if decreased:
        return Verdict(status="decreased", decreased=tuple(decreased))
    return Verdict(status="unchanged")


def detect_against(snapshot: BaselineSnapshot | None, catalog: RuleCatalog, findings: Iterable[Finding]) -> Verdict:
    """Compare findings with a loaded snapshot, matching its granularity."""

    if snapshot is None:
        return Verdict(status="no-baseline")
    current = raw_counts(catalog, findings, aggregate=snapshot.granularity == "aggregate")
    return detect(current, snapshot.counts)


def merge_verdicts(*verdicts: Verdict) -> Verdict:
    """
    Combine verdicts over disjoint keys, e.g. catalog rules and a wrapped analyzer.

    Verdicts without a baseline are skipped; the result is `no-baseline` only
    when none of them had one.
    """

    compared = [v for v in verdicts if v.status != "no-baseline"]
    if not compared:
        return Verdict(status="no-baseline")

    increased = tuple(sorted((d for v in compared for d in v.increased), key=lambda d: d.rule_id))
    decreased = tuple(sorted((d for v in compared for d in v.decreased), key=lambda d: d.rule_id))
    if increased:
        return Verdict(status="increased", increased=increased, decreased=decreased)
    if decreased:
        return Verdict(status="decreased", decreased=decreased)
    return Verdict(status="unchanged")

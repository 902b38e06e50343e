from __future__ import annotations

import json
from typing import Any

from conformgate import __version__
from conformgate.engine.scoring import conformance_level
from conformgate.engine.types import Finding, ReportModel, RuleDelta

REPORT_SCHEMA_VERSION = 1


def render_json(report: ReportModel) -> str:
    score = report.score
    payload = {
        "schema_version": REPORT_SCHEMA_VERSION,
        "tool": {"name": "ConformGate", "version": __version__},
        "catalog": {"name": report.catalog_name, "version": report.catalog_version},
        "files_indexed": report.files_indexed,
        "score": {
            "base": score.base_total,
            "base_max": score.base_max,
            "bonus": score.bonus_total,
            "bonus_max": score.bonus_max,
            "total": score.grand_total,
            "level": conformance_level(score.base_total),
        },
        "categories": [
            {
                "id": c.category,
                "kind": c.kind,
                "points": c.points,
                "max_points": c.max_points,
                "failed_rules": list(c.failed_rules),
            }
            for c in score.categories
        ],
        "verdict": {
            "status": report.verdict.status,
            "increased": [_delta_to_dict(d) for d in report.verdict.increased],
            "decreased": [_delta_to_dict(d) for d in report.verdict.decreased],
        },
        "warnings": list(report.warnings),
        "truncated_paths": list(report.truncated_paths),
        "unreadable_paths": list(report.unreadable_paths),
        "findings": [_finding_to_dict(f) for f in report.findings],
    }
    return json.dumps(payload, indent=2, sort_keys=False)


def _delta_to_dict(d: RuleDelta) -> dict[str, Any]:
    return {"rule_id": d.rule_id, "baseline": d.baseline, "current": d.current, "delta": d.delta}


def _finding_to_dict(f: Finding) -> dict[str, Any]:
    loc = None
    if f.location is not None:
        loc = {"line": f.location.line, "column": f.location.column}
    return {
        "rule_id": f.rule_id,
        "category": f.category,
        "severity": f.severity,
        "message": f.message,
        "path": f.path,
        "location": loc,
    }

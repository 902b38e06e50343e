from __future__ import annotations

from conformgate.engine.scoring import conformance_level, format_breakdown_markdown
from conformgate.engine.types import Finding, ReportModel, Verdict


def render_markdown(report: ReportModel) -> str:
    score = report.score
    lines: list[str] = []
    lines.append("# ConformGate report")
    lines.append("")
    lines.append(f"- Score: **{score.base_total}/{score.base_max}** ({conformance_level(score.base_total)})")
    if score.bonus_max:
        lines.append(f"- Bonus: **+{score.bonus_total}/{score.bonus_max}**")
    lines.append(f"- Catalog: `{report.catalog_name}` {report.catalog_version}")
    lines.append(f"- Files indexed: {report.files_indexed}")
    lines.append(f"- Findings: {len(report.findings)}")
    lines.append(f"- Breakdown: {format_breakdown_markdown(score)}")
    lines.append("")

    if report.warnings:
        lines.append("## Warnings")
        lines.append("")
        for message in report.warnings:
            lines.append(f"- {message}")
        lines.append("")

    lines.append("## Categories")
    lines.append("")
    lines.append("| Category | Kind | Points | Failed rules |")
    lines.append("| --- | --- | ---: | --- |")
    for c in score.categories:
        failed = ", ".join(f"`{r}`" for r in c.failed_rules) or "-"
        lines.append(f"| {c.category} | {c.kind} | {c.points}/{c.max_points} | {failed} |")
    lines.append("")

    lines.extend(_verdict_section(report.verdict))

    lines.append("## Findings")
    lines.append("")
    if not report.findings:
        lines.append("No findings.")
        lines.append("")
        return "\n".join(lines)

    lines.append("| File | Line | Rule | Severity | Category | Message |")
    lines.append("| --- | ---: | --- | --- | --- | --- |")
    for f in report.findings:
        file_cell, line_cell = _format_location(f)
        lines.append(
            f"| {file_cell} | {line_cell} | `{f.rule_id}` | {f.severity} | {f.category} | {_md_escape_cell(f.message)} |"
        )

    lines.append("")
    return "\n".join(lines)


def _verdict_section(verdict: Verdict) -> list[str]:
    lines = ["## Baseline", ""]
    if verdict.status == "no-baseline":
        lines.append("No baseline accepted yet.")
    elif verdict.status == "unchanged":
        lines.append("Issue counts match the accepted baseline.")
    elif verdict.status == "decreased":
        lines.append("Issue counts decreased since the accepted baseline.")
    else:
        lines.append("**Regression:** issue counts increased since the accepted baseline.")

    deltas = [*verdict.increased, *verdict.decreased]
    if deltas:
        lines.append("")
        lines.append("| Rule | Baseline | Current | Delta |")
        lines.append("| --- | ---: | ---: | ---: |")
        for d in deltas:
            lines.append(f"| `{d.rule_id}` | {d.baseline} | {d.current} | {d.delta:+d} |")
    lines.append("")
    return lines


def _format_location(f: Finding) -> tuple[str, str]:
    if f.path is None:
        return "-", "-"
    if f.location is None or f.location.line is None:
        return _md_escape_cell(f.path), "-"
    return _md_escape_cell(f.path), str(int(f.location.line))


def _md_escape_cell(text: str) -> str:
    # Markdown tables break on pipes/newlines.
    return text.replace("\\", "\\\\").replace("|", "\\|").replace("\n", " ").strip()

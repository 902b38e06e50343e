from __future__ import annotations

from collections import defaultdict

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from conformgate import __version__
from conformgate.engine.scoring import conformance_level, format_breakdown_terminal
from conformgate.engine.types import SEVERITY_RANK, Finding, ReportModel, Verdict

_SEVERITY_ICON = {"critical": "✖", "high": "✖", "medium": "⚠", "low": "•", "info": "ℹ"}
_SEVERITY_STYLE = {"critical": "bold red", "high": "red", "medium": "yellow", "low": "cyan", "info": "dim"}
_LEVEL_STYLE = {"excellent": "bold green", "good": "green", "fair": "yellow", "poor": "bold red"}


def render_terminal(report: ReportModel, *, console: Console, show_details: bool = True) -> None:
    header = Text()
    header.append("ConformGate ", style="bold")
    header.append(f"v{__version__}", style="dim")
    header.append(f"  {report.catalog_name} {report.catalog_version}", style="dim")

    console.print(
        Panel(
            header,
            subtitle=f"Indexed {report.files_indexed} files",
            border_style="cyan",
        )
    )

    for message in report.warnings:
        console.print(Text(f"⚠ {message}", style="yellow"))

    if show_details:
        _print_findings(report.findings, console=console)

    _print_categories(report, console=console)
    _print_verdict(report.verdict, console=console)
    _print_summary(report, console=console)


def _print_findings(findings: tuple[Finding, ...], *, console: Console) -> None:
    by_category: dict[str, list[Finding]] = defaultdict(list)
    for f in findings:
        by_category[f.category].append(f)

    for category in sorted(by_category):
        console.print(Text(category, style="bold"))
        for f in sorted(by_category[category], key=_sort_key):
            _print_finding(console, f)
        console.print()


def _print_finding(console: Console, f: Finding) -> None:
    icon = _SEVERITY_ICON.get(f.severity, "•")
    style = _SEVERITY_STYLE.get(f.severity, "")

    loc = f.path or ""
    if f.path and f.location is not None and f.location.line is not None:
        loc += f":{f.location.line}"
        if f.location.column is not None:
            loc += f":{f.location.column}"

    line = Text()
    line.append(f"  {icon} ", style=style)
    line.append(f.rule_id, style="bold")
    if loc:
        line.append(f"  ({loc})", style="dim")
    line.append(f"  {f.message}")
    console.print(line)


def _print_categories(report: ReportModel, *, console: Console) -> None:
    table = Table(title="Categories", show_lines=False)
    table.add_column("Category", style="bold")
    table.add_column("Kind")
    table.add_column("Points", justify="right")
    table.add_column("Failed rules")
    for cat in report.score.categories:
        table.add_row(
            cat.category,
            cat.kind,
            f"{cat.points}/{cat.max_points}",
            ", ".join(cat.failed_rules) or "-",
        )
    console.print(table)


def _print_verdict(verdict: Verdict, *, console: Console) -> None:
    if verdict.status == "no-baseline":
        console.print(Text("Baseline: none accepted yet", style="dim"))
        return
    if verdict.status == "unchanged":
        console.print(Text("Baseline: unchanged", style="green"))
        return
    if verdict.status == "decreased":
        console.print(Text("Baseline: issues decreased, consider refreshing the baseline", style="green"))
        for d in verdict.decreased:
            console.print(Text(f"  {d.rule_id}: {d.baseline} → {d.current} ({d.delta:+d})", style="dim"))
        return

    console.print(Text("Baseline: REGRESSION, new issues since the accepted baseline", style="bold red"))
    for d in verdict.increased:
        console.print(Text(f"  {d.rule_id}: {d.baseline} → {d.current} ({d.delta:+d})", style="red"))
    for d in verdict.decreased:
        console.print(Text(f"  {d.rule_id}: {d.baseline} → {d.current} ({d.delta:+d})", style="dim"))


def _print_summary(report: ReportModel, *, console: Console) -> None:
    score = report.score
    level = conformance_level(score.base_total)
    console.print(Text("─" * 60, style="dim"))
    line = Text()
    line.append(f"Score: {score.base_total}/{score.base_max}", style="bold")
    line.append(f"  ({level.upper()})", style=_LEVEL_STYLE.get(level, ""))
    if score.bonus_max:
        line.append(f"  bonus +{score.bonus_total}/{score.bonus_max}", style="cyan")
    console.print(line)
    console.print(Text(f"Breakdown: {format_breakdown_terminal(score)}", style="dim"))
    console.print(Text(f"Findings: {len(report.findings)}", style="dim"))
    console.print(Text("─" * 60, style="dim"))


def _sort_key(f: Finding) -> tuple[int, str, str, int]:
    line = f.location.line if f.location and f.location.line else 0
    return -SEVERITY_RANK.get(f.severity, 0), f.rule_id, f.path or "", line

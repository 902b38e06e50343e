from __future__ import annotations

import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, cast

from conformgate.engine.index import FileSystemIndex
from conformgate.engine.matchers import (
    MATCHER_KINDS,
    AggregateMatcher,
    ContentPatternMatcher,
    ExistenceMatcher,
    Matcher,
    StructuralMatcher,
)
from conformgate.engine.types import SEVERITY_ORDER, CategoryKind, Finding, Severity


class CatalogError(ValueError):
    """Raised when a rule catalog is missing, unreadable or invalid."""


BASE_CATEGORIES: tuple[str, ...] = ("structure", "style", "architecture", "testing", "practices")
BASE_TOTAL = 100
DEFAULT_CATALOG_RESOURCE = "typo3.toml"

_RULE_ID_RE = re.compile(r"^[a-z][a-z0-9_]*(?:[.-][a-z0-9_]+)*$")
_CATEGORY_ID_RE = re.compile(r"^[a-z][a-z0-9_-]*$")
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE}


@dataclass(frozen=True, slots=True)
class Category:
    id: str
    title: str
    kind: CategoryKind
    max_points: int


@dataclass(frozen=True, slots=True)
class Rule:
    id: str
    title: str
    category: str
    weight: int
    severity: Severity
    matcher: Matcher
    baseline_suppressible: bool = False
    version: int = 1
    description: str = ""

    def evaluate(self, index: FileSystemIndex) -> list[Finding]:
        return self.matcher.match(self, index)


@dataclass(frozen=True, slots=True)
class RuleCatalog:
    """
    Immutable set of rules grouped into weighted categories.

    Structural problems (unknown categories, duplicate ids) are rejected at
    construction; weight/budget mismatches are data-integrity warnings and are
    reported through `integrity_warnings()` instead.
    """

    categories: tuple[Category, ...]
    rules: tuple[Rule, ...]
    name: str = "custom"
    version: str = "0"
    _categories_by_id: Mapping[str, Category] = field(init=False, repr=False, compare=False)
    _rules_by_id: Mapping[str, Rule] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        categories: dict[str, Category] = {}
        for cat in self.categories:
            if cat.id in categories:
                raise CatalogError(f"Duplicate category id: {cat.id}")
            if cat.kind == "base" and cat.id not in BASE_CATEGORIES:
                valid = ", ".join(BASE_CATEGORIES)
                raise CatalogError(f"Base category {cat.id!r} is not one of: {valid}")
            if cat.max_points < 0:
                raise CatalogError(f"Category {cat.id!r} max_points must be >= 0")
            categories[cat.id] = cat

        rules: dict[str, Rule] = {}
        for rule in self.rules:
            if rule.id in rules:
                raise CatalogError(f"Duplicate rule id: {rule.id}")
            if rule.category not in categories:
                raise CatalogError(f"Rule {rule.id!r} references unknown category {rule.category!r}")
            if rule.weight < 0:
                raise CatalogError(f"Rule {rule.id!r} weight must be >= 0")
            rules[rule.id] = rule

        object.__setattr__(self, "_categories_by_id", MappingProxyType(categories))
        object.__setattr__(self, "_rules_by_id", MappingProxyType(rules))

    def category(self, category_id: str) -> Category | None:
        return self._categories_by_id.get(category_id)

    def rule(self, rule_id: str) -> Rule | None:
        return self._rules_by_id.get(rule_id)

    def rules_in(self, category_id: str) -> tuple[Rule, ...]:
        return tuple(r for r in self.rules if r.category == category_id)

    @property
    def base_categories(self) -> tuple[Category, ...]:
        return tuple(c for c in self.categories if c.kind == "base")

    @property
    def bonus_categories(self) -> tuple[Category, ...]:
        return tuple(c for c in self.categories if c.kind == "bonus")

    def without_bonus(self) -> RuleCatalog:
        base_ids = {c.id for c in self.base_categories}
        return RuleCatalog(
            categories=self.base_categories,
            rules=tuple(r for r in self.rules if r.category in base_ids),
            name=self.name,
            version=self.version,
        )

    def integrity_warnings(self) -> tuple[str, ...]:
        warnings: list[str] = []
        for cat in self.categories:
            total = sum(r.weight for r in self.rules_in(cat.id))
            if total != cat.max_points:
                warnings.append(
                    f"category {cat.id!r}: rule weights sum to {total}, declared max_points is {cat.max_points}"
                )
        base_max = sum(c.max_points for c in self.base_categories)
        if self.base_categories and base_max != BASE_TOTAL:
            warnings.append(f"base categories sum to {base_max} points, expected {BASE_TOTAL}")
        return tuple(warnings)


def load_catalog(path: Path) -> RuleCatalog:
    """Load a rule catalog from a TOML file."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise CatalogError(f"Catalog not found: {path}") from exc
    except OSError as exc:
        raise CatalogError(f"Failed to read catalog: {path}") from exc
    except UnicodeDecodeError as exc:
        raise CatalogError(f"Catalog is not valid UTF-8: {path}") from exc
    return parse_catalog(text, source=str(path))


def load_default_catalog() -> RuleCatalog:
    text = resources.files("conformgate.catalogs").joinpath(DEFAULT_CATALOG_RESOURCE).read_text(encoding="utf-8")
    return parse_catalog(text, source=f"<builtin:{DEFAULT_CATALOG_RESOURCE}>")


def parse_catalog(text: str, *, source: str = "<catalog>") -> RuleCatalog:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise CatalogError(f"Invalid TOML in {source}: {exc}") from exc

    meta = data.get("catalog", {})
    if not isinstance(meta, dict):
        raise CatalogError(f"{source}: `catalog` must be a table.")
    name = str(meta.get("name", "custom"))
    version = str(meta.get("version", "0"))

    categories_raw = data.get("categories", {})
    if not isinstance(categories_raw, dict) or not categories_raw:
        raise CatalogError(f"{source}: `categories` must be a non-empty table.")
    categories = tuple(_parse_category(cid, table, source=source) for cid, table in categories_raw.items())

    rules_raw = data.get("rules", [])
    if not isinstance(rules_raw, list):
        raise CatalogError(f"{source}: `rules` must be an array of tables.")
    rules = tuple(_parse_rule(item, position=i, source=source) for i, item in enumerate(rules_raw))

    try:
        return RuleCatalog(categories=categories, rules=rules, name=name, version=version)
    except CatalogError as exc:
        raise CatalogError(f"{source}: {exc}") from exc


def _parse_category(category_id: Any, table: Any, *, source: str) -> Category:
    field_name = f"categories.{category_id}"
    if not isinstance(category_id, str) or not _CATEGORY_ID_RE.match(category_id):
        raise CatalogError(f"{source}: `{field_name}` has an invalid id.")
    if not isinstance(table, dict):
        raise CatalogError(f"{source}: `{field_name}` must be a table.")

    kind = table.get("kind", "base")
    if kind not in {"base", "bonus"}:
        raise CatalogError(f"{source}: `{field_name}.kind` must be 'base' or 'bonus'.")
    max_points = table.get("max_points", table.get("max-points"))
    if not isinstance(max_points, int) or isinstance(max_points, bool) or max_points < 0:
        raise CatalogError(f"{source}: `{field_name}.max_points` must be an integer >= 0.")
    title = table.get("title", category_id.replace("_", " ").title())
    return Category(id=category_id, title=str(title), kind=cast(CategoryKind, kind), max_points=max_points)


def _parse_rule(item: Any, *, position: int, source: str) -> Rule:
    if not isinstance(item, dict):
        raise CatalogError(f"{source}: `rules[{position}]` must be a table.")

    rule_id = item.get("id")
    if not isinstance(rule_id, str) or not _RULE_ID_RE.match(rule_id.strip()):
        raise CatalogError(f"{source}: `rules[{position}].id` must look like 'structure.composer-json'.")
    rule_id = rule_id.strip()
    field_name = f"rules[{rule_id}]"

    category = item.get("category")
    if not isinstance(category, str) or not category.strip():
        raise CatalogError(f"{source}: `{field_name}.category` must be a string.")

    weight = item.get("weight", 0)
    if not isinstance(weight, int) or isinstance(weight, bool) or weight < 0:
        raise CatalogError(f"{source}: `{field_name}.weight` must be an integer >= 0.")

    severity = str(item.get("severity", "medium")).strip().lower()
    if severity not in SEVERITY_ORDER:
        valid = ", ".join(SEVERITY_ORDER)
        raise CatalogError(f"{source}: `{field_name}.severity` must be one of: {valid}.")

    suppressible = item.get("baseline_suppressible", item.get("baseline-suppressible", False))
    if not isinstance(suppressible, bool):
        raise CatalogError(f"{source}: `{field_name}.baseline_suppressible` must be a boolean.")

    version = item.get("version", 1)
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise CatalogError(f"{source}: `{field_name}.version` must be a positive integer.")

    return Rule(
        id=rule_id,
        title=str(item.get("title", rule_id)),
        description=str(item.get("description", "")),
        category=category.strip(),
        weight=weight,
        severity=cast(Severity, severity),
        matcher=_parse_matcher(item, field_name=field_name, source=source),
        baseline_suppressible=suppressible,
        version=version,
    )


def _parse_matcher(item: dict[str, Any], *, field_name: str, source: str) -> Matcher:
    kind = item.get("kind")
    if kind not in MATCHER_KINDS:
        valid = ", ".join(MATCHER_KINDS)
        raise CatalogError(f"{source}: `{field_name}.kind` must be one of: {valid}.")

    def globs(key: str, *, required: bool = True) -> tuple[str, ...]:
        value = item.get(key)
        if value is None and not required:
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not value or any(not isinstance(v, str) or not v.strip() for v in value):
            raise CatalogError(f"{source}: `{field_name}.{key}` must be a glob or a list of globs.")
        return tuple(v.strip() for v in value)

    def optional_int(key: str) -> int | None:
        value = item.get(key)
        if value is None:
            return None
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise CatalogError(f"{source}: `{field_name}.{key}` must be an integer >= 0.")
        return value

    if kind == "existence":
        must_exist = item.get("must_exist", True)
        if not isinstance(must_exist, bool):
            raise CatalogError(f"{source}: `{field_name}.must_exist` must be a boolean.")
        return ExistenceMatcher(paths=globs("paths"), must_exist=must_exist)

    if kind == "content":
        flags = _regex_flags(item.get("flags", ""), field_name=field_name, source=source)
        mode = item.get("mode", "forbid")
        if mode not in {"forbid", "require"}:
            raise CatalogError(f"{source}: `{field_name}.mode` must be 'forbid' or 'require'.")
        exclude_raw = item.get("exclude")
        min_matches = optional_int("min_matches")
        return ContentPatternMatcher(
            files=globs("files"),
            pattern=_compile(item.get("pattern"), flags, field_name=f"{field_name}.pattern", source=source),
            mode=mode,
            exclude=_compile(exclude_raw, flags, field_name=f"{field_name}.exclude", source=source)
            if exclude_raw is not None
            else None,
            max_matches=optional_int("max_matches") or 0,
            min_matches=1 if min_matches is None else min_matches,
        )

    if kind == "structural":
        source_glob = item.get("source")
        expect = item.get("expect")
        if not isinstance(source_glob, str) or not isinstance(expect, str):
            raise CatalogError(f"{source}: `{field_name}` needs string `source` and `expect`.")
        strip = item.get("strip", "")
        if not isinstance(strip, str):
            raise CatalogError(f"{source}: `{field_name}.strip` must be a string.")
        matcher = StructuralMatcher(source=source_glob, expect=expect, strip=strip)
        try:
            matcher.counterpart("a/b.txt")
        except (KeyError, IndexError, AttributeError, ValueError) as exc:
            raise CatalogError(f"{source}: `{field_name}.expect` has an unknown placeholder: {exc}") from exc
        return matcher

    per = globs("per", required=False)
    min_ratio = optional_int("min_ratio_percent")
    if min_ratio is not None and not per:
        raise CatalogError(f"{source}: `{field_name}.min_ratio_percent` requires `per`.")
    return AggregateMatcher(
        count=globs("count"),
        per=per,
        min_count=optional_int("min_count"),
        max_count=optional_int("max_count"),
        min_ratio_percent=min_ratio,
    )


def _regex_flags(value: Any, *, field_name: str, source: str) -> int:
    if not isinstance(value, str):
        raise CatalogError(f"{source}: `{field_name}.flags` must be a string like 'i'.")
    flags = 0
    for ch in value.strip().lower():
        if ch not in _REGEX_FLAGS:
            raise CatalogError(f"{source}: `{field_name}.flags` contains unknown flag {ch!r}.")
        flags |= _REGEX_FLAGS[ch]
    return flags


def _compile(value: Any, flags: int, *, field_name: str, source: str) -> re.Pattern[str]:
    if not isinstance(value, str) or not value:
        raise CatalogError(f"{source}: `{field_name}` must be a non-empty regex string.")
    try:
        return re.compile(value, flags)
    except re.error as exc:
        raise CatalogError(f"{source}: `{field_name}` is not a valid regex: {exc}") from exc

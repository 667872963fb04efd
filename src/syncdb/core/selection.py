"""
Table selection - include/exclude lists with glob patterns.

Patterns use shell-style wildcards (``log_*``, ``tmp?``). A table that is
fully excluded is also excluded from schema and data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Iterable


def table_matches(table: str, pattern: str) -> bool:
    """True if the table name matches a plain name or glob pattern."""
    pattern = pattern.strip()
    if not pattern:
        return False
    return fnmatchcase(table, pattern)


def expand_patterns(tables: Iterable[str], patterns: Iterable[str]) -> set[str]:
    """Names from tables matched by any pattern."""
    pattern_list = [p for p in patterns if p.strip()]
    return {t for t in tables if any(table_matches(t, p) for p in pattern_list)}


def has_wildcards(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


@dataclass
class TableSelection:
    """Resolved include/exclude sets over a known table universe."""

    include: set[str] = field(default_factory=set)
    exclude: set[str] = field(default_factory=set)
    exclude_schema: set[str] = field(default_factory=set)
    exclude_data: set[str] = field(default_factory=set)
    include_all: bool = True

    @classmethod
    def build(
        cls,
        universe: Iterable[str],
        tables: Iterable[str] = (),
        exclude_table: Iterable[str] = (),
        exclude_table_schema: Iterable[str] = (),
        exclude_table_data: Iterable[str] = (),
    ) -> "TableSelection":
        names = list(universe)
        table_patterns = [t for t in tables if t.strip()]
        exclude = expand_patterns(names, exclude_table)
        return cls(
            include=expand_patterns(names, table_patterns),
            exclude=exclude,
            exclude_schema=expand_patterns(names, exclude_table_schema) | exclude,
            exclude_data=expand_patterns(names, exclude_table_data) | exclude,
            include_all=not table_patterns,
        )

    def is_selected(self, table: str) -> bool:
        if table in self.exclude:
            return False
        return self.include_all or table in self.include

    def filter(self, ordered: Iterable[str]) -> list[str]:
        """Keep selected tables, preserving order."""
        return [t for t in ordered if self.is_selected(t)]

    def skip_data(self, table: str) -> bool:
        return table in self.exclude_data

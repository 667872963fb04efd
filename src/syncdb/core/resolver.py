"""
Dependency Resolver - foreign-key aware table ordering.

Orders tables so that every table comes after the tables it references.
Cycles (self references, mutual references, longer loops) are tolerated:
the edge that closes a cycle is dropped and reported, never raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping


logger = logging.getLogger(__name__)

_UNVISITED, _IN_PROGRESS, _DONE = 0, 1, 2


@dataclass(frozen=True)
class DroppedEdge:
    """A foreign-key edge ignored because it closed a cycle."""

    table: str
    dependency: str


class DependencyResolver:
    """
    Depth-first topological sort over a table set.

    Input order decides where traversal starts, so tables with no
    constraints between them keep their given order.

    Example:
        resolver = DependencyResolver()
        order = resolver.resolve(
            ["orders", "customers"],
            {"orders": ["customers"]},
        )
        # ["customers", "orders"]
        resolver.cycles_detected  # 0
    """

    def __init__(self) -> None:
        self.dropped_edges: list[DroppedEdge] = []

    @property
    def cycles_detected(self) -> int:
        return len(self.dropped_edges)

    def resolve(
        self,
        tables: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
    ) -> list[str]:
        """
        Compute a processing order.

        Args:
            tables: Tables to order, in preferred order
            dependencies: table -> tables it references

        Returns:
            Permutation of the de-duplicated input tables
        """
        self.dropped_edges = []
        table_list = list(dict.fromkeys(tables))
        targets = set(table_list)
        state = {name: _UNVISITED for name in table_list}
        order: list[str] = []

        for start in table_list:
            if state[start] != _UNVISITED:
                continue

            state[start] = _IN_PROGRESS
            stack = [(start, iter(self._deps_of(start, dependencies)))]

            while stack:
                table, pending = stack[-1]
                descended = False

                for dep in pending:
                    if dep == table or dep not in targets:
                        continue
                    if state[dep] == _DONE:
                        continue
                    if state[dep] == _IN_PROGRESS:
                        self._drop(table, dep)
                        continue

                    state[dep] = _IN_PROGRESS
                    stack.append((dep, iter(self._deps_of(dep, dependencies))))
                    descended = True
                    break

                if not descended:
                    stack.pop()
                    state[table] = _DONE
                    order.append(table)

        return order

    @staticmethod
    def _deps_of(table: str, dependencies: Mapping[str, Iterable[str]]) -> list[str]:
        return list(dependencies.get(table, ()))

    def _drop(self, table: str, dependency: str) -> None:
        self.dropped_edges.append(DroppedEdge(table, dependency))
        logger.warning(
            "Foreign key cycle: %s -> %s ignored for ordering",
            table,
            dependency,
            extra={"table": table, "dependency": dependency, "event": "cycle_edge_dropped"},
        )


def resolve_order(
    tables: Iterable[str],
    dependencies: Mapping[str, Iterable[str]],
) -> list[str]:
    """Shortcut for a one-off resolution."""
    return DependencyResolver().resolve(tables, dependencies)

"""Tests for the dependency resolver."""

import pytest

from syncdb.core.resolver import DependencyResolver, DroppedEdge, resolve_order


def assert_topological(order: list[str], deps: dict[str, list[str]]) -> None:
    position = {name: i for i, name in enumerate(order)}
    for table, targets in deps.items():
        for target in targets:
            if target != table and target in position and table in position:
                assert position[target] < position[table], f"{target} must precede {table}"


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_parent_before_child(self) -> None:
        """Orders referencing customers come after customers."""
        order = resolve_order(["orders", "customers"], {"orders": ["customers"]})
        assert order == ["customers", "orders"]

    def test_self_reference(self) -> None:
        """A self-referencing table resolves without recursion."""
        resolver = DependencyResolver()
        order = resolver.resolve(["employees"], {"employees": ["employees"]})
        assert order == ["employees"]
        assert resolver.cycles_detected == 0

    def test_no_constraints_keeps_input_order(self) -> None:
        """Independent tables keep their given order."""
        assert resolve_order(["c", "a", "b"], {}) == ["c", "a", "b"]

    def test_empty_input(self) -> None:
        """Empty input gives empty output."""
        assert resolve_order([], {"a": ["b"]}) == []

    def test_dependency_outside_set_is_ignored(self) -> None:
        """Referenced tables not in the set are never emitted."""
        order = resolve_order(["orders"], {"orders": ["customers"]})
        assert order == ["orders"]

    def test_duplicates_removed(self) -> None:
        """Each table appears once."""
        assert resolve_order(["a", "b", "a"], {}) == ["a", "b"]

    @pytest.mark.parametrize(
        "tables,deps",
        [
            (["d", "c", "b", "a"], {"d": ["c"], "c": ["b"], "b": ["a"]}),
            (["x", "y", "z", "w"], {"x": ["y", "z"], "y": ["z"], "w": ["x", "z"]}),
            (
                ["line_items", "orders", "products", "customers", "addresses"],
                {
                    "line_items": ["orders", "products"],
                    "orders": ["customers", "addresses"],
                    "addresses": ["customers"],
                },
            ),
        ],
    )
    def test_acyclic_graphs_are_topological(self, tables: list[str], deps: dict[str, list[str]]) -> None:
        """Every table follows all tables it references."""
        order = resolve_order(tables, deps)
        assert sorted(order) == sorted(tables)
        assert_topological(order, deps)

    def test_mutual_cycle_drops_one_edge(self) -> None:
        """A two-table cycle yields a permutation and one dropped edge."""
        resolver = DependencyResolver()
        order = resolver.resolve(["a", "b"], {"a": ["b"], "b": ["a"]})
        assert sorted(order) == ["a", "b"]
        assert resolver.cycles_detected == 1
        assert resolver.dropped_edges == [DroppedEdge("b", "a")]

    def test_long_cycle_is_permutation(self) -> None:
        """A longer loop plus a tail still resolves every table once."""
        tables = ["a", "b", "c", "d", "e"]
        deps = {"a": ["b"], "b": ["c"], "c": ["a"], "e": ["d"], "d": ["a"]}
        resolver = DependencyResolver()
        order = resolver.resolve(tables, deps)
        assert sorted(order) == tables
        assert len(order) == len(set(order))
        assert resolver.cycles_detected >= 1
        assert order.index("a") < order.index("d") < order.index("e")

    def test_cycle_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """Dropped edges are reported as warnings."""
        with caplog.at_level("WARNING"):
            resolve_order(["a", "b"], {"a": ["b"], "b": ["a"]})
        assert any("cycle" in r.message.lower() for r in caplog.records)

    def test_deep_chain(self) -> None:
        """Deep chains do not hit the recursion limit."""
        names = [f"t{i}" for i in range(5000)]
        deps = {names[i]: [names[i + 1]] for i in range(len(names) - 1)}
        order = resolve_order(names, deps)
        assert order == list(reversed(names))

    def test_resolver_resets_between_runs(self) -> None:
        """Dropped edges belong to the last run only."""
        resolver = DependencyResolver()
        resolver.resolve(["a", "b"], {"a": ["b"], "b": ["a"]})
        resolver.resolve(["a", "b"], {})
        assert resolver.cycles_detected == 0

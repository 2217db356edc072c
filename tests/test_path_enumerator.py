import pytest

from flow_explorer.knowledge import Click, ExplorationGraph, Navigate, State
from flow_explorer.path_enumerator import all_paths, path_actions, paths_for_workflow, paths_from


def build(edges, order=None):
    """edges: list of (src, dst, locator). States are created in `order`, then in first-seen order."""
    g = ExplorationGraph()
    names = list(order or [])
    for src, dst, _ in edges:
        for n in (src, dst):
            if n not in names:
                names.append(n)
    for n in names:
        g.get_or_create(n, lambda n=n: State(n, url=f"https://shop.test/{n}"))
    for src, dst, loc in edges:
        g.add_transition(g.get_state(src), g.get_state(dst), Click(loc))
    return g


class TestPathsFrom:
    def test_cycle_yields_every_simple_prefix(self):
        g = build([("A", "B", "#b"), ("B", "C", "#c"), ("C", "A", "#a")])
        assert paths_from(g, "A") == [["A"], ["A", "B"], ["A", "B", "C"]]

    def test_branches_follow_discovery_order(self):
        g = build([("A", "C", "#c"), ("A", "B", "#b"), ("B", "D", "#d")])
        assert paths_from(g, "A") == [["A"], ["A", "C"], ["A", "B"], ["A", "B", "D"]]

    def test_diamond_reuses_shared_node_on_both_branches(self):
        g = build([("A", "B", "#b"), ("A", "C", "#c"), ("B", "D", "#d1"), ("C", "D", "#d2")])
        assert paths_from(g, "A") == [["A"], ["A", "B"], ["A", "B", "D"], ["A", "C"], ["A", "C", "D"]]

    def test_unknown_start(self):
        assert paths_from(ExplorationGraph(), "nope") == []

    def test_self_loop_is_not_repeated(self):
        g = build([("A", "A", "#again")])
        assert paths_from(g, "A") == [["A"]]

    def test_paths_are_simple(self):
        g = build([("A", "B", "#b"), ("B", "A", "#a"), ("B", "C", "#c"), ("C", "B", "#back")])
        for path in all_paths(g):
            assert len(path) == len(set(path))


class TestAllPaths:
    def test_each_start_gets_a_fresh_visited_set(self):
        g = build([("A", "B", "#b"), ("B", "C", "#c"), ("C", "A", "#a")])
        paths = all_paths(g)
        assert ["B", "C", "A"] in paths
        assert ["C", "A", "B"] in paths
        assert len(paths) == 9

    def test_is_deterministic(self):
        edges = [("A", "B", "#b"), ("A", "C", "#c"), ("C", "B", "#cb")]
        assert all_paths(build(edges)) == all_paths(build(edges))


class TestWorkflowPaths:
    def test_restricted_to_members(self):
        g = build([("A", "B", "#b"), ("B", "C", "#c"), ("A", "X", "#x"), ("X", "C", "#xc")])
        paths = paths_for_workflow(g, {"A", "B", "C"})
        assert paths == [["A"], ["A", "B"], ["A", "B", "C"], ["B"], ["B", "C"], ["C"]]
        assert all("X" not in p for p in paths)


class TestPathActions:
    def test_first_edge_per_hop(self):
        g = build([("A", "B", "#first"), ("A", "B", "#second"), ("B", "C", "#c")])
        assert path_actions(g, ["A", "B", "C"]) == [
            Navigate("https://shop.test/A"), Click("#first"), Click("#c"),
        ]

    def test_missing_hop(self):
        g = build([("A", "B", "#b")], order=["A", "B", "C"])
        with pytest.raises(ValueError):
            path_actions(g, ["A", "C"])
        with pytest.raises(KeyError):
            path_actions(g, ["Z"])
        assert path_actions(g, []) == []

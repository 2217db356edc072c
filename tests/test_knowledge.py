import json

import networkx as nx
import pytest

from flow_explorer.knowledge import (
    Backtrack,
    Click,
    Element,
    ElementKind,
    End,
    ExplorationGraph,
    FormField,
    FormFill,
    Navigate,
    State,
    Workflow,
    action_from_dict,
)


def make_graph(*fps):
    g = ExplorationGraph()
    states = [g.get_or_create(fp, lambda fp=fp: State(fp, url=fp)) for fp in fps]
    return g, states


class TestStates:
    def test_get_or_create_builds_once(self):
        g = ExplorationGraph()
        calls = []

        def factory():
            calls.append(1)
            return State("s1", url="https://shop.test/s1")

        first = g.get_or_create("s1", factory)
        second = g.get_or_create("s1", factory)

        assert first is second
        assert len(calls) == 1
        assert g.state_count == 1

    def test_factory_fingerprint_must_match(self):
        g = ExplorationGraph()
        with pytest.raises(ValueError):
            g.get_or_create("s1", lambda: State("other", url="x"))

    def test_lookup_of_unknown_state(self):
        g = ExplorationGraph()
        assert g.get_state("nope") is None
        assert not g.has_state("nope")
        assert g.children_of("nope") == []


class TestTransitions:
    def test_duplicate_transition_is_ignored(self):
        g, (a, b) = make_graph("a", "b")
        assert g.add_transition(a, b, Click("#go"))
        assert not g.add_transition(a, b, Click("#go", reasoning="again"))
        assert g.transition_count == 1

    def test_parallel_edges_with_different_actions(self):
        g, (a, b) = make_graph("a", "b")
        g.add_transition(a, b, Click("#one"))
        g.add_transition(a, b, Click("#two"))
        assert g.transitions_between("a", "b") == [Click("#one"), Click("#two")]
        assert g.children_of(a) == [b]

    def test_children_in_insertion_order(self):
        g, (a, b, c, d) = make_graph("a", "b", "c", "d")
        g.add_transition(a, d, Click("#d"))
        g.add_transition(a, b, Click("#b"))
        g.add_transition(a, c, Click("#c"))
        assert [s.fingerprint for s in g.children_of("a")] == ["d", "b", "c"]

    def test_unknown_endpoint_rejected(self):
        g, (a,) = make_graph("a")
        with pytest.raises(KeyError):
            g.add_transition(a, State("ghost", url="x"), Click("#x"))

    def test_self_loop(self):
        g, (a,) = make_graph("a")
        g.add_transition(a, a, Click("#refresh"))
        assert g.children_of(a) == [a]


class TestActions:
    def test_key_ignores_reasoning(self):
        assert Click("#x", reasoning="a").key == Click("#x", reasoning="b").key
        assert Click("#x").key != Navigate("#x").key

    @pytest.mark.parametrize("action", [
        Click("#buy", reasoning="buy it"),
        FormFill(fields=(("#q", "shoes"),), submit="#go"),
        FormFill(fields=(("#agree", "on"),), submit=None),
        Navigate("https://shop.test/cart"),
        Backtrack(steps=2),
        End(reasoning="done"),
    ])
    def test_dict_shape_round_trips(self, action):
        data = json.loads(json.dumps(action.to_dict()))
        assert data["type"] == action.kind
        assert action_from_dict(data) == action

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            action_from_dict({"type": "hover"})


class TestWorkflow:
    def test_members_are_unique_and_ordered(self):
        wf = Workflow("workflow-1")
        wf.add("a", "start")
        wf.add("b")
        wf.add("a", "seen again")
        assert wf.members == ["a", "b"]
        assert wf.reasons == ["start", "seen again"]
        assert "b" in wf
        assert wf.member_set == frozenset({"a", "b"})


class TestPersistence:
    def test_graph_dict_round_trip(self):
        g = ExplorationGraph()
        login = Element(
            ElementKind.FORM, "#login",
            fields=(FormField("#user", name="user"), FormField("#pw", input_type="password", required=True)),
            submit_locator="#go",
        )
        home = g.get_or_create("h", lambda: State("h", "https://shop.test/", "Home",
                                                  (Element(ElementKind.LINK, "#a", "A", href="/a"), login)))
        dash = g.get_or_create("d", lambda: State("d", "https://shop.test/d", "Dashboard"))
        g.add_transition(home, dash, FormFill(fields=(("#user", "u"), ("#pw", "p")), submit="#go"))
        g.add_transition(dash, home, Click("#home"))

        restored = ExplorationGraph.from_dict(json.loads(json.dumps(g.to_dict())))

        assert restored.all_states() == g.all_states()
        assert sorted((t.source, t.target, t.action.key) for t in restored.transitions()) == \
            sorted((t.source, t.target, t.action.key) for t in g.transitions())

    def test_networkx_export_is_graphml_safe(self, tmp_path):
        g, (a, b) = make_graph("a", "b")
        g.add_transition(a, b, Click("#go"))
        out = tmp_path / "g.graphml"
        nx.write_graphml(g.to_networkx(), out)
        loaded = nx.read_graphml(out)
        assert set(loaded.nodes) == {"a", "b"}

    def test_snapshot_is_independent(self):
        g, (a, b) = make_graph("a", "b")
        snap = g.snapshot()
        g.add_transition(a, b, Click("#go"))
        assert snap.transition_count == 0
        assert g.transition_count == 1

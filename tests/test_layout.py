"""Tests for the layout pass."""

import random
from collections import defaultdict

import pytest

from studymap.database import MapSettings, Node
from studymap.hierarchy import TreeIndex, iter_ancestry
from studymap.layout import (
    HORIZONTAL_SPACING,
    VERTICAL_SPACING,
    Position,
    compute_layout,
    compute_positions,
    reconcile,
    subtree_widths,
    visible,
)


def node(node_id, parent_id=None):
    return Node(id=node_id, map_id="map", parent_id=parent_id, title=f"Node {node_id}")


def random_forest(rng, size):
    nodes = []
    for i in range(size):
        parent = rng.choice([None] + [n.id for n in nodes]) if nodes else None
        nodes.append(node(f"n{i}", parent))
    return nodes


def positions_of(result):
    return {rn.id: (rn.x, rn.y) for rn in result.render_nodes}


def edges_of(result):
    return {(e.parent_id, e.child_id) for e in result.render_edges}


class TestReferenceTree:
    def test_widths(self, scenario_nodes):
        widths = subtree_widths(TreeIndex(scenario_nodes))
        assert widths == {"A": 3, "B": 2, "C": 1, "D": 1, "E": 1}

    def test_positions(self, scenario_nodes):
        result = compute_layout(scenario_nodes)
        assert positions_of(result) == {
            "A": (300.0, 0),
            "B": (150.0, 140),
            "C": (600.0, 140),
            "D": (0.0, 280),
            "E": (300.0, 280),
        }
        assert [rn.id for rn in result.render_nodes] == ["A", "B", "C", "D", "E"]
        assert edges_of(result) == {("A", "B"), ("A", "C"), ("B", "D"), ("B", "E")}

    def test_render_flags(self, scenario_nodes):
        by_id = {rn.id: rn for rn in compute_layout(scenario_nodes, collapsed={"B"}).render_nodes}
        assert by_id["B"].has_children and by_id["B"].is_collapsed
        assert by_id["A"].has_children and not by_id["A"].is_collapsed
        assert not by_id["C"].has_children
        assert by_id["A"].level == 0 and by_id["C"].level == 1

    def test_collapse_child(self, scenario_nodes):
        result = compute_layout(scenario_nodes, collapsed={"B"})
        assert positions_of(result) == {
            "A": (150.0, 0),
            "B": (0.0, 140),
            "C": (300.0, 140),
        }
        assert edges_of(result) == {("A", "B"), ("A", "C")}

    def test_collapse_root(self, scenario_nodes):
        result = compute_layout(scenario_nodes, collapsed={"A"})
        assert positions_of(result) == {"A": (0.0, 0)}
        assert result.render_edges == []

    def test_to_dict(self, scenario_nodes):
        data = compute_layout(scenario_nodes, collapsed={"B"}).to_dict()
        assert data["renderNodes"][1] == {
            "id": "B", "x": 0.0, "y": 140, "level": 1,
            "hasChildren": True, "isCollapsed": True, "isDangling": False,
        }
        assert {"parentId": "A", "childId": "C"} in data["renderEdges"]


class TestForests:
    def test_multiple_roots_have_gap(self, scenario_nodes):
        nodes = scenario_nodes + [node("R"), node("S", "R")]
        positions = positions_of(compute_layout(nodes))
        # First tree spans [0, 900), then one empty slot.
        assert positions["R"] == (1200.0, 0)
        assert positions["S"] == (1200.0, 140)

    def test_dangling_parent_laid_out_after_roots(self):
        result = compute_layout([node("A"), node("X", "ghost"), node("Y", "X")])
        positions = positions_of(result)
        assert positions["A"] == (0.0, 0)
        assert positions["X"] == (600.0, 0)
        assert positions["Y"] == (600.0, 140)
        by_id = {rn.id: rn for rn in result.render_nodes}
        assert by_id["X"].is_dangling and by_id["X"].level == 0
        assert not by_id["Y"].is_dangling
        assert edges_of(result) == {("X", "Y")}

    def test_collapsed_missing_parent_does_not_hide_node(self):
        # Collapse state can name a parent that is not loaded.
        result = compute_layout([node("A"), node("X", "ghost"), node("Y", "X")], collapsed={"ghost"})
        assert {rn.id for rn in result.render_nodes} == {"A", "X", "Y"}
        by_id = {rn.id: rn for rn in result.render_nodes}
        assert by_id["X"].is_dangling
        assert by_id["X"].x == 600.0
        assert edges_of(result) == {("X", "Y")}

        vis = visible(TreeIndex([node("X", "ghost")]), {"ghost"})
        assert vis.nodes == frozenset({"X"})

    def test_stored_cycle_does_not_hang(self):
        nodes = [node("A", "D"), node("B", "A"), node("C", "A"), node("D", "B"), node("E", "B")]
        result = compute_layout(nodes)
        assert {rn.id for rn in result.render_nodes} == {"A", "B", "C", "D", "E"}

    def test_empty(self):
        result = compute_layout([])
        assert result.render_nodes == []
        assert result.render_edges == []

    def test_settings_spacing(self, scenario_nodes):
        settings = MapSettings(horizontal_spacing=100.0, vertical_spacing=50.0)
        positions = positions_of(compute_layout(scenario_nodes, settings=settings))
        assert positions["A"] == (100.0, 0)
        assert positions["D"] == (0.0, 100.0)


class TestWidths:
    def deep_tree(self):
        # r -> a -> (b -> (c -> (d1, d2), e), f), g
        return [
            node("r"), node("a", "r"), node("b", "a"), node("c", "b"),
            node("d1", "c"), node("d2", "c"), node("e", "b"), node("f", "a"),
            node("g", "r"),
        ]

    @pytest.mark.parametrize("collapsed", [set(), {"c"}, {"b"}, {"a"}, {"c", "a"}, {"r"}])
    def test_width_is_sum_of_children(self, collapsed):
        tree = TreeIndex(self.deep_tree())
        widths = subtree_widths(tree, collapsed)
        for n in tree.nodes:
            children = tree.children(n.id)
            if n.id in collapsed or not children:
                assert widths[n.id] == 1
            else:
                assert widths[n.id] == sum(widths[c.id] for c in children)

    def test_deep_widths(self):
        widths = subtree_widths(TreeIndex(self.deep_tree()))
        assert widths["c"] == 2
        assert widths["b"] == 3
        assert widths["a"] == 4
        assert widths["r"] == 5

    def test_random_forests(self):
        rng = random.Random(7)
        for _ in range(30):
            nodes = random_forest(rng, rng.randint(1, 40))
            tree = TreeIndex(nodes)
            collapsed = {n.id for n in nodes if rng.random() < 0.2}
            widths = subtree_widths(tree, collapsed)
            for n in nodes:
                children = tree.children(n.id)
                expected = 1 if (n.id in collapsed or not children) else sum(widths[c.id] for c in children)
                assert widths[n.id] == expected


class TestProperties:
    def test_deterministic(self):
        rng = random.Random(11)
        nodes = random_forest(rng, 50)
        collapsed = {n.id for n in nodes[::7]}
        first = compute_layout(nodes, collapsed=collapsed)
        second = compute_layout(list(nodes), collapsed=set(collapsed))
        assert first.to_dict() == second.to_dict()

    def test_visibility_matches_collapse_set(self):
        rng = random.Random(3)
        for _ in range(30):
            nodes = random_forest(rng, rng.randint(1, 40))
            tree = TreeIndex(nodes)
            collapsed = {n.id for n in nodes if rng.random() < 0.25}
            result = compute_layout(nodes, collapsed=collapsed)
            shown = {rn.id for rn in result.render_nodes}

            for n in nodes:
                hidden = any(a in collapsed for a in iter_ancestry(n.parent_id, tree))
                assert (n.id in shown) == (not hidden)

            for parent_id, child_id in edges_of(result):
                assert parent_id in shown and child_id in shown
                assert parent_id not in collapsed
            for n in nodes:
                if n.id in shown and n.parent_id is not None:
                    assert (n.parent_id, n.id) in edges_of(result)

    def test_same_level_nodes_do_not_overlap(self):
        rng = random.Random(5)
        for _ in range(30):
            nodes = random_forest(rng, rng.randint(2, 40))
            collapsed = {n.id for n in nodes if rng.random() < 0.15}
            by_level = defaultdict(list)
            for rn in compute_layout(nodes, collapsed=collapsed).render_nodes:
                by_level[rn.level].append(rn.x)
                assert rn.y == rn.level * VERTICAL_SPACING
            for xs in by_level.values():
                xs.sort()
                for left, right in zip(xs, xs[1:]):
                    assert right - left >= HORIZONTAL_SPACING

    def test_visible_helper(self, scenario_nodes):
        vis = visible(TreeIndex(scenario_nodes), {"B"})
        assert vis.nodes == frozenset({"A", "B", "C"})
        assert vis.edges == frozenset({("A", "B"), ("A", "C")})

    def test_hidden_nodes_are_not_positioned(self, scenario_nodes):
        tree = TreeIndex(scenario_nodes)
        widths = subtree_widths(tree, {"B"})
        positions = compute_positions(tree, widths, {"B"})
        assert set(positions) == {"A", "B", "C"}


class TestReconcile:
    def test_precedence(self):
        fresh = {
            "a": Position(0.0, 0.0, 0),
            "b": Position(300.0, 140.0, 1),
            "c": Position(600.0, 140.0, 1),
        }
        final = reconcile(fresh, overrides={"a": (5.0, 5.0)}, previous={"a": (9.0, 9.0), "b": (1.0, 2.0)})
        assert final == {"a": (5.0, 5.0), "b": (1.0, 2.0), "c": (600.0, 140.0)}

    def test_ignores_positions_for_unknown_nodes(self):
        final = reconcile({"a": Position(0.0, 0.0, 0)}, overrides={"zz": (1.0, 1.0)})
        assert final == {"a": (0.0, 0.0)}

    def test_override_survives_layout(self, scenario_nodes):
        result = compute_layout(scenario_nodes, overrides={"D": (42.0, 43.0)})
        assert positions_of(result)["D"] == (42.0, 43.0)
        assert positions_of(result)["E"] == (300.0, 280)

    def test_previous_kept_over_fresh(self, scenario_nodes):
        previous = positions_of(compute_layout(scenario_nodes))
        # Previous positions win over freshly computed ones.
        previous["B"] = (10.0, 10.0)
        result = compute_layout(scenario_nodes, collapsed={"C"}, previous=previous)
        assert positions_of(result)["B"] == (10.0, 10.0)

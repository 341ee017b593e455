"""Tests for undo/redo through the store."""

import pytest

from studymap.database import Node
from studymap.errors import StructuralConflictError
from studymap.undo import ActionType, UndoManager


def parents(db, map_id):
    return {n.id: n.parent_id for n in db.list_nodes(map_id)}


def test_undo_create(db, stored_scenario):
    mind_map, nodes = stored_scenario
    history = UndoManager()
    node = db.create_node(mind_map.id, "Zeta", parent_id=nodes["C"].id)
    history.push(UndoManager.create_node_action(node))
    assert history.undo_description == "Create node 'Zeta'"

    history.undo(db)
    assert db.get_node(node.id) is None
    assert history.can_redo

    history.redo(db)
    restored = db.require_node(node.id)
    assert restored.parent_id == nodes["C"].id
    assert restored.title == "Zeta"


def test_undo_delete_restores_subtree(db, stored_scenario):
    mind_map, nodes = stored_scenario
    before = parents(db, mind_map.id)
    history = UndoManager()
    history.push(UndoManager.delete_node_action(db.delete_node(nodes["B"].id)))
    assert db.count_nodes(mind_map.id) == 2

    history.undo(db)
    assert parents(db, mind_map.id) == before

    history.redo(db)
    assert db.count_nodes(mind_map.id) == 2


def test_undo_edit(db, stored_scenario):
    _, nodes = stored_scenario
    history = UndoManager()
    before = db.require_node(nodes["C"].id)
    after = db.update_node(nodes["C"].id, title="Gamma rays", content="High energy")
    history.push(UndoManager.edit_node_action(before, after))

    history.undo(db)
    node = db.require_node(nodes["C"].id)
    assert (node.title, node.content) == ("Gamma", None)

    history.redo(db)
    node = db.require_node(nodes["C"].id)
    assert (node.title, node.content) == ("Gamma rays", "High energy")


def test_undo_move(db, stored_scenario):
    _, nodes = stored_scenario
    history = UndoManager()
    db.set_parent(nodes["D"].id, nodes["C"].id)
    history.push(UndoManager.move_node_action(nodes["D"].id, nodes["B"].id, nodes["C"].id))

    history.undo(db)
    assert db.require_node(nodes["D"].id).parent_id == nodes["B"].id
    history.redo(db)
    assert db.require_node(nodes["D"].id).parent_id == nodes["C"].id


def test_undo_delete_after_parent_removed(db, stored_scenario):
    mind_map, nodes = stored_scenario
    history = UndoManager()
    history.push(UndoManager.delete_node_action(db.delete_node(nodes["D"].id)))
    db.delete_node(nodes["B"].id)

    with pytest.raises(StructuralConflictError) as exc:
        history.undo(db)
    assert exc.value.reason == "missing_parent"
    assert exc.value.parent_id == nodes["B"].id
    assert history.can_undo
    assert db.get_node(nodes["D"].id) is None
    assert db.count_nodes(mind_map.id) == 2


def test_rejected_undo_keeps_history(db, stored_scenario):
    _, nodes = stored_scenario
    history = UndoManager()
    db.set_parent(nodes["D"].id, nodes["C"].id)
    history.push(UndoManager.move_node_action(nodes["D"].id, nodes["B"].id, nodes["C"].id))
    # B now goes under D, so putting D back under B would close a cycle.
    db.set_parent(nodes["B"].id, nodes["D"].id)

    with pytest.raises(StructuralConflictError):
        history.undo(db)
    assert history.can_undo
    assert not history.can_redo
    assert history.undo_description == "Move node"
    assert db.require_node(nodes["D"].id).parent_id == nodes["C"].id


def test_push_clears_redo_and_caps_history(db, stored_scenario):
    _, nodes = stored_scenario
    history = UndoManager(max_undo=2)
    for parent in ("C", "B", "C"):
        history.push(UndoManager.move_node_action(nodes["D"].id, None, nodes[parent].id))
    assert len(history._undo_stack) == 2

    db.set_parent(nodes["D"].id, nodes["C"].id)
    history.undo(db)
    assert history.can_redo
    history.push(UndoManager.move_node_action(nodes["E"].id, nodes["B"].id, None))
    assert not history.can_redo


def test_empty_history(db):
    history = UndoManager()
    assert history.undo(db) is None
    assert history.redo(db) is None
    assert history.undo_description == ""


def test_state_changed_callback():
    calls = []
    history = UndoManager()
    history.on_state_changed = lambda: calls.append(1)
    history.push(UndoManager.move_node_action("a", None, "b"))
    history.clear()
    assert len(calls) == 2
    assert not history.can_undo


def test_long_titles_are_shortened():
    action = UndoManager.create_node_action(Node(id="x", title="A very long title for a topic"))
    assert action.action_type is ActionType.NODE_CREATE
    assert action.description == "Create node 'A very long title fo...'"

"""
Pytest Configuration
====================

Shared fixtures: a throwaway database and the reference tree

    A
    ├── B
    │   ├── D
    │   └── E
    └── C
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent.absolute()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from studymap.database import Database, Node  # noqa: E402


def make_node(node_id, parent_id=None, title=None, map_id="map"):
    return Node(id=node_id, map_id=map_id, parent_id=parent_id, title=title or f"Node {node_id}")


@pytest.fixture
def scenario_nodes():
    """In-memory copy of the reference tree, in creation order."""
    return [
        make_node("A"),
        make_node("B", "A"),
        make_node("C", "A"),
        make_node("D", "B"),
        make_node("E", "B"),
    ]


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "studymap.db"


@pytest.fixture
def db(db_path):
    database = Database(db_path)
    yield database
    database.close()


@pytest.fixture
def stored_scenario(db):
    """The reference tree persisted in the store.

    Returns (mind_map, {"A": Node, ...}).
    """
    mind_map = db.create_map("Biology")
    nodes = {}
    nodes["A"] = db.create_node(mind_map.id, "Alpha")
    nodes["B"] = db.create_node(mind_map.id, "Beta", parent_id=nodes["A"].id)
    nodes["C"] = db.create_node(mind_map.id, "Gamma", parent_id=nodes["A"].id)
    nodes["D"] = db.create_node(mind_map.id, "Delta", parent_id=nodes["B"].id)
    nodes["E"] = db.create_node(mind_map.id, "Epsilon", parent_id=nodes["B"].id)
    return mind_map, nodes

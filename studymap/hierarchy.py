"""Tree index and ancestry utilities shared by the store and the layout."""

from typing import TYPE_CHECKING, Callable, Dict, Iterable, Iterator, List, Optional, Set, Union

if TYPE_CHECKING:
    from studymap.database import Node

ParentLookup = Callable[[str], Optional[str]]


class TreeIndex:
    """Parent -> children multimap built from a flat node list.

    Sibling order is input order. Roots are stored under the ``None`` key.
    If an id appears twice the first occurrence wins.
    """

    def __init__(self, nodes: Iterable["Node"]):
        self.nodes: List["Node"] = []
        self._by_id: Dict[str, "Node"] = {}
        self._children: Dict[Optional[str], List["Node"]] = {}

        for node in nodes:
            if node.id in self._by_id:
                continue
            self._by_id[node.id] = node
            self.nodes.append(node)
            self._children.setdefault(node.parent_id, []).append(node)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id) -> bool:
        return node_id in self._by_id

    def get(self, node_id: str) -> Optional["Node"]:
        return self._by_id.get(node_id)

    def children(self, node_id: Optional[str]) -> List["Node"]:
        return self._children.get(node_id, [])

    def has_children(self, node_id: str) -> bool:
        return bool(self._children.get(node_id))

    def roots(self) -> List["Node"]:
        return self.children(None)

    def parent_of(self, node_id: str) -> Optional[str]:
        node = self._by_id.get(node_id)
        return node.parent_id if node else None

    def is_dangling(self, node: "Node") -> bool:
        """True if the node names a parent that is not in this index."""
        return node.parent_id is not None and node.parent_id not in self._by_id

    def dangling(self) -> List["Node"]:
        return [n for n in self.nodes if self.is_dangling(n)]


def _lookup(parents: Union[TreeIndex, ParentLookup]) -> ParentLookup:
    if isinstance(parents, TreeIndex):
        return parents.parent_of
    return parents


def iter_ancestry(start_id: Optional[str], parents: Union[TreeIndex, ParentLookup]) -> Iterator[str]:
    """Yield start_id, its parent, grandparent... up to a root.

    Stops quietly when an id repeats, so corrupt stored cycles end the walk
    instead of looping forever.
    """
    parent_of = _lookup(parents)
    visited: Set[str] = set()
    current = start_id
    while current is not None and current not in visited:
        visited.add(current)
        yield current
        current = parent_of(current)


def would_create_cycle(node_id: str, candidate_parent_id: Optional[str],
                       parents: Union[TreeIndex, ParentLookup]) -> bool:
    """Return True if making candidate_parent_id the parent of node_id closes a cycle.

    Only cycles introduced by this move count; a cycle already present in
    the data above the candidate parent returns False.
    """
    if candidate_parent_id is None:
        return False
    if candidate_parent_id == node_id:
        return True
    return any(ancestor == node_id for ancestor in iter_ancestry(candidate_parent_id, parents))


def is_descendant(node_id: str, potential_ancestor_id: str, tree: TreeIndex) -> bool:
    """Check if node_id sits strictly below potential_ancestor_id."""
    return potential_ancestor_id in iter_ancestry(tree.parent_of(node_id), tree)


def iter_subtree(tree: TreeIndex, root_id: str) -> Iterator["Node"]:
    """Pre-order walk of a node and its descendants, parents before children."""
    root = tree.get(root_id)
    if root is None:
        return
    seen = {root_id}
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        for child in reversed(tree.children(node.id)):
            if child.id not in seen:
                seen.add(child.id)
                stack.append(child)


def find_cycle_members(tree: TreeIndex) -> Set[str]:
    """Return the ids of nodes that lie on a parent_id cycle."""
    on_cycle: Set[str] = set()
    settled: Set[str] = set()

    for node in tree.nodes:
        if node.id in settled:
            continue
        path: List[str] = []
        position: Dict[str, int] = {}
        current: Optional[str] = node.id
        while current is not None and current in tree and current not in settled:
            if current in position:
                on_cycle.update(path[position[current]:])
                break
            position[current] = len(path)
            path.append(current)
            current = tree.parent_of(current)
        settled.update(path)

    return on_cycle

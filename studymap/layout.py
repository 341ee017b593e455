"""Tree layout for mind maps.

A layout pass is a pure function of the node list, the viewer's collapse set
and position overrides, and the positions from the previous render:

    nodes -> TreeIndex -> subtree widths -> positions -> visibility -> reconcile

Every root-level tree is laid out top-down, left to right. A node occupies as
many horizontal slots as its visible subtree has leaves and is centered over
them. Collapsed nodes count as leaves.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from loguru import logger

from studymap.database import Node
from studymap.hierarchy import TreeIndex, iter_ancestry, iter_subtree

HORIZONTAL_SPACING = 300
VERTICAL_SPACING = 140

Point = Tuple[float, float]


@dataclass(frozen=True)
class Position:
    """Computed coordinate of a node."""
    x: float
    y: float
    level: int


@dataclass(frozen=True)
class Visibility:
    nodes: FrozenSet[str]
    edges: FrozenSet[Tuple[str, str]]


@dataclass(frozen=True)
class RenderNode:
    """A visible node with its final on-screen position."""
    id: str
    x: float
    y: float
    level: int
    has_children: bool
    is_collapsed: bool
    is_dangling: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "x": self.x,
            "y": self.y,
            "level": self.level,
            "hasChildren": self.has_children,
            "isCollapsed": self.is_collapsed,
            "isDangling": self.is_dangling,
        }


@dataclass(frozen=True)
class RenderEdge:
    parent_id: str
    child_id: str

    def to_dict(self) -> dict:
        return {"parentId": self.parent_id, "childId": self.child_id}


@dataclass
class LayoutResult:
    render_nodes: List[RenderNode] = field(default_factory=list)
    render_edges: List[RenderEdge] = field(default_factory=list)

    @property
    def positions(self) -> Dict[str, Point]:
        """Final positions, suitable as `previous` for the next pass."""
        return {rn.id: (rn.x, rn.y) for rn in self.render_nodes}

    def to_dict(self) -> dict:
        return {
            "renderNodes": [rn.to_dict() for rn in self.render_nodes],
            "renderEdges": [re.to_dict() for re in self.render_edges],
        }


def subtree_widths(tree: TreeIndex, collapsed: Iterable[str] = frozenset()) -> Dict[str, int]:
    """Number of horizontal slots each node's visible subtree occupies."""
    collapsed = frozenset(collapsed)
    widths: Dict[str, int] = {}
    in_progress: Set[str] = set()

    def calc_width(node_id: str) -> int:
        if node_id in widths:
            return widths[node_id]

        children = tree.children(node_id)
        if not children or node_id in collapsed:
            widths[node_id] = 1
            return 1

        in_progress.add(node_id)
        total = 0
        for child in children:
            # A child already on the stack means a stored cycle.
            if child.id in in_progress:
                continue
            total += calc_width(child.id)
        in_progress.discard(node_id)

        widths[node_id] = max(total, 1)
        return widths[node_id]

    for node in tree.nodes:
        calc_width(node.id)
    return widths


def compute_positions(tree: TreeIndex,
                      widths: Mapping[str, int],
                      collapsed: Iterable[str] = frozenset(),
                      horizontal_spacing: float = HORIZONTAL_SPACING,
                      vertical_spacing: float = VERTICAL_SPACING) -> Dict[str, Position]:
    """Assign (x, y, level) to every node not hidden under a collapsed ancestor.

    Nodes that no real root reaches (dangling parents, stored cycles) are
    laid out as extra roots after the real ones, in input order.
    """
    collapsed = frozenset(collapsed)
    positions: Dict[str, Position] = {}
    reached: Set[str] = set()

    def layout(node: Node, level: int, left_bound: float) -> float:
        reached.add(node.id)
        width = widths.get(node.id, 1)

        if node.id in collapsed:
            # Hidden descendants still count as reached.
            reached.update(n.id for n in iter_subtree(tree, node.id))
        else:
            child_x = left_bound
            for child in tree.children(node.id):
                if child.id in reached:
                    continue
                child_x = layout(child, level + 1, child_x)

        x = left_bound + (width * horizontal_spacing) / 2 - horizontal_spacing / 2
        positions[node.id] = Position(x=x, y=level * vertical_spacing, level=level)

        return left_bound + width * horizontal_spacing

    current_x = 0.0
    for root in tree.roots():
        if root.id in reached:
            continue
        current_x = layout(root, 0, current_x)
        current_x += horizontal_spacing

    for node in tree.nodes:
        if node.id not in reached:
            current_x = layout(node, 0, current_x)
            current_x += horizontal_spacing

    return positions


def visible(tree: TreeIndex, collapsed: Iterable[str] = frozenset()) -> Visibility:
    """Nodes with no collapsed ancestor, and the edges drawn between them."""
    collapsed = frozenset(collapsed)
    hidden: Dict[str, bool] = {}

    def is_hidden(node: Node) -> bool:
        if node.id in hidden:
            return hidden[node.id]
        path = [node.id]
        result = False
        for ancestor in iter_ancestry(node.parent_id, tree):
            # A missing parent is not an ancestor; the node renders as a root.
            if ancestor not in tree:
                break
            if ancestor in collapsed:
                result = True
                break
            if ancestor in hidden:
                result = hidden[ancestor]
                break
            path.append(ancestor)
        for node_id in path:
            hidden[node_id] = result
        return result

    nodes: Set[str] = set()
    edges: Set[Tuple[str, str]] = set()
    for node in tree.nodes:
        if is_hidden(node):
            continue
        nodes.add(node.id)
        if node.parent_id is not None and node.parent_id in tree and node.parent_id not in collapsed:
            edges.add((node.parent_id, node.id))

    return Visibility(nodes=frozenset(nodes), edges=frozenset(edges))


def reconcile(fresh: Mapping[str, Position],
              overrides: Optional[Mapping[str, Point]] = None,
              previous: Optional[Mapping[str, Point]] = None) -> Dict[str, Point]:
    """Pick each node's final position: override, else previous render, else fresh."""
    overrides = overrides or {}
    previous = previous or {}
    final: Dict[str, Point] = {}
    for node_id, pos in fresh.items():
        if node_id in overrides:
            final[node_id] = tuple(overrides[node_id])
        elif node_id in previous:
            final[node_id] = tuple(previous[node_id])
        else:
            final[node_id] = (pos.x, pos.y)
    return final


def compute_layout(nodes: Iterable[Node],
                   collapsed: Iterable[str] = frozenset(),
                   overrides: Optional[Mapping[str, Point]] = None,
                   previous: Optional[Mapping[str, Point]] = None,
                   settings=None) -> LayoutResult:
    """Run a full layout pass and return what the renderer should draw.

    `settings` is anything with horizontal_spacing / vertical_spacing
    attributes (usually a MapSettings); defaults apply when it is None.
    """
    collapsed = frozenset(collapsed)
    horizontal_spacing = getattr(settings, "horizontal_spacing", HORIZONTAL_SPACING)
    vertical_spacing = getattr(settings, "vertical_spacing", VERTICAL_SPACING)

    tree = TreeIndex(nodes)
    widths = subtree_widths(tree, collapsed)
    fresh = compute_positions(tree, widths, collapsed, horizontal_spacing, vertical_spacing)
    visibility = visible(tree, collapsed)

    shown = {node_id: pos for node_id, pos in fresh.items() if node_id in visibility.nodes}
    final = reconcile(shown, overrides, previous)

    dangling = tree.dangling()
    if dangling:
        logger.warning(
            "Laying out {} node(s) with missing parents as extra roots: {}",
            len(dangling), ", ".join(n.id for n in dangling)
        )

    result = LayoutResult()
    for node in tree.nodes:
        if node.id not in visibility.nodes:
            continue
        if node.id not in final:
            logger.warning("Node not positioned: {} ({})", node.id, node.title)
            continue
        x, y = final[node.id]
        result.render_nodes.append(RenderNode(
            id=node.id,
            x=x,
            y=y,
            level=fresh[node.id].level,
            has_children=tree.has_children(node.id),
            is_collapsed=node.id in collapsed,
            is_dangling=tree.is_dangling(node),
        ))
        if (node.parent_id, node.id) in visibility.edges:
            result.render_edges.append(RenderEdge(parent_id=node.parent_id, child_id=node.id))

    logger.debug(
        "Layout pass: {} node(s), {} rendered, {} edge(s), {} collapsed",
        len(tree), len(result.render_nodes), len(result.render_edges), len(collapsed)
    )
    return result

"""Per-viewer state: collapse set, drag overrides and the last render."""

import math
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from loguru import logger

from studymap.database import MapSettings, Node
from studymap.layout import LayoutResult, Point, compute_layout

DRAG_THRESHOLD = 5.0


def toggle_collapse(collapsed: Iterable[str], node_id: str) -> FrozenSet[str]:
    """Return a new collapse set with node_id flipped."""
    collapsed = frozenset(collapsed)
    if node_id in collapsed:
        return collapsed - {node_id}
    return collapsed | {node_id}


def record_override(overrides: Mapping[str, Point], node_id: str, position: Point) -> Dict[str, Point]:
    """Return a new override map with node_id pinned at position."""
    updated = dict(overrides)
    updated[node_id] = (float(position[0]), float(position[1]))
    return updated


class ViewSession:
    """State of one viewer looking at one mind map.

    Nothing here is shared between viewers or written to the store. The
    session feeds its state into compute_layout on every render and keeps
    the result as the previous positions for the next one.
    """

    def __init__(self, settings: Optional[MapSettings] = None):
        self.settings = settings or MapSettings()
        self.collapsed: FrozenSet[str] = frozenset()
        self.overrides: Dict[str, Point] = {}
        self.rendered: Dict[str, Point] = {}

        # Dragging state
        self.dragging_node_id: Optional[str] = None
        self._drag_pending_id: Optional[str] = None
        self._drag_exceeded_threshold = False
        self.drag_start_x = 0.0
        self.drag_start_y = 0.0

    def render(self, nodes: Iterable[Node]) -> LayoutResult:
        result = compute_layout(
            nodes,
            collapsed=self.collapsed,
            overrides=self.overrides,
            previous=self.rendered,
            settings=self.settings,
        )
        self.rendered = result.positions
        return result

    def toggle(self, node_id: str) -> FrozenSet[str]:
        self.collapsed = toggle_collapse(self.collapsed, node_id)
        return self.collapsed

    def is_collapsed(self, node_id: str) -> bool:
        return node_id in self.collapsed

    def reset_positions(self):
        """Drop manual placement so the next render uses the computed layout."""
        self.overrides = {}
        self.rendered = {}

    # ==================== Dragging ====================

    def begin_drag(self, node_id: str) -> bool:
        """Start a drag on a rendered node. Returns False if it is not on screen."""
        if node_id not in self.rendered:
            return False
        # Don't commit to drag yet; wait for threshold
        self._drag_pending_id = node_id
        self._drag_exceeded_threshold = False
        self.dragging_node_id = None
        self.drag_start_x, self.drag_start_y = self.rendered[node_id]
        return True

    def drag_update(self, offset_x: float, offset_y: float):
        """Move the dragged node on screen. Intermediate frames are not overrides."""
        if self._drag_pending_id and not self._drag_exceeded_threshold:
            if math.hypot(offset_x, offset_y) < DRAG_THRESHOLD:
                return
            self._drag_exceeded_threshold = True
            self.dragging_node_id = self._drag_pending_id

        if self.dragging_node_id:
            self.rendered[self.dragging_node_id] = (
                self.drag_start_x + offset_x,
                self.drag_start_y + offset_y,
            )

    def end_drag(self) -> Optional[Point]:
        """Finish the drag and pin the node where it was dropped.

        A drag that never passed the threshold is a click and records nothing.
        """
        node_id = self.dragging_node_id
        self._drag_pending_id = None
        self._drag_exceeded_threshold = False
        self.dragging_node_id = None

        if node_id is None:
            return None

        position = self.rendered[node_id]
        self.overrides = record_override(self.overrides, node_id, position)
        logger.debug("Pinned node {} at {}", node_id, position)
        return position

    def cancel_drag(self):
        """Abort a drag and put the node back where it started."""
        if self.dragging_node_id:
            self.rendered[self.dragging_node_id] = (self.drag_start_x, self.drag_start_y)
        self._drag_pending_id = None
        self._drag_exceeded_threshold = False
        self.dragging_node_id = None

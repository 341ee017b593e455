"""Undo/Redo history for structural and text edits."""

from typing import Optional, List, Callable
from dataclasses import dataclass, asdict
from enum import Enum

from loguru import logger

from studymap.database import Database, Node


class ActionType(Enum):
    """Types of undoable actions."""
    NODE_CREATE = "node_create"
    NODE_DELETE = "node_delete"
    NODE_EDIT = "node_edit"
    NODE_MOVE = "node_move"


@dataclass
class UndoAction:
    """Represents an undoable action."""
    action_type: ActionType
    description: str
    data: dict  # Action-specific data for undo
    redo_data: dict  # Action-specific data for redo


def _short(title: str) -> str:
    return f"'{title[:20]}...'" if len(title) > 20 else f"'{title}'"


class UndoManager:
    """Manages undo/redo history."""

    def __init__(self, max_undo: int = 100, max_redo: int = 100):
        self.max_undo = max_undo
        self.max_redo = max_redo
        self._undo_stack: List[UndoAction] = []
        self._redo_stack: List[UndoAction] = []

        # Callbacks
        self.on_state_changed: Optional[Callable[[], None]] = None

    @property
    def can_undo(self) -> bool:
        return len(self._undo_stack) > 0

    @property
    def can_redo(self) -> bool:
        return len(self._redo_stack) > 0

    @property
    def undo_description(self) -> str:
        """Get description of next undo action."""
        if self._undo_stack:
            return self._undo_stack[-1].description
        return ""

    @property
    def redo_description(self) -> str:
        """Get description of next redo action."""
        if self._redo_stack:
            return self._redo_stack[-1].description
        return ""

    def push(self, action: UndoAction):
        """Push a new action to the undo stack."""
        self._undo_stack.append(action)
        self._redo_stack.clear()  # Clear redo on new action

        while len(self._undo_stack) > self.max_undo:
            self._undo_stack.pop(0)

        self._notify_changed()

    def undo(self, db: Database) -> Optional[UndoAction]:
        """Revert the last action against the store.

        If the store rejects it (e.g. a move that would now close a cycle) the
        error propagates and the history is left untouched.
        """
        if not self._undo_stack:
            return None

        action = self._undo_stack[-1]
        apply_action(db, action, is_undo=True)
        self._undo_stack.pop()
        self._redo_stack.append(action)
        while len(self._redo_stack) > self.max_redo:
            self._redo_stack.pop(0)

        self._notify_changed()
        return action

    def redo(self, db: Database) -> Optional[UndoAction]:
        """Re-apply the last undone action against the store."""
        if not self._redo_stack:
            return None

        action = self._redo_stack[-1]
        apply_action(db, action, is_undo=False)
        self._redo_stack.pop()
        self._undo_stack.append(action)
        while len(self._undo_stack) > self.max_undo:
            self._undo_stack.pop(0)

        self._notify_changed()
        return action

    def clear(self):
        """Clear all history."""
        self._undo_stack.clear()
        self._redo_stack.clear()
        self._notify_changed()

    def _notify_changed(self):
        if self.on_state_changed:
            self.on_state_changed()

    # ==================== Action Factories ====================

    @staticmethod
    def create_node_action(node: Node) -> UndoAction:
        return UndoAction(
            action_type=ActionType.NODE_CREATE,
            description=f"Create node {_short(node.title)}",
            data={"node_id": node.id},
            redo_data={"nodes": [asdict(node)]},
        )

    @staticmethod
    def delete_node_action(removed: List[Node]) -> UndoAction:
        """`removed` is the subtree returned by Database.delete_node."""
        return UndoAction(
            action_type=ActionType.NODE_DELETE,
            description=f"Delete node {_short(removed[0].title)}",
            data={"nodes": [asdict(n) for n in removed]},
            redo_data={"node_id": removed[0].id},
        )

    @staticmethod
    def edit_node_action(before: Node, after: Node) -> UndoAction:
        return UndoAction(
            action_type=ActionType.NODE_EDIT,
            description="Edit node",
            data={"node_id": before.id, "title": before.title, "content": before.content},
            redo_data={"node_id": after.id, "title": after.title, "content": after.content},
        )

    @staticmethod
    def move_node_action(node_id: str, old_parent_id: Optional[str],
                         new_parent_id: Optional[str]) -> UndoAction:
        return UndoAction(
            action_type=ActionType.NODE_MOVE,
            description="Move node",
            data={"node_id": node_id, "parent_id": old_parent_id},
            redo_data={"node_id": node_id, "parent_id": new_parent_id},
        )


def apply_action(db: Database, action: UndoAction, is_undo: bool):
    """Replay one side of an action through the store's normal mutation paths."""
    data = action.data if is_undo else action.redo_data
    logger.debug("{} {}", "Undo" if is_undo else "Redo", action.description)

    if action.action_type == ActionType.NODE_CREATE:
        if is_undo:
            db.delete_node(data["node_id"])
        else:
            db.restore_subtree(Node(**n) for n in data["nodes"])

    elif action.action_type == ActionType.NODE_DELETE:
        if is_undo:
            db.restore_subtree(Node(**n) for n in data["nodes"])
        else:
            db.delete_node(data["node_id"])

    elif action.action_type == ActionType.NODE_EDIT:
        db.update_node(data["node_id"], title=data["title"], content=data["content"])

    elif action.action_type == ActionType.NODE_MOVE:
        db.set_parent(data["node_id"], data["parent_id"])

"""Exceptions raised at the StudyMap store and mutation boundary."""

from typing import Optional


class StudyMapError(Exception):
    """Base class for all StudyMap errors."""


class InvalidInputError(StudyMapError):
    """Title or content failed validation."""


class MapNotFoundError(StudyMapError):
    def __init__(self, map_id: str):
        super().__init__(f"Mind map not found: {map_id}")
        self.map_id = map_id


class NodeNotFoundError(StudyMapError):
    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class StructuralConflictError(StudyMapError):
    """A reparent was rejected because it would break the forest invariant.

    `reason` is one of "cycle", "foreign_parent" or "missing_parent".
    """

    def __init__(self, node_id: Optional[str], parent_id: Optional[str], reason: str, message: str):
        super().__init__(message)
        self.node_id = node_id
        self.parent_id = parent_id
        self.reason = reason


class NodeLimitError(StudyMapError):
    def __init__(self, map_id: str, limit: int, current: int):
        super().__init__(f"Node limit reached for map {map_id} ({current}/{limit})")
        self.map_id = map_id
        self.limit = limit
        self.current = current

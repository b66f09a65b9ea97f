"""Immutable nested subtask trees and the pure operations over them.

A tree is a tuple of :class:`SubtaskNode`. Every operation returns a new tuple
and leaves its input untouched. Edits copy only the nodes on the path from the
root to the matched node; all other nodes are shared with the input tree.

Nodes are located by id with a depth-first, pre-order scan (parent before
children, siblings in order) and only the first match is affected. An id that
is not present turns every by-id operation into a no-op.
"""
from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Set, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


def new_subtask_id() -> str:
    """Mint a subtask id. All server-side ids come from here."""
    return uuid4().hex


class SubtaskNode(BaseModel):
    """A checklist item inside a task, optionally holding nested children."""

    # Unknown per-node keys are kept so a decode and re-encode does not lose them.
    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(default_factory=new_subtask_id, min_length=1)
    title: str = ""
    completed: bool = False
    children: Tuple["SubtaskNode", ...] = ()

    @field_validator("children", mode="before")
    @classmethod
    def null_children_as_empty(cls, value):
        # Older descriptions stored leaves with "children": null or without the key.
        return () if value is None else value

    @model_validator(mode="before")
    @classmethod
    def require_stored_id(cls, data: Any, info: ValidationInfo) -> Any:
        # Minting an id for a stored node would give it a new id on every read.
        if info.context and info.context.get("stored") and isinstance(data, dict) and "id" not in data:
            raise ValueError("stored subtask node has no id")
        return data


SubtaskNode.model_rebuild()

SubtaskTree = Tuple[SubtaskNode, ...]
Path = Tuple[int, ...]

# Validation context for trees read back from storage rather than from a request.
STORED_CONTEXT = {"stored": True}


class DuplicateSubtaskIdError(ValueError):
    """Raised when a tree holds the same node id more than once."""

    def __init__(self, ids: Set[str]):
        self.ids = ids
        super().__init__(f"Duplicate subtask ids: {', '.join(sorted(ids))}")


def flatten(tree: Sequence[SubtaskNode]) -> List[SubtaskNode]:
    """Return every node in pre-order."""
    ordered: List[SubtaskNode] = []
    stack = list(reversed(tree))
    while stack:
        node = stack.pop()
        ordered.append(node)
        stack.extend(reversed(node.children))
    return ordered


def count_total(tree: Sequence[SubtaskNode]) -> int:
    return len(flatten(tree))


def count_completed(tree: Sequence[SubtaskNode]) -> int:
    return sum(1 for node in flatten(tree) if node.completed)


def find_by_id(tree: Sequence[SubtaskNode], node_id: str) -> Optional[SubtaskNode]:
    for node in flatten(tree):
        if node.id == node_id:
            return node
    return None


def add_child(tree: Sequence[SubtaskNode], parent_id: str, child: SubtaskNode) -> SubtaskTree:
    """Append ``child`` to the children of the first node with ``parent_id``."""
    return _edit_first(
        tree,
        parent_id,
        lambda node: node.model_copy(update={"children": node.children + (child,)}),
    )


def remove_by_id(tree: Sequence[SubtaskNode], node_id: str) -> SubtaskTree:
    """Drop the first node with ``node_id`` together with its whole subtree."""
    return _edit_first(tree, node_id, lambda node: None)


def toggle_by_id(tree: Sequence[SubtaskNode], node_id: str) -> SubtaskTree:
    """Flip ``completed`` on the first node with ``node_id``.

    Children and ancestors keep their own state.
    """
    return _edit_first(
        tree,
        node_id,
        lambda node: node.model_copy(update={"completed": not node.completed}),
    )


def duplicate_ids(tree: Sequence[SubtaskNode]) -> Set[str]:
    seen: Set[str] = set()
    duplicates: Set[str] = set()
    for node in flatten(tree):
        if node.id in seen:
            duplicates.add(node.id)
        seen.add(node.id)
    return duplicates


def ensure_unique_ids(tree: Sequence[SubtaskNode]) -> SubtaskTree:
    """Return the tree as a tuple, or raise if any id repeats anywhere in it."""
    duplicates = duplicate_ids(tree)
    if duplicates:
        raise DuplicateSubtaskIdError(duplicates)
    return tuple(tree)


def _find_path(tree: SubtaskTree, node_id: str) -> Optional[Path]:
    stack: List[Tuple[Path, SubtaskNode]] = [((index,), node) for index, node in reversed(list(enumerate(tree)))]
    while stack:
        path, node = stack.pop()
        if node.id == node_id:
            return path
        stack.extend(
            (path + (index,), child) for index, child in reversed(list(enumerate(node.children)))
        )
    return None


def _edit_first(
    tree: Sequence[SubtaskNode],
    node_id: str,
    replace: Callable[[SubtaskNode], Optional[SubtaskNode]],
) -> SubtaskTree:
    siblings = tuple(tree)
    path = _find_path(siblings, node_id)
    if path is None:
        return siblings
    return _rebuild(siblings, path, replace)


def _rebuild(
    siblings: SubtaskTree,
    path: Path,
    replace: Callable[[SubtaskNode], Optional[SubtaskNode]],
) -> SubtaskTree:
    index, rest = path[0], path[1:]
    node = siblings[index]
    if rest:
        replacement: Optional[SubtaskNode] = node.model_copy(
            update={"children": _rebuild(node.children, rest, replace)}
        )
    else:
        replacement = replace(node)
    if replacement is None:
        return siblings[:index] + siblings[index + 1 :]
    return siblings[:index] + (replacement,) + siblings[index + 1 :]

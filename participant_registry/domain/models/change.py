"""Snapshot and change models for store subscriptions.

A query subscription delivers a QuerySnapshot: the full visible result
window plus the ordered list of changes that turns the previously
delivered window into the new one. Applying the changes in order
(removals at old_index, additions and moves at new_index) reconstructs
the window exactly.
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    """Kind of change reported for a document in a query result window."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time view of one document.

    Attributes:
        collection: Collection the document belongs to.
        id: Document identifier.
        data: Document fields, or None if the document does not exist.
        version: Store-assigned write counter, 0 if the document does not exist.
    """

    collection: str
    id: str
    data: dict[str, Any] | None = None
    version: int = 0

    @property
    def exists(self) -> bool:
        """Whether the document existed when the snapshot was taken."""
        return self.data is not None

    def get(self, field_name: str, default: Any = None) -> Any:
        """Get a single field value."""
        if self.data is None:
            return default
        return self.data.get(field_name, default)

    def to_dict(self) -> dict[str, Any]:
        """Return a deep copy of the document fields.

        Returns:
            The document fields; an empty dict if the document does not exist.
        """
        return copy.deepcopy(self.data) if self.data is not None else {}


@dataclass(frozen=True)
class DocumentChange:
    """One indexed change within a query result window.

    Attributes:
        type: Added, modified or removed.
        document: The document after the change (before it, for removals).
        old_index: Position before the change, -1 for additions.
        new_index: Position after the change, -1 for removals.
    """

    type: ChangeType
    document: DocumentSnapshot
    old_index: int
    new_index: int


@dataclass(frozen=True)
class QuerySnapshot:
    """Result window of a query subscription after a change.

    Attributes:
        documents: Visible documents in query order.
        changes: Changes since the previous snapshot of the same subscription.
    """

    documents: tuple[DocumentSnapshot, ...]
    changes: tuple[DocumentChange, ...] = field(default=())

    def __len__(self) -> int:
        return len(self.documents)


def _position(documents: Sequence[DocumentSnapshot], document_id: str) -> int:
    for index, document in enumerate(documents):
        if document.id == document_id:
            return index
    return -1


def diff_documents(
    old: Sequence[DocumentSnapshot],
    new: Sequence[DocumentSnapshot],
) -> list[DocumentChange]:
    """Compute the ordered changes that turn one result window into another.

    Removals come first, in old order, each indexed against the window with
    the preceding removals already applied. Additions and modifications
    follow in new order; each is placed directly after its predecessor in
    the new window and indexed against the window with all preceding
    changes applied.

    Documents whose version did not change keep their relative order, so
    they never produce a change, even when their absolute index shifts.

    Args:
        old: Previously delivered window.
        new: Current window.

    Returns:
        Ordered list of changes.
    """
    new_ids = {document.id for document in new}
    working = list(old)
    changes: list[DocumentChange] = []

    for document in old:
        if document.id in new_ids:
            continue
        index = _position(working, document.id)
        working.pop(index)
        changes.append(
            DocumentChange(
                type=ChangeType.REMOVED,
                document=document,
                old_index=index,
                new_index=-1,
            )
        )

    for position, document in enumerate(new):
        old_index = _position(working, document.id)
        if old_index != -1 and working[old_index].version == document.version:
            continue

        if old_index != -1:
            working.pop(old_index)
        if position == 0:
            new_index = 0
        else:
            new_index = _position(working, new[position - 1].id) + 1
        working.insert(new_index, document)

        changes.append(
            DocumentChange(
                type=ChangeType.ADDED if old_index == -1 else ChangeType.MODIFIED,
                document=document,
                old_index=old_index,
                new_index=new_index,
            )
        )

    return changes

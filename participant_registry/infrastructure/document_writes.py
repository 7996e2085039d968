"""Write operations shared by the document store implementations.

Stores accumulate WriteOp values (from a batch, a transaction or a single
point write) and run each through apply_write() into a staging area
before making anything visible, so a failing operation leaves no partial
state behind.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from participant_registry.application.ports.document_store import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentRef,
    Increment,
)
from participant_registry.domain.errors.document import DocumentNotFoundError
from participant_registry.domain.models.change import DocumentSnapshot


class WriteKind(Enum):
    """Kind of a staged write."""

    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class WriteOp:
    """A single staged write.

    Attributes:
        kind: Set, update or delete.
        ref: Target document.
        data: Fields to write (None for deletes).
        merge: For sets, merge into the existing document instead of replacing it.
    """

    kind: WriteKind
    ref: DocumentRef
    data: dict[str, Any] | None = None
    merge: bool = False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _resolve(value: Any, existing: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Increment):
        base = existing if _is_number(existing) else 0
        return base + value.amount
    if isinstance(value, ArrayUnion):
        result = list(existing) if isinstance(existing, list) else []
        for item in value.values:
            if item not in result:
                result.append(copy.deepcopy(item))
        return result
    if isinstance(value, Mapping):
        return {k: _resolve(v, None, now) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_resolve(v, None, now) for v in value]
    return copy.deepcopy(value)


def apply_write(
    op: WriteOp,
    current: Mapping[str, Any] | None,
    now: datetime,
) -> dict[str, Any] | None:
    """Compute a document's fields after a write.

    Args:
        op: The write to apply.
        current: Current fields of the target, None if it does not exist.
        now: Commit time used for SERVER_TIMESTAMP.

    Returns:
        The new fields, or None if the document is deleted.

    Raises:
        DocumentNotFoundError: If an update targets a missing document.
    """
    if op.kind is WriteKind.DELETE:
        return None

    data = op.data or {}
    if op.kind is WriteKind.UPDATE and current is None:
        raise DocumentNotFoundError(op.ref.collection, op.ref.id)

    if op.kind is WriteKind.SET and not op.merge:
        base: dict[str, Any] = {}
    else:
        base = copy.deepcopy(dict(current)) if current is not None else {}

    for field_name, value in data.items():
        base[field_name] = _resolve(value, base.get(field_name), now)
    return base


class StagedWriteBatch:
    """Write batch that hands its operations to a commit function.

    Implements WriteBatchProtocol for every store; the store supplies the
    atomic commit.
    """

    def __init__(self, commit: Callable[[Sequence[WriteOp]], Awaitable[None]]) -> None:
        self._commit = commit
        self._ops: list[WriteOp] = []
        self._committed = False

    def set(
        self, ref: DocumentRef, data: dict[str, Any], merge: bool = False
    ) -> StagedWriteBatch:
        self._ops.append(WriteOp(WriteKind.SET, ref, data, merge))
        return self

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> StagedWriteBatch:
        self._ops.append(WriteOp(WriteKind.UPDATE, ref, data))
        return self

    def delete(self, ref: DocumentRef) -> StagedWriteBatch:
        self._ops.append(WriteOp(WriteKind.DELETE, ref))
        return self

    @property
    def operations(self) -> tuple[WriteOp, ...]:
        """Writes staged so far."""
        return tuple(self._ops)

    async def commit(self) -> None:
        """Commit all staged writes atomically.

        Raises:
            RuntimeError: If the batch was already committed.
        """
        if self._committed:
            raise RuntimeError("Write batch already committed")
        self._committed = True
        await self._commit(tuple(self._ops))


class StagedTransaction:
    """Transaction handle that records read versions and staged writes.

    Stores implement get() through the read callable and validate the
    recorded versions at commit time.
    """

    def __init__(self, read: Callable[[DocumentRef], Awaitable[DocumentSnapshot]]) -> None:
        self._read = read
        self.read_versions: dict[DocumentRef, int] = {}
        self.writes: list[WriteOp] = []

    async def get(self, ref: DocumentRef) -> DocumentSnapshot:
        if self.writes:
            raise RuntimeError("Transactions require all reads before writes")
        snapshot = await self._read(ref)
        self.read_versions[ref] = snapshot.version
        return snapshot

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self.writes.append(WriteOp(WriteKind.SET, ref, data, merge))

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self.writes.append(WriteOp(WriteKind.UPDATE, ref, data))

    def delete(self, ref: DocumentRef) -> None:
        self.writes.append(WriteOp(WriteKind.DELETE, ref))

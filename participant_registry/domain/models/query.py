"""Query model for filtered, sorted and limited collection views.

Evaluation follows the document store's semantics rather than Python's:

- Values of different types never compare equal, and range filters only
  match values of the same type family as the operand.
- Across types the order is null < bool < number < timestamp < string
  < bytes < array < map.
- Documents that lack a field named in order_by are not part of the result.
- The document id breaks ties, so the order is total and paging through it
  is deterministic.
"""

from __future__ import annotations

import dataclasses
import functools
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from participant_registry.domain.models.change import DocumentSnapshot


class FilterOperator(str, Enum):
    """Comparison applied by a field filter."""

    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    IN = "in"
    NOT_IN = "not-in"
    ARRAY_CONTAINS = "array-contains"


class SortDirection(str, Enum):
    """Direction of a sort field."""

    ASCENDING = "asc"
    DESCENDING = "desc"


_RANGE_OPERATORS = {
    FilterOperator.LESS_THAN: lambda c: c < 0,
    FilterOperator.LESS_THAN_OR_EQUAL: lambda c: c <= 0,
    FilterOperator.GREATER_THAN: lambda c: c > 0,
    FilterOperator.GREATER_THAN_OR_EQUAL: lambda c: c >= 0,
}


def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, datetime):
        return 3
    if isinstance(value, str):
        return 4
    if isinstance(value, bytes):
        return 5
    if isinstance(value, (list, tuple)):
        return 6
    if isinstance(value, Mapping):
        return 7
    return 8


def compare_values(left: Any, right: Any) -> int:
    """Three-way comparison using the store's cross-type ordering.

    Returns:
        Negative, zero or positive as left sorts before, with or after right.
    """
    left_rank = _type_rank(left)
    right_rank = _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1

    if left_rank == 6:
        for left_item, right_item in zip(left, right):
            result = compare_values(left_item, right_item)
            if result:
                return result
        return (len(left) > len(right)) - (len(left) < len(right))
    if left_rank == 7:
        return compare_values(
            [list(item) for item in sorted(left.items())],
            [list(item) for item in sorted(right.items())],
        )
    if left_rank == 8:
        left, right = str(left), str(right)
    return (left > right) - (left < right)


def _values_equal(left: Any, right: Any) -> bool:
    return _type_rank(left) == _type_rank(right) and compare_values(left, right) == 0


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class FieldFilter:
    """Constraint on a single document field.

    Enum operands are compared by value, so ParticipantStatus.PENDING
    matches a stored "Pending".

    Attributes:
        field: Top-level field name.
        op: Comparison operator.
        value: Operand; a sequence for IN and NOT_IN.
    """

    field: str
    op: FilterOperator
    value: Any

    def __post_init__(self) -> None:
        """Normalize the operand."""
        op = FilterOperator(self.op)
        object.__setattr__(self, "op", op)
        if op in (FilterOperator.IN, FilterOperator.NOT_IN):
            if isinstance(self.value, (str, bytes)) or not isinstance(
                self.value, Iterable
            ):
                raise ValueError(f"'{op.value}' filter on {self.field} needs a sequence")
            object.__setattr__(
                self, "value", tuple(_normalize(v) for v in self.value)
            )
        else:
            object.__setattr__(self, "value", _normalize(self.value))

    def matches(self, data: Mapping[str, Any]) -> bool:
        """Check whether document data satisfies this filter."""
        if self.field not in data:
            return False
        actual = data[self.field]

        if self.op is FilterOperator.EQUAL:
            return _values_equal(actual, self.value)
        if self.op is FilterOperator.NOT_EQUAL:
            return actual is not None and not _values_equal(actual, self.value)
        if self.op is FilterOperator.IN:
            return any(_values_equal(actual, v) for v in self.value)
        if self.op is FilterOperator.NOT_IN:
            return actual is not None and not any(
                _values_equal(actual, v) for v in self.value
            )
        if self.op is FilterOperator.ARRAY_CONTAINS:
            return isinstance(actual, list) and any(
                _values_equal(item, self.value) for item in actual
            )

        if _type_rank(actual) != _type_rank(self.value):
            return False
        return _RANGE_OPERATORS[self.op](compare_values(actual, self.value))


@dataclass(frozen=True)
class SortField:
    """One key of a query's sort order."""

    field: str
    direction: SortDirection = SortDirection.ASCENDING

    def __post_init__(self) -> None:
        direction = self.direction
        if isinstance(direction, str):
            direction = SortDirection(direction.lower())
        object.__setattr__(self, "direction", direction)


@dataclass(frozen=True)
class QuerySpec:
    """Filter, order and window of a collection query.

    Attributes:
        filters: Conjunction of field filters.
        order_by: Sort keys, most significant first.
        limit: Maximum number of documents in the result, None for all.
    """

    filters: tuple[FieldFilter, ...] = ()
    order_by: tuple[SortField, ...] = ()
    limit: int | None = None

    def __post_init__(self) -> None:
        """Validate the window size."""
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be positive, got {self.limit}")

    def with_limit(self, limit: int | None) -> QuerySpec:
        """Return a copy of this query with a different window size."""
        return dataclasses.replace(self, limit=limit)

    def matches(self, snapshot: DocumentSnapshot) -> bool:
        """Check whether a document belongs to the unlimited result set."""
        if snapshot.data is None:
            return False
        if any(sort.field not in snapshot.data for sort in self.order_by):
            return False
        return all(f.matches(snapshot.data) for f in self.filters)

    def compare(self, left: DocumentSnapshot, right: DocumentSnapshot) -> int:
        """Three-way comparison of two matching documents in query order."""
        for sort in self.order_by:
            result = compare_values(left.get(sort.field), right.get(sort.field))
            if result:
                return -result if sort.direction is SortDirection.DESCENDING else result
        return (left.id > right.id) - (left.id < right.id)

    def apply(self, documents: Iterable[DocumentSnapshot]) -> list[DocumentSnapshot]:
        """Evaluate the query against a set of documents.

        Args:
            documents: Candidate documents of one collection.

        Returns:
            Matching documents in query order, truncated to the limit.
        """
        matching = [d for d in documents if self.matches(d)]
        matching.sort(key=functools.cmp_to_key(self.compare))
        if self.limit is not None:
            return matching[: self.limit]
        return matching


FilterInput = Union[Mapping[str, Any], Sequence[FieldFilter], None]
SorterInput = Union[
    Mapping[str, Union[str, SortDirection]],
    Sequence[Union[SortField, str, tuple[str, Union[str, SortDirection]]]],
    None,
]

_OPERATOR_VALUES = {op.value for op in FilterOperator}


def build_filters(filter_input: FilterInput) -> tuple[FieldFilter, ...]:
    """Normalize caller filter input.

    A mapping value is an equality operand, unless it is a two-item tuple
    whose first item is an operator, e.g. {"age": (">=", 18)}.

    Args:
        filter_input: Mapping of field to operand, FieldFilter sequence, or None.

    Returns:
        Tuple of field filters.
    """
    if filter_input is None:
        return ()
    if not isinstance(filter_input, Mapping):
        return tuple(filter_input)

    filters: list[FieldFilter] = []
    for field_name, operand in filter_input.items():
        if (
            isinstance(operand, tuple)
            and len(operand) == 2
            and isinstance(operand[0], str)
            and _normalize(operand[0]) in _OPERATOR_VALUES
        ):
            filters.append(
                FieldFilter(field_name, FilterOperator(_normalize(operand[0])), operand[1])
            )
        else:
            filters.append(FieldFilter(field_name, FilterOperator.EQUAL, operand))
    return tuple(filters)


def build_sort_fields(sorter: SorterInput) -> tuple[SortField, ...]:
    """Normalize caller sort input.

    Accepts a mapping of field to direction (insertion order is significance
    order), or a sequence of SortField objects, field names (ascending) or
    (field, direction) pairs.
    """
    if sorter is None:
        return ()
    if isinstance(sorter, Mapping):
        return tuple(SortField(name, direction) for name, direction in sorter.items())

    fields: list[SortField] = []
    for item in sorter:
        if isinstance(item, SortField):
            fields.append(item)
        elif isinstance(item, str):
            fields.append(SortField(item))
        else:
            name, direction = item
            fields.append(SortField(name, direction))
    return tuple(fields)

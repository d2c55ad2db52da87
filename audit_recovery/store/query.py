"""In-process query evaluation shared by the bundled adapters."""

import operator
from typing import Any, Callable, Dict, Iterable, List

from ..exceptions import ValidationError
from .base import DocumentQuery, DocumentSnapshot, FieldFilter

_MISSING = object()

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _matches(data: Dict[str, Any], condition: FieldFilter) -> bool:
    value = data.get(condition.field, _MISSING)

    # A missing field equals None for equality checks and fails range checks
    if condition.op == "==":
        return (None if value is _MISSING else value) == condition.value
    if condition.op == "!=":
        return (None if value is _MISSING else value) != condition.value
    if value is _MISSING or value is None or condition.value is None:
        return False
    try:
        return _OPERATORS[condition.op](value, condition.value)
    except TypeError:
        return False


def run_query(
    snapshots: Iterable[DocumentSnapshot], query: DocumentQuery
) -> List[DocumentSnapshot]:
    """
    Filter, order, page and limit snapshots.

    Documents lacking the order field sort after all others. Ties are broken by
    document id so that id cursors are stable.

    Raises:
        ValidationError: If ``start_after`` does not name a document in the
            result set
    """
    results = [
        snap
        for snap in snapshots
        if all(_matches(snap.data, condition) for condition in query.filters)
    ]

    if query.order_by:
        present = [s for s in results if s.data.get(query.order_by) is not None]
        missing = [s for s in results if s.data.get(query.order_by) is None]
        try:
            present.sort(
                key=lambda s: (s.data[query.order_by], s.id), reverse=query.descending
            )
        except TypeError as exc:
            raise ValidationError(
                f"Cannot order by {query.order_by}: mixed value types"
            ) from exc
        missing.sort(key=lambda s: s.id)
        results = present + missing
    else:
        results.sort(key=lambda s: s.id)

    if query.start_after is not None:
        ids = [s.id for s in results]
        if query.start_after not in ids:
            raise ValidationError(f"Invalid cursor: {query.start_after}")
        results = results[ids.index(query.start_after) + 1 :]

    if query.limit is not None:
        results = results[: query.limit]

    return results

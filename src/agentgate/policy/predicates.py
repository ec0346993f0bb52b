"""
Three-valued predicate evaluation.

Predicates are evaluated against the document produced by
PolicyInput.to_document(). Each node yields True, False or None (unknown):

    - A leaf whose operand path is missing, and has no default, is unknown
    - all: False if any child is False, else unknown if any is unknown, else True
    - any: True if any child is True, else unknown if any is unknown, else False
    - not: inverts True/False, keeps unknown

Callers treat only a definite False as a failed check, which makes any
check over a missing optional fact pass vacuously.
"""

import math
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

from agentgate.errors import PredicateError
from agentgate.schema import AllOf, AnyOf, Compare, CompareOp, NotOf, Predicate

_MISSING = object()


def resolve_path(document: Mapping[str, Any], path: str) -> Any:
    """
    Look up a dotted path in a nested mapping.

    Returns the module-level _MISSING sentinel when any segment is absent
    or the value is None.
    """
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    if current is None:
        return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


def _as_collection(value: Any, leaf: Compare) -> Sequence[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    raise PredicateError(
        path=leaf.path,
        op=leaf.op.value,
        underlying_error=f"expected a list, got {type(value).__name__}",
    )


def _apply(op: CompareOp, left: Any, right: Any, leaf: Compare) -> bool:
    try:
        if op == CompareOp.EQ:
            return left == right
        if op == CompareOp.NE:
            return left != right
        if op == CompareOp.LT:
            return left < right
        if op == CompareOp.LTE:
            return left <= right
        if op == CompareOp.GT:
            return left > right
        if op == CompareOp.GTE:
            return left >= right
        if op == CompareOp.IN:
            return left in _as_collection(right, leaf)
        if op == CompareOp.NOT_IN:
            return left not in _as_collection(right, leaf)
        if op == CompareOp.CONTAINS:
            return right in _as_collection(left, leaf)
        if op == CompareOp.EXCLUDES:
            return right not in _as_collection(left, leaf)
        if op == CompareOp.CONTAINS_ALL:
            have = _as_collection(left, leaf)
            return all(item in have for item in _as_collection(right, leaf))
    except TypeError as e:
        raise PredicateError(
            path=leaf.path,
            op=op.value,
            underlying_error=str(e),
        ) from e

    raise PredicateError(path=leaf.path, op=op.value, underlying_error="unsupported operator")


def evaluate_compare(leaf: Compare, document: Mapping[str, Any]) -> bool | None:
    """Evaluate a comparison leaf."""
    left = resolve_path(document, leaf.path)

    if leaf.op == CompareOp.EXISTS:
        return not is_missing(left)

    if is_missing(left):
        if leaf.default is None:
            return None
        left = leaf.default

    if leaf.ref is not None:
        right = resolve_path(document, leaf.ref)
        if is_missing(right):
            return None
        if leaf.scale is not None:
            if not isinstance(right, (int, float)) or isinstance(right, bool):
                raise PredicateError(
                    path=leaf.ref,
                    op=leaf.op.value,
                    underlying_error="scale needs a numeric operand",
                )
            right = right * leaf.scale
    else:
        right = leaf.value

    if isinstance(right, float) and math.isnan(right):
        return None

    return _apply(leaf.op, left, right, leaf)


def evaluate_predicate(predicate: Predicate, document: Mapping[str, Any]) -> bool | None:
    """
    Evaluate a predicate tree.

    Args:
        predicate: Root node
        document: Flattened input document

    Returns:
        True, False, or None when the outcome depends on missing facts

    Raises:
        PredicateError: If an operator cannot be applied to its operands
    """
    if isinstance(predicate, Compare):
        return evaluate_compare(predicate, document)

    if isinstance(predicate, AllOf):
        unknown = False
        for child in predicate.all:
            outcome = evaluate_predicate(child, document)
            if outcome is False:
                return False
            if outcome is None:
                unknown = True
        return None if unknown else True

    if isinstance(predicate, AnyOf):
        unknown = False
        for child in predicate.any:
            outcome = evaluate_predicate(child, document)
            if outcome is True:
                return True
            if outcome is None:
                unknown = True
        return None if unknown else False

    if isinstance(predicate, NotOf):
        outcome = evaluate_predicate(predicate.not_, document)
        return None if outcome is None else not outcome

    raise PredicateError(underlying_error=f"unknown predicate node: {type(predicate).__name__}")


def iter_paths(predicate: Predicate) -> Iterator[str]:
    """Yield every path and ref a predicate tree reads, depth first."""
    if isinstance(predicate, Compare):
        yield predicate.path
        if predicate.ref is not None:
            yield predicate.ref
    elif isinstance(predicate, AllOf):
        for child in predicate.all:
            yield from iter_paths(child)
    elif isinstance(predicate, AnyOf):
        for child in predicate.any:
            yield from iter_paths(child)
    elif isinstance(predicate, NotOf):
        yield from iter_paths(predicate.not_)

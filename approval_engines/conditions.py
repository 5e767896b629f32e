"""
approval_engines.conditions -- Condition tree evaluator.

Responsibility:
    Evaluate AND/OR/NOT trees of leaf predicates against an
    ``EvaluationContext``.  Shared by access policies (conditions and
    scope) and by conditional approvers.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.
    May only import approval_kernel/domain types and kernel logging.

Invariants enforced:
    - Fail closed: an unresolvable path, a type mismatch or a
      non-numeric operand for an ordering operator makes the leaf False.
      Evaluation never raises for any context content.
    - Cross-attribute comparison: a leaf ``value`` that is itself a path
      (``"data.created_by"``) is resolved against the same context.
    - ``and`` over no children is True, ``or`` over no children is False,
      ``not`` negates exactly one child (any other arity is False).
    - Determinism: identical node and context always give identical results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_kernel.domain.conditions import (
    MEMBERSHIP_OPERATORS,
    ORDERING_OPERATORS,
    UNARY_OPERATORS,
    ConditionGroup,
    ConditionLeaf,
    ConditionNode,
    GroupOperator,
    Operator,
)
from approval_kernel.domain.context import MISSING, EvaluationContext, is_path
from approval_kernel.logging_config import get_logger

logger = get_logger("engines.conditions")


@dataclass(frozen=True)
class ConditionTrace:
    """Explanation of one node's evaluation (see ``explain_condition``)."""

    kind: str  # "group" or "condition"
    operator: str
    result: bool
    field: str | None = None
    expected: Any = None
    actual: Any = None
    children: tuple[ConditionTrace, ...] = ()
    reason: str = ""

    def failed_leaves(self) -> list[ConditionTrace]:
        if self.kind == "condition":
            return [] if self.result else [self]
        out: list[ConditionTrace] = []
        for child in self.children:
            out.extend(child.failed_leaves())
        return out


# =========================================================================
# Public API
# =========================================================================


def evaluate_condition(node: ConditionNode | None, ctx: EvaluationContext) -> bool:
    """Evaluate ``node`` against ``ctx``.  ``None`` means unconditional (True)."""
    if node is None:
        return True
    if isinstance(node, ConditionLeaf):
        return _evaluate_leaf(node, ctx)[0]
    if isinstance(node, ConditionGroup):
        return _evaluate_group(node, ctx)
    logger.warning("condition_node_unknown", extra={"node_type": type(node).__name__})
    return False


def explain_condition(node: ConditionNode | None, ctx: EvaluationContext) -> ConditionTrace:
    """Evaluate without short-circuiting and return a full trace tree."""
    if node is None:
        return ConditionTrace(kind="group", operator="and", result=True, reason="No conditions defined")
    if isinstance(node, ConditionLeaf):
        result, actual, expected = _evaluate_leaf(node, ctx)
        verdict = "passed" if result else "failed"
        return ConditionTrace(
            kind="condition",
            operator=node.operator.value,
            result=result,
            field=node.field,
            expected=expected,
            actual=actual,
            reason=f"Condition {verdict}: {node.field} {node.operator.value} {expected!r} (actual {actual!r})",
        )
    if isinstance(node, ConditionGroup):
        children = tuple(explain_condition(child, ctx) for child in node.rules)
        results = [c.result for c in children]
        result = _combine(node.operator, results)
        passed = sum(1 for r in results if r)
        return ConditionTrace(
            kind="group",
            operator=node.operator.value,
            result=result,
            children=children,
            reason=f"{node.operator.value.upper()} condition: {passed}/{len(results)} conditions passed",
        )
    return ConditionTrace(kind="condition", operator="unknown", result=False, reason="Unknown node type")


# =========================================================================
# Groups
# =========================================================================


def _evaluate_group(group: ConditionGroup, ctx: EvaluationContext) -> bool:
    op = group.operator
    if op is GroupOperator.AND:
        return all(evaluate_condition(rule, ctx) for rule in group.rules)
    if op is GroupOperator.OR:
        return any(evaluate_condition(rule, ctx) for rule in group.rules)
    if op is GroupOperator.NOT:
        if len(group.rules) != 1:
            return False
        return not evaluate_condition(group.rules[0], ctx)
    return False


def _combine(op: GroupOperator, results: list[bool]) -> bool:
    if op is GroupOperator.AND:
        return all(results)
    if op is GroupOperator.OR:
        return any(results)
    if op is GroupOperator.NOT:
        return len(results) == 1 and not results[0]
    return False


# =========================================================================
# Leaves
# =========================================================================


def _resolve_operand(value: Any, ctx: EvaluationContext) -> Any:
    """Resolve a leaf ``value``: paths against the context, lists element-wise."""
    if is_path(value):
        return ctx.resolve(value)
    if isinstance(value, (list, tuple)):
        return tuple(ctx.resolve(v) if is_path(v) else v for v in value)
    return value


def _evaluate_leaf(node: ConditionLeaf, ctx: EvaluationContext) -> tuple[bool, Any, Any]:
    """Return ``(result, actual, expected)``; never raises."""
    actual = ctx.resolve(node.field)
    op = node.operator

    if op in UNARY_OPERATORS:
        present = actual is not MISSING and actual is not None
        return (present if op is Operator.EXISTS else not present), actual, None

    expected = _resolve_operand(node.value, ctx)

    try:
        result = _apply(op, actual, expected)
    except (TypeError, ValueError, InvalidOperation, ArithmeticError):
        result = False

    if not result and (actual is MISSING or expected is MISSING):
        logger.debug(
            "condition_path_unresolved",
            extra={"field": node.field, "operator": op.value},
        )
    return result, actual, expected


def _apply(op: Operator, actual: Any, expected: Any) -> bool:
    if actual is MISSING or expected is MISSING:
        return False

    if op is Operator.EQ:
        return values_equal(actual, expected)
    if op is Operator.NE:
        return not values_equal(actual, expected)

    if op in ORDERING_OPERATORS:
        return _compare_ordered(op, actual, expected)

    if op in MEMBERSHIP_OPERATORS:
        if not isinstance(expected, (tuple, list, set, frozenset)):
            return False
        found = any(values_equal(actual, item) for item in expected)
        return found if op is Operator.IN else not found

    if op is Operator.CONTAINS:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, (tuple, list, frozenset, set)):
            return any(values_equal(item, expected) for item in actual)
        return False
    if op is Operator.STARTS_WITH:
        return isinstance(actual, str) and isinstance(expected, str) and actual.startswith(expected)
    if op is Operator.ENDS_WITH:
        return isinstance(actual, str) and isinstance(expected, str) and actual.endswith(expected)

    return False


def to_decimal(value: Any) -> Decimal | None:
    """Coerce ``value`` to a finite Decimal, or ``None`` if it is not numeric.

    Booleans are deliberately not numbers here.
    """
    if isinstance(value, bool) or value is None or value is MISSING:
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None
    return result if result.is_finite() else None


def values_equal(left: Any, right: Any) -> bool:
    """Equality used by ``eq``/``ne``/``in``: numeric when both sides are numeric."""
    if left is MISSING or right is MISSING:
        return False
    lnum, rnum = to_decimal(left), to_decimal(right)
    if lnum is not None and rnum is not None:
        return lnum == rnum
    return left == right


def _compare_ordered(op: Operator, actual: Any, expected: Any) -> bool:
    lnum, rnum = to_decimal(actual), to_decimal(expected)
    if lnum is not None and rnum is not None:
        left, right = lnum, rnum
    elif _temporal_pair(actual, expected):
        left, right = actual, expected
    else:
        return False

    if op is Operator.GT:
        return left > right
    if op is Operator.GTE:
        return left >= right
    if op is Operator.LT:
        return left < right
    if op is Operator.LTE:
        return left <= right
    return False


def _temporal_pair(a: Any, b: Any) -> bool:
    if isinstance(a, datetime) and isinstance(b, datetime):
        return (a.tzinfo is None) == (b.tzinfo is None)
    return (
        isinstance(a, date) and isinstance(b, date)
        and not isinstance(a, datetime) and not isinstance(b, datetime)
    )

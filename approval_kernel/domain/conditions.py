"""
Condition tree types (``approval_kernel.domain.conditions``).

Responsibility
--------------
Typed representation of the nested AND/OR/NOT condition trees shared by
access policies and conditional approvers.  Configuration rows store
these as JSON; ``approval_config.loader`` decodes them once into the
variants below and they are never re-interpreted as untyped dicts.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Acyclic -- groups hold an immutable tuple of children built bottom-up,
  so a node can never contain itself.
* Operator strings are preserved bit-for-bit with the stored format:
  ``and|or|not`` for groups, ``eq|ne|gt|gte|lt|lte|in|exists`` (plus
  ``nin|not_exists|contains|starts_with|ends_with``) for leaves.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union


class GroupOperator(str, Enum):
    """Boolean combinators for a condition group."""

    AND = "and"
    OR = "or"
    NOT = "not"


class Operator(str, Enum):
    """Leaf predicate operators."""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    EXISTS = "exists"
    NIN = "nin"
    NOT_EXISTS = "not_exists"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


ORDERING_OPERATORS: frozenset[Operator] = frozenset({
    Operator.GT, Operator.GTE, Operator.LT, Operator.LTE,
})

MEMBERSHIP_OPERATORS: frozenset[Operator] = frozenset({
    Operator.IN, Operator.NIN,
})

# Operators that ignore ``value``
UNARY_OPERATORS: frozenset[Operator] = frozenset({
    Operator.EXISTS, Operator.NOT_EXISTS,
})


@dataclass(frozen=True)
class ConditionLeaf:
    """A single predicate: ``field <operator> value``.

    ``value`` is a literal, a list literal, or a path string such as
    ``"data.created_by"`` that is resolved against the same context.
    """

    field: str
    operator: Operator
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {"field": self.field, "operator": self.operator.value, "value": value}


@dataclass(frozen=True)
class ConditionGroup:
    """A boolean combination of child nodes."""

    operator: GroupOperator
    rules: tuple[ConditionNode, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "operator": self.operator.value,
            "rules": [rule.to_dict() for rule in self.rules],
        }


ConditionNode = Union[ConditionLeaf, ConditionGroup]


# Convenience constructors, used heavily by tests and programmatic config.

def all_of(*rules: ConditionNode) -> ConditionGroup:
    return ConditionGroup(GroupOperator.AND, tuple(rules))


def any_of(*rules: ConditionNode) -> ConditionGroup:
    return ConditionGroup(GroupOperator.OR, tuple(rules))


def negate(rule: ConditionNode) -> ConditionGroup:
    return ConditionGroup(GroupOperator.NOT, (rule,))


def leaf(field: str, operator: Operator | str, value: Any = None) -> ConditionLeaf:
    if isinstance(value, list):
        value = tuple(value)
    return ConditionLeaf(field=field, operator=Operator(operator), value=value)


ALWAYS: ConditionGroup = ConditionGroup(GroupOperator.AND, ())


def iter_leaves(node: ConditionNode):
    """Yield every leaf in the tree, depth first."""
    if isinstance(node, ConditionLeaf):
        yield node
        return
    for child in node.rules:
        yield from iter_leaves(child)

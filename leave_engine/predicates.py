"""
Selection predicates for workflow definitions.

A predicate is a small tagged union:

- ``Condition``  ``{"kind": "condition", "field": ..., "operator": ..., "value": ...}``
- ``AllOf``      ``{"kind": "and", "operands": [...]}``
- ``AnyOf``      ``{"kind": "or", "operands": [...]}``

``evaluate`` interprets a predicate against a flat context mapping such as
``{"leave_type": "PL", "region": "INDIA", "total_days": 6}``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

logger = logging.getLogger(__name__)


class Operator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"


class Condition(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["condition"] = "condition"
    field: str
    operator: Operator
    value: Any = None


class AllOf(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["and"] = "and"
    operands: tuple[Predicate, ...]


class AnyOf(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["or"] = "or"
    operands: tuple[Predicate, ...]


Predicate = Annotated[Union[Condition, AllOf, AnyOf], Field(discriminator="kind")]

AllOf.model_rebuild()
AnyOf.model_rebuild()

_predicate_adapter = TypeAdapter(Predicate)


def parse_predicate(data: Mapping[str, Any] | None) -> Condition | AllOf | AnyOf | None:
    """Build a predicate from its stored dict form."""
    if data is None:
        return None
    return _predicate_adapter.validate_python(data)


def condition(field: str, operator: Operator | str, value: Any) -> Condition:
    return Condition(field=field, operator=Operator(operator), value=value)


def all_of(*operands: Condition | AllOf | AnyOf) -> AllOf:
    return AllOf(operands=operands)


def any_of(*operands: Condition | AllOf | AnyOf) -> AnyOf:
    return AnyOf(operands=operands)


def _compare(operator: Operator, actual: Any, expected: Any) -> bool:
    if operator == Operator.EQ:
        return actual == expected
    if operator == Operator.NE:
        return actual != expected
    if operator == Operator.IN:
        return actual in expected
    if operator == Operator.NOT_IN:
        return actual not in expected
    if operator == Operator.GT:
        return actual > expected
    if operator == Operator.GTE:
        return actual >= expected
    if operator == Operator.LT:
        return actual < expected
    return actual <= expected


def evaluate(predicate: Condition | AllOf | AnyOf | None, context: Mapping[str, Any]) -> bool:
    """
    Interpret a predicate against a context.

    A missing predicate matches everything. A condition whose field is absent from the
    context, or whose operands cannot be compared, does not match.
    """
    if predicate is None:
        return True

    if isinstance(predicate, AllOf):
        return all(evaluate(operand, context) for operand in predicate.operands)

    if isinstance(predicate, AnyOf):
        return any(evaluate(operand, context) for operand in predicate.operands)

    actual = context.get(predicate.field)
    if actual is None:
        return False
    if isinstance(actual, Enum):
        actual = actual.value

    try:
        return bool(_compare(predicate.operator, actual, predicate.value))
    except TypeError:
        logger.warning(
            f"Predicate on '{predicate.field}' cannot compare "
            f"{actual!r} {predicate.operator.value} {predicate.value!r}"
        )
        return False

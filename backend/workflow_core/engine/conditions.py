"""
workflow_core/engine/conditions.py

Condition trees for trigger rules.

A condition is either a leaf comparison {field, operator, value} or a
composite {"and": [...]} / {"or": [...]}. Trees are parsed and validated when
a rule is written (parse_condition), so evaluate_condition only ever sees the
closed set of node types and operators below. Evaluation is pure.
"""
from typing import Any, Dict, List, Mapping, Optional, Union
from enum import Enum
import math
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from workflow_core.errors import ValidationError


class ConditionOperator(str, Enum):
    """Leaf comparison operators"""
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NIN = "nin"
    CONTAINS = "contains"
    REGEX = "regex"


NUMERIC_OPERATORS = {ConditionOperator.GT, ConditionOperator.GTE, ConditionOperator.LT, ConditionOperator.LTE}
LIST_OPERATORS = {ConditionOperator.IN, ConditionOperator.NIN}


class _Undefined:
    """Marker for a dot-path that does not resolve."""

    _instance: Optional["_Undefined"] = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED = _Undefined()


class FieldCondition(BaseModel):
    """Leaf comparison against a dot-path of the event payload."""

    model_config = ConfigDict(extra="forbid")

    field: str = Field(..., min_length=1)
    operator: ConditionOperator
    value: Any = None

    @field_validator("field")
    @classmethod
    def validate_field_path(cls, v: str) -> str:
        if any(not part for part in v.split(".")):
            raise ValueError(f"invalid dot-path: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_value_for_operator(self) -> "FieldCondition":
        if self.operator in LIST_OPERATORS and not isinstance(self.value, list):
            raise ValueError(f"operator '{self.operator.value}' requires a list value")
        if self.operator in NUMERIC_OPERATORS and _to_number(self.value) is None:
            raise ValueError(f"operator '{self.operator.value}' requires a numeric value")
        if self.operator == ConditionOperator.REGEX:
            if not isinstance(self.value, str):
                raise ValueError("operator 'regex' requires a string pattern")
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"invalid regex: {e}") from e
        return self


class AndCondition(BaseModel):
    """All children must hold."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    all_of: List["ConditionNode"] = Field(..., alias="and", min_length=1)


class OrCondition(BaseModel):
    """At least one child must hold."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    any_of: List["ConditionNode"] = Field(..., alias="or", min_length=1)


ConditionNode = Union[FieldCondition, AndCondition, OrCondition]

AndCondition.model_rebuild()
OrCondition.model_rebuild()


def parse_condition(raw: Any, path: str = "condition") -> ConditionNode:
    """
    Parse a JSON-shaped condition tree into typed nodes.

    Args:
        raw: Dict tree as stored in rule configuration
        path: Location prefix used in field-level error messages

    Returns:
        Typed condition node

    Raises:
        ValidationError: With field_errors keyed by the failing location,
            e.g. {"condition.or.1.operator": "..."}
    """
    if isinstance(raw, (FieldCondition, AndCondition, OrCondition)):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError("Condition must be an object", field_errors={path: "expected an object"})

    composite_keys = [key for key in ("and", "or") if key in raw]
    if len(composite_keys) > 1 or (composite_keys and len(raw) > 1):
        raise ValidationError(
            "Composite conditions take exactly one of 'and' / 'or'",
            field_errors={path: "expected exactly one of 'and', 'or' or a leaf condition"},
        )

    if composite_keys:
        key = composite_keys[0]
        children = raw[key]
        if not isinstance(children, list) or not children:
            raise ValidationError(
                f"'{key}' requires a non-empty list",
                field_errors={f"{path}.{key}": "expected a non-empty list"},
            )
        nodes = [parse_condition(child, f"{path}.{key}.{i}") for i, child in enumerate(children)]
        if key == "and":
            return AndCondition(all_of=nodes)
        return OrCondition(any_of=nodes)

    try:
        return FieldCondition.model_validate(dict(raw))
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid condition",
            field_errors=pydantic_field_errors(e, path),
        ) from e


def condition_to_dict(node: ConditionNode) -> Dict[str, Any]:
    """Serialize a typed tree back to its JSON shape."""
    if isinstance(node, AndCondition):
        return {"and": [condition_to_dict(child) for child in node.all_of]}
    if isinstance(node, OrCondition):
        return {"or": [condition_to_dict(child) for child in node.any_of]}
    return {"field": node.field, "operator": node.operator.value, "value": node.value}


def pydantic_field_errors(error: PydanticValidationError, prefix: str = "") -> Dict[str, str]:
    """Flatten a pydantic error into {"a.b.0.c": "message"}."""
    errors: Dict[str, str] = {}
    for item in error.errors():
        loc = ".".join(str(part) for part in item.get("loc", ()))
        key = ".".join(part for part in (prefix, loc) if part) or prefix or "__root__"
        errors.setdefault(key, item.get("msg", "invalid value"))
    return errors


# ============== Evaluation ==============

def resolve_field(path: str, data: Any) -> Any:
    """
    Resolve a dot-path such as "campaign.budget" against nested dicts/lists.

    Returns UNDEFINED when any segment is missing or the walk reaches a
    non-container.
    """
    value = data
    for part in path.split("."):
        if isinstance(value, Mapping):
            if part not in value:
                return UNDEFINED
            value = value[part]
        elif isinstance(value, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(value):
                return UNDEFINED
            value = value[index]
        else:
            return UNDEFINED
    return value


def evaluate_condition(node: ConditionNode, data: Mapping[str, Any]) -> bool:
    """
    Evaluate a typed condition tree against an event payload.

    AND stops at the first false child, OR at the first true child.

    Example:
        >>> tree = parse_condition({"field": "campaign.budget", "operator": "gte", "value": 5000})
        >>> evaluate_condition(tree, {"campaign": {"budget": 5000}})
        True
    """
    if isinstance(node, AndCondition):
        return all(evaluate_condition(child, data) for child in node.all_of)
    if isinstance(node, OrCondition):
        return any(evaluate_condition(child, data) for child in node.any_of)
    return _compare(node.operator, resolve_field(node.field, data), node.value)


def _compare(operator: ConditionOperator, actual: Any, expected: Any) -> bool:
    if actual is UNDEFINED:
        return operator == ConditionOperator.NEQ

    if operator == ConditionOperator.EQ:
        return _equals(actual, expected)
    if operator == ConditionOperator.NEQ:
        return not _equals(actual, expected)
    if operator in NUMERIC_OPERATORS:
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        if operator == ConditionOperator.GT:
            return left > right
        if operator == ConditionOperator.GTE:
            return left >= right
        if operator == ConditionOperator.LT:
            return left < right
        return left <= right
    if operator == ConditionOperator.IN:
        return any(_equals(actual, item) for item in expected)
    if operator == ConditionOperator.NIN:
        return not any(_equals(actual, item) for item in expected)
    if operator == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return any(_equals(item, expected) for item in actual)
        return str(expected) in str(actual)
    if operator == ConditionOperator.REGEX:
        return re.search(expected, str(actual)) is not None
    return False


def _equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
    if math.isnan(number):
        return None
    return number


__all__ = [
    "ConditionOperator",
    "FieldCondition",
    "AndCondition",
    "OrCondition",
    "ConditionNode",
    "UNDEFINED",
    "parse_condition",
    "condition_to_dict",
    "pydantic_field_errors",
    "resolve_field",
    "evaluate_condition",
]

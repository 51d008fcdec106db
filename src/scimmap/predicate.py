"""
Backend-neutral predicate trees, produced from parsed filters by `Filter.to_predicate`.

Predicates reference backend field names only. Hosts translate them to their own query
language by walking the tree, or evaluate them directly against flat records (mappings
or plain objects) by calling them.
"""

import operator
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union


def _contains(value: Any, op_value: Any) -> bool:
    return op_value in value


def _starts_with(value: Any, op_value: Any) -> bool:
    return value.startswith(op_value)


def _ends_with(value: Any, op_value: Any) -> bool:
    return value.endswith(op_value)


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "co": _contains,
    "sw": _starts_with,
    "ew": _ends_with,
    "gt": operator.gt,
    "ge": operator.ge,
    "lt": operator.lt,
    "le": operator.le,
}


def _parse_datetime(value: str) -> Optional[datetime]:
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _field_values(record: Any, field: str) -> list[Any]:
    values = [record]
    for part in field.split("."):
        next_values = []
        for value in values:
            for item in value if isinstance(value, (list, tuple)) else [value]:
                if item is None:
                    continue
                if isinstance(item, Mapping):
                    next_values.append(item.get(part))
                else:
                    next_values.append(getattr(item, part, None))
        values = next_values
    flattened = []
    for value in values:
        if isinstance(value, (list, tuple)):
            flattened.extend(value)
        else:
            flattened.append(value)
    return flattened or [None]


@dataclass(frozen=True)
class Comparison:
    """
    Compares backend field values with the provided value. Matches if any of the `fields`
    matches.

    Args:
        fields: Backend field names. Dots address nested fields.
        op: One of `eq`, `ne`, `co`, `sw`, `ew`, `gt`, `ge`, `lt`, `le`.
        value: Right operand of the comparison.
        case_insensitive: Whether string values are compared ignoring case.
    """

    fields: tuple[str, ...]
    op: str
    value: Any
    case_insensitive: bool = False

    def __post_init__(self):
        if self.op not in _COMPARATORS:
            raise ValueError(f"unknown comparison operator {self.op!r}")

    def __call__(self, record: Any) -> bool:
        return any(
            self._compare(value) for field in self.fields for value in _field_values(record, field)
        )

    def _compare(self, field_value: Any) -> bool:
        op_value = self.value
        if op_value is None:
            if self.op == "eq":
                return field_value is None
            if self.op == "ne":
                return field_value is not None
            return False
        if field_value is None:
            return False
        if isinstance(field_value, datetime) and isinstance(op_value, str):
            op_value = _parse_datetime(op_value)
            if op_value is None:
                return False
        if self.case_insensitive and isinstance(field_value, str) and isinstance(op_value, str):
            field_value, op_value = field_value.lower(), op_value.lower()
        try:
            return bool(_COMPARATORS[self.op](field_value, op_value))
        except (AttributeError, TypeError):
            return False


@dataclass(frozen=True)
class Presence:
    """
    Matches if any of the `fields` has a value that is not null and not empty.
    """

    fields: tuple[str, ...]

    def __call__(self, record: Any) -> bool:
        for field in self.fields:
            for value in _field_values(record, field):
                if value is None:
                    continue
                if isinstance(value, (str, dict)) and len(value) == 0:
                    continue
                return True
        return False


@dataclass(frozen=True)
class AllOf:
    operands: tuple["Predicate", ...]

    def __call__(self, record: Any) -> bool:
        return all(operand(record) for operand in self.operands)


@dataclass(frozen=True)
class AnyOf:
    operands: tuple["Predicate", ...]

    def __call__(self, record: Any) -> bool:
        return any(operand(record) for operand in self.operands)


@dataclass(frozen=True)
class Negation:
    operand: "Predicate"

    def __call__(self, record: Any) -> bool:
        return not self.operand(record)


Predicate = Union[Comparison, Presence, AllOf, AnyOf, Negation]

import abc
import operator
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional, Union

from scimmap._registry import register_binary_operator, register_unary_operator
from scimmap.data.attrs import Attribute, AttributeWithCaseExact, Complex, DateTime, String
from scimmap.data.constants import SCIMType
from scimmap.data.identifiers import AttrRep
from scimmap.data.scim_data import Missing, ScimData

if TYPE_CHECKING:
    from scimmap.data.schemas import ResourceType


SchemaOrComplex = Union["ResourceType", Complex]


class Operator(abc.ABC):
    """
    Node of parsed filter expression, able to test resource data (or complex attribute
    item) against itself.
    """

    @abc.abstractmethod
    def match(self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex) -> bool:
        """
        Tells whether `value` matches the operator.

        Args:
            value: Tested data.
            schema_or_complex: Resource type or `Complex` attribute describing the data.
        """

    @abc.abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Returns structural representation of the operator."""


class LogicalOperator(Operator, abc.ABC):
    op: str

    def __init__(self, *sub_operators: Operator):
        self._sub_operators = list(sub_operators)

    @property
    def sub_operators(self) -> list[Operator]:
        return self._sub_operators

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "sub_ops": [sub.to_dict() for sub in self._sub_operators]}

    def __eq__(self, other: Any) -> bool:
        return type(other) is type(self) and self._sub_operators == other._sub_operators


class And(LogicalOperator):
    op = "and"

    def match(self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex) -> bool:
        return all(sub.match(value, schema_or_complex) for sub in self._sub_operators)


class Or(LogicalOperator):
    op = "or"

    def match(self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex) -> bool:
        return any(sub.match(value, schema_or_complex) for sub in self._sub_operators)


class Not(LogicalOperator):
    op = "not"

    def __init__(self, sub_operator: Operator):
        super().__init__(sub_operator)

    @property
    def sub_operator(self) -> Operator:
        return self._sub_operators[0]

    def match(self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex) -> bool:
        return not self.sub_operator.match(value, schema_or_complex)

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "sub_op": self.sub_operator.to_dict()}


class AttributeOperator(Operator, abc.ABC):
    """
    Operator applied to a single attribute. Concrete subclasses define `op` (the operator
    keyword), `supported_scim_types` (types of attributes it can be applied to), and
    `supported_types` (Python types of its operand).
    """

    op: str
    supported_scim_types: frozenset[SCIMType]
    supported_types: frozenset[type]

    def __init__(self, attr_rep: AttrRep):
        self._attr_rep = attr_rep

    @property
    def attr_rep(self) -> AttrRep:
        return self._attr_rep

    def _resolve(
        self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex
    ) -> tuple[Optional[Attribute], Any]:
        if isinstance(schema_or_complex, Complex):
            # items of complex attributes have no sub-attributes of their own
            if self._attr_rep.is_sub_attr:
                return None, Missing
            attr_rep: Optional[AttrRep] = self._attr_rep
            attr = schema_or_complex.attrs.get(self._attr_rep)
        else:
            attr_rep = schema_or_complex.resolve(self._attr_rep)
            attr = None if attr_rep is None else schema_or_complex.attrs.get(attr_rep)
        if attr is None or attr.scim_type() not in self.supported_scim_types:
            return None, Missing
        if not value:
            return attr, Missing
        return attr, ScimData(value).get(attr_rep)


class UnaryAttributeOperator(AttributeOperator, abc.ABC):
    @staticmethod
    @abc.abstractmethod
    def test(value: Any) -> bool:
        """Tells whether the attribute value satisfies the operator."""

    def match(self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex) -> bool:
        """
        Matches if the attribute value satisfies the operator. For multi-valued attributes,
        one satisfying item is enough.
        """
        attr, attr_value = self._resolve(value, schema_or_complex)
        if attr is None:
            return False
        if isinstance(attr_value, list):
            return any(self.test(item) for item in attr_value)
        return self.test(attr_value)

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "attr_rep": str(self._attr_rep)}

    def __eq__(self, other: Any) -> bool:
        return type(other) is type(self) and self._attr_rep == other._attr_rep


class Present(UnaryAttributeOperator):
    """
    Matches attributes with a non-empty value. Complex values are present if any of their
    sub-attributes is present.
    """

    op = "pr"
    supported_scim_types = frozenset(SCIMType)
    supported_types = frozenset({str, bool, int, dict, float, type(None)})

    @staticmethod
    def test(value: Any) -> bool:
        if isinstance(value, Mapping):
            return any(Present.test(item) for item in value.values())
        if isinstance(value, list):
            return any(Present.test(item) for item in value)
        if isinstance(value, str):
            return bool(value)
        return value is not None and value is not Missing


def _present_items(value: Any) -> list[Any]:
    items = value if isinstance(value, list) else [value]
    return [item for item in items if item is not None and item is not Missing]


def _prepare_strings(
    attr: AttributeWithCaseExact, items: list[Any], op_value: Any, ignore_case: bool
) -> Optional[tuple[list[Any], Any]]:
    if isinstance(attr, String):
        try:
            items = [attr.precis.enforce(item) if isinstance(item, str) else item for item in items]
            if isinstance(op_value, str):
                op_value = attr.precis.enforce(op_value)
        except UnicodeEncodeError:
            return None
    if attr.case_exact or not ignore_case:
        return items, op_value
    items = [item.lower() if isinstance(item, str) else item for item in items]
    return items, op_value.lower() if isinstance(op_value, str) else op_value


class BinaryAttributeOperator(AttributeOperator, abc.ABC):
    """
    Operator comparing the attribute value (left operand) with the operand (right operand)
    using `compare`. If `case_insensitive` is set, string values of attributes that are
    not case-exact are compared ignoring case. Multi-valued complex attributes are compared
    through their `value` sub-attribute, and match if any item matches.

    Raises:
        TypeError: If the operand type is not supported by the operator.
    """

    case_insensitive: bool = True
    compare: Callable[[Any, Any], bool]

    def __init__(self, attr_rep: AttrRep, value: Any):
        super().__init__(attr_rep=attr_rep)
        if type(value) not in self.supported_types:
            raise TypeError(
                f"value type {type(value).__name__!r} is not supported by {self.op!r} operator"
            )
        self._value = value

    @property
    def value(self) -> Any:
        return self._value

    def _operands(self, attr: Attribute, attr_value: Any) -> Optional[tuple[list[Any], Any]]:
        if isinstance(attr, Complex):
            value_attr = attr.attrs.get("value")
            if not attr.multi_valued or value_attr is None:
                return None
            attr = value_attr
            attr_value = [
                ScimData(item).get("value") if isinstance(item, Mapping) else Missing
                for item in attr_value
            ]
        items = _present_items(attr_value)
        if isinstance(attr, DateTime):
            op_value = DateTime.parse(self._value)
            if op_value is None:
                return None
            return [DateTime.parse(item) for item in items], op_value
        if isinstance(attr, AttributeWithCaseExact):
            return _prepare_strings(attr, items, self._value, self.case_insensitive)
        return items, self._value

    def match(self, value: Optional[Mapping], schema_or_complex: SchemaOrComplex) -> bool:
        """
        Matches if the attribute value (or any of its items) compares successfully with
        the operand. Absent values and values not comparable with the operand never match.
        """
        attr, attr_value = self._resolve(value, schema_or_complex)
        if attr is None or attr_value is None or attr_value is Missing:
            return False
        operands = self._operands(attr, attr_value)
        if operands is None:
            return False
        items, op_value = operands
        return _any_compares(self.compare, items, op_value)

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "attr_rep": str(self._attr_rep), "value": self._value}

    def __eq__(self, other: Any) -> bool:
        return (
            type(other) is type(self)
            and self._attr_rep == other._attr_rep
            and self._value == other._value
        )


def _any_compares(compare: Callable[[Any, Any], bool], items: Iterable[Any], op_value: Any) -> bool:
    for item in items:
        if item is None:
            continue
        try:
            if compare(item, op_value):
                return True
        except (AttributeError, TypeError):
            continue
    return False


_EQUALITY_SCIM_TYPES = frozenset(SCIMType)
_ORDERING_SCIM_TYPES = frozenset(
    {SCIMType.STRING, SCIMType.DATETIME, SCIMType.INTEGER, SCIMType.DECIMAL, SCIMType.COMPLEX}
)
_SUBSTRING_SCIM_TYPES = frozenset({SCIMType.STRING, SCIMType.REFERENCE, SCIMType.COMPLEX})
_EQUALITY_OPERAND_TYPES = frozenset({str, bool, int, float, type(None)})
_ORDERING_OPERAND_TYPES = frozenset({str, float, int})


class Equal(BinaryAttributeOperator):
    op = "eq"
    supported_scim_types = _EQUALITY_SCIM_TYPES
    supported_types = _EQUALITY_OPERAND_TYPES
    compare = staticmethod(operator.eq)


class NotEqual(BinaryAttributeOperator):
    op = "ne"
    supported_scim_types = _EQUALITY_SCIM_TYPES
    supported_types = _EQUALITY_OPERAND_TYPES
    compare = staticmethod(operator.ne)


class Contains(BinaryAttributeOperator):
    op = "co"
    supported_scim_types = _SUBSTRING_SCIM_TYPES
    supported_types = frozenset({str})
    compare = staticmethod(operator.contains)


class StartsWith(BinaryAttributeOperator):
    op = "sw"
    supported_scim_types = _SUBSTRING_SCIM_TYPES
    supported_types = frozenset({str})
    compare = staticmethod(str.startswith)


class EndsWith(BinaryAttributeOperator):
    op = "ew"
    supported_scim_types = _SUBSTRING_SCIM_TYPES
    supported_types = frozenset({str})
    compare = staticmethod(str.endswith)


class GreaterThan(BinaryAttributeOperator):
    op = "gt"
    case_insensitive = False
    supported_scim_types = _ORDERING_SCIM_TYPES
    supported_types = _ORDERING_OPERAND_TYPES
    compare = staticmethod(operator.gt)


class GreaterThanOrEqual(BinaryAttributeOperator):
    op = "ge"
    case_insensitive = False
    supported_scim_types = _ORDERING_SCIM_TYPES
    supported_types = _ORDERING_OPERAND_TYPES
    compare = staticmethod(operator.ge)


class LesserThan(BinaryAttributeOperator):
    op = "lt"
    case_insensitive = False
    supported_scim_types = _ORDERING_SCIM_TYPES
    supported_types = _ORDERING_OPERAND_TYPES
    compare = staticmethod(operator.lt)


class LesserThanOrEqual(BinaryAttributeOperator):
    op = "le"
    case_insensitive = False
    supported_scim_types = _ORDERING_SCIM_TYPES
    supported_types = _ORDERING_OPERAND_TYPES
    compare = staticmethod(operator.le)


register_unary_operator(Present)
for _operator in (
    Equal,
    NotEqual,
    Contains,
    StartsWith,
    EndsWith,
    GreaterThan,
    GreaterThanOrEqual,
    LesserThan,
    LesserThanOrEqual,
):
    register_binary_operator(_operator)

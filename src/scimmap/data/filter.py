import json
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from scimmap._registry import binary_operators, unary_operators
from scimmap.data import operator as op
from scimmap.data.attrs import AttributeWithCaseExact
from scimmap.data.identifiers import AttrRep, AttrRepFactory
from scimmap.data.scim_data import ScimData
from scimmap.data.tokens import Token, TokenizeError, TokenKind, tokenize
from scimmap.error import ScimError, ScimErrorType, ValidationError, ValidationIssues
from scimmap.predicate import AllOf, AnyOf, Comparison, Negation, Predicate, Presence

if TYPE_CHECKING:
    from scimmap.data.schemas import ResourceType

_NUMBER = re.compile(r"-?(?:0|[1-9]\d*)(?P<fraction>\.\d+)?(?P<exponent>[eE][+-]?\d+)?")
_KEYWORDS = {"and", "or", "not"}

QueryableAttributes = Mapping[Union[str, AttrRep], Union[str, Iterable[str]]]


class _ParseError(Exception):
    def __init__(self, error: ValidationError):
        super().__init__(error.message)
        self.error = error


def deserialize_comparison_value(token: Token) -> Any:
    """
    Deserializes comparison literal. Double-quoted strings follow JSON escaping rules.

    Raises:
        ValueError: If the literal is not valid.
    """
    if token.kind == TokenKind.STRING:
        if token.text.startswith('"'):
            return json.loads(token.text)
        return token.text[1:-1].replace("\\'", "'")
    if token.kind != TokenKind.WORD:
        raise ValueError(f"{token.text!r} is not a literal")
    lowered = token.lower
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    match = _NUMBER.fullmatch(token.text)
    if match is None:
        raise ValueError(f"{token.text!r} is not a literal")
    if match.group("fraction") or match.group("exponent"):
        return float(token.text)
    return int(token.text)


def serialize_comparison_value(value: Any) -> str:
    return json.dumps(value)


class _Parser:
    """
    Recursive-descent parser for filter expressions. Precedence, from the strongest:
    `not`, `and`, `or`. Parentheses group sub-expressions.
    """

    def __init__(self, expression: str, tokens: list[Token]):
        self._expression = expression
        self._tokens = tokens
        self._position = 0

    def _peek(self) -> Optional[Token]:
        if self._position < len(self._tokens):
            return self._tokens[self._position]
        return None

    def _advance(self) -> Token:
        token = self._tokens[self._position]
        self._position += 1
        return token

    def _is_keyword(self, token: Optional[Token], keyword: str) -> bool:
        return token is not None and token.kind == TokenKind.WORD and token.lower == keyword

    def parse(self) -> op.Operator:
        if not self._tokens:
            raise _ParseError(ValidationError.empty_filter_expression())
        operator = self._parse_or()
        token = self._peek()
        if token is not None:
            if token.kind == TokenKind.RPAREN:
                raise _ParseError(ValidationError.bracket_not_opened_or_closed())
            if token.kind in (TokenKind.LBRACKET, TokenKind.RBRACKET):
                raise _ParseError(ValidationError.value_selection_not_supported())
            remaining = self._expression[token.position :].strip()
            raise _ParseError(ValidationError.unknown_expression(remaining))
        return operator

    def _parse_or(self) -> op.Operator:
        operands = [self._parse_and(after=None)]
        while self._is_keyword(self._peek(), "or"):
            self._advance()
            operands.append(self._parse_and(after="or"))
        if len(operands) == 1:
            return operands[0]
        return op.Or(*operands)

    def _parse_and(self, after: Optional[str]) -> op.Operator:
        operands = [self._parse_term(after=after)]
        while self._is_keyword(self._peek(), "and"):
            self._advance()
            operands.append(self._parse_term(after="and"))
        if len(operands) == 1:
            return operands[0]
        return op.And(*operands)

    def _parse_term(self, after: Optional[str]) -> op.Operator:
        if self._is_keyword(self._peek(), "not"):
            self._advance()
            return op.Not(self._parse_primary(after="not"))
        return self._parse_primary(after=after)

    def _missing_operand(self, after: Optional[str]) -> _ParseError:
        if after is None:
            return _ParseError(ValidationError.empty_filter_expression())
        return _ParseError(
            ValidationError.missing_operand_for_operator(
                operator=after, expression=self._expression
            )
        )

    def _parse_primary(self, after: Optional[str]) -> op.Operator:
        token = self._peek()
        if token is None:
            raise self._missing_operand(after)
        if token.kind == TokenKind.LPAREN:
            self._advance()
            if (next_token := self._peek()) is not None and next_token.kind == TokenKind.RPAREN:
                raise _ParseError(ValidationError.empty_filter_expression())
            operator = self._parse_or()
            closing = self._peek()
            if closing is None or closing.kind != TokenKind.RPAREN:
                if closing is not None and closing.kind in (
                    TokenKind.LBRACKET,
                    TokenKind.RBRACKET,
                ):
                    raise _ParseError(ValidationError.value_selection_not_supported())
                raise _ParseError(ValidationError.bracket_not_opened_or_closed())
            self._advance()
            return operator
        if token.kind == TokenKind.RPAREN:
            if after is not None:
                raise self._missing_operand(after)
            raise _ParseError(ValidationError.bracket_not_opened_or_closed())
        if token.kind in (TokenKind.LBRACKET, TokenKind.RBRACKET):
            raise _ParseError(ValidationError.value_selection_not_supported())
        if token.kind == TokenKind.STRING:
            raise _ParseError(ValidationError.unknown_expression(token.text))
        if token.lower in _KEYWORDS:
            raise _ParseError(
                ValidationError.missing_operand_for_operator(
                    operator=token.lower, expression=self._expression
                )
            )
        return self._parse_comparison()

    def _parse_comparison(self) -> op.AttributeOperator:
        attr_token = self._advance()
        if AttrRepFactory.validate(attr_token.text).has_errors():
            raise _ParseError(
                ValidationError.bad_attribute_name(
                    attr_token.text, scim_error=ScimErrorType.INVALID_FILTER
                )
            )
        attr_rep = AttrRepFactory.deserialize(attr_token.text)

        op_token = self._peek()
        if op_token is not None and op_token.kind in (TokenKind.LBRACKET, TokenKind.RBRACKET):
            raise _ParseError(ValidationError.value_selection_not_supported())
        if (
            op_token is None
            or op_token.kind != TokenKind.WORD
            or op_token.lower in _KEYWORDS
        ):
            raise _ParseError(ValidationError.unknown_expression(attr_token.text))
        self._advance()

        if op_token.lower in unary_operators:
            return unary_operators[op_token.lower](attr_rep)
        if op_token.lower not in binary_operators:
            raise _ParseError(
                ValidationError.unknown_operator(
                    operator=op_token.text, expression=self._expression
                )
            )
        op_cls = binary_operators[op_token.lower]
        value_token = self._peek()
        if value_token is None or value_token.kind not in (TokenKind.STRING, TokenKind.WORD):
            raise _ParseError(
                ValidationError.missing_operand_for_operator(
                    operator=op_token.lower, expression=self._expression
                )
            )
        self._advance()
        try:
            value = deserialize_comparison_value(value_token)
        except ValueError:
            raise _ParseError(ValidationError.bad_operand(value_token.text))
        if type(value) not in op_cls.supported_types:
            raise _ParseError(ValidationError.non_compatible_operand(value, op_cls.op))
        return op_cls(attr_rep, value)


def _parse(expression: str) -> op.Operator:
    if not isinstance(expression, str):
        raise _ParseError(
            ValidationError.bad_type("string", scim_error=ScimErrorType.INVALID_FILTER)
        )
    try:
        tokens = tokenize(expression)
    except TokenizeError as e:
        raise _ParseError(e.error)
    return _Parser(expression, tokens).parse()


class Filter:
    """
    Data filter supporting SCIM operators. Value selection filters (e.g.
    `emails[type eq "work"]`) are not supported within filter expressions.

    Args:
        operator: Underlying filter operator, used for data filtering.

    Examples:
        >>> username_filter = Filter.deserialize('userName eq "Pagerous"')
        >>> username_filter({"userName": "pagerous"}, user)
        True
        >>> username_filter({"userName": "NotPagerous"}, user)
        False
    """

    def __init__(self, operator: op.Operator):
        self._operator = operator

    def __repr__(self) -> str:
        return f"Filter({self.serialize()})"

    @property
    def operator(self) -> op.Operator:
        """
        Underlying filter operator.
        """
        return self._operator

    @property
    def attr_reps(self) -> list[AttrRep]:
        """
        Attribute representations used in the filter, in order of appearance, without
        repetitions.
        """
        attr_reps: list[AttrRep] = []
        for operator in self._walk(self._operator):
            if (
                isinstance(operator, op.AttributeOperator)
                and operator.attr_rep not in attr_reps
            ):
                attr_reps.append(operator.attr_rep)
        return attr_reps

    @staticmethod
    def _walk(operator: op.Operator) -> Iterable[op.Operator]:
        yield operator
        if isinstance(operator, op.LogicalOperator):
            for sub_operator in operator.sub_operators:
                yield from Filter._walk(sub_operator)

    @classmethod
    def validate(cls, filter_exp: str) -> ValidationIssues:
        """
        Validates the filter expression syntax. All reported errors are of `invalidFilter`
        kind.

        Args:
            filter_exp: Filter expression to validate.

        Returns:
            Validation issues.
        """
        issues = ValidationIssues()
        try:
            _parse(filter_exp)
        except _ParseError as e:
            issues.add_error(issue=e.error, proceed=False)
        return issues

    @classmethod
    def deserialize(cls, filter_exp: str) -> "Filter":
        """
        Deserializes the filter expression.

        Raises:
            ValueError: If provided filter expression is invalid.
        """
        try:
            return cls(_parse(filter_exp))
        except _ParseError as e:
            raise ValueError(f"invalid filter expression: {e.error.message}") from e

    def serialize(self) -> str:
        """
        Serializes `Filter` to string filter expression.
        """
        output = self._serialize(self._operator)
        if isinstance(self._operator, (op.And, op.Or)):
            output = output[1:-1]
        return output

    @staticmethod
    def _serialize(operator: op.Operator) -> str:
        if isinstance(operator, op.BinaryAttributeOperator):
            return (
                f"{operator.attr_rep} {operator.op} "
                f"{serialize_comparison_value(operator.value)}"
            )
        if isinstance(operator, op.UnaryAttributeOperator):
            return f"{operator.attr_rep} {operator.op}"
        if isinstance(operator, op.Not):
            sub_operator = operator.sub_operator
            output = Filter._serialize(sub_operator)
            if isinstance(sub_operator, op.AttributeOperator):
                output = f"({output})"
            return f"{operator.op} {output}"
        if isinstance(operator, (op.And, op.Or)):
            output = f" {operator.op} ".join(
                Filter._serialize(sub_operator) for sub_operator in operator.sub_operators
            )
            return f"({output})"
        raise TypeError(f"unsupported filter type '{type(operator).__name__}'")

    def to_rpn(self) -> list[Union[str, tuple[str, str, Any], tuple[str, str]]]:
        """
        Returns the filter in reverse-Polish form. Comparisons are `(attr, op, value)`
        tuples, presence checks are `(attr, "pr")` tuples, and n-ary logical operators
        appear once per pair of operands.

        Examples:
            >>> Filter.deserialize('userName eq "a" or not (title pr)').to_rpn()
            [("userName", "eq", "a"), ("title", "pr"), "not", "or"]
        """
        output: list = []
        self._to_rpn(self._operator, output)
        return output

    @staticmethod
    def _to_rpn(operator: op.Operator, output: list) -> None:
        if isinstance(operator, op.BinaryAttributeOperator):
            output.append((str(operator.attr_rep), operator.op, operator.value))
        elif isinstance(operator, op.UnaryAttributeOperator):
            output.append((str(operator.attr_rep), operator.op))
        elif isinstance(operator, op.Not):
            Filter._to_rpn(operator.sub_operator, output)
            output.append(operator.op)
        elif isinstance(operator, op.LogicalOperator):
            for i, sub_operator in enumerate(operator.sub_operators):
                Filter._to_rpn(sub_operator, output)
                if i > 0:
                    output.append(operator.op)

    def __call__(self, data: Mapping[str, Any], resource_type: "ResourceType") -> bool:
        """
        Matches the data against the filter.

        Args:
            data: Data to be matched.
            resource_type: Resource type which describes the provided data.

        Returns:
            Flag indicating whether the data matches the filter.
        """
        return self._operator.match(ScimData(data), resource_type)

    def to_predicate(
        self,
        queryable: QueryableAttributes,
        resource_type: Optional["ResourceType"] = None,
    ) -> Predicate:
        """
        Builds backend-neutral predicate, given mapping from attribute paths to backend
        field names. If `resource_type` is provided, paths are matched canonically (e.g.
        `name.givenName` matches `urn:ietf:params:scim:schemas:core:2.0:User:name.givenname`),
        and `caseExact` of attributes is respected.

        Raises:
            ScimError: `invalidFilter`, if any of the attributes in the filter is not
                queryable. No predicate is built in such case.
        """
        lookup: dict[Any, tuple[str, ...]] = {}
        for path, fields in queryable.items():
            key = _queryable_key(path, resource_type)
            lookup[key] = (fields,) if isinstance(fields, str) else tuple(fields)

        for attr_rep in self.attr_reps:
            if _queryable_key(attr_rep, resource_type) not in lookup:
                raise ScimError.invalid_filter(
                    detail=f"attribute {str(attr_rep)!r} can not be used in filter"
                )
        return self._to_predicate(self._operator, lookup, resource_type)

    @staticmethod
    def _to_predicate(
        operator: op.Operator,
        lookup: dict[Any, tuple[str, ...]],
        resource_type: Optional["ResourceType"],
    ) -> Predicate:
        if isinstance(operator, op.AttributeOperator):
            fields = lookup[_queryable_key(operator.attr_rep, resource_type)]
            if isinstance(operator, op.UnaryAttributeOperator):
                return Presence(fields=fields)
            assert isinstance(operator, op.BinaryAttributeOperator)
            case_insensitive = operator.case_insensitive
            if case_insensitive and resource_type is not None:
                attr = resource_type.attrs.get(resource_type.resolve(operator.attr_rep))
                if isinstance(attr, AttributeWithCaseExact) and attr.case_exact:
                    case_insensitive = False
            return Comparison(
                fields=fields,
                op=operator.op,
                value=operator.value,
                case_insensitive=case_insensitive,
            )
        if isinstance(operator, op.Not):
            return Negation(Filter._to_predicate(operator.sub_operator, lookup, resource_type))
        if isinstance(operator, op.LogicalOperator):
            operands = tuple(
                Filter._to_predicate(sub_operator, lookup, resource_type)
                for sub_operator in operator.sub_operators
            )
            return AllOf(operands) if isinstance(operator, op.And) else AnyOf(operands)
        raise TypeError(f"unsupported filter type '{type(operator).__name__}'")

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Filter):
            return False
        return self._operator == other._operator

    def to_dict(self) -> dict[str, Any]:
        """
        Converts the filter to a dictionary.
        """
        return self._operator.to_dict()


def _queryable_key(path: Union[str, AttrRep], resource_type: Optional["ResourceType"]) -> Any:
    if resource_type is not None:
        resolved = resource_type.resolve(path)
        if resolved is not None:
            return resolved
    return str(path).lower()

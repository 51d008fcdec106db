from collections.abc import Mapping
from typing import Any, Optional

from scimmap.data import operator as op
from scimmap.data.attrs import Complex
from scimmap.data.filter import deserialize_comparison_value, serialize_comparison_value
from scimmap.data.identifiers import AttrName, AttrRep, AttrRepFactory, BoundedAttrRep
from scimmap.data.scim_data import ScimData
from scimmap.data.tokens import Token, TokenizeError, TokenKind, tokenize
from scimmap.error import ScimErrorType, ValidationError, ValidationIssues


class _PathError(Exception):
    def __init__(self, error: ValidationError):
        super().__init__(error.message)
        error.scim_error = ScimErrorType.INVALID_PATH
        self.error = error


class PatchPath:
    """
    Target modification path, used in PATCH requests. Supports dotted attribute paths,
    optionally prefixed with schema URI, and value selection filters that consist of
    a single `eq` comparison, optionally followed by a sub-attribute name, e.g.
    `emails[type eq "work"].value`.
    """

    def __init__(
        self,
        attr_rep: AttrRep,
        sub_attr_name: Optional[str] = None,
        selector: Optional[op.Equal] = None,
    ):
        """
        Args:
            attr_rep: The representation of the attribute being targeted. Must not be
                a sub-attribute representation.
            sub_attr_name: The optional sub-attribute being targeted.
            selector: Value selection filter, used for multi-valued complex attributes.
                Its attribute representation addresses a sub-attribute of the targeted
                attribute.

        Raises:
            ValueError: When `attr_rep` is a sub-attribute representation.
            ValueError: When `selector` addresses nested sub-attribute.
        """
        if attr_rep.is_sub_attr:
            raise ValueError("'attr_rep' must not be a sub attribute")
        if selector is not None and (
            isinstance(selector.attr_rep, BoundedAttrRep) or selector.attr_rep.is_sub_attr
        ):
            raise ValueError("selector must compare a plain sub-attribute name")

        self._attr_rep = attr_rep
        if sub_attr_name is not None:
            sub_attr_name = AttrName(sub_attr_name)
        self._sub_attr_name = sub_attr_name
        self._selector = selector

    @property
    def attr_rep(self) -> AttrRep:
        """
        The representation of the attribute being targeted.
        """
        return self._attr_rep

    @property
    def sub_attr_name(self) -> Optional[AttrName]:
        return self._sub_attr_name

    @property
    def selector(self) -> Optional[op.Equal]:
        return self._selector

    @property
    def has_filter(self) -> bool:
        """
        Flag indicating whether the path contains the value selection filter.
        """
        return self._selector is not None

    @property
    def full_attr_rep(self) -> AttrRep:
        """
        Representation of the attribute or sub-attribute targeted by the path, with
        the selector stripped.
        """
        if isinstance(self._attr_rep, BoundedAttrRep):
            return BoundedAttrRep(
                schema=self._attr_rep.schema,
                attr=self._attr_rep.attr,
                sub_attr=self._sub_attr_name,
                extension=self._attr_rep.extension,
            )
        return AttrRep(attr=self._attr_rep.attr, sub_attr=self._sub_attr_name)

    @classmethod
    def validate(cls, path_exp: str) -> ValidationIssues:
        """
        Validates the provided path expression. All reported errors are of `invalidPath`
        kind.
        """
        issues = ValidationIssues()
        try:
            cls._parse(path_exp)
        except _PathError as e:
            issues.add_error(issue=e.error, proceed=False)
        return issues

    @classmethod
    def deserialize(cls, path_exp: str) -> "PatchPath":
        """
        Deserializes the provided path expression into a `PatchPath`.

        Raises:
            ValueError: When `path_exp` is not a valid path expression.

        Examples:
            >>> PatchPath.deserialize('emails[type eq "work"].value')
            PatchPath(emails[type eq "work"].value)
        """
        try:
            return cls._parse(path_exp)
        except _PathError as e:
            raise ValueError(f"invalid path expression: {e.error.message}") from e

    @classmethod
    def _parse(cls, path_exp: str) -> "PatchPath":
        if not isinstance(path_exp, str):
            raise _PathError(ValidationError.bad_type("string"))
        try:
            tokens = tokenize(path_exp)
        except TokenizeError as e:
            raise _PathError(e.error)
        if not tokens:
            raise _PathError(ValidationError.missing())

        head = tokens[0]
        if head.kind != TokenKind.WORD:
            raise _PathError(ValidationError.unknown_expression(path_exp))
        attr_rep = cls._deserialize_attr_rep(head.text)
        if len(tokens) == 1:
            if not attr_rep.is_sub_attr:
                return cls(attr_rep=attr_rep)
            return cls(attr_rep=attr_rep.parent, sub_attr_name=attr_rep.sub_attr)

        if tokens[1].kind != TokenKind.LBRACKET:
            raise _PathError(ValidationError.unknown_expression(path_exp))
        if attr_rep.is_sub_attr:
            raise _PathError(ValidationError.bad_value_selection(str(attr_rep)))

        closing = next(
            (i for i, token in enumerate(tokens) if token.kind == TokenKind.RBRACKET), None
        )
        if closing is None:
            raise _PathError(ValidationError.bracket_not_opened_or_closed())
        selector = cls._parse_selector(str(attr_rep), tokens[2:closing])

        rest = tokens[closing + 1 :]
        if not rest:
            return cls(attr_rep=attr_rep, selector=selector)
        if len(rest) != 1 or rest[0].kind != TokenKind.WORD or not rest[0].text.startswith("."):
            raise _PathError(ValidationError.unknown_expression(path_exp))
        sub_attr_name = rest[0].text[1:]
        try:
            return cls(attr_rep=attr_rep, sub_attr_name=sub_attr_name, selector=selector)
        except ValueError:
            raise _PathError(ValidationError.bad_attribute_name(sub_attr_name))

    @staticmethod
    def _deserialize_attr_rep(value: str) -> AttrRep:
        try:
            return AttrRepFactory.deserialize(value)
        except ValueError:
            raise _PathError(ValidationError.bad_attribute_name(value))

    @staticmethod
    def _parse_selector(attr: str, tokens: list[Token]) -> op.Equal:
        if (
            len(tokens) != 3
            or tokens[0].kind != TokenKind.WORD
            or tokens[1].kind != TokenKind.WORD
            or tokens[1].lower != op.Equal.op
            or tokens[2].kind not in (TokenKind.STRING, TokenKind.WORD)
        ):
            raise _PathError(ValidationError.bad_value_selection(attr))
        try:
            sub_attr = AttrName(tokens[0].text)
        except ValueError:
            raise _PathError(ValidationError.bad_attribute_name(tokens[0].text))
        try:
            value = deserialize_comparison_value(tokens[2])
        except ValueError:
            raise _PathError(ValidationError.bad_operand(tokens[2].text))
        if type(value) not in op.Equal.supported_types:
            raise _PathError(ValidationError.non_compatible_operand(value, op.Equal.op))
        return op.Equal(AttrRep(attr=sub_attr), value)

    def serialize(self) -> str:
        """
        Serializes `PatchPath` to string expression.
        """
        if self._selector is None:
            return str(self.full_attr_rep)
        output = (
            f"{self._attr_rep}[{self._selector.attr_rep} {self._selector.op} "
            f"{serialize_comparison_value(self._selector.value)}]"
        )
        if self._sub_attr_name:
            output += f".{self._sub_attr_name}"
        return output

    def __repr__(self):
        return f"PatchPath({self.serialize()})"

    def __eq__(self, other) -> bool:
        if not isinstance(other, PatchPath):
            return False
        return bool(
            self._attr_rep == other._attr_rep
            and self._selector == other._selector
            and self._sub_attr_name == other._sub_attr_name
        )

    def __call__(self, item: Any, complex_attr: Complex) -> bool:
        """
        Returns the flag indicating whether the provided collection item matches the value
        selection filter.

        Raises:
            AttributeError: When the path does not have value selection filter.

        Examples:
            >>> path = PatchPath.deserialize('emails[type eq "work"]')
            >>> path({"type": "Work", "value": "user@example.com"}, user.attrs.get("emails"))
            True
        """
        if self._selector is None:
            raise AttributeError("path has no value selection filter")
        if not isinstance(item, Mapping):
            return False
        return self._selector.match(ScimData(item), complex_attr)

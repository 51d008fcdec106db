import re
from typing import Any, Optional, Union, cast

from scimmap.error import ValidationError, ValidationIssues

_NAME = r"(?:[a-zA-Z][\w$-]*|\$ref)"
_ATTR_NAME = re.compile(_NAME)
_URI_PREFIX = re.compile(r"(?:[\w.-]+:)*")
_ATTR_REP = re.compile(
    rf"(?P<schema>{_URI_PREFIX.pattern})(?P<attr>{_NAME})(?:\.(?P<sub_attr>{_NAME}))?"
)


class _CaseInsensitiveStr(str):
    """
    String that keeps its case, but compares and hashes case-insensitively.
    """

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, str):
            return False
        return self.lower() == other.lower()

    def __ne__(self, other: Any) -> bool:
        return not self == other

    def __hash__(self) -> int:
        return hash(self.lower())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"


class AttrName(_CaseInsensitiveStr):
    """
    Attribute name, following `ATTRNAME` grammar from RFC 7643, section 2.1, with `$ref`
    allowed as well.

    Raises:
        ValueError: If the value is not valid attribute name.
    """

    def __new__(cls, value: str) -> "AttrName":
        if not isinstance(value, AttrName) and not _ATTR_NAME.fullmatch(value):
            raise ValueError(f"{value!r} is not valid attr name")
        return cast(AttrName, str.__new__(cls, value))


class SchemaUri(_CaseInsensitiveStr):
    """
    Schema URI, e.g. `urn:ietf:params:scim:schemas:core:2.0:User`.

    Raises:
        ValueError: If the value is not valid schema URI.
    """

    def __new__(cls, value: str) -> "SchemaUri":
        if not isinstance(value, SchemaUri) and not _URI_PREFIX.fullmatch(f"{value}:"):
            raise ValueError(f"{value!r} is not a valid schema URI")
        return cast(SchemaUri, str.__new__(cls, value))


class AttrRep:
    """
    Reference to an attribute or a sub-attribute, with no schema.
    """

    def __init__(self, attr: str, sub_attr: Optional[str] = None):
        self._attr = AttrName(attr)
        self._sub_attr = None if sub_attr is None else AttrName(sub_attr)

    def __str__(self) -> str:
        if self._sub_attr is None:
            return str(self._attr)
        return f"{self._attr}.{self._sub_attr}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self})"

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, AttrRep)
            and self._attr == other._attr
            and self._sub_attr == other._sub_attr
        )

    def __hash__(self) -> int:
        return hash((self._attr, self._sub_attr))

    @property
    def attr(self) -> AttrName:
        return self._attr

    @property
    def sub_attr(self) -> AttrName:
        """
        Raises:
            AttributeError: If the representation refers to top-level attribute.
        """
        if self._sub_attr is None:
            raise AttributeError(f"{self!r} has no sub-attribute")
        return self._sub_attr

    @property
    def is_sub_attr(self) -> bool:
        return self._sub_attr is not None

    @property
    def parent(self) -> "AttrRep":
        """
        The top-level attribute. Top-level attributes are their own parents.
        """
        return self if self._sub_attr is None else AttrRep(attr=self._attr)

    @property
    def location(self) -> tuple[str, ...]:
        """
        Keys under which the value is stored in `ScimData`.
        """
        if self._sub_attr is None:
            return (self._attr,)
        return self._attr, self._sub_attr


class BoundedAttrRep(AttrRep):
    """
    Reference to an attribute or a sub-attribute of specific schema. Values of extension
    attributes are stored under the extension URI.

    Args:
        schema: URI of the schema the attribute belongs to.
        attr: Attribute name.
        sub_attr: Sub-attribute name.
        extension: Whether the schema is an extension.
    """

    def __init__(
        self,
        schema: str,
        attr: str,
        sub_attr: Optional[str] = None,
        extension: bool = False,
    ):
        super().__init__(attr, sub_attr)
        self._schema = SchemaUri(schema)
        self._extension = extension

    def __str__(self) -> str:
        return f"{self._schema}:{super().__str__()}"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, BoundedAttrRep) and self._schema != other._schema:
            return False
        return super().__eq__(other)

    def __hash__(self) -> int:
        return hash((self._schema, self._attr, self._sub_attr))

    @property
    def schema(self) -> SchemaUri:
        return self._schema

    @property
    def extension(self) -> bool:
        return self._extension

    @property
    def parent(self) -> "BoundedAttrRep":
        if self._sub_attr is None:
            return self
        return BoundedAttrRep(schema=self._schema, attr=self._attr, extension=self._extension)

    @property
    def location(self) -> tuple[str, ...]:
        if self._extension:
            return (self._schema, *super().location)
        return super().location

    def unbounded(self) -> AttrRep:
        return AttrRep(attr=self._attr, sub_attr=self._sub_attr)


class AttrRepFactory:
    """
    Validates and parses textual attribute references, e.g. `name.givenName` or
    `urn:ietf:params:scim:schemas:core:2.0:User:userName`.
    """

    @classmethod
    def validate(cls, value: str) -> ValidationIssues:
        issues = ValidationIssues()
        if not isinstance(value, str) or _ATTR_REP.fullmatch(value) is None:
            issues.add_error(issue=ValidationError.bad_attribute_name(str(value)), proceed=False)
        return issues

    @classmethod
    def deserialize(cls, value: str) -> Union[AttrRep, BoundedAttrRep]:
        """
        Parses the reference. Returned bounded representations are never marked as
        extension ones, since it is known only to the resource type.

        Raises:
            ValueError: If the value is not valid attribute reference.

        Examples:
            >>> AttrRepFactory.deserialize("name.formatted")
            AttrRep(name.formatted)
            >>> AttrRepFactory.deserialize(
            >>>     "urn:ietf:params:scim:schemas:core:2.0:Group:members.type"
            >>> )
            BoundedAttrRep(urn:ietf:params:scim:schemas:core:2.0:Group:members.type)
        """
        match = _ATTR_REP.fullmatch(value) if isinstance(value, str) else None
        if match is None:
            raise ValueError(f"{value!r} is not valid attribute representation")
        schema = match["schema"].rstrip(":")
        if schema:
            return BoundedAttrRep(schema=schema, attr=match["attr"], sub_attr=match["sub_attr"])
        return AttrRep(attr=match["attr"], sub_attr=match["sub_attr"])

import abc
import warnings
from collections import Counter
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Collection, Iterable, Iterator, Optional, Union, final
from urllib.parse import urlparse

import precis_i18n.profile
from precis_i18n import get_profile

from scimmap.data.constants import SCIMType
from scimmap.data.identifiers import (
    AttrName,
    AttrRep,
    AttrRepFactory,
    BoundedAttrRep,
    SchemaUri,
)
from scimmap.data.scim_data import Missing, ScimData
from scimmap.error import ScimErrorType, ValidationError, ValidationIssues, ValidationWarning
from scimmap.warning import ScimmapUserWarning


class AttributeMutability(str, Enum):
    READ_WRITE = "readWrite"
    READ_ONLY = "readOnly"
    WRITE_ONLY = "writeOnly"
    IMMUTABLE = "immutable"


class AttributeReturn(str, Enum):
    DEFAULT = "default"
    ALWAYS = "always"
    NEVER = "never"
    REQUEST = "request"


class AttributeUniqueness(str, Enum):
    NONE = "none"
    SERVER = "server"
    GLOBAL = "global"


class AttributeIssuer(Enum):
    SERVER = "SERVER"
    CLIENT = "CLIENT"
    NOT_SPECIFIED = "NOT_SPECIFIED"


AttributeValidator = Callable[[Any], ValidationIssues]


def _single_error(issue: ValidationError) -> ValidationIssues:
    issues = ValidationIssues()
    issues.add_error(issue=issue, proceed=False)
    return issues


class Attribute(abc.ABC):
    """
    Attribute definition, with the characteristics described in RFC 7643, section 2.2.

    Args:
        name: Attribute name, validated against RFC 7643 `ATTRNAME` grammar.
        description: Human-readable description.
        issuer: Who assigns the value. Values assigned by the service provider (e.g. `id`)
            are not required in requests.
        required: Whether the value must be present.
        multi_valued: Whether the value is a list of items.
        canonical_values: Suggested (or, if restricted, the only allowed) values.
        restrict_canonical_values: If set, a value outside `canonical_values` is an error.
            Otherwise, it results in a warning.
        mutability: Mutability characteristic.
        returned: Returned characteristic.
        validators: Extra checks, run only if the built-in validation finds no errors.
    """

    def __init__(
        self,
        name: str,
        *,
        description: str = "",
        issuer: Union[str, AttributeIssuer] = AttributeIssuer.NOT_SPECIFIED,
        required: bool = False,
        multi_valued: bool = False,
        canonical_values: Optional[Collection] = None,
        restrict_canonical_values: bool = False,
        mutability: AttributeMutability = AttributeMutability.READ_WRITE,
        returned: AttributeReturn = AttributeReturn.DEFAULT,
        validators: Optional[list[AttributeValidator]] = None,
    ):
        self._name = AttrName(name)
        self._description = description
        self._issuer = AttributeIssuer(issuer)
        self._required = required
        self._multi_valued = multi_valued
        self._canonical_values = list(canonical_values or [])
        self._restrict_canonical_values = restrict_canonical_values
        self._mutability = AttributeMutability(mutability)
        self._returned = AttributeReturn(returned)
        self._validators = list(validators or [])

    @classmethod
    @abc.abstractmethod
    def scim_type(cls) -> SCIMType:
        """SCIM data type of the attribute."""

    @classmethod
    @abc.abstractmethod
    def base_types(cls) -> tuple[type, ...]:
        """Python types accepted as the attribute value."""

    @property
    def name(self) -> AttrName:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def issuer(self) -> AttributeIssuer:
        return self._issuer

    @property
    def required(self) -> bool:
        return self._required

    @property
    def multi_valued(self) -> bool:
        return self._multi_valued

    @property
    def canonical_values(self) -> list:
        return self._canonical_values

    @property
    def mutability(self) -> AttributeMutability:
        return self._mutability

    @property
    def returned(self) -> AttributeReturn:
        return self._returned

    @property
    def custom_validators(self) -> list[AttributeValidator]:
        return self._validators

    def _identity(self) -> tuple:
        return (
            self._name,
            self._issuer,
            self._required,
            self._multi_valued,
            self._canonical_values,
            self._restrict_canonical_values,
            self._mutability,
            self._returned,
            self._validators,
        )

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return False
        return self._identity() == other._identity()  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), self._name))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name})"

    def _check_type(self, value: Any) -> ValidationIssues:
        if isinstance(value, self.base_types()):
            return ValidationIssues()
        return _single_error(ValidationError.bad_type(self.scim_type()))

    def _check_item(self, value: Any) -> ValidationIssues:
        issues = self._check_type(value)
        if issues.can_proceed():
            issues.merge(self._validate(value))
        return issues

    def validate(self, value: Any) -> ValidationIssues:
        """
        Validates the value against the attribute definition. Types are checked strictly
        (no coercion, e.g. `"true"` is not a boolean), then canonical values are checked,
        and finally custom validators are run, if nothing failed so far. The value itself
        is left intact. `None` and `Missing` are always valid.
        """
        issues = ValidationIssues()
        if value is None or value is Missing:
            return issues
        if not self._multi_valued:
            issues.merge(self._check_item(value))
        elif isinstance(value, list):
            for i, item in enumerate(value):
                issues.merge(self._check_item(item), location=(i,))
        else:
            issues.add_error(issue=ValidationError.bad_type("list"), proceed=False)
            return issues
        for validator in self._validators:
            if issues.has_errors():
                break
            issues.merge(validator(value))
        return issues

    def _is_canonical(self, value: Any) -> bool:
        return not self._canonical_values or value in self._canonical_values

    def _validate(self, value: Any) -> ValidationIssues:
        issues = ValidationIssues()
        if self._is_canonical(value):
            return issues
        if self._restrict_canonical_values:
            issues.add_error(
                issue=ValidationError.must_be_one_of(self._canonical_values), proceed=False
            )
        else:
            issues.add_warning(issue=ValidationWarning.should_be_one_of(self._canonical_values))
        return issues

    def to_dict(self) -> dict:
        """
        Returns the attribute definition, as it appears in `/Schemas` responses
        (RFC 7643, section 7).
        """
        output = {
            "name": str(self._name),
            "type": str(self.scim_type()),
            "multiValued": self._multi_valued,
            "description": self._description,
            "required": self._required,
            "mutability": self._mutability.value,
            "returned": self._returned.value,
        }
        if self._canonical_values:
            output["canonicalValues"] = self._canonical_values
        return output


class AttributeWithUniqueness(Attribute, abc.ABC):
    """
    Attribute with `uniqueness` characteristic.
    """

    def __init__(
        self,
        name: Union[str, AttrName],
        *,
        uniqueness: AttributeUniqueness = AttributeUniqueness.NONE,
        **kwargs: Any,
    ):
        super().__init__(name=name, **kwargs)
        self._uniqueness = AttributeUniqueness(uniqueness)

    @property
    def uniqueness(self) -> AttributeUniqueness:
        return self._uniqueness

    def _identity(self) -> tuple:
        return super()._identity() + (self._uniqueness,)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "uniqueness": self._uniqueness.value}


class AttributeWithCaseExact(Attribute, abc.ABC):
    """
    Attribute with `caseExact` characteristic. Canonical values of case-insensitive
    attributes are matched ignoring case.
    """

    def __init__(self, name: Union[str, AttrName], *, case_exact: bool = False, **kwargs: Any):
        super().__init__(name=name, **kwargs)
        self._case_exact = case_exact

    @property
    def case_exact(self) -> bool:
        return self._case_exact

    def _is_canonical(self, value: Any) -> bool:
        if super()._is_canonical(value):
            return True
        if self._case_exact or not isinstance(value, str):
            return False
        return value.lower() in {
            item.lower() for item in self._canonical_values if isinstance(item, str)
        }

    def _identity(self) -> tuple:
        return super()._identity() + (self._case_exact,)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "caseExact": self._case_exact}


@final
class Boolean(Attribute):
    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.BOOLEAN

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (bool,)


class _Number(AttributeWithUniqueness, abc.ABC):
    def _check_type(self, value: Any) -> ValidationIssues:
        # bool is a subclass of int
        if isinstance(value, bool):
            return _single_error(ValidationError.bad_type(self.scim_type()))
        return super()._check_type(value)


@final
class Decimal(_Number):
    """
    Decimal attribute. Integral values are accepted as well.
    """

    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.DECIMAL

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return float, int


@final
class Integer(_Number):
    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.INTEGER

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (int,)


@final
class String(AttributeWithCaseExact, AttributeWithUniqueness):
    """
    String attribute.

    Args:
        name: Attribute name.
        precis: PRECIS profile used to prepare the values before they are compared in
            filters. `OpaqueString` is used by default.
        kwargs: Characteristics accepted by the base classes.
    """

    def __init__(
        self,
        name: Union[str, AttrName],
        *,
        precis: precis_i18n.profile.Profile = get_profile("OpaqueString"),
        **kwargs: Any,
    ):
        super().__init__(name=name, **kwargs)
        self._precis = precis

    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.STRING

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (str,)

    @property
    def precis(self) -> precis_i18n.profile.Profile:
        return self._precis


@final
class DateTime(Attribute):
    """
    Date and time attribute. Accepts `xsd:dateTime` strings, and `datetime` objects, which
    usually come from backend entities.
    """

    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.DATETIME

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return str, datetime

    def _check_type(self, value: Any) -> ValidationIssues:
        issues = super()._check_type(value)
        if issues.can_proceed() and self.parse(value) is None:
            issues.add_error(
                issue=ValidationError.bad_value_syntax(ScimErrorType.INVALID_VALUE),
                proceed=False,
            )
        return issues

    @staticmethod
    def parse(value: Any) -> Optional[datetime]:
        """
        Returns the value as `datetime`, or `None` if it does not represent one.
        """
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str):
            return None
        if value[-1:] in ("Z", "z"):
            value = f"{value[:-1]}+00:00"
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None


class Reference(AttributeWithCaseExact, abc.ABC):
    """
    Base of reference attributes. Reference values are always compared case-exactly.
    """

    def __init__(
        self, name: Union[str, AttrName], *, reference_types: Iterable[str], **kwargs: Any
    ):
        super().__init__(name=name, **{**kwargs, "case_exact": True})
        self._reference_types = list(reference_types)

    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.REFERENCE

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (str,)

    @property
    def reference_types(self) -> list[str]:
        return self._reference_types

    def _identity(self) -> tuple:
        return super()._identity() + (frozenset(self._reference_types),)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "referenceTypes": self._reference_types}


@final
class ExternalReference(Reference):
    """
    Reference to a resource outside the service provider, e.g. a photo. Values must be
    absolute URLs.
    """

    def __init__(self, name: Union[str, AttrName], **kwargs: Any):
        super().__init__(name=name, reference_types=["external"], **kwargs)

    def _check_type(self, value: Any) -> ValidationIssues:
        issues = super()._check_type(value)
        if not issues.can_proceed():
            return issues
        parsed = urlparse(value)
        if not (parsed.scheme and parsed.netloc):
            issues.add_error(
                issue=ValidationError.bad_value_syntax(ScimErrorType.INVALID_VALUE),
                proceed=False,
            )
        return issues


@final
class UriReference(Reference):
    def __init__(self, name: Union[str, AttrName], **kwargs: Any):
        super().__init__(name=name, reference_types=["uri"], **kwargs)


@final
class ScimReference(Reference):
    """
    Reference to other SCIM resources. `reference_types` are names of the resource types
    that can be referenced.
    """

    def __init__(
        self, name: Union[str, AttrName], *, reference_types: Iterable[str], **kwargs: Any
    ):
        super().__init__(name=name, reference_types=reference_types, **kwargs)


def _default_multi_valued_sub_attrs() -> list[Attribute]:
    # RFC 7643, section 2.4
    return [
        String("value"),
        String("display", mutability=AttributeMutability.IMMUTABLE),
        String("type"),
        Boolean("primary"),
        UriReference("$ref"),
    ]


@final
class Complex(Attribute):
    """
    Complex attribute, composed of sub-attributes.

    Multi-valued complex attributes with no explicit sub-attributes get the default ones
    (`value`, `display`, `type`, `primary`, `$ref`). If `primary` is defined, at most one
    item can be primary. If both `type` and `value` are defined, repeated type-value pairs
    result in a warning.

    Args:
        name: Attribute name.
        sub_attributes: Sub-attributes, which can not be complex.
        kwargs: Characteristics accepted by the base class.

    Raises:
        TypeError: If any of sub-attributes is complex.
        ValueError: If sub-attribute names repeat.
    """

    def __init__(
        self,
        name: Union[str, AttrName],
        *,
        sub_attributes: Optional[Collection[Attribute]] = None,
        **kwargs: Any,
    ):
        if any(isinstance(attr, Complex) for attr in sub_attributes or []):
            raise TypeError("complex attributes can not contain complex sub-attributes")
        super().__init__(name=name, **kwargs)
        if not sub_attributes and self._multi_valued:
            sub_attributes = _default_multi_valued_sub_attrs()
        self._sub_attributes = Attrs(sub_attributes)
        if self._multi_valued:
            built_in = []
            if self.attrs.get("primary") is not None:
                built_in.append(_validate_single_primary_value)
            if self.attrs.get("type") is not None and self.attrs.get("value") is not None:
                built_in.append(_validate_type_value_pairs)
            self._validators += [
                validator for validator in built_in if validator not in self._validators
            ]

    @classmethod
    def scim_type(cls) -> SCIMType:
        return SCIMType.COMPLEX

    @classmethod
    def base_types(cls) -> tuple[type, ...]:
        return (Mapping,)

    @property
    def attrs(self) -> "Attrs":
        return self._sub_attributes

    def _identity(self) -> tuple:
        return super()._identity() + (tuple(attr for _, attr in self._sub_attributes),)

    def _validate(self, value: Mapping[str, Any]) -> ValidationIssues:
        issues = super()._validate(value)
        value = ScimData(value)
        for key in value:
            if self._find_sub_attr(key) is None:
                issues.add_error(
                    issue=ValidationError.unknown_attribute(key), proceed=True, location=(key,)
                )
        for name, sub_attr in self._sub_attributes:
            sub_value = value.get(name)
            if sub_value is not Missing and sub_value is not None:
                issues.merge(sub_attr.validate(sub_value), location=(name,))
            elif sub_attr.required:
                issues.add_error(issue=ValidationError.missing(), proceed=False, location=(name,))
        return issues

    def _find_sub_attr(self, name: str) -> Optional[Attribute]:
        try:
            return self._sub_attributes.get(name)
        except ValueError:
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "subAttributes": [sub_attr.to_dict() for _, sub_attr in self._sub_attributes],
        }


def _items_of(value: Collection[Any]) -> Iterator[ScimData]:
    for item in value:
        if isinstance(item, Mapping):
            yield ScimData(item)


def _validate_single_primary_value(value: Collection[Any]) -> ValidationIssues:
    issues = ValidationIssues()
    if sum(1 for item in _items_of(value) if item.get("primary") is True) > 1:
        issues.add_error(issue=ValidationError.multiple_primary_values(), proceed=True)
    return issues


def _validate_type_value_pairs(value: Collection[Any]) -> ValidationIssues:
    issues = ValidationIssues()
    pairs: Counter = Counter()
    for item in _items_of(value):
        type_, value_ = item.get("type"), item.get("value")
        if isinstance(type_, str) and isinstance(value_, str) and type_ and value_:
            pairs[type_.lower(), value_.lower()] += 1
    if pairs and max(pairs.values()) > 1:
        issues.add_warning(issue=ValidationWarning.multiple_type_value_pairs())
    return issues


class Attrs:
    """
    Ordered collection of attributes, not bound to any schema. Names are unique
    (case-insensitively), and iteration yields `(name, attribute)` pairs.

    Raises:
        ValueError: If attribute names repeat.

    Examples:
        >>> attrs = Attrs([String("myString"), Integer("myInteger")])
        >>> attrs.get("MYSTRING")
        String(myString)
    """

    def __init__(self, attrs: Optional[Iterable[Attribute]] = None):
        self._attrs: dict[AttrName, Attribute] = {}
        for attr in attrs or []:
            if attr.name in self._attrs:
                raise ValueError(f"attribute {str(attr.name)!r} defined more than once")
            self._attrs[attr.name] = attr

    def __iter__(self) -> Iterator[tuple[AttrName, Attribute]]:
        return iter(self._attrs.items())

    def __len__(self) -> int:
        return len(self._attrs)

    def get(self, attr_name: Union[str, AttrRep]) -> Optional[Attribute]:
        """
        Returns the attribute with the given name, if any.

        Raises:
            ValueError: If the provided name is not a valid attribute name.
        """
        if isinstance(attr_name, AttrRep):
            attr_name = attr_name.attr
        return self._attrs.get(AttrName(attr_name))


class BoundedAttrs:
    """
    Attributes of a schema, optionally extended with attributes of schema extensions.
    Iteration yields bounded attribute representations with the attributes, starting with
    the schema's own attributes, followed by the extensions in order they were added.

    Examples:
        >>> bounded_attrs = BoundedAttrs(
        >>>     schema="my:resource:schema",
        >>>     attrs=[
        >>>         String("myString"),
        >>>         Complex("myComplex", sub_attributes=[Integer("myInteger")])
        >>>     ],
        >>>)
        >>> bounded_attrs.get("myComplex.myInteger")
        Integer(myInteger)
    """

    def __init__(
        self,
        schema: str,
        attrs: Optional[Iterable[Attribute]] = None,
        extension: bool = False,
    ):
        self._schema = SchemaUri(schema)
        self._extension = extension
        self._attrs = Attrs(attrs)
        self._extensions: dict[SchemaUri, BoundedAttrs] = {}

    @property
    def schema(self) -> SchemaUri:
        return self._schema

    @property
    def extension(self) -> bool:
        return self._extension

    @property
    def extensions(self) -> dict[SchemaUri, "BoundedAttrs"]:
        return self._extensions

    def __iter__(self) -> Iterator[tuple[BoundedAttrRep, Attribute]]:
        yield from self.core
        for attrs in self._extensions.values():
            yield from attrs.core

    @property
    def core(self) -> Iterator[tuple[BoundedAttrRep, Attribute]]:
        """
        Attributes of the schema itself, with no extension attributes.
        """
        for name, attr in self._attrs:
            yield self._bounded(name), attr

    def _bounded(self, attr: str, sub_attr: Optional[str] = None) -> BoundedAttrRep:
        return BoundedAttrRep(
            schema=self._schema, attr=attr, sub_attr=sub_attr, extension=self._extension
        )

    def extend(self, attrs: "BoundedAttrs") -> None:
        """
        Adds attributes of a schema extension.

        Raises:
            ValueError: If the extension is already included, or it is the schema itself.
        """
        if attrs.schema == self._schema or attrs.schema in self._extensions:
            raise ValueError(f"schema {str(attrs.schema)!r} already included")
        for name, _ in attrs.core_attrs():
            if self._attrs.get(name) is not None:
                warnings.warn(
                    message=(
                        f"attribute {str(name)!r} from extension {str(attrs.schema)!r} "
                        f"shadows the attribute of base schema {str(self._schema)!r}; "
                        f"it is reachable only with URI prefix"
                    ),
                    category=ScimmapUserWarning,
                )
        self._extensions[attrs.schema] = attrs

    def core_attrs(self) -> Iterator[tuple[AttrName, Attribute]]:
        return iter(self._attrs)

    def resolve(
        self, attr_rep: Union[str, AttrRep]
    ) -> Optional[tuple[BoundedAttrRep, Attribute]]:
        """
        Finds the attribute given its name or representation, and returns it together with
        its canonical bounded representation. Representations with no schema are looked up
        in the schema first, then in the extensions.

        Raises:
            ValueError: If provided attribute representation is not valid.
        """
        if isinstance(attr_rep, str):
            attr_rep = AttrRepFactory.deserialize(attr_rep)

        if isinstance(attr_rep, BoundedAttrRep):
            if attr_rep.schema == self._schema:
                return self._resolve_own(attr_rep)
            if (attrs := self._extensions.get(attr_rep.schema)) is not None:
                return attrs._resolve_own(attr_rep)
            return None

        for attrs in (self, *self._extensions.values()):
            if (resolved := attrs._resolve_own(attr_rep)) is not None:
                return resolved
        return None

    def _resolve_own(self, attr_rep: AttrRep) -> Optional[tuple[BoundedAttrRep, Attribute]]:
        attr = self._attrs.get(attr_rep.attr)
        if attr is None:
            return None
        if not attr_rep.is_sub_attr:
            return self._bounded(attr.name), attr
        if not isinstance(attr, Complex):
            return None
        sub_attr = attr.attrs.get(attr_rep.sub_attr)
        if sub_attr is None:
            return None
        return self._bounded(attr.name, sub_attr.name), sub_attr

    def get(self, attr_rep: Union[str, AttrRep]) -> Optional[Attribute]:
        """
        Returns the attribute given its name or representation, or `None` if not found.

        Raises:
            ValueError: If provided attribute representation is not valid.
        """
        resolved = self.resolve(attr_rep)
        return None if resolved is None else resolved[1]

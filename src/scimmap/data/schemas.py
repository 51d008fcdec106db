import logging
from collections.abc import Mapping
from typing import Any, Iterable, Optional, Union

from scimmap.data.attrs import (
    Attribute,
    AttributeIssuer,
    AttributeMutability,
    AttributeReturn,
    AttributeUniqueness,
    BoundedAttrs,
    Complex,
    DateTime,
    String,
    UriReference,
)
from scimmap.data.constants import RESOURCE_TYPE_SCHEMA, SCHEMA_SCHEMA, DataDirection
from scimmap.data.identifiers import AttrRep, BoundedAttrRep, SchemaUri
from scimmap.data.scim_data import Missing, ScimData
from scimmap.error import ValidationError, ValidationIssues, ValidationWarning

logger = logging.getLogger(__name__)

_PRIMITIVES = (str, bytes, int, float, bool, list, tuple, set)


class BaseSchema:
    """
    Base class for all schemas. A schema can be defined either by subclassing and specifying
    `schema`, `name` and `base_attrs` class attributes, or by passing them to the initializer.

    Raises:
        ValueError: If attribute names are not unique within the schema.

    Examples:
        >>> class MySchema(SchemaExtension):
        >>>     schema = "urn:my:schema"
        >>>     name = "MySchema"
        >>>     base_attrs = [String("myString")]
        >>>
        >>> SchemaExtension(schema="urn:my:schema", name="MySchema", attrs=[String("myString")])
    """

    schema: Union[str, SchemaUri]
    name: str
    description: str = ""
    base_attrs: list[Attribute] = []
    common_attrs: list[Attribute] = []
    is_extension: bool = False

    def __init__(
        self,
        schema: Optional[str] = None,
        name: Optional[str] = None,
        attrs: Optional[Iterable[Attribute]] = None,
        description: Optional[str] = None,
    ):
        self.schema = SchemaUri(schema or self.schema)
        self.name = name or getattr(self, "name", None) or self.schema.split(":")[-1]
        if description is not None:
            self.description = description
        own_attrs = list(attrs) if attrs is not None else list(self.base_attrs)
        self._attrs = BoundedAttrs(
            schema=self.schema,
            attrs=list(self.common_attrs) + own_attrs,
            extension=self.is_extension,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.schema})"

    @property
    def attrs(self) -> BoundedAttrs:
        """
        Attributes that belong to the schema.
        """
        return self._attrs

    def to_dict(self) -> dict[str, Any]:
        """
        Returns the schema representation, as specified in RFC-7643, section 7.
        """
        output = {
            "schemas": [SCHEMA_SCHEMA],
            "id": str(self.schema),
            "name": self.name,
            "attributes": [
                attr.to_dict()
                for name, attr in self._attrs.core_attrs()
                if all(name != common.name for common in self.common_attrs)
            ],
            "meta": {"resourceType": "Schema"},
        }
        if self.description:
            output["description"] = self.description
        return output


class ResourceSchema(BaseSchema):
    """
    Base class for primary schemas of resources. Attributes `schemas`, `id`, `externalId`,
    and `meta` are defined in every resource schema.
    """

    common_attrs: list[Attribute] = [
        UriReference(
            name="schemas",
            required=True,
            multi_valued=True,
            mutability=AttributeMutability.READ_ONLY,
            returned=AttributeReturn.ALWAYS,
        ),
        String(
            name="id",
            required=True,
            issuer=AttributeIssuer.SERVER,
            case_exact=True,
            mutability=AttributeMutability.READ_ONLY,
            returned=AttributeReturn.ALWAYS,
            uniqueness=AttributeUniqueness.SERVER,
        ),
        String(
            name="externalId",
            issuer=AttributeIssuer.CLIENT,
            case_exact=True,
        ),
        Complex(
            name="meta",
            issuer=AttributeIssuer.SERVER,
            mutability=AttributeMutability.READ_ONLY,
            sub_attributes=[
                String(
                    name="resourceType",
                    case_exact=True,
                    issuer=AttributeIssuer.SERVER,
                    mutability=AttributeMutability.READ_ONLY,
                ),
                DateTime(
                    name="created",
                    issuer=AttributeIssuer.SERVER,
                    mutability=AttributeMutability.READ_ONLY,
                ),
                DateTime(
                    name="lastModified",
                    issuer=AttributeIssuer.SERVER,
                    mutability=AttributeMutability.READ_ONLY,
                ),
                UriReference(
                    name="location",
                    issuer=AttributeIssuer.SERVER,
                    mutability=AttributeMutability.READ_ONLY,
                ),
                String(
                    name="version",
                    issuer=AttributeIssuer.SERVER,
                    case_exact=True,
                    mutability=AttributeMutability.READ_ONLY,
                ),
            ],
        ),
    ]


class SchemaExtension(BaseSchema):
    """
    Base class for schema extensions. Values of extension attributes are nested in the
    extension URI namespace of resource data.
    """

    is_extension = True


def define_schema(
    schema: str,
    attrs: Iterable[Attribute],
    name: Optional[str] = None,
    extension: bool = False,
    description: str = "",
) -> BaseSchema:
    """
    Creates resource schema or schema extension from the provided attributes.
    """
    cls = SchemaExtension if extension else ResourceSchema
    return cls(schema=schema, name=name, attrs=attrs, description=description)


class ResourceType:
    """
    Resource type composed of a primary schema and optional schema extensions. It is the
    entry point for building, validating, and serializing resource data.

    Args:
        name: Name of the resource type, e.g. "User".
        schema: Primary schema of the resource type.
        extensions: Schema extensions, optionally paired with the flag indicating whether
            the extension is required.
        endpoint: Resource endpoint. Defaults to `/{name}s`.
        description: Description of the resource type.

    Raises:
        ValueError: If any of the extension URIs is repeated.

    Examples:
        >>> user = ResourceType(
        >>>     name="User",
        >>>     schema=UserSchema(),
        >>>     extensions=[(EnterpriseUserSchemaExtension(), False)],
        >>> )
    """

    def __init__(
        self,
        name: str,
        schema: ResourceSchema,
        extensions: Iterable[Union[SchemaExtension, tuple[SchemaExtension, bool]]] = (),
        endpoint: Optional[str] = None,
        description: str = "",
    ):
        self.name = name
        self.endpoint = endpoint or f"/{name}s"
        self.description = description
        self._schema = schema
        self._extensions: dict[SchemaUri, tuple[SchemaExtension, bool]] = {}
        self._attrs = BoundedAttrs(schema=schema.schema, attrs=[a for _, a in schema.attrs.core])
        for item in extensions:
            extension, required = item if isinstance(item, tuple) else (item, False)
            if extension.schema == schema.schema or extension.schema in self._extensions:
                raise ValueError(
                    f"schema {str(extension.schema)!r} already in {self.name!r} resource type"
                )
            self._attrs.extend(extension.attrs)
            self._extensions[extension.schema] = (extension, required)

    def __repr__(self) -> str:
        return f"ResourceType({self.name})"

    @property
    def schema(self) -> ResourceSchema:
        return self._schema

    @property
    def extensions(self) -> dict[SchemaUri, bool]:
        """
        Extension URIs with flags indicating whether the extension is required.
        """
        return {uri: required for uri, (_, required) in self._extensions.items()}

    @property
    def schemas(self) -> list[SchemaUri]:
        """
        All schema URIs of the resource type, primary schema first.
        """
        return [self._schema.schema] + list(self._extensions)

    def get_extension(self, uri: str) -> Optional[SchemaExtension]:
        item = self._extensions.get(SchemaUri(uri)) if _is_uri(uri) else None
        return item[0] if item else None

    @property
    def attrs(self) -> BoundedAttrs:
        """
        Attributes of the primary schema and all extensions.
        """
        return self._attrs

    def resolve(self, attr_rep: Union[str, AttrRep]) -> Optional[BoundedAttrRep]:
        """
        Returns canonical bounded representation of the attribute or sub-attribute, or `None`
        if the attribute does not exist or the representation is not valid. URI-prefixed
        and dotted representations are accepted.
        """
        try:
            resolved = self._attrs.resolve(attr_rep)
        except ValueError:
            return None
        return resolved[0] if resolved else None

    def find_attribute(self, *segments: Union[str, int]) -> Optional[Attribute]:
        """
        Returns the attribute definition for the provided path segments. Integer segments
        and digit-only strings are treated as collection indexes and skipped.

        Examples:
            >>> user.find_attribute("name", "givenName")
            String(givenName)
            >>> user.find_attribute("emails", 0, "value")
            String(value)
            >>> user.find_attribute("name.givenName")
            String(givenName)
        """
        parts: list[str] = []
        for segment in segments:
            if isinstance(segment, int) or (isinstance(segment, str) and segment.isdigit()):
                continue
            parts.append(str(segment))
        if not parts:
            return None
        if len(parts) == 1:
            path = parts[0]
        elif len(parts) == 2 and self.get_extension(parts[0]) is not None:
            path = f"{parts[0]}:{parts[1]}"
        elif len(parts) == 3 and self.get_extension(parts[0]) is not None:
            path = f"{parts[0]}:{parts[1]}.{parts[2]}"
        elif len(parts) == 2:
            path = f"{parts[0]}.{parts[1]}"
        else:
            return None
        try:
            return self._attrs.get(path)
        except ValueError:
            return None

    def build(self, raw: Any) -> tuple[ScimData, ValidationIssues]:
        """
        Builds resource data from the raw input. Keys are matched case-insensitively and
        are normalized to the case of attribute definitions. Values are not validated here,
        so it is up to the caller to run `validate` afterwards.

        - extension URI keys become namespaced values,
        - complex values are accepted from any mapping or any object that exposes
          sub-attribute names as its attributes,
        - unknown keys in complex values are reported as errors,
        - unknown top-level keys are dropped with a warning.

        Returns:
            Built data and issues found during building.
        """
        issues = ValidationIssues()
        data = ScimData()
        items = self._get_items(raw)
        if items is None:
            issues.add_error(issue=ValidationError.bad_type("complex"), proceed=False)
            return data, issues

        for key, value in items:
            if not isinstance(key, str):
                continue
            extension = self.get_extension(key)
            if extension is not None:
                self._build_extension(extension, key, value, data, issues)
                continue
            attr_rep = self.resolve(key)
            if attr_rep is None or attr_rep.is_sub_attr:
                logger.warning("dropping unknown attribute %r of %r resource", key, self.name)
                issues.add_warning(
                    issue=ValidationWarning.unexpected_content(f"unknown attribute {key!r}"),
                    location=[key],
                )
                continue
            attr = self._attrs.get(attr_rep)
            built, issues_ = self.build_value(attr, value)
            issues.merge(issues_, location=attr_rep.location)
            data.set(attr_rep, built)
        return data, issues

    def _build_extension(
        self,
        extension: SchemaExtension,
        key: str,
        value: Any,
        data: ScimData,
        issues: ValidationIssues,
    ) -> None:
        items = self._get_items(value)
        if items is None:
            issues.add_error(
                issue=ValidationError.bad_type("complex"),
                proceed=False,
                location=[str(extension.schema)],
            )
            return
        data.set(str(extension.schema), ScimData())
        for sub_key, sub_value in items:
            resolved = None
            if isinstance(sub_key, str):
                try:
                    resolved = extension.attrs.resolve(AttrRep(sub_key))
                except ValueError:
                    resolved = None
            if resolved is None:
                issues.add_error(
                    issue=ValidationError.unknown_attribute(str(sub_key)),
                    proceed=True,
                    location=[str(extension.schema), str(sub_key)],
                )
                continue
            attr_rep, attr = resolved
            built, issues_ = self.build_value(attr, sub_value)
            issues.merge(issues_, location=attr_rep.location)
            data.set(attr_rep, built)

    def build_value(self, attr: Attribute, value: Any) -> tuple[Any, ValidationIssues]:
        """
        Builds the value of the provided attribute. Complex values are converted to `ScimData`,
        with unknown keys reported and dropped. Other values are returned as they are.
        """
        issues = ValidationIssues()
        if isinstance(value, tuple):
            value = list(value)
        if not isinstance(attr, Complex):
            return value, issues
        if attr.multi_valued and isinstance(value, list):
            built_items = []
            for i, item in enumerate(value):
                built, issues_ = self._build_complex(attr, item)
                issues.merge(issues_, location=[i])
                built_items.append(built)
            return built_items, issues
        return self._build_complex(attr, value)

    def _build_complex(self, attr: Complex, value: Any) -> tuple[Any, ValidationIssues]:
        issues = ValidationIssues()
        if isinstance(value, Mapping):
            items = list(value.items())
        elif value is not None and not isinstance(value, _PRIMITIVES):
            items = [
                (str(name), getattr(value, name))
                for name, _ in attr.attrs
                if hasattr(value, name)
            ]
        else:
            return value, issues

        built = ScimData()
        for key, sub_value in items:
            sub_attr = None
            if isinstance(key, str):
                try:
                    sub_attr = attr.attrs.get(key)
                except ValueError:
                    sub_attr = None
            if sub_attr is None:
                issues.add_error(
                    issue=ValidationError.unknown_attribute(str(key)),
                    proceed=True,
                    location=[str(key)],
                )
                continue
            if isinstance(sub_value, tuple):
                sub_value = list(sub_value)
            built.set(str(sub_attr.name), sub_value)
        return built, issues

    @staticmethod
    def _get_items(value: Any) -> Optional[list[tuple[Any, Any]]]:
        if isinstance(value, Mapping):
            return list(value.items())
        if value is None or isinstance(value, _PRIMITIVES):
            return None
        if hasattr(value, "__dict__"):
            return [(k, v) for k, v in vars(value).items() if not k.startswith("_")]
        return None

    def validate(
        self,
        data: Mapping[str, Any],
        direction: DataDirection = DataDirection.REQUEST,
    ) -> ValidationIssues:
        """
        Validates the provided data according to the resource type attributes. Checks:

        - type conformance of every value, with no coercion,
        - presence of required attributes; attributes issued by the service provider are not
          required in requests, and required attributes of optional extensions are required
          only if the extension data is provided,
        - `schemas` consistency, if provided,
        - `meta.resourceType` consistency, if provided,
        - that attributes with `returned=never` are not present in responses.
        """
        issues = ValidationIssues()
        data = ScimData(data)
        direction = DataDirection(direction)

        invalid_extensions = set()
        for uri in self._extensions:
            extension_data = data.get(str(uri))
            if extension_data is not Missing and not isinstance(extension_data, Mapping):
                issues.add_error(
                    issue=ValidationError.bad_type("complex"),
                    proceed=False,
                    location=[str(uri)],
                )
                invalid_extensions.add(uri)

        for attr_rep, attr in self._attrs:
            if attr_rep.extension and attr_rep.schema in invalid_extensions:
                continue
            value = data.get(attr_rep)
            if value is Missing or value is None or value == []:
                if attr.required and self._is_required(attr_rep, attr, data, direction):
                    issues.add_error(
                        issue=ValidationError.missing(),
                        proceed=False,
                        location=attr_rep.location,
                    )
                continue
            if direction == DataDirection.RESPONSE and attr.returned == AttributeReturn.NEVER:
                issues.add_error(
                    issue=ValidationError.must_not_be_returned(),
                    proceed=False,
                    location=attr_rep.location,
                )
                continue
            issues.merge(attr.validate(value), location=attr_rep.location)

        if issues.can_proceed(("schemas",)):
            issues.merge(self._validate_schemas_field(data), location=("schemas",))
        resource_type = data.get("meta.resourceType")
        if isinstance(resource_type, str) and resource_type != self.name:
            issues.add_error(
                issue=ValidationError.must_be_equal_to(self.name),
                proceed=True,
                location=("meta", "resourceType"),
            )
        return issues

    def _is_required(
        self,
        attr_rep: BoundedAttrRep,
        attr: Attribute,
        data: ScimData,
        direction: DataDirection,
    ) -> bool:
        if direction == DataDirection.REQUEST:
            if attr.issuer == AttributeIssuer.SERVER or attr.name == "schemas":
                return False
        if attr_rep.extension and not self.extensions[attr_rep.schema]:
            return data.get(str(attr_rep.schema)) is not Missing
        return True

    def _validate_schemas_field(self, data: ScimData) -> ValidationIssues:
        issues = ValidationIssues()
        provided = data.get("schemas")
        if not isinstance(provided, list) or not provided:
            return issues
        provided = [item.lower() for item in provided if isinstance(item, str)]
        if len(provided) > len(set(provided)):
            issues.add_error(issue=ValidationError.duplicated_values(), proceed=True)
        known = [uri.lower() for uri in self.schemas]
        if any(item not in known for item in provided):
            issues.add_error(issue=ValidationError.unknown_schema(), proceed=True)
        if self._schema.schema.lower() not in provided:
            issues.add_error(issue=ValidationError.missing_main_schema(), proceed=True)
        for uri in self._extensions:
            if data.get(str(uri)) is not Missing and uri.lower() not in provided:
                issues.add_error(
                    issue=ValidationError.missing_schema_extension(str(uri)),
                    proceed=True,
                )
        return issues

    def serialize(self, data: Mapping[str, Any], location: Optional[str] = None) -> dict[str, Any]:
        """
        Serializes the data to the outbound representation. `schemas` is computed from the
        data (primary schema, then extensions with values, in declaration order), and
        `meta.resourceType` (and `meta.location`, if provided) are set. Attributes that are
        never returned, unknown attributes, and empty values are not included.
        """
        data = ScimData(data)
        serialized = ScimData()
        serialized.set("schemas", [str(uri) for uri in self._included_schemas(data)])
        for attr_rep, attr in self._attrs:
            if attr.name == "schemas" and not attr_rep.extension:
                continue
            if attr.returned == AttributeReturn.NEVER:
                continue
            value = data.get(attr_rep)
            if value is Missing or value is None or value == []:
                continue
            if isinstance(attr, Complex):
                value = self._serialize_complex(attr, value)
                if not value:
                    continue
            serialized.set(attr_rep, value)
        serialized.set("meta.resourceType", self.name)
        if location:
            serialized.set("meta.location", location)
        return serialized.to_dict()

    @staticmethod
    def _serialize_complex(attr: Complex, value: Any) -> Any:
        def _serialize_item(item: Any) -> Any:
            if not isinstance(item, Mapping):
                return item
            item = ScimData(item)
            output = ScimData()
            for name, sub_attr in attr.attrs:
                if sub_attr.returned == AttributeReturn.NEVER:
                    continue
                sub_value = item.get(name)
                if sub_value is not Missing and sub_value is not None:
                    output.set(str(name), sub_value)
            return output

        if isinstance(value, list):
            return [item for item in map(_serialize_item, value) if item]
        return _serialize_item(value)

    def _included_schemas(self, data: ScimData) -> list[SchemaUri]:
        schemas = [self._schema.schema]
        for uri in self._extensions:
            extension_data = data.get(str(uri))
            if isinstance(extension_data, Mapping) and any(
                v is not Missing and v is not None and v != []
                for v in ScimData(extension_data).values()
            ):
                schemas.append(uri)
        return schemas

    def to_dict(self, location: Optional[str] = None) -> dict[str, Any]:
        """
        Returns the resource type representation, as specified in RFC-7643, section 6.
        """
        output: dict[str, Any] = {
            "schemas": [RESOURCE_TYPE_SCHEMA],
            "id": self.name,
            "name": self.name,
            "endpoint": self.endpoint,
            "schema": str(self._schema.schema),
            "meta": {"resourceType": "ResourceType"},
        }
        if self.description:
            output["description"] = self.description
        if self._extensions:
            output["schemaExtensions"] = [
                {"schema": str(uri), "required": required}
                for uri, (_, required) in self._extensions.items()
            ]
        if location:
            output["meta"]["location"] = location
        return output


def _is_uri(value: str) -> bool:
    try:
        SchemaUri(value)
    except ValueError:
        return False
    return True

from collections.abc import Mapping
from typing import Any, Callable, Iterable, Optional, cast

import marshmallow

from scimmap.data import attrs
from scimmap.data.constants import DataDirection
from scimmap.data.schemas import ResourceType
from scimmap.data.scim_data import ScimData

FieldTypes = dict[type[attrs.Attribute], type[marshmallow.fields.Field]]

_field_types: FieldTypes = {
    attrs.Boolean: marshmallow.fields.Boolean,
    attrs.Integer: marshmallow.fields.Integer,
    attrs.Decimal: marshmallow.fields.Float,
    attrs.DateTime: marshmallow.fields.Raw,
    attrs.String: marshmallow.fields.String,
    attrs.ExternalReference: marshmallow.fields.String,
    attrs.UriReference: marshmallow.fields.String,
    attrs.ScimReference: marshmallow.fields.String,
}
_initialized = False
_initialized_implicitly = False


def initialize(field_types: Optional[FieldTypes] = None) -> None:
    """
    Initializes the extension, optionally overriding which `marshmallow` field is used for
    which attribute type. `Complex` attributes always become `Nested` fields, and
    multi-valued attributes are wrapped in `List` fields. By default:

        Boolean                                        ---> fields.Boolean
        Integer                                        ---> fields.Integer
        Decimal                                        ---> fields.Float
        DateTime                                       ---> fields.Raw
        String, ExternalReference, UriReference,
        ScimReference                                  ---> fields.String

    Must be called before the first schema is created, and only once.

    Raises:
        RuntimeError: If the extension is already initialized.
    """
    global _initialized
    if _initialized_implicitly:
        raise RuntimeError(
            "marshmallow extension has been implicitly initialized with default field types; "
            "call scimmap.ext.marshmallow.initialize() before creating any schema"
        )
    if _initialized:
        raise RuntimeError("marshmallow extension has been already initialized")
    _field_types.update(field_types or {})
    _initialized = True


def _initialize_implicitly() -> None:
    global _initialized_implicitly
    if not _initialized:
        initialize()
        _initialized_implicitly = True


def _field(attr: attrs.Attribute) -> marshmallow.fields.Field:
    field: marshmallow.fields.Field
    if isinstance(attr, attrs.Complex):
        field = marshmallow.fields.Nested(_fields(attr.attrs))
    else:
        field = _field_types[type(attr)]()
    return marshmallow.fields.List(field) if attr.multi_valued else field


def _fields(named_attrs: Iterable[tuple[Any, attrs.Attribute]]) -> dict[str, Any]:
    return {str(name): _field(attr) for name, attr in named_attrs}


def _messages(issues: dict[str, Any]) -> dict[str, Any]:
    """
    Converts validation issues to `marshmallow` error messages. Warnings are dropped, and
    errors of the data as a whole are reported under `_schema`.
    """
    output: dict[str, Any] = {}
    errors = [error["error"] for error in issues.get("_errors", [])]
    if errors:
        output["_schema"] = errors
    for key, value in issues.items():
        if key in ("_errors", "_warnings"):
            continue
        nested = _messages(value)
        if list(nested) == ["_schema"]:
            output[key] = nested["_schema"]
        elif nested:
            output[key] = nested
    return output


def _processors(resource_type: ResourceType, direction: DataDirection) -> dict[str, Callable]:
    def load_data(_, data: Mapping[str, Any], **__) -> dict[str, Any]:
        built, issues = resource_type.build(data)
        if issues.can_proceed():
            issues.merge(resource_type.validate(built, direction))
        if issues.has_errors():
            raise marshmallow.ValidationError(_messages(issues.to_dict(msg=True)))
        return built.to_dict()

    def wrap_data(_, data: Mapping[str, Any], **__) -> ScimData:
        return ScimData(data)

    def dump_data(_, data: Mapping[str, Any], **__) -> dict[str, Any]:
        return resource_type.serialize(data)

    return {
        "_load_data": marshmallow.pre_load(load_data),
        "_wrap_data": marshmallow.post_load(wrap_data),
        "_dump_data": marshmallow.pre_dump(dump_data),
        "get_attribute": lambda _, obj, key, default: obj.get(key, default),
    }


def create_resource_schema(
    resource_type: ResourceType,
    direction: DataDirection = DataDirection.REQUEST,
) -> type[marshmallow.Schema]:
    """
    Creates `marshmallow` schema for resources of `resource_type`. The schema fields only
    describe the data shape. Building, validation, and serialization are delegated to the
    resource type, so they behave the same as without `marshmallow`. Loaded data is returned
    as `ScimData`, and validation errors are raised as `marshmallow.ValidationError`.

    Args:
        resource_type: Resource type described by the schema.
        direction: Whether loaded data is validated as request or response data.

    Examples:
        >>> schema = create_resource_schema(user)()
        >>> schema.load({"userName": "bjensen"})
        ScimData({'userName': 'bjensen'})
    """
    _initialize_implicitly()
    fields = _fields((attr_rep.attr, attr) for attr_rep, attr in resource_type.attrs.core)
    for uri, extension_attrs in resource_type.attrs.extensions.items():
        fields[str(uri)] = marshmallow.fields.Nested(
            _fields((attr_rep.attr, attr) for attr_rep, attr in extension_attrs.core)
        )
    base = marshmallow.Schema.from_dict(fields)
    processors = _processors(resource_type, DataDirection(direction))
    schema_cls = type(resource_type.name, (base,), processors)
    return cast(type[marshmallow.Schema], schema_cls)

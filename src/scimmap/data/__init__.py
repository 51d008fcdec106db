from scimmap.data.attrs import (
    Attribute,
    AttributeIssuer,
    AttributeMutability,
    AttributeReturn,
    AttributeUniqueness,
    Attrs,
    Boolean,
    BoundedAttrs,
    Complex,
    DateTime,
    Decimal,
    ExternalReference,
    Integer,
    ScimReference,
    String,
    UriReference,
)
from scimmap.data.filter import Filter
from scimmap.data.identifiers import (
    AttrName,
    AttrRep,
    AttrRepFactory,
    BoundedAttrRep,
    SchemaUri,
)
from scimmap.data.patch import PatchOperation, PatchOperations, PatchOperationType
from scimmap.data.patch_path import PatchPath
from scimmap.data.schemas import ResourceSchema, ResourceType, SchemaExtension, define_schema
from scimmap.data.scim_data import Invalid, Missing, ScimData

__all__ = [
    "AttrName",
    "SchemaUri",
    "AttrRep",
    "BoundedAttrRep",
    "AttrRepFactory",
    "Attribute",
    "AttributeIssuer",
    "AttributeMutability",
    "AttributeReturn",
    "AttributeUniqueness",
    "Attrs",
    "Boolean",
    "BoundedAttrs",
    "Complex",
    "DateTime",
    "Decimal",
    "ExternalReference",
    "Integer",
    "ScimReference",
    "String",
    "UriReference",
    "ResourceSchema",
    "ResourceType",
    "SchemaExtension",
    "define_schema",
    "Filter",
    "PatchOperation",
    "PatchOperations",
    "PatchOperationType",
    "PatchPath",
    "ScimData",
    "Missing",
    "Invalid",
]

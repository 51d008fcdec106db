from scimmap.data.attrs import (
    Attribute,
    AttributeMutability,
    Complex,
    ScimReference,
    String,
)
from scimmap.data.schemas import ResourceSchema


class GroupSchema(ResourceSchema):
    schema = "urn:ietf:params:scim:schemas:core:2.0:Group"
    name = "Group"
    description = "Group"
    base_attrs: list[Attribute] = [
        String(
            name="displayName",
            description="Human-readable name of the Group.",
            required=True,
        ),
        Complex(
            name="members",
            multi_valued=True,
            description="Members of the Group.",
            sub_attributes=[
                String(
                    "value",
                    description="Identifier of the member.",
                    mutability=AttributeMutability.IMMUTABLE,
                ),
                ScimReference(
                    "$ref",
                    reference_types=["User", "Group"],
                    mutability=AttributeMutability.IMMUTABLE,
                ),
                String("display", mutability=AttributeMutability.READ_ONLY),
                String(
                    "type",
                    canonical_values=["User", "Group"],
                    restrict_canonical_values=True,
                    mutability=AttributeMutability.IMMUTABLE,
                ),
            ],
        ),
    ]

from scimmap.schemas.group import GroupSchema
from scimmap.schemas.user import EnterpriseUserSchemaExtension, UserSchema

__all__ = [
    "EnterpriseUserSchemaExtension",
    "GroupSchema",
    "UserSchema",
]

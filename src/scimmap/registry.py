from types import MappingProxyType
from typing import Iterable, Iterator, Optional

from scimmap.data.identifiers import SchemaUri
from scimmap.data.schemas import BaseSchema, ResourceType


class SchemaRegistry:
    """
    Immutable registry of resource types and their schemas. Built once at process start,
    and shared by request handling afterwards. No mutation API is provided.

    Raises:
        RuntimeError: If resource type names or endpoints are repeated, or if the same schema
            URI is used by different schema definitions.

    Examples:
        >>> registry = SchemaRegistry([user_resource_type, group_resource_type])
        >>> registry.get("User")
        ResourceType(User)
        >>> registry.get_schema("urn:ietf:params:scim:schemas:core:2.0:User")
        UserSchema(urn:ietf:params:scim:schemas:core:2.0:User)
    """

    def __init__(self, resource_types: Iterable[ResourceType]):
        by_name: dict[str, ResourceType] = {}
        by_endpoint: dict[str, ResourceType] = {}
        schemas: dict[SchemaUri, BaseSchema] = {}
        for resource_type in resource_types:
            name = resource_type.name.lower()
            if name in by_name:
                raise RuntimeError(f"resource type {resource_type.name!r} already registered")
            endpoint = resource_type.endpoint.lower()
            if endpoint in by_endpoint:
                raise RuntimeError(
                    f"endpoint {resource_type.endpoint!r} already used by "
                    f"{by_endpoint[endpoint].name!r} resource type"
                )
            by_name[name] = resource_type
            by_endpoint[endpoint] = resource_type
            for schema in [resource_type.schema] + [
                resource_type.get_extension(uri) for uri in resource_type.extensions
            ]:
                existing = schemas.get(schema.schema)
                if existing is not None and existing is not schema:
                    raise RuntimeError(
                        f"schema {str(schema.schema)!r} already registered with "
                        "different definition"
                    )
                schemas[schema.schema] = schema

        self._by_name = MappingProxyType(by_name)
        self._by_endpoint = MappingProxyType(by_endpoint)
        self._schemas = MappingProxyType(schemas)

    def __iter__(self) -> Iterator[ResourceType]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._by_name

    @property
    def resource_types(self) -> tuple[ResourceType, ...]:
        return tuple(self._by_name.values())

    @property
    def schemas(self) -> tuple[BaseSchema, ...]:
        return tuple(self._schemas.values())

    def get(self, name: str) -> Optional[ResourceType]:
        """
        Returns resource type by its name (case-insensitive).
        """
        return self._by_name.get(name.lower())

    def get_by_endpoint(self, endpoint: str) -> Optional[ResourceType]:
        return self._by_endpoint.get(endpoint.lower())

    def get_schema(self, uri: str) -> Optional[BaseSchema]:
        """
        Returns schema or schema extension by its URI (case-insensitive).
        """
        try:
            return self._schemas.get(SchemaUri(uri))
        except ValueError:
            return None

    def find_resource_type(self, schemas: Iterable[str]) -> Optional[ResourceType]:
        """
        Returns resource type whose primary schema is one of the provided schema URIs.
        """
        provided = {uri.lower() for uri in schemas if isinstance(uri, str)}
        for resource_type in self._by_name.values():
            if resource_type.schema.schema.lower() in provided:
                return resource_type
        return None

"""
Request-level flows for a single resource type, independent of any HTTP framework.
Every flow returns `(status, body)` tuple, where body is SCIM resource, `ListResponse`,
SCIM Error, or `None`.

Examples:
    >>> handler = ResourceHandler(user, mapping=user_mapping, backend=UserBackend())
    >>> handler.list({"filter": 'userName eq "bjensen"', "count": "10"})
    (200, {"schemas": ["urn:ietf:params:scim:api:messages:2.0:ListResponse"], ...})
    >>> handler.get("missing")
    (404, {"schemas": ["urn:ietf:params:scim:api:messages:2.0:Error"], "status": "404", ...})
"""

import dataclasses
import functools
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional, Protocol, Union

import scimmap.config
from scimmap.data.constants import DataDirection
from scimmap.data.filter import Filter, QueryableAttributes
from scimmap.data.patch import PatchOperations
from scimmap.data.schemas import ResourceType
from scimmap.data.scim_data import ScimData
from scimmap.error import ScimError
from scimmap.mapper import AttributeMapping
from scimmap.pagination import compute_window, list_response
from scimmap.predicate import Predicate

logger = logging.getLogger(__name__)


class UniquenessConflict(Exception):
    """Raised by backends when a unique value is already taken."""


class BackendValidationError(Exception):
    """Raised by backends when the entity is rejected by backend's own validation rules."""


class Backend(Protocol):
    def find(self, resource_id: str) -> Optional[Any]:
        """Returns the entity with the provided identifier, or `None`."""

    def list(
        self, predicate: Optional[Predicate], offset: int, limit: int
    ) -> tuple[list[Any], int]:
        """Returns the page of entities matching the predicate, and the total count."""

    def create(self, fields: dict[str, Any]) -> Any:
        """Creates and returns new entity."""

    def update(self, entity: Any, fields: dict[str, Any]) -> Any:
        """Updates the entity with the provided fields, and returns the updated entity."""

    def delete(self, entity: Any) -> None:
        """Deletes the entity."""


Authenticator = Callable[[Any], bool]
Response = tuple[int, Optional[dict[str, Any]]]


def _handle_errors(method: Callable[..., Response]) -> Callable[..., Response]:
    @functools.wraps(method)
    def wrapper(self: "ResourceHandler", *args: Any, **kwargs: Any) -> Response:
        try:
            return method(self, *args, **kwargs)
        except UniquenessConflict as e:
            error = ScimError.uniqueness(str(e) or None)
        except BackendValidationError as e:
            error = ScimError.invalid_value(str(e) or None)
        except ScimError as e:
            error = e
        logger.warning(
            "%s %s request failed with %s: %s",
            self.resource_type.name,
            method.__name__,
            error.status,
            error.detail,
        )
        return error.status, error.to_dict()

    return wrapper


class ResourceHandler:
    """
    Implements `get`, `list`, `create`, `replace`, `patch`, and `delete` flows for the
    resource type, translating resource data to entity fields with the `mapping`, and
    delegating persistence to the `backend`.

    Args:
        resource_type: Handled resource type.
        mapping: Mapping between resource data and entity fields.
        backend: Persistence collaborator.
        authenticator: Callable that receives credentials passed to the flow, and returns
            whether they are valid. Authentication is not performed if not provided.
        queryable: Attribute paths that can be used in filters, with backend field names.
            Computed from the `mapping` if not provided.
        config: Service provider configuration. The global one is used if not provided.
        base_location: Base URL used for `meta.location`, e.g. `https://example.com/scim/v2`.
    """

    def __init__(
        self,
        resource_type: ResourceType,
        mapping: AttributeMapping,
        backend: Backend,
        authenticator: Optional[Authenticator] = None,
        queryable: Optional[QueryableAttributes] = None,
        config: Optional[scimmap.config.ServiceProviderConfig] = None,
        base_location: Optional[str] = None,
    ):
        self.resource_type = resource_type
        self.mapping = mapping
        self.backend = backend
        self.authenticator = authenticator
        self.queryable = queryable if queryable is not None else mapping.queryable_attributes()
        self.config = config or scimmap.config.service_provider_config
        self.base_location = base_location.rstrip("/") if base_location else None

    def _authenticate(self, credentials: Any) -> None:
        if self.authenticator is not None and not self.authenticator(credentials):
            raise ScimError.unauthorized()

    def _find(self, resource_id: Any) -> Any:
        entity = self.backend.find(str(resource_id))
        if entity is None:
            raise ScimError.not_found(resource_id)
        return entity

    def _serialize(self, entity: Any) -> dict[str, Any]:
        data = self.mapping.from_entity(entity)
        location = None
        resource_id = data.get("id")
        if self.base_location and isinstance(resource_id, str):
            location = f"{self.base_location}{self.resource_type.endpoint}/{resource_id}"
        return self.resource_type.serialize(data, location=location)

    def _build(self, body: Any) -> ScimData:
        data, issues = self.resource_type.build(body)
        if issues.can_proceed():
            issues.merge(self.resource_type.validate(data, DataDirection.REQUEST))
        if issues.has_errors():
            raise ScimError.from_issues(issues)
        return data

    @_handle_errors
    def get(self, resource_id: Any, credentials: Any = None) -> Response:
        self._authenticate(credentials)
        return 200, self._serialize(self._find(resource_id))

    @_handle_errors
    def list(
        self,
        query: Optional[Mapping[str, Any]] = None,
        credentials: Any = None,
    ) -> Response:
        """
        Lists resources. Supported query parameters are `filter`, `startIndex`, and `count`.
        Pages of filtered results hold at most `filter.max_results` resources.
        """
        self._authenticate(credentials)
        query = query or {}
        predicate = self._get_predicate(query.get("filter"))
        max_count = self.config.pagination.max_count
        if predicate is not None and self.config.filter.max_results is not None:
            max_count = min(max_count, self.config.filter.max_results)
        window = compute_window(
            start_index=_get_int(query, "startIndex"),
            count=_get_int(query, "count"),
            max_count=max_count,
            config=self.config,
        )
        entities, total = self.backend.list(predicate, window.offset, window.limit)
        window = dataclasses.replace(window, total_results=total)
        return 200, list_response([self._serialize(entity) for entity in entities], window)

    def _get_predicate(self, filter_exp: Optional[str]) -> Optional[Predicate]:
        if filter_exp is None:
            return None
        if not self.config.filter.supported:
            raise ScimError.invalid_filter("filtering is not supported")
        issues = Filter.validate(filter_exp)
        if issues.has_errors():
            raise ScimError.from_issues(issues)
        return Filter.deserialize(filter_exp).to_predicate(self.queryable, self.resource_type)

    @_handle_errors
    def create(self, body: Any, credentials: Any = None) -> Response:
        self._authenticate(credentials)
        data = self._build(body)
        fields = self.mapping.to_entity_fields(data, clear_missing=False)
        return 201, self._serialize(self.backend.create(fields))

    @_handle_errors
    def replace(self, resource_id: Any, body: Any, credentials: Any = None) -> Response:
        """
        Replaces the resource. Mapped attributes absent in `body` are cleared, unless
        `clear_missing_on_replace` is disabled in the configuration.
        """
        self._authenticate(credentials)
        entity = self._find(resource_id)
        data = self._build(body)
        fields = self.mapping.to_entity_fields(
            data,
            existing=entity,
            clear_missing=self.config.clear_missing_on_replace,
        )
        return 200, self._serialize(self.backend.update(entity, fields))

    @_handle_errors
    def patch(self, resource_id: Any, body: Any, credentials: Any = None) -> Response:
        self._authenticate(credentials)
        if not self.config.patch.supported:
            raise ScimError.not_implemented("PATCH operation is not supported")
        entity = self._find(resource_id)
        issues = PatchOperations.validate(body)
        if issues.has_errors():
            raise ScimError.from_issues(issues)
        operations = PatchOperations.deserialize(body)
        fields = operations.apply_to_entity(entity, self.resource_type, self.mapping)
        logger.debug(
            "patching %s %r, fields: %s", self.resource_type.name, resource_id, ", ".join(fields)
        )
        return 200, self._serialize(self.backend.update(entity, fields))

    @_handle_errors
    def delete(self, resource_id: Any, credentials: Any = None) -> Response:
        self._authenticate(credentials)
        self.backend.delete(self._find(resource_id))
        return 204, None


def _get_int(query: Mapping[str, Any], name: str) -> Optional[int]:
    value: Union[str, int, None] = query.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ScimError.invalid_value(f"{name!r} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ScimError.invalid_value(f"{name!r} must be an integer")

import logging
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Optional, Sequence, Union

from typing_extensions import Self

from scimmap.data.attrs import Attribute, AttributeMutability, Complex
from scimmap.data.constants import PATCH_OP_SCHEMA
from scimmap.data.identifiers import BoundedAttrRep
from scimmap.data.patch_path import PatchPath
from scimmap.data.scim_data import Missing, ScimData
from scimmap.error import ScimError, ScimErrorType, ValidationError, ValidationIssues

if TYPE_CHECKING:
    from scimmap.data.schemas import ResourceType
    from scimmap.mapper import AttributeMapping

logger = logging.getLogger(__name__)


class PatchOperationType(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


def _is_empty(value: Any) -> bool:
    return value is None or value is Missing or value == []


class PatchOperation:
    """
    Single PATCH operation. `remove` operations require `path`, and `add` / `replace`
    operations without `path` require mapping `value`, which is merged into the resource.

    Raises:
        ValueError: If the operation is not consistent.
    """

    def __init__(
        self,
        type_: Union[str, PatchOperationType],
        path: Optional[PatchPath] = None,
        value: Any = None,
    ) -> None:
        self._type = PatchOperationType(type_)
        if self._type == PatchOperationType.REMOVE:
            if path is None:
                raise ValueError("'path' must be specified for remove operation")
            value = None
        elif path is None and not isinstance(value, Mapping):
            raise ValueError("'value' must be a mapping if 'path' is not specified")
        self._path = path
        self._value = value

    def __repr__(self) -> str:
        path = self._path.serialize() if self._path is not None else None
        return f"PatchOperation({self._type.value}, path={path!r})"

    @property
    def type(self) -> PatchOperationType:
        return self._type

    @property
    def path(self) -> Optional[PatchPath]:
        return self._path

    @property
    def value(self) -> Any:
        return self._value

    @classmethod
    def validate(cls, data: Mapping) -> ValidationIssues:
        issues = ValidationIssues()
        if not isinstance(data, Mapping):
            issues.add_error(issue=ValidationError.bad_type("complex"), proceed=False)
            return issues

        data = ScimData(data)
        type_ = data.get("op")
        if type_ is Missing or type_ is None:
            issues.add_error(issue=ValidationError.missing(), proceed=False, location=["op"])
        elif not isinstance(type_, str) or type_.lower() not in list(PatchOperationType):
            issues.add_error(
                issue=ValidationError.must_be_one_of([item.value for item in PatchOperationType]),
                proceed=False,
                location=["op"],
            )
            type_ = None
        else:
            type_ = type_.lower()

        path = data.get("path")
        if path is not Missing and path is not None:
            issues.merge(PatchPath.validate(path), location=["path"])
        elif type_ == PatchOperationType.REMOVE:
            issues.add_error(
                issue=ValidationError.missing(scim_error=ScimErrorType.NO_TARGET),
                proceed=False,
                location=["path"],
            )

        if type_ in (PatchOperationType.ADD, PatchOperationType.REPLACE):
            value = data.get("value")
            if value is Missing:
                issues.add_error(
                    issue=ValidationError.missing(), proceed=False, location=["value"]
                )
            elif (path is Missing or path is None) and not isinstance(value, Mapping):
                issues.add_error(
                    issue=ValidationError.bad_type("complex"),
                    proceed=False,
                    location=["value"],
                )
        return issues

    @classmethod
    def deserialize(cls, data: Mapping) -> Self:
        """
        Raises:
            ValueError: If the operation is not valid.
        """
        data = ScimData(data)
        type_ = data.get("op", "")
        path_exp = data.get("path", None)
        path = PatchPath.deserialize(path_exp) if path_exp else None
        value = data.get("value", None)
        if isinstance(value, ScimData):
            value = value.to_dict()
        elif isinstance(value, list):
            value = [item.to_dict() if isinstance(item, ScimData) else item for item in value]
        return cls(str(type_).lower(), path, value)

    def serialize(self) -> dict[str, Any]:
        data: dict[str, Any] = {"op": self._type.value}
        if self._path is not None:
            data["path"] = self._path.serialize()
        if self._type != PatchOperationType.REMOVE:
            data["value"] = self._value
        return data

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, PatchOperation):
            return False
        return self._type == other.type and self._path == other.path and self.value == other.value

    def apply(self, data: ScimData, resource_type: "ResourceType") -> list[str]:
        """
        Applies the operation to `data` in place.

        Returns:
            Top-level keys of the data touched by the operation. Attributes of schema
            extensions are reported by extension URI.

        Raises:
            ScimError: If the path targets unknown attribute (`invalidPath`), the attribute
                can not be modified (`mutability`), or the value is not valid
                (`invalidValue`). The data is not modified in such cases.
        """
        if self._path is not None:
            touched = [self._apply_path(data, resource_type, self._path, self._value)]
        else:
            staged = data.copy()
            touched = [
                self._apply_path(staged, resource_type, path, value)
                for path, value in self._iter_pathless_value(resource_type)
            ]
            for key in touched:
                value = staged.get((key,))
                if value is Missing:
                    data.pop((key,))
                else:
                    data.set((key,), value)
        logger.debug(
            "applied %r operation to %r resource, touched: %s",
            self._type.value,
            resource_type.name,
            ", ".join(touched),
        )
        return touched

    def _iter_pathless_value(
        self, resource_type: "ResourceType"
    ) -> Iterator[tuple[PatchPath, Any]]:
        for key, value in self._value.items():
            if not isinstance(key, str) or key.lower() == "schemas":
                continue
            extension = resource_type.get_extension(key)
            if extension is not None:
                if not isinstance(value, Mapping):
                    raise ScimError.invalid_value(
                        detail=f"value of {key!r} must be an object", location=[key]
                    )
                for sub_key, sub_value in value.items():
                    yield self._deserialize_path(f"{extension.schema}:{sub_key}"), sub_value
                continue
            yield self._deserialize_path(key), value

    @staticmethod
    def _deserialize_path(path_exp: str) -> PatchPath:
        try:
            return PatchPath.deserialize(path_exp)
        except ValueError:
            raise ScimError.invalid_path(detail=f"invalid path {path_exp!r}")

    def _apply_path(
        self,
        data: ScimData,
        resource_type: "ResourceType",
        path: PatchPath,
        value: Any,
    ) -> str:
        attr_rep = resource_type.resolve(path.attr_rep)
        attr = resource_type.attrs.get(attr_rep) if attr_rep is not None else None
        if attr_rep is None or attr is None:
            raise ScimError.invalid_path(
                detail=f"path {path.serialize()!r} does not target any attribute"
            )

        sub_attr = None
        if path.sub_attr_name is not None:
            if not isinstance(attr, Complex) or (
                sub_attr := attr.attrs.get(path.sub_attr_name)
            ) is None:
                raise ScimError.invalid_path(
                    detail=f"path {path.serialize()!r} does not target any attribute"
                )
        if path.has_filter:
            assert path.selector is not None
            if (
                not isinstance(attr, Complex)
                or not attr.multi_valued
                or attr.attrs.get(path.selector.attr_rep) is None
            ):
                raise ScimError.invalid_path(
                    detail=f"value selection filter not supported for {path.serialize()!r}"
                )

        self._check_read_only(path, attr, sub_attr)
        current = data.get(attr_rep)
        if self._type == PatchOperationType.REMOVE:
            new_value = self._remove(path, attr, sub_attr, current)
        else:
            value, issues = resource_type.build_value(sub_attr or attr, value)
            if issues.has_errors():
                raise ScimError.from_issues(self._located(issues, attr_rep, sub_attr))
            new_value = self._add_or_replace(path, attr, sub_attr, current, value)
        self._check_immutable(path, attr, sub_attr, current, new_value)

        if _is_empty(new_value):
            if attr.required:
                raise ScimError.invalid_value(
                    detail=f"required attribute {str(attr.name)!r} can not be removed",
                    location=attr_rep.location,
                )
        else:
            issues = attr.validate(new_value)
            if issues.has_errors():
                raise ScimError.from_issues(self._located(issues, attr_rep))

        if new_value is Missing:
            data.pop(attr_rep)
        else:
            data.set(attr_rep, new_value)
        return str(attr_rep.schema) if attr_rep.extension else str(attr_rep.attr)

    @staticmethod
    def _located(
        issues: ValidationIssues,
        attr_rep: BoundedAttrRep,
        sub_attr: Optional[Attribute] = None,
    ) -> ValidationIssues:
        located = ValidationIssues()
        location = attr_rep.location
        if sub_attr is not None:
            location += (str(sub_attr.name),)
        located.merge(issues, location=location)
        return located

    def _remove(
        self,
        path: PatchPath,
        attr: Attribute,
        sub_attr: Optional[Attribute],
        current: Any,
    ) -> Any:
        if path.has_filter:
            assert isinstance(attr, Complex)
            items = _copy_items(current)
            if sub_attr is None:
                return [item for item in items if not path(item, attr)]
            for item in items:
                if path(item, attr):
                    item.pop(str(sub_attr.name))
            return items

        if sub_attr is None:
            return [] if attr.multi_valued else Missing
        if attr.multi_valued:
            items = _copy_items(current)
            for item in items:
                item.pop(str(sub_attr.name))
            return items
        if not isinstance(current, Mapping):
            return Missing
        value = ScimData(current).copy()
        value.pop(str(sub_attr.name))
        return value if len(value) else Missing

    def _add_or_replace(
        self,
        path: PatchPath,
        attr: Attribute,
        sub_attr: Optional[Attribute],
        current: Any,
        value: Any,
    ) -> Any:
        if path.has_filter:
            assert isinstance(attr, Complex) and path.selector is not None
            items = _copy_items(current)
            matched = [item for item in items if path(item, attr)]
            if not matched:
                created = ScimData({str(path.selector.attr_rep.attr): path.selector.value})
                items.append(created)
                matched = [created]
            for item in matched:
                if sub_attr is not None:
                    item.set(str(sub_attr.name), value)
                elif not isinstance(value, Mapping):
                    raise ScimError.invalid_value(
                        detail=f"value for {path.serialize()!r} must be an object"
                    )
                elif self._type == PatchOperationType.REPLACE:
                    item.clear()
                    item.update(value)
                    if str(path.selector.attr_rep.attr) not in item:
                        item.set(str(path.selector.attr_rep.attr), path.selector.value)
                else:
                    item.update(value)
            return items

        if sub_attr is not None:
            if attr.multi_valued:
                items = _copy_items(current)
                for item in items:
                    item.set(str(sub_attr.name), value)
                return items
            merged = ScimData(current).copy() if isinstance(current, Mapping) else ScimData()
            merged.set(str(sub_attr.name), value)
            return merged

        if isinstance(attr, Complex) and not attr.multi_valued and isinstance(value, Mapping):
            merged = ScimData(current).copy() if isinstance(current, Mapping) else ScimData()
            merged.update(value)
            return merged
        if attr.multi_valued and not isinstance(value, list):
            return [value]
        return value

    @staticmethod
    def _check_read_only(
        path: PatchPath, attr: Attribute, sub_attr: Optional[Attribute]
    ) -> None:
        for checked in (attr, sub_attr):
            if checked is None:
                continue
            if checked.mutability == AttributeMutability.READ_ONLY:
                raise ScimError.mutability(
                    detail=f"attribute {str(checked.name)!r} is read-only",
                    location=[path.serialize()],
                )

    @staticmethod
    def _check_immutable(
        path: PatchPath,
        attr: Attribute,
        sub_attr: Optional[Attribute],
        current: Any,
        new_value: Any,
    ) -> None:
        target = sub_attr or attr
        if target.mutability != AttributeMutability.IMMUTABLE or _is_empty(current):
            return
        if sub_attr is not None:
            current_items = current if isinstance(current, list) else [current]
            current_values = [
                ScimData(item).get(str(sub_attr.name))
                for item in current_items
                if isinstance(item, Mapping)
            ]
            new_items = new_value if isinstance(new_value, list) else [new_value]
            new_values = [
                ScimData(item).get(str(sub_attr.name))
                for item in new_items
                if isinstance(item, Mapping)
            ]
            if all(_is_empty(item) for item in current_values) or current_values == new_values:
                return
        elif _to_plain(current) == _to_plain(new_value):
            return
        raise ScimError.mutability(
            detail=f"attribute {str(target.name)!r} is immutable and already has a value",
            location=[path.serialize()],
        )


def _copy_items(value: Any) -> list[ScimData]:
    if not isinstance(value, list):
        return []
    return [ScimData(item).copy() if isinstance(item, Mapping) else item for item in value]


def _to_plain(value: Any) -> Any:
    if isinstance(value, ScimData):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    return value


class PatchOperations:
    """
    Ordered batch of PATCH operations. Operations are applied in order, and the effects
    of each operation are visible to the subsequent ones. Operations applied before
    the failing one stay applied.
    """

    def __init__(self, operations: Sequence[PatchOperation]) -> None:
        self._operations = list(operations)

    def __getitem__(self, index: int) -> PatchOperation:
        return self._operations[index]

    def __iter__(self) -> Iterator[PatchOperation]:
        return iter(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    @staticmethod
    def _get_operations(
        data: Union[Mapping, Iterable[Mapping]], issues: ValidationIssues
    ) -> tuple[Optional[list], tuple[str, ...]]:
        if not isinstance(data, Mapping):
            return list(data), tuple()

        data = ScimData(data)
        schemas = data.get("schemas")
        if isinstance(schemas, list) and PATCH_OP_SCHEMA.lower() not in [
            str(item).lower() for item in schemas
        ]:
            issues.add_error(
                issue=ValidationError.missing_main_schema(),
                proceed=True,
                location=["schemas"],
            )
        operations = data.get("Operations")
        if operations is Missing:
            issues.add_error(
                issue=ValidationError.missing(), proceed=False, location=["Operations"]
            )
            return None, ("Operations",)
        if not isinstance(operations, list):
            issues.add_error(
                issue=ValidationError.bad_type("list"), proceed=False, location=["Operations"]
            )
            return None, ("Operations",)
        return operations, ("Operations",)

    @classmethod
    def validate(cls, data: Union[Mapping, Iterable[Mapping]]) -> ValidationIssues:
        """
        Validates PATCH request body (a mapping with `Operations` key) or the list
        of operations.
        """
        issues = ValidationIssues()
        operations, location = cls._get_operations(data, issues)
        for i, operation in enumerate(operations or []):
            issues.merge(PatchOperation.validate(operation), location=location + (i,))
        return issues

    @classmethod
    def deserialize(cls, data: Union[Mapping, Iterable[Mapping]]) -> Self:
        """
        Raises:
            ValueError: If any of the operations is not valid.
        """
        operations, _ = cls._get_operations(data, ValidationIssues())
        if operations is None:
            raise ValueError("missing or bad 'Operations'")
        return cls([PatchOperation.deserialize(operation) for operation in operations])

    def serialize(self) -> dict[str, Any]:
        return {
            "schemas": [PATCH_OP_SCHEMA],
            "Operations": [operation.serialize() for operation in self._operations],
        }

    def __eq__(self, other) -> bool:
        if not isinstance(other, PatchOperations):
            return False
        return self._operations == other._operations

    def apply(self, data: ScimData, resource_type: "ResourceType") -> list[str]:
        """
        Applies all operations to `data` in place, in order.

        Returns:
            Top-level keys of the data touched by the operations, without repetitions.

        Raises:
            ScimError: If any operation fails. Operations applied before stay applied.

        Examples:
            >>> data = ScimData({"emails": [{"type": "work", "value": "a"}]})
            >>> operations = PatchOperations.deserialize(
            >>>     [{"op": "remove", "path": 'emails[type eq "work"]'}]
            >>> )
            >>> operations.apply(data, user)
            ["emails"]
            >>> data.to_dict()
            {"emails": []}
        """
        touched: list[str] = []
        for operation in self._operations:
            for key in operation.apply(data, resource_type):
                if key.lower() not in [item.lower() for item in touched]:
                    touched.append(key)
        return touched

    def apply_to_entity(
        self,
        entity: Any,
        resource_type: "ResourceType",
        mapping: "AttributeMapping",
    ) -> dict[str, Any]:
        """
        Reads the entity through the `mapping`, applies the operations, and returns entity
        field updates for the touched attributes. Mapped attributes that end up absent are
        cleared, and entries of touched entry lists that end up absent are removed. The entity
        itself is not modified.

        Raises:
            ScimError: If any operation fails.
        """
        data = mapping.from_entity(entity)
        touched = self.apply(data, resource_type)
        return mapping.to_entity_fields(
            data, existing=entity, attrs=touched, clear_missing=True, replace_entries=True
        )

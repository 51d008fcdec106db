"""
Bidirectional translation between SCIM resource data and backend entity fields, driven
by declarative mapping descriptions.

Examples:
    >>> mapping = AttributeMapping(
    >>>     {
    >>>         "id": Field("id", read_only=True, to_scim=str),
    >>>         "userName": "username",
    >>>         "name": {"givenName": "first_name", "familyName": "last_name"},
    >>>         "emails": MatchedEntries(
    >>>             match="type",
    >>>             entries={
    >>>                 "work": {"value": "work_email_address"},
    >>>                 "home": {"value": "home_email_address"},
    >>>             },
    >>>         ),
    >>>     }
    >>> )
    >>> mapping.from_entity(user).to_dict()
    {"id": "1", "userName": "bjensen", "emails": [{"value": "b@example.com", "type": "work"}]}
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Optional, Union

import scimmap.config
from scimmap.data.identifiers import AttrName
from scimmap.data.scim_data import Missing, ScimData

logger = logging.getLogger(__name__)


class Field:
    """
    Direct correspondence between SCIM attribute and entity field.

    Args:
        name: Name of the entity field.
        read_only: If set, the field is never written back to the entity.
        to_scim: Optional conversion of entity field value to SCIM value.
        from_scim: Optional conversion of SCIM value to entity field value.
    """

    def __init__(
        self,
        name: str,
        read_only: bool = False,
        to_scim: Optional[Callable[[Any], Any]] = None,
        from_scim: Optional[Callable[[Any], Any]] = None,
    ):
        self.name = name
        self.read_only = read_only
        self.to_scim = to_scim
        self.from_scim = from_scim

    def __repr__(self) -> str:
        return f"Field({self.name!r})"


class Constant:
    """
    Value reported for SCIM attribute regardless of entity state. Never written back.
    """

    def __init__(self, value: Any):
        self.value = value

    def __repr__(self) -> str:
        return f"Constant({self.value!r})"


class MatchedEntries:
    """
    Static collection slots. Each slot corresponds to the multi-valued complex attribute
    item whose `match` sub-attribute equals the slot key (case-insensitively), and maps its
    sub-attributes onto entity fields.

    Args:
        match: Name of the sub-attribute used for matching, e.g. `type`.
        entries: Sub-attribute mappings by match value.

    Raises:
        ValueError: If the match values repeat (case-insensitively).

    Examples:
        >>> MatchedEntries(match="type", entries={"work": {"value": "work_email_address"}})
    """

    def __init__(self, match: str, entries: Mapping[str, Mapping[str, Any]]):
        self.match = AttrName(match)
        self.entries: dict[str, dict[str, Any]] = {}
        seen: set[str] = set()
        for key, entry in entries.items():
            if str(key).lower() in seen:
                raise ValueError(f"match value {key!r} for {str(self.match)!r} is repeated")
            seen.add(str(key).lower())
            self.entries[key] = _normalize(entry)

    def __repr__(self) -> str:
        return f"MatchedEntries(match={str(self.match)!r}, entries={list(self.entries)})"

    def slot(self, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return None
        for key in self.entries:
            if str(key).lower() == value.lower():
                return key
        return None


class EntryList:
    """
    Dynamic backend collection. Every entry of the entity collection `field` corresponds
    to one item of multi-valued complex attribute. Inbound items are matched with existing
    entries by `match` sub-attribute, matched entries are updated, and unmatched items
    create new entries. Existing entries absent from the inbound collection are removed
    only if the collection is `replaceable`, or if the inbound collection is the result of
    PATCH operations.

    Args:
        field: Name of the entity field holding the collection.
        using: Mapping of sub-attributes onto entry fields.
        match: Sub-attribute identifying the entry.
        replaceable: Whether absent entries are removed.
        read_only: If set, the collection is never written back to the entity.
    """

    def __init__(
        self,
        field: str,
        using: Mapping[str, Any],
        match: str = "value",
        replaceable: bool = False,
        read_only: bool = False,
    ):
        self.field = field
        self.using = _normalize(using)
        self.match = AttrName(match)
        self.replaceable = replaceable
        self.read_only = read_only
        match_node = _get_node(self.using, self.match)
        if not isinstance(match_node, Field):
            raise ValueError(f"match sub-attribute {match!r} must be mapped onto entry field")
        self._match_field = match_node

    def __repr__(self) -> str:
        return f"EntryList({self.field!r}, match={str(self.match)!r})"

    def entry_key(self, entry: Any) -> Any:
        return _get_field(entry, self._match_field.name)


def _normalize(node: Any) -> Any:
    if isinstance(node, str):
        return Field(node)
    if isinstance(node, (Field, Constant, MatchedEntries, EntryList)):
        return node
    if isinstance(node, Mapping):
        return {
            (key if ":" in key else AttrName(key)): _normalize(value)
            for key, value in node.items()
        }
    raise TypeError(f"unsupported mapping node {node!r}")


def _get_node(nodes: Mapping[str, Any], name: str) -> Any:
    for key, node in nodes.items():
        if key.lower() == name.lower():
            return node
    return None


def _get_field(entity: Any, name: str) -> Any:
    if entity is None:
        return None
    if isinstance(entity, Mapping):
        return entity.get(name)
    return getattr(entity, name, None)


def _same_key(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    if isinstance(left, str) or isinstance(right, str):
        return str(left) == str(right)
    return left == right


class AttributeMapping:
    """
    Mapping description between SCIM resource data and entity fields.

    Args:
        mapping: Mapping nodes by SCIM attribute names or extension URIs. A node can be
            entity field name, `Field`, `Constant`, nested mapping (for complex attributes
            and extensions), `MatchedEntries`, or `EntryList`.
        config: Service provider configuration. The global one is used if not provided.
    """

    def __init__(
        self,
        mapping: Mapping[str, Any],
        config: Optional[scimmap.config.ServiceProviderConfig] = None,
    ):
        self._mapping: dict[str, Any] = _normalize(mapping)
        self.config = config or scimmap.config.service_provider_config

    @property
    def mapping(self) -> dict[str, Any]:
        return self._mapping

    def from_entity(self, entity: Any) -> ScimData:
        """
        Reads SCIM resource data from the entity. Entity fields holding `None` are skipped.
        """
        return self._read_nodes(self._mapping, entity)

    def _read_nodes(self, nodes: Mapping[str, Any], entity: Any) -> ScimData:
        data = ScimData()
        for key, node in nodes.items():
            value = self._read_node(node, entity)
            if value is not Missing:
                data.set((key,), value)
        return data

    def _read_node(self, node: Any, entity: Any) -> Any:
        if isinstance(node, Constant):
            return node.value
        if isinstance(node, Field):
            value = _get_field(entity, node.name)
            if value is None:
                return Missing
            return node.to_scim(value) if node.to_scim else value
        if isinstance(node, MatchedEntries):
            items = []
            for match_value, entry in node.entries.items():
                if not self._has_entity_value(entry, entity):
                    continue
                item = self._read_nodes(entry, entity)
                item.set((str(node.match),), match_value)
                items.append(item)
            return items or Missing
        if isinstance(node, EntryList):
            entries = _get_field(entity, node.field) or []
            items = [self._read_nodes(node.using, entry) for entry in entries]
            return items or Missing
        value = self._read_nodes(node, entity)
        return value if len(value) else Missing

    def _has_entity_value(self, nodes: Mapping[str, Any], entity: Any) -> bool:
        for node in nodes.values():
            if isinstance(node, Field) and _get_field(entity, node.name) is not None:
                return True
            if isinstance(node, Mapping) and self._has_entity_value(node, entity):
                return True
        return False

    def to_entity_fields(
        self,
        data: Mapping[str, Any],
        existing: Any = None,
        attrs: Optional[Iterable[str]] = None,
        clear_missing: Optional[bool] = None,
        replace_entries: bool = False,
    ) -> dict[str, Any]:
        """
        Computes entity field updates from SCIM resource data. Nothing is persisted.

        Args:
            data: Resource data.
            existing: Existing entity, used for matching dynamic collection entries.
            attrs: Top-level attribute names (or extension URIs) to compute updates for.
                All mapped attributes are processed if not provided.
            clear_missing: Whether fields of mapped attributes absent in `data` are cleared.
                Defaults to `clear_missing_on_replace` configuration option.
            replace_entries: Whether existing entries of entry lists absent in `data` are
                removed, also for collections that are not `replaceable`.

        Returns:
            Entity field updates, by field names.
        """
        if clear_missing is None:
            clear_missing = self.config.clear_missing_on_replace
        data = ScimData(data)
        selected = None if attrs is None else {str(attr).lower() for attr in attrs}
        fields: dict[str, Any] = {}
        for key, node in self._mapping.items():
            if selected is not None and key.lower() not in selected:
                continue
            self._write_node(
                node, data.get((key,)), existing, clear_missing, fields, replace_entries
            )
        logger.debug("computed entity field updates: %s", ", ".join(fields) or "none")
        return fields

    def _write_nodes(
        self,
        nodes: Mapping[str, Any],
        value: Any,
        existing: Any,
        clear_missing: bool,
        fields: dict[str, Any],
        replace_entries: bool = False,
    ) -> None:
        value = ScimData(value) if isinstance(value, Mapping) else ScimData()
        for key, node in nodes.items():
            self._write_node(
                node, value.get((key,)), existing, clear_missing, fields, replace_entries
            )

    def _write_node(
        self,
        node: Any,
        value: Any,
        existing: Any,
        clear_missing: bool,
        fields: dict[str, Any],
        replace_entries: bool = False,
    ) -> None:
        missing = value is Missing or value is None
        if isinstance(node, Constant):
            return
        if isinstance(node, Field):
            if node.read_only:
                return
            if missing:
                if clear_missing:
                    fields[node.name] = None
                return
            fields[node.name] = node.from_scim(value) if node.from_scim else _to_plain(value)
            return
        if missing and not clear_missing:
            return
        if isinstance(node, MatchedEntries):
            self._write_matched_entries(node, value, existing, clear_missing, fields)
            return
        if isinstance(node, EntryList):
            if node.read_only:
                return
            replaceable = node.replaceable or replace_entries
            fields[node.field] = (
                [] if missing else self._write_entry_list(node, value, existing, replaceable)
            )
            return
        self._write_nodes(node, value, existing, clear_missing, fields, replace_entries)

    def _write_matched_entries(
        self,
        node: MatchedEntries,
        value: Any,
        existing: Any,
        clear_missing: bool,
        fields: dict[str, Any],
    ) -> None:
        items_by_slot: dict[str, Any] = {}
        for item in value if isinstance(value, list) else []:
            if not isinstance(item, Mapping):
                continue
            match_value = ScimData(item).get((str(node.match),))
            slot = node.slot(match_value)
            if slot is None:
                logger.debug(
                    "no slot for %r item with %s=%r", str(node.match), node.match, match_value
                )
                continue
            items_by_slot.setdefault(slot, item)
        for slot, entry in node.entries.items():
            item = items_by_slot.get(slot)
            if item is None and not clear_missing:
                continue
            self._write_nodes(entry, item, existing, clear_missing=True, fields=fields)

    def _write_entry_list(
        self, node: EntryList, value: Any, existing: Any, replaceable: bool
    ) -> list[Any]:
        items = [
            ScimData(item) for item in (value if isinstance(value, list) else [])
            if isinstance(item, Mapping)
        ]
        existing_entries = list(_get_field(existing, node.field) or [])

        updates_by_entry: dict[int, dict[str, Any]] = {}
        new_entries = []
        for item in items:
            key = item.get((str(node.match),))
            index = next(
                (
                    i for i, entry in enumerate(existing_entries)
                    if i not in updates_by_entry and _same_key(node.entry_key(entry), key)
                ),
                None,
            )
            entry_fields: dict[str, Any] = {}
            self._write_nodes(node.using, item, None, clear_missing=False, fields=entry_fields)
            if index is None:
                new_entries.append(entry_fields)
            else:
                updates_by_entry[index] = entry_fields

        result = []
        for i, entry in enumerate(existing_entries):
            if i in updates_by_entry:
                result.append(_updated_entry(entry, updates_by_entry[i]))
            elif not replaceable:
                result.append(entry)
        return result + new_entries

    def queryable_attributes(self) -> dict[str, Union[str, tuple[str, ...]]]:
        """
        Derives the map from attribute paths to entity fields, usable in filters. Matched
        entries and entry lists contribute paths of sub-attributes and, if `value`
        sub-attribute is mapped, the path of the attribute itself. Entry list fields are
        reported as dotted paths (`<collection>.<entry field>`).

        Examples:
            >>> mapping.queryable_attributes()
            {
                "userName": "username",
                "name.givenName": "first_name",
                "emails": ("work_email_address", "home_email_address"),
                "emails.value": ("work_email_address", "home_email_address"),
            }
        """
        output: dict[str, list[str]] = {}
        for key, node in self._mapping.items():
            if ":" in key and isinstance(node, Mapping):
                for ext_key, ext_node in node.items():
                    self._collect_queryable(f"{key}:{ext_key}", ext_node, output)
                continue
            self._collect_queryable(key, node, output)
        return {
            str(path): fields[0] if len(fields) == 1 else tuple(fields)
            for path, fields in output.items()
        }

    def _collect_queryable(self, path: str, node: Any, output: dict[str, list[str]]) -> None:
        if isinstance(node, Field):
            output.setdefault(path, []).append(node.name)
        elif isinstance(node, MatchedEntries):
            for entry in node.entries.values():
                for sub_key, sub_node in entry.items():
                    if not isinstance(sub_node, Field):
                        continue
                    output.setdefault(f"{path}.{sub_key}", []).append(sub_node.name)
                    if sub_key.lower() == "value":
                        output.setdefault(path, []).append(sub_node.name)
        elif isinstance(node, EntryList):
            for sub_key, sub_node in node.using.items():
                if not isinstance(sub_node, Field):
                    continue
                field = f"{node.field}.{sub_node.name}"
                output.setdefault(f"{path}.{sub_key}", []).append(field)
                if sub_key.lower() == "value":
                    output.setdefault(path, []).append(field)
        elif isinstance(node, Mapping):
            for sub_key, sub_node in node.items():
                if isinstance(sub_node, Field):
                    output.setdefault(f"{path}.{sub_key}", []).append(sub_node.name)


def _to_plain(value: Any) -> Any:
    if isinstance(value, ScimData):
        return value.to_dict()
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    return value


def _updated_entry(entry: Any, updates: dict[str, Any]) -> Any:
    if isinstance(entry, Mapping):
        return {**entry, **updates}
    updated = copy.copy(entry)
    for name, value in updates.items():
        setattr(updated, name, value)
    return updated

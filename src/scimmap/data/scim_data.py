import copy
from collections.abc import Mapping, MutableMapping
from typing import Any, Optional, Union

from scimmap.data.identifiers import AttrRep


class _Sentinel:
    _instance = None
    _name = ""

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return self._name


class InvalidType(_Sentinel):
    _name = "Invalid"


class MissingType(_Sentinel):
    _name = "Missing"


Invalid = InvalidType()
Missing = MissingType()


Key = Union[str, AttrRep, tuple]


class ScimData(MutableMapping):
    """
    Mapping for SCIM resource data. Keys are case-insensitive, and the case used when the
    key is set for the first time is kept.

    Supported keys:

    - attribute name, e.g. `"userName"`,
    - dotted sub-attribute path, e.g. `"name.givenName"`,
    - schema extension URI (any key with `:`), addressing the whole extension object,
    - `AttrRep` or `BoundedAttrRep`; values of extension attributes are looked up below
      the extension URI,
    - tuple of path parts.

    Reading sub-attribute of multi-valued complex attribute gives the list of the
    sub-attribute values, one per item.

    Args:
        d: Initial data. Storage is shared if `d` is `ScimData` itself. Keys other than
            strings and attribute representations are skipped.

    Examples:
        >>> data = ScimData({"userName": "bjensen", "emails": [{"type": "work"}]})
        >>> data["USERNAME"]
        "bjensen"
        >>> data.get("emails.type")
        ["work"]
        >>> ScimData({AttrRep(attr="name", sub_attr="givenName"): "Barbara"}).to_dict()
        {"name": {"givenName": "Barbara"}}
    """

    def __init__(self, d: Optional[Union[Mapping[str, Any], Mapping[AttrRep, Any]]] = None):
        self._data: dict[str, Any] = {}
        self._keys: dict[str, str] = {}

        if isinstance(d, ScimData):
            self._data, self._keys = d._data, d._keys
        elif isinstance(d, Mapping):
            for key, value in d.items():
                if isinstance(key, (str, AttrRep)):
                    self.set(key, value)

    def __repr__(self) -> str:
        return f"ScimData({self._data!r})"

    def __getitem__(self, key: Key) -> Any:
        value = self.get(key)
        if value is Missing:
            raise KeyError(key)
        return value

    def __setitem__(self, key: Key, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: Key) -> None:
        if self.pop(key) is Missing:
            raise KeyError(key)

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self):
        return iter(self._data)

    def __contains__(self, key: Any) -> bool:
        return isinstance(key, (str, AttrRep, tuple)) and self.get(key) is not Missing

    def _location(self, key: Key) -> tuple[str, ...]:
        if isinstance(key, AttrRep):
            key = key.location
        if isinstance(key, tuple):
            return tuple(str(part) for part in key)
        if not isinstance(key, str):
            raise TypeError(f"unsupported key type {type(key).__name__!r}")
        # keys that contain dots literally are taken as they are
        if "." in key and ":" not in key and key.lower() not in self._keys:
            return tuple(key.split(".", 1))
        return (key,)

    def _stored_key(self, key: str) -> Optional[str]:
        return self._keys.get(key.lower())

    def set(self, key: Key, value: Any) -> None:
        """
        Sets the value, creating intermediate objects when needed. Equivalent to
        `data[key] = value`. Mappings (also those inside lists) are stored as `ScimData`.

        Raises:
            KeyError: If the parent of the sub-attribute holds something else than
                an object.

        Examples:
            >>> data = ScimData()
            >>> data.set("name.givenName", "Barbara")
            >>> data.to_dict()
            {"name": {"givenName": "Barbara"}}
        """
        if isinstance(value, Mapping):
            value = ScimData(value) if not isinstance(value, ScimData) else value
        elif isinstance(value, (list, tuple)):
            value = [
                ScimData(item) if isinstance(item, Mapping) and not isinstance(item, ScimData)
                else item
                for item in value
            ]
        self._set(self._location(key), value)

    def _set(self, location: tuple[str, ...], value: Any) -> None:
        head, rest = location[0], location[1:]
        stored = self._stored_key(head)
        if not rest:
            if stored is not None:
                del self._data[stored]
            self._keys[head.lower()] = head
            self._data[head] = value
            return

        if stored is None:
            stored = head
            self._keys[head.lower()] = head
            self._data[head] = ScimData()
        parent = self._data[stored]
        if not isinstance(parent, ScimData):
            raise KeyError(f"can not assign ({'.'.join(rest)}, {value}) to {head!r}")
        parent._set(rest, value)

    def get(self, key: Key, default: Any = Missing) -> Any:
        """
        Returns the value stored under `key`, or `default` (`Missing`, unless provided).
        """
        return self._get(self._location(key), default)

    def _get(self, location: tuple[str, ...], default: Any) -> Any:
        stored = self._stored_key(location[0])
        if stored is None:
            return default
        value, rest = self._data[stored], location[1:]
        if not rest:
            return value
        if isinstance(value, ScimData):
            return value._get(rest, default)
        if isinstance(value, list):
            return [
                item._get(rest, default) if isinstance(item, ScimData) else default
                for item in value
            ]
        return default

    def pop(self, key: Key, default: Any = Missing) -> Any:
        """
        Removes the value stored under `key` and returns it. For sub-attributes of
        multi-valued complex attributes, the sub-attribute is removed from every item.
        """
        return self._pop(self._location(key), default)

    def _pop(self, location: tuple[str, ...], default: Any) -> Any:
        stored = self._stored_key(location[0])
        if stored is None:
            return default
        rest = location[1:]
        if not rest:
            del self._keys[stored.lower()]
            return self._data.pop(stored)
        value = self._data[stored]
        if isinstance(value, ScimData):
            return value._pop(rest, default)
        if isinstance(value, list):
            return [
                item._pop(rest, default) if isinstance(item, ScimData) else default
                for item in value
            ]
        return default

    def copy(self) -> "ScimData":
        """
        Returns deep copy, with no storage shared.
        """
        return ScimData(copy.deepcopy(self.to_dict()))

    def to_dict(self) -> dict[str, Any]:
        """
        Returns the data as plain (nested) dictionaries and lists.
        """
        return {key: _to_plain(value) for key, value in self._data.items()}

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Mapping):
            return False
        other = ScimData(other)
        if len(self) != len(other):
            return False
        return all(other.get((key,)) == value for key, value in self._data.items())


def _to_plain(value: Any) -> Any:
    if isinstance(value, ScimData):
        return value.to_dict()
    if isinstance(value, list):
        return [item.to_dict() if isinstance(item, ScimData) else item for item in value]
    return value

from copy import deepcopy
from typing import Any, Optional

import pytest

from scimmap.config import ServiceProviderConfig
from scimmap.data.attrs import (
    Boolean,
    Complex,
    DateTime,
    Decimal,
    ExternalReference,
    Integer,
    ScimReference,
    String,
    UriReference,
)
from scimmap.data.schemas import ResourceSchema, ResourceType, SchemaExtension
from scimmap.handler import BackendValidationError, UniquenessConflict
from scimmap.mapper import AttributeMapping, Constant, Field, MatchedEntries
from scimmap.predicate import Predicate
from scimmap.schemas import EnterpriseUserSchemaExtension, GroupSchema, UserSchema

USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
ENTERPRISE_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"


class FakeSchema(ResourceSchema):
    schema = "schema:for:tests"
    name = "FakeSchema"
    base_attrs = [
        Integer("int"),
        String("str"),
        String("str_cs", case_exact=True),
        String("str_mv", multi_valued=True),
        Boolean("bool"),
        DateTime("datetime"),
        Decimal("decimal"),
        ExternalReference("external_ref"),
        UriReference("uri_ref"),
        ScimReference("scim_ref", reference_types=["FakeSchema"]),
        Complex("c", sub_attributes=[String("value"), Integer("int")]),
        Complex(
            "c_mv",
            multi_valued=True,
            sub_attributes=[String("value"), String("type"), Boolean("primary")],
        ),
        Complex(
            "c2",
            sub_attributes=[String("str"), Integer("int"), Boolean("bool", required=True)],
        ),
    ]


class CustomSchema(ResourceSchema):
    schema = "custom-id"
    name = "Custom"
    base_attrs = [
        String("name", required=True),
        Complex("names", multi_valued=True, sub_attributes=[String("first"), String("last")]),
    ]


class CustomExtension(SchemaExtension):
    schema = "extension-id"
    name = "ExtensionName"
    base_attrs = [String("relationship", required=True), String("unrelated")]


_user = ResourceType(
    name="User",
    schema=UserSchema(),
    extensions=[(EnterpriseUserSchemaExtension(), False)],
)
_group = ResourceType(name="Group", schema=GroupSchema())
_fake = ResourceType(name="FakeSchema", schema=FakeSchema())
_custom = ResourceType(
    name="Custom",
    schema=CustomSchema(),
    extensions=[(CustomExtension(), True)],
)


@pytest.fixture(scope="session")
def user() -> ResourceType:
    return _user


@pytest.fixture(scope="session")
def group() -> ResourceType:
    return _group


@pytest.fixture(scope="session")
def fake() -> ResourceType:
    return _fake


@pytest.fixture(scope="session")
def custom() -> ResourceType:
    return _custom


@pytest.fixture
def config() -> ServiceProviderConfig:
    return ServiceProviderConfig.create(
        patch={"supported": True},
        filter_={"supported": True, "max_results": 100},
    )


@pytest.fixture
def user_data_client():
    return {
        "schemas": [USER_SCHEMA, ENTERPRISE_SCHEMA],
        "externalId": "1",
        "userName": "bjensen@example.com",
        "name": {
            "formatted": "Ms. Barbara J Jensen, III",
            "familyName": "Jensen",
            "givenName": "Barbara",
            "middleName": "Jane",
            "honorificPrefix": "Ms.",
            "honorificSuffix": "III",
        },
        "displayName": "Babs Jensen",
        "nickName": "Babs",
        "profileUrl": "https://login.example.com/bjensen",
        "emails": [
            {"value": "bjensen@example.com", "type": "work", "primary": True},
            {"value": "babs@jensen.org", "type": "home"},
        ],
        "addresses": [
            {
                "streetAddress": "100 Universal City Plaza",
                "locality": "Hollywood",
                "region": "CA",
                "postalCode": "91608",
                "country": "US",
                "type": "work",
            },
        ],
        "phoneNumbers": [{"value": "+1-555-555-5555", "type": "work"}],
        "userType": "Employee",
        "title": "Tour Guide",
        "preferredLanguage": "en-US",
        "locale": "en-US",
        "timezone": "America/Los_Angeles",
        "active": True,
        "password": "t1meMa$heen",
        ENTERPRISE_SCHEMA: {
            "employeeNumber": "701984",
            "costCenter": "4130",
            "organization": "Universal Studios",
            "manager": {"value": "26118915-6090-4610-87e4-49d8ca9f808d"},
        },
    }


def user_mapping_description() -> dict[str, Any]:
    return {
        "id": Field("id", read_only=True, to_scim=str),
        "userName": "username",
        "name": {"givenName": "first_name", "familyName": "last_name"},
        "emails": MatchedEntries(
            match="type",
            entries={
                "work": {"value": "work_email_address"},
                "home": {"value": "home_email_address"},
            },
        ),
        "active": Constant(True),
    }


@pytest.fixture
def user_mapping(config) -> AttributeMapping:
    return AttributeMapping(user_mapping_description(), config=config)


class InMemoryUserBackend:
    """
    Dictionary-backed store of users. Usernames are unique, and `admin` is reserved.
    """

    reserved = {"admin"}

    def __init__(self, entities: Optional[list[dict[str, Any]]] = None):
        self.entities: dict[str, dict[str, Any]] = {}
        self._next_id = 1
        for entity in entities or []:
            self._store(dict(entity))

    def _store(self, fields: dict[str, Any]) -> dict[str, Any]:
        if "id" not in fields:
            fields["id"] = self._next_id
        self._next_id = max(self._next_id, int(fields["id"])) + 1
        self.entities[str(fields["id"])] = fields
        return fields

    def _check(self, fields: dict[str, Any], entity_id: Any = None) -> None:
        username = fields.get("username")
        if username is None:
            return
        if username.lower() in self.reserved:
            raise BackendValidationError(f"userName {username!r} is reserved")
        for entity in self.entities.values():
            if entity["id"] != entity_id and entity.get("username", "").lower() == username.lower():
                raise UniquenessConflict(f"userName {username!r} has already been taken")

    def find(self, resource_id: str) -> Optional[dict[str, Any]]:
        entity = self.entities.get(resource_id)
        return deepcopy(entity) if entity is not None else None

    def list(
        self, predicate: Optional[Predicate], offset: int, limit: int
    ) -> tuple[list[dict[str, Any]], int]:
        matched = [
            deepcopy(entity)
            for entity in sorted(self.entities.values(), key=lambda item: item["id"])
            if predicate is None or predicate(entity)
        ]
        return matched[offset : offset + limit], len(matched)

    def create(self, fields: dict[str, Any]) -> dict[str, Any]:
        self._check(fields)
        return deepcopy(self._store(dict(fields)))

    def update(self, entity: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
        self._check(fields, entity_id=entity["id"])
        stored = self.entities[str(entity["id"])]
        stored.update(fields)
        return deepcopy(stored)

    def delete(self, entity: dict[str, Any]) -> None:
        self.entities.pop(str(entity["id"]))


@pytest.fixture
def users() -> list[dict[str, Any]]:
    return [
        {
            "id": 1,
            "username": "1",
            "first_name": "Foo",
            "last_name": "Ark",
            "home_email_address": "home_1@test.com",
        },
        {
            "id": 2,
            "username": "2",
            "first_name": "Foo",
            "last_name": "Bar",
            "home_email_address": "home_2@test.com",
        },
        {
            "id": 3,
            "username": "3",
            "first_name": "Foo",
            "home_email_address": "home_3@test.com",
        },
    ]


@pytest.fixture
def backend(users) -> InMemoryUserBackend:
    return InMemoryUserBackend(users)

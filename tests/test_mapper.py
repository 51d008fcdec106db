from types import SimpleNamespace

import pytest

from scimmap.config import ServiceProviderConfig
from scimmap.mapper import AttributeMapping, Constant, EntryList, Field, MatchedEntries
from tests.conftest import ENTERPRISE_SCHEMA


def test_resource_data_is_read_from_entity(user_mapping, users):
    data = user_mapping.from_entity(users[0])

    assert data.to_dict() == {
        "id": "1",
        "userName": "1",
        "name": {"givenName": "Foo", "familyName": "Ark"},
        "emails": [{"value": "home_1@test.com", "type": "home"}],
        "active": True,
    }


def test_empty_fields_are_skipped_when_reading_object(user_mapping):
    entity = SimpleNamespace(
        id=5,
        username="bjensen",
        first_name=None,
        last_name=None,
        work_email_address="work@example.com",
        home_email_address=None,
    )

    data = user_mapping.from_entity(entity)

    assert data.to_dict() == {
        "id": "5",
        "userName": "bjensen",
        "emails": [{"value": "work@example.com", "type": "work"}],
        "active": True,
    }


@pytest.fixture
def replacement():
    return {
        "id": "100",
        "userName": "bjensen",
        "name": {"givenName": "Barbara"},
        "emails": [{"value": "work@example.com", "type": "WORK"}],
        "active": False,
    }


def test_missing_fields_are_cleared_on_replace(user_mapping, replacement):
    fields = user_mapping.to_entity_fields(replacement)

    assert fields == {
        "username": "bjensen",
        "first_name": "Barbara",
        "last_name": None,
        "work_email_address": "work@example.com",
        "home_email_address": None,
    }


def test_missing_fields_are_kept_if_configured(user_mapping, replacement):
    fields = user_mapping.to_entity_fields(replacement, clear_missing=False)

    assert fields == {
        "username": "bjensen",
        "first_name": "Barbara",
        "work_email_address": "work@example.com",
    }


def test_clearing_missing_fields_defaults_to_configuration():
    mapping = AttributeMapping(
        {"userName": "username", "nickName": "nickname"},
        config=ServiceProviderConfig.create(clear_missing_on_replace=False),
    )

    assert mapping.to_entity_fields({"userName": "bjensen"}) == {"username": "bjensen"}


def test_entity_fields_are_computed_for_selected_attributes(user_mapping, replacement):
    fields = user_mapping.to_entity_fields(replacement, attrs=["USERNAME", "emails"])

    assert fields == {
        "username": "bjensen",
        "work_email_address": "work@example.com",
        "home_email_address": None,
    }


def test_items_without_slot_are_ignored(user_mapping):
    fields = user_mapping.to_entity_fields(
        {"emails": [{"value": "other@example.com", "type": "other"}, "bad item"]},
        attrs=["emails"],
    )

    assert fields == {"work_email_address": None, "home_email_address": None}


def test_values_are_converted_by_fields():
    mapping = AttributeMapping(
        {
            "userName": Field("username", to_scim=str.lower, from_scim=str.upper),
            ENTERPRISE_SCHEMA: {"employeeNumber": Field("number", to_scim=str, from_scim=int)},
        }
    )

    data = mapping.from_entity({"username": "BJENSEN", "number": 701984})
    fields = mapping.to_entity_fields(data)

    assert data.to_dict() == {
        "userName": "bjensen",
        ENTERPRISE_SCHEMA: {"employeeNumber": "701984"},
    }
    assert fields == {"username": "BJENSEN", "number": 701984}


@pytest.fixture
def phone_mapping():
    return AttributeMapping(
        {
            "userName": "username",
            "phoneNumbers": EntryList(
                "phones", using={"value": "number", "type": "kind"}, match="value"
            ),
        }
    )


@pytest.fixture
def entity_with_phones():
    return {
        "username": "bjensen",
        "phones": [
            {"id": 10, "number": "555-1", "kind": "work"},
            {"id": 11, "number": "555-2", "kind": "home"},
        ],
    }


def test_entry_list_is_read_from_entity(phone_mapping, entity_with_phones):
    data = phone_mapping.from_entity(entity_with_phones)

    assert data.to_dict() == {
        "userName": "bjensen",
        "phoneNumbers": [
            {"value": "555-1", "type": "work"},
            {"value": "555-2", "type": "home"},
        ],
    }


@pytest.mark.parametrize(
    ("replaceable", "expected_phones"),
    (
        (
            False,
            [
                {"id": 10, "number": "555-1", "kind": "mobile"},
                {"id": 11, "number": "555-2", "kind": "home"},
                {"number": "555-3", "kind": "home"},
            ],
        ),
        (
            True,
            [
                {"id": 10, "number": "555-1", "kind": "mobile"},
                {"number": "555-3", "kind": "home"},
            ],
        ),
    ),
)
def test_entry_list_entries_are_matched_and_updated(
    entity_with_phones, replaceable, expected_phones
):
    mapping = AttributeMapping(
        {
            "phoneNumbers": EntryList(
                "phones",
                using={"value": "number", "type": "kind"},
                replaceable=replaceable,
            ),
        }
    )

    fields = mapping.to_entity_fields(
        {
            "phoneNumbers": [
                {"value": "555-1", "type": "mobile"},
                {"value": "555-3", "type": "home"},
            ]
        },
        existing=entity_with_phones,
    )

    assert fields == {"phones": expected_phones}
    assert entity_with_phones["phones"][0]["kind"] == "work"


def test_missing_entry_list_is_cleared(phone_mapping, entity_with_phones):
    fields = phone_mapping.to_entity_fields({"userName": "bjensen"}, existing=entity_with_phones)

    assert fields == {"username": "bjensen", "phones": []}


def test_entries_of_objects_are_copied_when_updated():
    entry = SimpleNamespace(number="555-1", kind="work")
    mapping = AttributeMapping(
        {"phoneNumbers": EntryList("phones", using={"value": "number", "type": "kind"})}
    )

    fields = mapping.to_entity_fields(
        {"phoneNumbers": [{"value": "555-1", "type": "home"}]},
        existing=SimpleNamespace(phones=[entry]),
    )

    assert fields["phones"][0].kind == "home"
    assert entry.kind == "work"


def test_read_only_nodes_are_not_written():
    mapping = AttributeMapping(
        {
            "id": Field("id", read_only=True),
            "active": Constant(True),
            "phoneNumbers": EntryList("phones", using={"value": "number"}, read_only=True),
        }
    )

    assert mapping.to_entity_fields({"id": "1", "active": False, "phoneNumbers": []}) == {}


def test_queryable_attributes_are_derived_from_mapping(user_mapping):
    assert user_mapping.queryable_attributes() == {
        "id": "id",
        "userName": "username",
        "name.givenName": "first_name",
        "name.familyName": "last_name",
        "emails.value": ("work_email_address", "home_email_address"),
        "emails": ("work_email_address", "home_email_address"),
    }


def test_queryable_attributes_of_entry_lists_and_extensions_are_derived():
    mapping = AttributeMapping(
        {
            "phoneNumbers": EntryList("phones", using={"value": "number", "type": "kind"}),
            ENTERPRISE_SCHEMA: {"employeeNumber": "number", "manager": {"value": "manager_id"}},
        }
    )

    assert mapping.queryable_attributes() == {
        "phoneNumbers.value": "phones.number",
        "phoneNumbers": "phones.number",
        "phoneNumbers.type": "phones.kind",
        f"{ENTERPRISE_SCHEMA}:employeeNumber": "number",
        f"{ENTERPRISE_SCHEMA}:manager.value": "manager_id",
    }


def test_entry_list_match_must_be_mapped_onto_field():
    with pytest.raises(ValueError, match="must be mapped onto entry field"):
        EntryList("phones", using={"type": "kind"})


def test_matched_entries_keys_must_not_repeat():
    with pytest.raises(ValueError, match="is repeated"):
        MatchedEntries(match="type", entries={"work": {"value": "a"}, "WORK": {"value": "b"}})


def test_unsupported_mapping_node_is_rejected():
    with pytest.raises(TypeError, match="unsupported mapping node"):
        AttributeMapping({"userName": 1})


@pytest.fixture
def round_trip_mapping(config):
    return AttributeMapping(
        {
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
            "phoneNumbers": EntryList(
                "phones", using={"value": "number", "type": "kind"}, match="value"
            ),
            ENTERPRISE_SCHEMA: {"employeeNumber": "number"},
        },
        config=config,
    )


_STORED_ENTITY = {
    "id": 7,
    "username": "old",
    "first_name": "Old",
    "last_name": "Name",
    "work_email_address": "old@example.com",
    "home_email_address": None,
    "phones": [{"id": 1, "number": "555-0", "kind": "home"}],
    "number": "1",
}


@pytest.mark.parametrize("entity", ({"id": 7}, _STORED_ENTITY))
@pytest.mark.parametrize(
    "resource",
    (
        {"userName": "bjensen"},
        {
            "userName": "bjensen",
            "name": {"givenName": "Barbara", "familyName": "Jensen"},
            "emails": [
                {"value": "work@example.com", "type": "work"},
                {"value": "home@example.com", "type": "home"},
            ],
            "phoneNumbers": [
                {"value": "555-0", "type": "mobile"},
                {"value": "555-1", "type": "work"},
            ],
            ENTERPRISE_SCHEMA: {"employeeNumber": "701984"},
        },
        {
            "userName": "bjensen",
            "name": {"familyName": "Jensen"},
            "emails": [{"value": "home@example.com", "type": "home"}],
        },
    ),
)
def test_writable_attributes_survive_round_trip(user, round_trip_mapping, entity, resource):
    data, issues = user.build({"id": "999", **resource})
    assert not issues.has_errors()

    stored = {**entity, **round_trip_mapping.to_entity_fields(data, existing=entity)}
    output = round_trip_mapping.from_entity(stored).to_dict()

    assert output.pop("id") == "7"
    assert output == resource

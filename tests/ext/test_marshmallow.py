import marshmallow
import pytest

from scimmap.data.constants import DataDirection
from scimmap.data.scim_data import ScimData
from scimmap.ext.marshmallow import create_resource_schema, initialize
from tests.conftest import USER_SCHEMA


@pytest.fixture(scope="session", autouse=True)
def initialize_marshmallow():
    initialize()


@pytest.fixture
def user_schema(user):
    return create_resource_schema(user)()


def test_schema_is_named_after_resource_type(user):
    assert create_resource_schema(user).__name__ == "User"


def test_user_request_can_be_loaded(user_schema, user_data_client):
    loaded = user_schema.load(user_data_client)

    assert isinstance(loaded, ScimData)
    assert loaded.to_dict() == user_data_client


def test_attr_names_are_case_insensitive_when_loading_data(user_schema):
    loaded = user_schema.load({"USERNAME": "bjensen", "Name": {"GivenName": "Barbara"}})

    assert loaded.to_dict() == {"userName": "bjensen", "name": {"givenName": "Barbara"}}


@pytest.mark.parametrize(
    ("data", "expected_messages"),
    (
        ({"nickName": "Babs"}, {"userName": ["missing"]}),
        (
            {"userName": "bjensen", "name": {"givenName": 1}},
            {"name": {"givenName": ["bad type, expecting 'string'"]}},
        ),
        (
            {"userName": "bjensen", "emails": [{"value": "a@b.com", "primary": "yes"}]},
            {"emails": {"0": {"primary": ["bad type, expecting 'boolean'"]}}},
        ),
    ),
)
def test_loading_fails_if_validation_error(user_schema, data, expected_messages):
    with pytest.raises(marshmallow.ValidationError) as exc_info:
        user_schema.load(data)

    assert exc_info.value.messages == expected_messages


def test_request_can_be_validated(user_schema):
    assert user_schema.validate({"userName": "bjensen"}) == {}
    assert user_schema.validate({"userName": 1}) == {
        "userName": ["bad type, expecting 'string'"]
    }


def test_response_is_validated_as_response(user):
    schema = create_resource_schema(user, DataDirection.RESPONSE)()

    with pytest.raises(marshmallow.ValidationError) as exc_info:
        schema.load({"schemas": [USER_SCHEMA], "userName": "bjensen", "password": "secret"})

    assert exc_info.value.messages == {
        "id": ["missing"],
        "password": ["must not be returned"],
    }


def test_user_can_be_dumped(user_schema):
    dumped = user_schema.dump(
        {
            "id": "1",
            "userName": "bjensen",
            "password": "secret",
            "name": {"givenName": "Barbara"},
        }
    )

    assert dumped == {
        "schemas": [USER_SCHEMA],
        "id": "1",
        "userName": "bjensen",
        "name": {"givenName": "Barbara"},
        "meta": {"resourceType": "User"},
    }


def test_extension_can_be_initialized_only_once():
    with pytest.raises(RuntimeError, match="already initialized"):
        initialize()

import pytest

from scimmap import config as config_module
from scimmap.config import ServiceProviderConfig, set_service_provider_config


def test_optional_operations_are_not_supported_by_default():
    config = ServiceProviderConfig.create()

    assert not config.patch.supported
    assert not config.filter.supported
    assert config.pagination.default_count == 100
    assert config.pagination.max_count == 100
    assert config.clear_missing_on_replace


def test_max_results_is_required_if_filtering_is_supported():
    with pytest.raises(ValueError, match="'max_results' must be specified"):
        ServiceProviderConfig.create(filter_={"supported": True})


@pytest.mark.parametrize(
    ("pagination", "message"),
    (
        ({"max_count": -1, "default_count": 0}, "'max_count' must not be negative"),
        ({"default_count": 20, "max_count": 10}, "'default_count' must be between"),
        ({"default_count": -1}, "'default_count' must be between"),
    ),
)
def test_bad_pagination_settings_are_rejected(pagination, message):
    with pytest.raises(ValueError, match=message):
        ServiceProviderConfig.create(pagination=pagination)


def test_config_is_converted_to_dict():
    config = ServiceProviderConfig.create(
        documentation_uri="https://example.com/help/scim.html",
        patch={"supported": True},
        filter_={"supported": True, "max_results": 200},
        authentication_schemes=[
            {
                "name": "OAuth Bearer Token",
                "description": "Authentication scheme using the OAuth Bearer Token Standard",
                "spec_uri": "https://www.rfc-editor.org/info/rfc6750",
                "primary": True,
            }
        ],
    )

    assert config.to_dict() == {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"],
        "documentationUri": "https://example.com/help/scim.html",
        "patch": {"supported": True},
        "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
        "filter": {"supported": True, "maxResults": 200},
        "changePassword": {"supported": False},
        "sort": {"supported": False},
        "etag": {"supported": False},
        "authenticationSchemes": [
            {
                "type": "oauthbearertoken",
                "name": "OAuth Bearer Token",
                "description": "Authentication scheme using the OAuth Bearer Token Standard",
                "specUri": "https://www.rfc-editor.org/info/rfc6750",
                "documentationUri": "",
                "primary": True,
            }
        ],
        "meta": {"resourceType": "ServiceProviderConfig"},
    }


def test_global_config_can_be_replaced():
    original = config_module.service_provider_config
    new_config = ServiceProviderConfig.create(pagination={"default_count": 10, "max_count": 50})

    try:
        set_service_provider_config(new_config)
        assert config_module.service_provider_config is new_config
    finally:
        set_service_provider_config(original)

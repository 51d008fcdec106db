from dataclasses import dataclass, field
from typing import Any, Optional

from scimmap.data.constants import SERVICE_PROVIDER_CONFIG_SCHEMA


@dataclass
class _Feature:
    supported: bool = False


@dataclass
class _FilterFeature(_Feature):
    max_results: Optional[int] = None
    supported: bool = False

    def __post_init__(self):
        if self.supported and not self.max_results:
            raise ValueError("'max_results' must be specified if filtering is supported")


@dataclass
class _Pagination:
    default_count: int = 100
    max_count: int = 100

    def __post_init__(self):
        if self.max_count < 0:
            raise ValueError("'max_count' must not be negative")
        if not 0 <= self.default_count <= self.max_count:
            raise ValueError("'default_count' must be between 0 and 'max_count'")


@dataclass
class _AuthenticationScheme:
    name: str
    description: str
    spec_uri: str = ""
    documentation_uri: str = ""
    type: str = "oauthbearertoken"
    primary: bool = False


@dataclass(frozen=True)
class ServiceProviderConfig:
    """
    Capabilities of the service provider (RFC 7643, section 5), together with pagination
    limits and the policy for mapped attributes omitted from full replacements.
    """

    documentation_uri: str
    patch: _Feature
    filter: _FilterFeature
    change_password: _Feature
    sort: _Feature
    etag: _Feature
    pagination: _Pagination
    authentication_schemes: list[_AuthenticationScheme] = field(default_factory=list)
    clear_missing_on_replace: bool = True

    @classmethod
    def create(
        cls,
        documentation_uri: str = "",
        patch: Optional[dict[str, Any]] = None,
        filter_: Optional[dict[str, Any]] = None,
        change_password: Optional[dict[str, Any]] = None,
        sort: Optional[dict[str, Any]] = None,
        etag: Optional[dict[str, Any]] = None,
        pagination: Optional[dict[str, Any]] = None,
        authentication_schemes: Optional[list[dict[str, Any]]] = None,
        clear_missing_on_replace: bool = True,
    ) -> "ServiceProviderConfig":
        """
        Creates the configuration from plain dictionaries. Every optional operation is disabled
        unless enabled explicitly, and pages hold up to 100 resources.
        """
        return cls(
            documentation_uri=documentation_uri,
            patch=_Feature(**(patch or {})),
            filter=_FilterFeature(**(filter_ or {})),
            change_password=_Feature(**(change_password or {})),
            sort=_Feature(**(sort or {})),
            etag=_Feature(**(etag or {})),
            pagination=_Pagination(**(pagination or {})),
            authentication_schemes=[
                _AuthenticationScheme(**item) for item in authentication_schemes or []
            ],
            clear_missing_on_replace=clear_missing_on_replace,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Renders the configuration as SCIM `ServiceProviderConfig` resource.
        """
        output: dict[str, Any] = {
            "schemas": [SERVICE_PROVIDER_CONFIG_SCHEMA],
            "patch": {"supported": self.patch.supported},
            "bulk": {"supported": False, "maxOperations": 0, "maxPayloadSize": 0},
            "filter": {
                "supported": self.filter.supported,
                "maxResults": self.filter.max_results or 0,
            },
            "changePassword": {"supported": self.change_password.supported},
            "sort": {"supported": self.sort.supported},
            "etag": {"supported": self.etag.supported},
            "authenticationSchemes": [
                {
                    "type": scheme.type,
                    "name": scheme.name,
                    "description": scheme.description,
                    "specUri": scheme.spec_uri,
                    "documentationUri": scheme.documentation_uri,
                    "primary": scheme.primary,
                }
                for scheme in self.authentication_schemes
            ],
            "meta": {"resourceType": "ServiceProviderConfig"},
        }
        if self.documentation_uri:
            output["documentationUri"] = self.documentation_uri
        return output


service_provider_config: ServiceProviderConfig = ServiceProviderConfig.create(
    patch={"supported": True},
    filter_={"supported": True, "max_results": 100},
)


def set_service_provider_config(config: ServiceProviderConfig) -> None:
    """
    Replaces the configuration used by default by handlers, mappings and pagination.
    """
    global service_provider_config
    service_provider_config = config

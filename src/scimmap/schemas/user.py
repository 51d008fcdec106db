import re
import zoneinfo

import iso3166
import phonenumbers
import precis_i18n

from scimmap.data.attrs import (
    Attribute,
    AttributeIssuer,
    AttributeMutability,
    AttributeReturn,
    AttributeUniqueness,
    Boolean,
    Complex,
    ExternalReference,
    ScimReference,
    String,
)
from scimmap.data.schemas import ResourceSchema, SchemaExtension
from scimmap.error import ValidationError, ValidationIssues, ValidationWarning

_LANGUAGE_RANGE = re.compile(
    r"\s*([a-zA-Z]{1,8}(?:-[a-zA-Z0-9]{1,8})*|\*)"
    r"(?:\s*;\s*q=[01](?:\.\d{1,3})?)?\s*"
)
_LOCALE = re.compile(r"[a-zA-Z]{2,3}(?:[-_][a-zA-Z]{4})?(?:[-_](?:[a-zA-Z]{2}|\d{3}))?")
_EMAIL = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def _validate_preferred_language(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if not all(_LANGUAGE_RANGE.fullmatch(item) for item in value.split(",")):
        issues.add_error(issue=ValidationError.bad_value_syntax(), proceed=True)
    return issues


def _validate_locale(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if _LOCALE.fullmatch(value) is None:
        issues.add_error(issue=ValidationError.bad_value_syntax(), proceed=True)
    return issues


def _validate_timezone(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    try:
        zoneinfo.ZoneInfo(value)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        issues.add_error(issue=ValidationError.bad_value_content(), proceed=True)
    return issues


def _validate_email(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if _EMAIL.fullmatch(value) is None:
        issues.add_error(issue=ValidationError.bad_value_syntax(), proceed=True)
    return issues


def _validate_phone_number(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    try:
        phonenumbers.parse(value, _check_region=False)
    except phonenumbers.NumberParseException:
        issues.add_warning(issue=ValidationWarning.unexpected_content("not a valid phone number"))
    return issues


def _validate_country(value: str) -> ValidationIssues:
    issues = ValidationIssues()
    if iso3166.countries_by_alpha2.get(value.upper()) is None:
        issues.add_error(issue=ValidationError.bad_value_content(), proceed=True)
    return issues


class UserSchema(ResourceSchema):
    """
    SCIM `User` schema, as specified in RFC-7643, section 4.1. Phone numbers are checked
    with `phonenumbers`, countries with `iso3166`, and time zones with `zoneinfo`.
    """

    schema = "urn:ietf:params:scim:schemas:core:2.0:User"
    name = "User"
    description = "User Account"
    base_attrs: list[Attribute] = [
        String(
            name="userName",
            description="Unique identifier of the User, used to authenticate.",
            required=True,
            uniqueness=AttributeUniqueness.SERVER,
            precis=precis_i18n.get_profile("UsernameCaseMapped"),
        ),
        Complex(
            name="name",
            description="The components of the User's real name.",
            sub_attributes=[
                String("formatted", description="The full name, formatted for display."),
                String("familyName", description="The family (last) name."),
                String("givenName", description="The given (first) name."),
                String("middleName"),
                String("honorificPrefix", description="e.g. 'Ms.'"),
                String("honorificSuffix", description="e.g. 'III'"),
            ],
        ),
        String(name="displayName", description="The name of the User, suitable for display."),
        String(name="nickName", description="The casual way to address the User."),
        ExternalReference(name="profileUrl", description="URL of the User's online profile."),
        String(name="title", description="The User's title, e.g. 'Vice President'."),
        String(name="userType", description="Relationship between organization and the User."),
        String(
            name="preferredLanguage",
            validators=[_validate_preferred_language],
        ),
        String(
            name="locale",
            description="Default location of the User, e.g. 'en-US'.",
            validators=[_validate_locale],
        ),
        String(
            name="timezone",
            description="Time zone in IANA format, e.g. 'Europe/Warsaw'.",
            validators=[_validate_timezone],
        ),
        Boolean(name="active", description="Administrative status of the User."),
        String(
            name="password",
            description="Cleartext password of the User. Never returned.",
            mutability=AttributeMutability.WRITE_ONLY,
            returned=AttributeReturn.NEVER,
        ),
        Complex(
            name="emails",
            description="Email addresses of the User.",
            multi_valued=True,
            sub_attributes=[
                String("value", validators=[_validate_email]),
                String("display"),
                String("type", canonical_values=["work", "home", "other"]),
                Boolean("primary"),
            ],
        ),
        Complex(
            name="phoneNumbers",
            description="Phone numbers of the User.",
            multi_valued=True,
            sub_attributes=[
                String("value", validators=[_validate_phone_number]),
                String("display"),
                String(
                    "type",
                    canonical_values=["work", "home", "mobile", "fax", "pager", "other"],
                ),
                Boolean("primary"),
            ],
        ),
        Complex(
            name="addresses",
            description="Physical mailing addresses of the User.",
            multi_valued=True,
            sub_attributes=[
                String("formatted"),
                String("streetAddress"),
                String("locality"),
                String("region"),
                String("postalCode"),
                String(
                    "country",
                    description="Country name in ISO 3166-1 alpha-2 code format.",
                    validators=[_validate_country],
                ),
                String("type", canonical_values=["work", "home", "other"]),
                Boolean("primary"),
            ],
        ),
        Complex(
            name="groups",
            description="Groups the User belongs to.",
            multi_valued=True,
            issuer=AttributeIssuer.SERVER,
            mutability=AttributeMutability.READ_ONLY,
            sub_attributes=[
                String("value", mutability=AttributeMutability.READ_ONLY),
                ScimReference(
                    "$ref",
                    reference_types=["User", "Group"],
                    mutability=AttributeMutability.READ_ONLY,
                ),
                String("display", mutability=AttributeMutability.READ_ONLY),
                String(
                    "type",
                    canonical_values=["direct", "indirect"],
                    mutability=AttributeMutability.READ_ONLY,
                ),
            ],
        ),
        Complex(
            name="roles",
            description="Roles of the User.",
            multi_valued=True,
            sub_attributes=[
                String("value"),
                String("display"),
                String("type"),
                Boolean("primary"),
            ],
        ),
    ]


class EnterpriseUserSchemaExtension(SchemaExtension):
    schema = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
    name = "EnterpriseUser"
    description = "Enterprise User"
    base_attrs: list[Attribute] = [
        String(name="employeeNumber", description="Identifier assigned to a person."),
        String(name="costCenter"),
        String(name="organization"),
        String(name="division"),
        String(name="department"),
        Complex(
            name="manager",
            description="The User's manager.",
            sub_attributes=[
                String("value", description="The id of the manager's User resource."),
                ScimReference("$ref", reference_types=["User"]),
                String("displayName", mutability=AttributeMutability.READ_ONLY),
            ],
        ),
    ]

import pytest

from scimmap.error import (
    ERROR_SCHEMA,
    ScimError,
    ScimErrorType,
    ValidationError,
    ValidationIssues,
    ValidationWarning,
)


def test_custom_validation_error_code_must_be_greater_than_1000():
    with pytest.raises(ValueError, match="must be greater than 1000"):
        ValidationError(code=999, scim_error="invalidValue")


def test_validation_error_message_is_formatted():
    error = ValidationError.unknown_attribute("nickname")

    assert error.code == 32
    assert error.message == "unknown attribute 'nickname'"
    assert error.scim_error == ScimErrorType.INVALID_VALUE


def test_issues_are_merged_under_location():
    issues = ValidationIssues()
    sub_issues = ValidationIssues()
    sub_issues.add_error(issue=ValidationError.bad_type("string"), proceed=False)
    sub_issues.add_warning(
        issue=ValidationWarning.unexpected_content("unknown"), location=["other"]
    )

    issues.merge(sub_issues, location=["emails", 0, "value"])

    assert issues.to_dict() == {
        "emails": {
            "0": {
                "value": {
                    "_errors": [{"code": 2}],
                    "other": {"_warnings": [{"code": 3}]},
                }
            }
        }
    }
    assert not issues.can_proceed(("emails", 0, "value"))
    assert issues.can_proceed(("emails", 1))
    assert issues.has_errors(("emails",))
    assert not issues.has_errors(("name",))


def test_issues_are_retrieved_by_codes_and_location():
    issues = ValidationIssues()
    issues.add_error(issue=ValidationError.missing(), proceed=False, location=["userName"])
    issues.add_error(issue=ValidationError.bad_type("string"), proceed=False, location=["title"])

    retrieved = issues.get(error_codes=[5])

    assert retrieved.to_dict() == {"userName": {"_errors": [{"code": 5}]}}
    assert issues.get(location=["title"]).to_dict() == {"_errors": [{"code": 2}]}
    assert not issues.get(error_codes=[1]).has_errors()


def test_issues_are_converted_to_dict_with_messages():
    issues = ValidationIssues()
    issues.add_error(issue=ValidationError.missing(), proceed=False, location=["userName"])

    assert issues.to_dict(msg=True) == {
        "userName": {"_errors": [{"code": 5, "error": "missing"}]}
    }


def test_first_error_is_returned_with_location():
    issues = ValidationIssues()
    assert issues.first_error() is None

    issues.add_warning(issue=ValidationWarning.multiple_type_value_pairs(), location=["emails"])
    issues.add_error(issue=ValidationError.missing(), proceed=False, location=["userName"])

    assert issues.first_error() == (("userName",), ValidationError.missing())


def test_scim_error_is_created_from_issues():
    issues = ValidationIssues()
    issues.add_error(
        issue=ValidationError.bad_type("string"), proceed=False, location=["name", "givenName"]
    )

    error = ScimError.from_issues(issues)

    assert error.status == 400
    assert error.scim_type == ScimErrorType.INVALID_VALUE
    assert error.detail == "name.givenName: bad type, expecting 'string'"
    assert error.location == ("name", "givenName")


def test_scim_error_can_not_be_created_from_issues_without_errors():
    with pytest.raises(ValueError, match="no errors"):
        ScimError.from_issues(ValidationIssues())


@pytest.mark.parametrize(
    ("error", "expected"),
    (
        (
            ScimError.invalid_filter("bad filter"),
            {
                "schemas": [ERROR_SCHEMA],
                "status": "400",
                "scimType": "invalidFilter",
                "detail": "bad filter",
            },
        ),
        (
            ScimError.not_found("42"),
            {"schemas": [ERROR_SCHEMA], "status": "404", "detail": "resource '42' not found"},
        ),
        (
            ScimError.uniqueness("userName 'bjensen' is already taken"),
            {
                "schemas": [ERROR_SCHEMA],
                "status": "409",
                "scimType": "uniqueness",
                "detail": "userName 'bjensen' is already taken",
            },
        ),
        (
            ScimError.unauthorized(),
            {"schemas": [ERROR_SCHEMA], "status": "401", "detail": "authorization failure"},
        ),
        (
            ScimError.not_implemented("patch is not supported"),
            {"schemas": [ERROR_SCHEMA], "status": "501", "detail": "patch is not supported"},
        ),
        (ScimError(500), {"schemas": [ERROR_SCHEMA], "status": "500"}),
    ),
)
def test_scim_error_is_converted_to_dict(error, expected):
    assert error.to_dict() == expected


def test_scim_error_has_default_detail_for_scim_type():
    error = ScimError.no_target()

    assert error.status == 400
    assert error.detail.startswith("The specified 'path' did not yield")
    assert str(error) == error.detail

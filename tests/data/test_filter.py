import pytest

from scimmap.data import operator as op
from scimmap.data.filter import Filter
from scimmap.data.identifiers import AttrRep
from scimmap.error import ScimError
from scimmap.predicate import AllOf, AnyOf, Comparison, Negation, Presence


@pytest.mark.parametrize(
    "filter_exp",
    (
        'userName eq "bjensen"',
        "userName pr",
        'name.familyName co "O\'Malley"',
        'urn:ietf:params:scim:schemas:core:2.0:User:userName sw "J"',
        'title pr and userType eq "Employee"',
        'title pr or userType eq "Intern"',
        'userType eq "Employee" and (emails co "example.com" or emails.value co "example.org")',
        'userType ne "Employee" and not (emails co "example.com")',
        'meta.lastModified gt "2011-05-13T04:42:34Z"',
        "active eq true",
        "x.y eq 1.5e3",
        "x eq null",
        "  userName   pr  ",
        "userName eq 'single quoted'",
    ),
)
def test_correct_filter_passes_validation(filter_exp):
    issues = Filter.validate(filter_exp)

    assert issues.to_dict() == {}


@pytest.mark.parametrize(
    ("filter_exp", "expected_code"),
    (
        ('(userName eq "a"', 100),
        ('userName eq "a")', 100),
        ('userName eq "a" and (title pr', 100),
        ("userName eq", 103),
        ('userName eq "a" and', 103),
        ('userName eq "a" or', 103),
        ("not", 103),
        ("and title pr", 103),
        ('userName xx "a"', 104),
        ("", 105),
        ("()", 105),
        ("userName", 106),
        ('userName eq "a" title pr', 106),
        ('emails[type eq "work"]', 107),
        ('(emails[type eq "work"])', 107),
        ("userName eq abc", 109),
        ("userName gt true", 110),
        ('userName co 1', 110),
        ('userName eq "abc', 111),
        ('bad^attr eq "a"', 17),
        (123, 2),
    ),
)
def test_bad_filter_is_reported(filter_exp, expected_code):
    issues = Filter.validate(filter_exp)

    assert issues.to_dict() == {"_errors": [{"code": expected_code}]}
    with pytest.raises(ValueError, match="invalid filter expression"):
        Filter.deserialize(filter_exp)


def test_filter_errors_are_of_invalid_filter_type():
    issues = Filter.validate("userName")

    _, errors = next(issues.errors)
    assert errors[0].scim_error == "invalidFilter"


@pytest.mark.parametrize(
    ("filter_exp", "expected"),
    (
        ('userName eq "a"', op.Equal(AttrRep("userName"), "a")),
        ("userName pr", op.Present(AttrRep("userName"))),
        (
            "a pr or b pr and c pr",
            op.Or(
                op.Present(AttrRep("a")),
                op.And(op.Present(AttrRep("b")), op.Present(AttrRep("c"))),
            ),
        ),
        (
            "(a pr or b pr) and c pr",
            op.And(
                op.Or(op.Present(AttrRep("a")), op.Present(AttrRep("b"))),
                op.Present(AttrRep("c")),
            ),
        ),
        ("not a pr and b pr", op.And(op.Not(op.Present(AttrRep("a"))), op.Present(AttrRep("b")))),
        ("a pr AND b pr", op.And(op.Present(AttrRep("a")), op.Present(AttrRep("b")))),
        ("a EQ 1", op.Equal(AttrRep("a"), 1)),
        ("a eq 1.5", op.Equal(AttrRep("a"), 1.5)),
        ("a eq false", op.Equal(AttrRep("a"), False)),
        ("a eq null", op.Equal(AttrRep("a"), None)),
        ('a eq "escaped \\"quote\\""', op.Equal(AttrRep("a"), 'escaped "quote"')),
        ("a eq 'it\\'s'", op.Equal(AttrRep("a"), "it's")),
    ),
)
def test_filter_is_deserialized(filter_exp, expected):
    assert Filter.deserialize(filter_exp) == Filter(expected)


@pytest.mark.parametrize(
    "filter_exp",
    (
        'userName eq "a"',
        'userName eq "a" and (title pr or not (nickName pr))',
        'not (emails.value co "example.com")',
        "meta.version gt 1",
    ),
)
def test_filter_is_serialized(filter_exp):
    assert Filter.deserialize(filter_exp).serialize() == filter_exp


def test_filter_is_converted_to_rpn():
    filter_ = Filter.deserialize('userName eq "a" or not (title pr)')

    assert filter_.to_rpn() == [("userName", "eq", "a"), ("title", "pr"), "not", "or"]


def test_n_ary_logical_operator_appears_once_per_pair_in_rpn():
    filter_ = Filter.deserialize("a pr and b pr and c pr")

    assert filter_.to_rpn() == [("a", "pr"), ("b", "pr"), "and", ("c", "pr"), "and"]


def test_filter_attr_reps_are_listed_without_repetitions():
    filter_ = Filter.deserialize('userName eq "a" or (USERNAME eq "b" and title pr)')

    assert filter_.attr_reps == [AttrRep("userName"), AttrRep("title")]


@pytest.mark.parametrize(
    ("filter_exp", "data", "expected"),
    (
        ('userName eq "BJensen"', {"userName": "bjensen"}, True),
        ('userName eq "other"', {"userName": "bjensen"}, False),
        ('externalId eq "ABC"', {"externalId": "abc"}, False),
        ('name.givenName sw "bar"', {"name": {"givenName": "Barbara"}}, True),
        ('emails.type eq "home"', {"emails": [{"type": "work"}, {"type": "home"}]}, True),
        ('emails co "example.com"', {"emails": [{"value": "a@example.com"}]}, True),
        ('emails co "example.com"', {"emails": [{"value": "a@example.org"}]}, False),
        ("title pr", {"title": ""}, False),
        ("title pr", {"title": "Tour Guide"}, True),
        ("name pr", {"name": {"givenName": "Barbara"}}, True),
        ("not (title pr)", {}, True),
        ('title eq "x"', {}, False),
        (
            'meta.lastModified gt "2011-05-13T04:42:34Z"',
            {"meta": {"lastModified": "2012-01-01T00:00:00Z"}},
            True,
        ),
        (
            'meta.lastModified lt "2011-05-13T04:42:34Z"',
            {"meta": {"lastModified": "2012-01-01T00:00:00Z"}},
            False,
        ),
        ("active eq true", {"active": True}, True),
        (
            'urn:ietf:params:scim:schemas:extension:enterprise:2.0:User:employeeNumber eq "1"',
            {"urn:ietf:params:scim:schemas:extension:enterprise:2.0:User": {"employeeNumber": "1"}},
            True,
        ),
        (
            'employeeNumber eq "1"',
            {"urn:ietf:params:scim:schemas:extension:enterprise:2.0:User": {"employeeNumber": "1"}},
            True,
        ),
        ('nonExisting eq "1"', {"nonExisting": "1"}, False),
    ),
)
def test_data_is_matched_against_filter(user, filter_exp, data, expected):
    assert Filter.deserialize(filter_exp)(data, user) is expected


def test_filter_is_converted_to_predicate(user):
    filter_ = Filter.deserialize(
        'name.givenName eq "Foo" and (name.familyName pr or not (id eq "ABC"))'
    )

    predicate = filter_.to_predicate(
        {"name.givenName": "first_name", "name.familyName": "last_name", "id": "id"},
        user,
    )

    assert predicate == AllOf(
        (
            Comparison(fields=("first_name",), op="eq", value="Foo", case_insensitive=True),
            AnyOf(
                (
                    Presence(fields=("last_name",)),
                    Negation(
                        Comparison(fields=("id",), op="eq", value="ABC", case_insensitive=False)
                    ),
                )
            ),
        )
    )


def test_queryable_paths_are_matched_canonically(user):
    filter_ = Filter.deserialize(
        'urn:ietf:params:scim:schemas:core:2.0:User:NAME.GIVENNAME eq "Foo"'
    )

    predicate = filter_.to_predicate({"name.givenName": ["first_name", "nick"]}, user)

    assert predicate == Comparison(
        fields=("first_name", "nick"), op="eq", value="Foo", case_insensitive=True
    )


def test_ordering_comparison_is_case_sensitive(user):
    predicate = Filter.deserialize('userName gt "B"').to_predicate({"userName": "username"}, user)

    assert predicate == Comparison(fields=("username",), op="gt", value="B")


def test_not_queryable_attribute_results_in_invalid_filter(user):
    filter_ = Filter.deserialize('userName eq "a" and title pr')

    with pytest.raises(ScimError) as exc_info:
        filter_.to_predicate({"userName": "username"}, user)

    assert exc_info.value.status == 400
    assert exc_info.value.scim_type == "invalidFilter"
    assert "title" in exc_info.value.detail


def test_filter_is_converted_to_dict():
    filter_ = Filter.deserialize('userName eq "a" and not (title pr)')

    assert filter_.to_dict() == {
        "op": "and",
        "sub_ops": [
            {"op": "eq", "attr_rep": "userName", "value": "a"},
            {"op": "not", "sub_op": {"op": "pr", "attr_rep": "title"}},
        ],
    }

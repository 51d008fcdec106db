import pytest

from scimmap.data.identifiers import AttrName, AttrRep, AttrRepFactory, BoundedAttrRep, SchemaUri

USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
ENTERPRISE_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"


@pytest.mark.parametrize("value", ("bad^attr", "1attr", "", "attr.sub"))
def test_attr_name_creation_fails_if_bad_name(value):
    with pytest.raises(ValueError, match="is not valid attr name"):
        AttrName(value)


def test_attr_name_is_case_insensitive_but_preserves_case():
    name = AttrName("userName")

    assert name == "USERNAME"
    assert hash(name) == hash(AttrName("username"))
    assert str(name) == "userName"


def test_schema_uri_is_case_insensitive():
    assert SchemaUri(USER_SCHEMA) == USER_SCHEMA.upper()
    assert {SchemaUri(USER_SCHEMA)} == {SchemaUri(USER_SCHEMA.lower())}


def test_bounded_attr_creation_fails_if_bad_sub_attr_name():
    with pytest.raises(ValueError, match="'.*' is not valid attr name"):
        BoundedAttrRep(schema=USER_SCHEMA, attr="attr", sub_attr="bad^sub^attr")


@pytest.mark.parametrize(
    ("attr_1", "attr_2", "expected"),
    (
        (AttrRep(attr="attr"), AttrRep(attr="ATTR"), True),
        (AttrRep(attr="abc"), AttrRep(attr="cba"), False),
        (BoundedAttrRep(schema=USER_SCHEMA, attr="userName"), AttrRep(attr="UserName"), True),
        (
            BoundedAttrRep(schema=USER_SCHEMA, attr="name"),
            BoundedAttrRep(schema=USER_SCHEMA.upper(), attr="NAME"),
            True,
        ),
        (
            BoundedAttrRep(schema=USER_SCHEMA, attr="nonExisting"),
            BoundedAttrRep(schema=ENTERPRISE_SCHEMA, attr="nonExisting"),
            False,
        ),
        (
            BoundedAttrRep(schema=USER_SCHEMA, attr="name", sub_attr="formatted"),
            BoundedAttrRep(schema=USER_SCHEMA, attr="NAME", sub_attr="FORMATTED"),
            True,
        ),
        (
            BoundedAttrRep(schema=USER_SCHEMA, attr="name", sub_attr="givenName"),
            BoundedAttrRep(schema=USER_SCHEMA, attr="name", sub_attr="formatted"),
            False,
        ),
        (AttrRep(attr="attr"), "attr", False),
    ),
)
def test_attr_rep_can_be_compared(attr_1, attr_2, expected):
    assert (attr_1 == attr_2) is expected


@pytest.mark.parametrize(
    ("value", "expected"),
    (
        ("userName", AttrRep(attr="userName")),
        ("name.givenName", AttrRep(attr="name", sub_attr="givenName")),
        ("members.$ref", AttrRep(attr="members", sub_attr="$ref")),
        (f"{USER_SCHEMA}:userName", BoundedAttrRep(schema=USER_SCHEMA, attr="userName")),
        (
            f"{ENTERPRISE_SCHEMA}:manager.value",
            BoundedAttrRep(schema=ENTERPRISE_SCHEMA, attr="manager", sub_attr="value"),
        ),
    ),
)
def test_attr_rep_is_deserialized(value, expected):
    deserialized = AttrRepFactory.deserialize(value)

    assert deserialized == expected
    assert type(deserialized) is type(expected)


@pytest.mark.parametrize("value", ("bad^attr", "name.", "a.b.c", ".name", 42))
def test_bad_attr_rep_is_reported(value):
    issues = AttrRepFactory.validate(value)

    assert issues.to_dict() == {"_errors": [{"code": 17}]}
    with pytest.raises(ValueError):
        AttrRepFactory.deserialize(value)


def test_sub_attr_of_top_level_attr_rep_can_not_be_accessed():
    with pytest.raises(AttributeError, match="has no sub-attribute"):
        AttrRep(attr="userName").sub_attr


def test_attr_rep_parent_is_top_level_attr():
    rep = BoundedAttrRep(schema=ENTERPRISE_SCHEMA, attr="manager", sub_attr="value", extension=True)

    assert rep.parent == BoundedAttrRep(schema=ENTERPRISE_SCHEMA, attr="manager")
    assert not rep.parent.is_sub_attr
    assert rep.parent.extension


@pytest.mark.parametrize(
    ("rep", "expected"),
    (
        (AttrRep(attr="name", sub_attr="givenName"), ("name", "givenName")),
        (BoundedAttrRep(schema=USER_SCHEMA, attr="userName"), ("userName",)),
        (
            BoundedAttrRep(schema=ENTERPRISE_SCHEMA, attr="manager", extension=True),
            (ENTERPRISE_SCHEMA, "manager"),
        ),
    ),
)
def test_attr_rep_location(rep, expected):
    assert rep.location == expected


def test_bounded_attr_rep_string_includes_schema():
    rep = BoundedAttrRep(schema=USER_SCHEMA, attr="name", sub_attr="givenName")

    assert str(rep) == f"{USER_SCHEMA}:name.givenName"
    assert str(rep.unbounded()) == "name.givenName"

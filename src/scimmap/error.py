from collections import defaultdict
from enum import Enum
from typing import Any, Collection, Iterator, Optional, Sequence, TypedDict, Union

from typing_extensions import NotRequired

ERROR_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:Error"


class ScimErrorType(str, Enum):
    INVALID_FILTER = "invalidFilter"
    TOO_MANY = "tooMany"
    UNIQUENESS = "uniqueness"
    MUTABILITY = "mutability"
    INVALID_SYNTAX = "invalidSyntax"
    INVALID_PATH = "invalidPath"
    NO_TARGET = "noTarget"
    INVALID_VALUE = "invalidValue"
    INVALID_VERS = "invalidVers"
    SENSITIVE = "sensitive"


ScimErrorLike = Union[str, ScimErrorType]
Location = tuple[Union[str, int], ...]

# RFC 7644, section 3.12, table 9
_default_detail = {
    ScimErrorType.INVALID_FILTER: (
        "The specified filter syntax is invalid, or the specified attribute and filter "
        "comparison combination is not supported."
    ),
    ScimErrorType.TOO_MANY: (
        "The specified filter yields many more results than the server is willing to "
        "calculate or process."
    ),
    ScimErrorType.UNIQUENESS: (
        "One or more of the attribute values are already in use or are reserved."
    ),
    ScimErrorType.MUTABILITY: (
        "The attempted modification is not compatible with the target attribute's "
        "mutability or current state."
    ),
    ScimErrorType.INVALID_SYNTAX: (
        "The request body message structure was invalid or did not conform to the "
        "request schema."
    ),
    ScimErrorType.INVALID_PATH: "The 'path' attribute was invalid or malformed.",
    ScimErrorType.NO_TARGET: (
        "The specified 'path' did not yield an attribute or attribute value that could "
        "be operated on."
    ),
    ScimErrorType.INVALID_VALUE: (
        "A required value was missing, or the value specified was not compatible with the "
        "operation or attribute type, or resource schema."
    ),
    ScimErrorType.INVALID_VERS: "The specified SCIM protocol version is not supported.",
    ScimErrorType.SENSITIVE: (
        "The specified request cannot be completed, due to the passing of sensitive "
        "information in a request URI."
    ),
}


def _as_location(location: Optional[Sequence[Union[str, int]]]) -> Location:
    return tuple(location) if location else ()


def _relative_to(location: Location, prefix: Location) -> Optional[Location]:
    if location[: len(prefix)] != prefix:
        return None
    return location[len(prefix) :]


class _Issue:
    kind = "issue"
    message_by_code: dict[int, str] = {}

    def __init__(self, code: int, message: Optional[str] = None, **context: Any):
        if code <= 1000 and code not in self.message_by_code:
            raise ValueError(f"code of custom validation {self.kind} must be greater than 1000")
        if message is None:
            message = self.message_by_code[code].format(**context) if code <= 1000 else ""
        self.code = code
        self.message = message
        self.context = context

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r})"

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and self.code == getattr(other, "code", None)

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.code))


class ValidationError(_Issue):
    """
    Validation error, identified by its code. Built-in codes have pre-formatted messages
    in `message_by_code`; the messages can be replaced, as long as they use the same
    parameters. Custom errors use codes greater than 1000.

    Args:
        code: Error code.
        scim_error: `scimType` reported when the error is turned into `ScimError`.
        message: Overrides the built-in message.
        **context: Parameters of the pre-formatted message.
    """

    kind = "error"
    message_by_code = {
        1: "bad value syntax",
        2: "bad type, expecting '{expected}'",
        4: "bad value content",
        5: "missing",
        7: "must not be returned",
        8: "must be equal to {value}",
        9: "must be one of: {expected_values}",
        10: "contains duplicates, which are not allowed",
        12: "missing main schema",
        13: "missing schema extension {extension!r}",
        14: "unknown schema",
        15: "'primary' attribute set to 'True' MUST appear no more than once",
        17: "bad attribute name {attribute!r}",
        32: "unknown attribute {attribute!r}",
        # filters and paths
        100: "one of brackets is not opened / closed",
        103: "missing operand for operator '{operator}' in expression '{expression}'",
        104: "unknown operator '{operator}' in expression '{expression}'",
        105: "no expression or empty expression inside grouping operator",
        106: "unknown expression '{expression}'",
        107: "value selection filters are not supported in filter expressions",
        108: "value selection filter of {attribute!r} must be a single 'eq' comparison",
        109: "bad operand {value!r}",
        110: "operand {value!r} is not compatible with {operator!r} operator",
        111: "unterminated string literal in expression '{expression}'",
    }

    def __init__(
        self,
        code: int,
        scim_error: ScimErrorLike,
        message: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(code, message, **context)
        self.scim_error = ScimErrorType(scim_error)

    @classmethod
    def bad_value_syntax(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_SYNTAX
    ) -> "ValidationError":
        return cls(1, scim_error)

    @classmethod
    def bad_type(
        cls, expected: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(2, scim_error, expected=expected)

    @classmethod
    def bad_value_content(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(4, scim_error)

    @classmethod
    def missing(cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE) -> "ValidationError":
        return cls(5, scim_error)

    @classmethod
    def must_not_be_returned(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(7, scim_error)

    @classmethod
    def must_be_equal_to(
        cls, value: Any, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(8, scim_error, value=value)

    @classmethod
    def must_be_one_of(
        cls,
        expected_values: Collection[Any],
        scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE,
    ) -> "ValidationError":
        return cls(9, scim_error, expected_values=expected_values)

    @classmethod
    def duplicated_values(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(10, scim_error)

    @classmethod
    def missing_main_schema(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(12, scim_error)

    @classmethod
    def missing_schema_extension(
        cls, extension: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(13, scim_error, extension=extension)

    @classmethod
    def unknown_schema(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(14, scim_error)

    @classmethod
    def multiple_primary_values(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(15, scim_error)

    @classmethod
    def bad_attribute_name(
        cls, attribute: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(17, scim_error, attribute=attribute)

    @classmethod
    def unknown_attribute(
        cls, attribute: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_VALUE
    ) -> "ValidationError":
        return cls(32, scim_error, attribute=attribute)

    @classmethod
    def bracket_not_opened_or_closed(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER
    ) -> "ValidationError":
        return cls(100, scim_error)

    @classmethod
    def missing_operand_for_operator(
        cls,
        operator: str,
        expression: str,
        scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER,
    ) -> "ValidationError":
        return cls(103, scim_error, operator=operator, expression=expression)

    @classmethod
    def unknown_operator(
        cls,
        operator: str,
        expression: str,
        scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER,
    ) -> "ValidationError":
        return cls(104, scim_error, operator=operator, expression=expression)

    @classmethod
    def empty_filter_expression(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER
    ) -> "ValidationError":
        return cls(105, scim_error)

    @classmethod
    def unknown_expression(
        cls, expression: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER
    ) -> "ValidationError":
        return cls(106, scim_error, expression=expression)

    @classmethod
    def value_selection_not_supported(
        cls, scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER
    ) -> "ValidationError":
        return cls(107, scim_error)

    @classmethod
    def bad_value_selection(
        cls, attribute: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_PATH
    ) -> "ValidationError":
        return cls(108, scim_error, attribute=attribute)

    @classmethod
    def bad_operand(
        cls, value: Any, scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER
    ) -> "ValidationError":
        return cls(109, scim_error, value=value)

    @classmethod
    def non_compatible_operand(
        cls,
        value: Any,
        operator: str,
        scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER,
    ) -> "ValidationError":
        return cls(110, scim_error, value=value, operator=operator)

    @classmethod
    def unterminated_string(
        cls, expression: str, scim_error: ScimErrorLike = ScimErrorType.INVALID_FILTER
    ) -> "ValidationError":
        return cls(111, scim_error, expression=expression)


class ValidationWarning(_Issue):
    """
    Validation warning, identified by its code. Warnings never stop the processing.
    """

    kind = "warning"
    message_by_code = {
        1: "value should be one of: {expected_values}",
        2: (
            "multi-valued complex attribute should contain a given type-value pair "
            "no more than once"
        ),
        3: "unexpected content, {reason}",
    }

    @classmethod
    def should_be_one_of(cls, expected_values: Collection[Any]) -> "ValidationWarning":
        return cls(1, expected_values=expected_values)

    @classmethod
    def multiple_type_value_pairs(cls) -> "ValidationWarning":
        return cls(2)

    @classmethod
    def unexpected_content(cls, reason: str) -> "ValidationWarning":
        return cls(3, reason=reason)


class ValidationIssueDict(TypedDict):
    code: int
    error: NotRequired[str]
    context: NotRequired[dict]


class ValidationIssues:
    """
    Collected validation errors and warnings, keyed by their location in the validated data.
    A location is a sequence of attribute names and item indexes, e.g.
    `("emails", 0, "value")`; the empty location refers to the data as a whole.
    """

    def __init__(self) -> None:
        self._errors: dict[Location, list[ValidationError]] = defaultdict(list)
        self._warnings: dict[Location, list[ValidationWarning]] = defaultdict(list)
        self._blocking: dict[Location, set[int]] = defaultdict(set)

    @property
    def errors(self) -> Iterator[tuple[Location, list[ValidationError]]]:
        return iter(self._errors.items())

    @property
    def warnings(self) -> Iterator[tuple[Location, list[ValidationWarning]]]:
        return iter(self._warnings.items())

    def add_error(
        self,
        issue: ValidationError,
        proceed: bool,
        location: Optional[Sequence[Union[str, int]]] = None,
    ) -> None:
        """
        Adds the error at `location`. If `proceed` is not set, the location (and everything
        below it) should not be validated any further.
        """
        location = _as_location(location)
        self._errors[location].append(issue)
        if not proceed:
            self._blocking[location].add(issue.code)

    def add_warning(
        self,
        issue: ValidationWarning,
        location: Optional[Sequence[Union[str, int]]] = None,
    ) -> None:
        self._warnings[_as_location(location)].append(issue)

    def merge(
        self,
        issues: "ValidationIssues",
        location: Optional[Sequence[Union[str, int]]] = None,
    ) -> None:
        """
        Copies all issues from `issues`, placing them below `location`.
        """
        prefix = _as_location(location)
        for sub_location, errors in issues._errors.items():
            self._errors[prefix + sub_location].extend(errors)
        for sub_location, warnings in issues._warnings.items():
            self._warnings[prefix + sub_location].extend(warnings)
        for sub_location, codes in issues._blocking.items():
            self._blocking[prefix + sub_location].update(codes)

    def get(
        self,
        error_codes: Optional[Collection[int]] = None,
        warning_codes: Optional[Collection[int]] = None,
        location: Optional[Sequence[Union[str, int]]] = None,
    ) -> "ValidationIssues":
        """
        Returns issues found at or below `location`, relative to it, optionally narrowed
        down to the provided error and warning codes.
        """
        prefix = _as_location(location)
        selected = ValidationIssues()
        for structure, target, codes in (
            (self._errors, selected._errors, error_codes),
            (self._warnings, selected._warnings, warning_codes),
        ):
            for issue_location, issues in structure.items():
                relative = _relative_to(issue_location, prefix)
                if relative is None:
                    continue
                matching = [issue for issue in issues if codes is None or issue.code in codes]
                if matching:
                    target[relative] = matching
        for issue_location, blocking in self._blocking.items():
            relative = _relative_to(issue_location, prefix)
            if relative is None:
                continue
            matching_codes = {
                code for code in blocking if error_codes is None or code in error_codes
            }
            if matching_codes:
                selected._blocking[relative] = matching_codes
        return selected

    def can_proceed(self, *locations: Sequence[Union[str, int]]) -> bool:
        """
        Tells whether validation of all `locations` (the whole data, if none provided) can
        continue. It can not, if a blocking error was added at the location or any of its
        ancestors.
        """
        for location in locations or ((),):
            location = tuple(location)
            if any(self._blocking.get(location[:depth]) for depth in range(len(location) + 1)):
                return False
        return True

    def has_errors(self, *locations: Sequence[Union[str, int]]) -> bool:
        """
        Tells whether any error was added at or below any of `locations` (anywhere, if none
        provided).
        """
        for location in locations or ((),):
            prefix = tuple(location)
            for issue_location, errors in self._errors.items():
                if errors and _relative_to(issue_location, prefix) is not None:
                    return True
        return False

    def first_error(self) -> Optional[tuple[Location, ValidationError]]:
        """
        Returns the earliest added error with its location, or `None`.
        """
        return next(
            ((location, errors[0]) for location, errors in self._errors.items() if errors),
            None,
        )

    def to_dict(self, msg: bool = False, ctx: bool = False) -> dict:
        """
        Converts issues to nested dictionary, following their locations. Location parts
        are converted to strings.

        Examples:
            >>> issues = ValidationIssues()
            >>> issues.add_error(ValidationError.missing(), proceed=False, location=["userName"])
            >>> issues.to_dict(msg=True)
            {"userName": {"_errors": [{"code": 5, "error": "missing"}]}}
        """
        output: dict = {}
        for key, structure in (("_errors", self._errors), ("_warnings", self._warnings)):
            for location, issues in structure.items():
                if not issues:
                    continue
                node = output
                for part in location:
                    node = node.setdefault(str(part), {})
                node.setdefault(key, []).extend(
                    _issue_to_dict(issue, msg=msg, ctx=ctx) for issue in issues
                )
        return output


def _issue_to_dict(issue: _Issue, msg: bool, ctx: bool) -> ValidationIssueDict:
    output: ValidationIssueDict = {"code": issue.code}
    if msg:
        output["error"] = issue.message
    if ctx:
        output["context"] = issue.context
    return output


class ScimError(Exception):
    """
    Request-level SCIM error, rendered as SCIM `Error` response body. If `detail` is not
    provided, the RFC 7644 description of `scim_type` is used.
    """

    def __init__(
        self,
        status: int,
        scim_type: Optional[ScimErrorLike] = None,
        detail: Optional[str] = None,
        location: Optional[Sequence[Union[str, int]]] = None,
    ):
        self.status = int(status)
        self.scim_type = None if scim_type is None else ScimErrorType(scim_type)
        if detail is None:
            detail = _default_detail.get(self.scim_type, "") if self.scim_type else ""
        self.detail = detail
        self.location = _as_location(location)
        super().__init__(detail)

    def __repr__(self) -> str:
        return f"ScimError({self.status}, scim_type={self.scim_type!r}, detail={self.detail!r})"

    @classmethod
    def invalid_filter(cls, detail: Optional[str] = None) -> "ScimError":
        return cls(400, ScimErrorType.INVALID_FILTER, detail)

    @classmethod
    def invalid_path(cls, detail: Optional[str] = None) -> "ScimError":
        return cls(400, ScimErrorType.INVALID_PATH, detail)

    @classmethod
    def invalid_value(cls, detail: Optional[str] = None, location=None) -> "ScimError":
        return cls(400, ScimErrorType.INVALID_VALUE, detail, location)

    @classmethod
    def invalid_syntax(cls, detail: Optional[str] = None) -> "ScimError":
        return cls(400, ScimErrorType.INVALID_SYNTAX, detail)

    @classmethod
    def mutability(cls, detail: Optional[str] = None, location=None) -> "ScimError":
        return cls(400, ScimErrorType.MUTABILITY, detail, location)

    @classmethod
    def no_target(cls, detail: Optional[str] = None) -> "ScimError":
        return cls(400, ScimErrorType.NO_TARGET, detail)

    @classmethod
    def uniqueness(cls, detail: Optional[str] = None) -> "ScimError":
        return cls(409, ScimErrorType.UNIQUENESS, detail)

    @classmethod
    def not_found(cls, resource_id: Any) -> "ScimError":
        return cls(404, detail=f"resource {str(resource_id)!r} not found")

    @classmethod
    def unauthorized(cls) -> "ScimError":
        return cls(401, detail="authorization failure")

    @classmethod
    def not_implemented(cls, detail: str) -> "ScimError":
        return cls(501, detail=detail)

    @classmethod
    def from_issues(cls, issues: ValidationIssues, status: int = 400) -> "ScimError":
        """
        Creates the error from the first error in `issues`, prefixing its message with
        the dotted location.

        Raises:
            ValueError: If `issues` contain no errors.
        """
        first = issues.first_error()
        if first is None:
            raise ValueError("provided issues contain no errors")
        location, error = first
        path = ".".join(str(part) for part in location)
        detail = f"{path}: {error.message}" if path else error.message
        return cls(status, error.scim_error, detail, location)

    def to_dict(self) -> dict[str, Any]:
        output: dict[str, Any] = {"schemas": [ERROR_SCHEMA], "status": str(self.status)}
        if self.scim_type is not None:
            output["scimType"] = self.scim_type.value
        if self.detail:
            output["detail"] = self.detail
        return output

import re
from dataclasses import dataclass
from enum import Enum

from scimmap.error import ValidationError


class TokenKind(str, Enum):
    LPAREN = "("
    RPAREN = ")"
    LBRACKET = "["
    RBRACKET = "]"
    STRING = "string"
    WORD = "word"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: int

    @property
    def lower(self) -> str:
        return self.text.lower()


_TOKEN = re.compile(
    r"""
    \s*(?:
        (?P<lparen>\()
        |(?P<rparen>\))
        |(?P<lbracket>\[)
        |(?P<rbracket>\])
        |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
        |(?P<word>[^\s()\[\]"']+)
        |(?P<unterminated>["'])
    )
    """,
    re.VERBOSE,
)

_KIND_BY_GROUP = {
    "lparen": TokenKind.LPAREN,
    "rparen": TokenKind.RPAREN,
    "lbracket": TokenKind.LBRACKET,
    "rbracket": TokenKind.RBRACKET,
    "string": TokenKind.STRING,
    "word": TokenKind.WORD,
}


class TokenizeError(ValueError):
    def __init__(self, error: ValidationError):
        super().__init__(error.message)
        self.error = error


def tokenize(expression: str) -> list[Token]:
    """
    Splits filter or path expression into tokens. String literals are kept with their
    quotes, so escaped quotes inside them are preserved. Keywords, attribute paths, and
    non-string literals are all `WORD` tokens, classified by the parser.

    Raises:
        TokenizeError: If string literal is not terminated.

    Examples:
        >>> [token.text for token in tokenize('emails[type eq "work"].value')]
        ['emails', '[', 'type', 'eq', '"work"', ']', '.value']
    """
    tokens = []
    position = 0
    length = len(expression)
    while position < length:
        match = _TOKEN.match(expression, position)
        if match is None or match.end() == position:
            break
        group = match.lastgroup
        if group is None:
            break
        if group == "unterminated":
            raise TokenizeError(ValidationError.unterminated_string(expression=expression))
        tokens.append(
            Token(
                kind=_KIND_BY_GROUP[group],
                text=match.group(group),
                position=match.start(group),
            )
        )
        position = match.end()
    return tokens

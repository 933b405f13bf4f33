"""
Filter grammar for the ``filter`` query parameter.

A small recursive-descent parser turns expressions such as::

    name = 'Zion' AND (id > 5 OR area IS NULL)

into a predicate tree. The tree is checked against a collection's
properties (``bind_filter``), rendered to parameterised SQL
(``render_sql``), rendered back to filter text (``render_filter``), and
evaluated in memory by the mock source (``evaluate``).

Precedence, highest first: NOT, AND, OR.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .errors import FilterSyntax, TypeMismatch, UnknownProperty
from .identifiers import is_valid_identifier, quote_identifier
from .models import Collection, SemanticType

COMPARISON_OPS = ("=", "<>", "<", "<=", ">", ">=")
LIKE_OPS = ("LIKE", "NOT LIKE")

_KEYWORDS = {"AND", "OR", "NOT", "LIKE", "IS", "NULL", "IN", "TRUE", "FALSE"}

# Deeper or longer filters are rejected as FilterSyntax.
MAX_FILTER_DEPTH = 64
MAX_FILTER_TERMS = 256


# --- Predicate tree --------------------------------------------------------


@dataclass(frozen=True)
class Comparison:
    property: str
    op: str
    value: Any


@dataclass(frozen=True)
class NullCheck:
    property: str
    negated: bool = False


@dataclass(frozen=True)
class InList:
    property: str
    values: tuple
    negated: bool = False


@dataclass(frozen=True)
class Not:
    operand: "Predicate"


@dataclass(frozen=True)
class And:
    left: "Predicate"
    right: "Predicate"


@dataclass(frozen=True)
class Or:
    left: "Predicate"
    right: "Predicate"


Predicate = Union[Comparison, NullCheck, InList, Not, And, Or]


# --- Tokenizer -------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^']|'')*')
  | (?P<qident>"(?:[^"]|"")+")
  | (?P<number>-?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
  | (?P<op><=|>=|<>|!=|=|<|>)
  | (?P<punct>[(),])
  | (?P<word>[A-Za-z_][A-Za-z_0-9$]*)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    pos: int


def _tokenize(text: str) -> list[_Token]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise FilterSyntax(
                f"Unexpected character {text[pos]!r} at position {pos}"
            )
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "word" and value.upper() in _KEYWORDS:
            tokens.append(_Token("keyword", value.upper(), pos))
        elif kind != "ws":
            tokens.append(_Token(kind, value, pos))
        pos = match.end()
    return tokens


# --- Parser ----------------------------------------------------------------


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0
        self.depth = 0
        self.terms = 0

    def peek(self) -> Optional[_Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def next(self) -> _Token:
        token = self.peek()
        if token is None:
            raise FilterSyntax("Unexpected end of filter expression")
        self.index += 1
        return token

    def accept_keyword(self, *words: str) -> bool:
        token = self.peek()
        if token is not None and token.kind == "keyword" and token.text in words:
            self.index += 1
            return True
        return False

    def expect_keyword(self, word: str):
        if not self.accept_keyword(word):
            raise self.error(f"Expected {word}")

    def accept_punct(self, char: str) -> bool:
        token = self.peek()
        if token is not None and token.kind == "punct" and token.text == char:
            self.index += 1
            return True
        return False

    def expect_punct(self, char: str):
        if not self.accept_punct(char):
            raise self.error(f"Expected '{char}'")

    def enter(self):
        self.depth += 1
        if self.depth > MAX_FILTER_DEPTH:
            raise self.error(f"Filter nested deeper than {MAX_FILTER_DEPTH} levels")

    def error(self, message: str) -> FilterSyntax:
        token = self.peek()
        where = f"at position {token.pos}" if token else "at end of input"
        return FilterSyntax(f"{message} {where}")

    def parse(self) -> Predicate:
        if not self.tokens:
            raise FilterSyntax("Empty filter expression")
        tree = self.parse_or()
        if self.peek() is not None:
            raise self.error("Unexpected token")
        return tree

    def parse_or(self) -> Predicate:
        left = self.parse_and()
        while self.accept_keyword("OR"):
            left = Or(left, self.parse_and())
        return left

    def parse_and(self) -> Predicate:
        left = self.parse_not()
        while self.accept_keyword("AND"):
            left = And(left, self.parse_not())
        return left

    def parse_not(self) -> Predicate:
        if self.accept_keyword("NOT"):
            self.enter()
            operand = self.parse_not()
            self.depth -= 1
            return Not(operand)
        return self.parse_primary()

    def parse_primary(self) -> Predicate:
        if self.accept_punct("("):
            self.enter()
            inner = self.parse_or()
            self.expect_punct(")")
            self.depth -= 1
            return inner
        return self.parse_predicate()

    def parse_predicate(self) -> Predicate:
        self.terms += 1
        if self.terms > MAX_FILTER_TERMS:
            raise self.error(f"Filter has more than {MAX_FILTER_TERMS} conditions")
        token = self.next()
        if token.kind == "word":
            name = token.text
        elif token.kind == "qident":
            name = token.text[1:-1].replace('""', '"')
        else:
            self.index -= 1
            raise self.error("Expected property name")

        token = self.peek()
        if token is None:
            raise self.error("Expected operator")

        if token.kind == "op":
            self.index += 1
            op = "<>" if token.text == "!=" else token.text
            return Comparison(name, op, self.parse_literal())

        if self.accept_keyword("IS"):
            negated = self.accept_keyword("NOT")
            self.expect_keyword("NULL")
            return NullCheck(name, negated)

        negated = self.accept_keyword("NOT")
        if self.accept_keyword("LIKE"):
            value = self.parse_literal()
            if not isinstance(value, str):
                raise FilterSyntax("LIKE requires a string pattern")
            return Comparison(name, "NOT LIKE" if negated else "LIKE", value)
        if self.accept_keyword("IN"):
            self.expect_punct("(")
            values = [self.parse_literal()]
            while self.accept_punct(","):
                values.append(self.parse_literal())
            self.expect_punct(")")
            return InList(name, tuple(values), negated)
        raise self.error("Expected operator")

    def parse_literal(self) -> Any:
        token = self.next()
        if token.kind == "string":
            return token.text[1:-1].replace("''", "'")
        if token.kind == "number":
            text = token.text
            if any(c in text for c in ".eE"):
                return float(text)
            return int(text)
        if token.kind == "keyword":
            if token.text == "TRUE":
                return True
            if token.text == "FALSE":
                return False
            if token.text == "NULL":
                return None
        self.index -= 1
        raise self.error("Expected literal")


def parse_filter(text: str) -> Predicate:
    """Parse filter text into a predicate tree. Raises ``FilterSyntax``."""
    if text is None:
        raise FilterSyntax("Empty filter expression")
    return _Parser(text).parse()


# --- Validation against collection metadata --------------------------------


def _parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def coerce_literal(value: Any, semantic_type: SemanticType, name: str = "") -> Any:
    """Coerce a parsed literal to the property's semantic type."""
    if value is None:
        return None
    kind = semantic_type
    if kind == SemanticType.INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif kind == SemanticType.FLOATING:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    elif kind == SemanticType.BOOLEAN:
        if isinstance(value, bool):
            return value
    elif kind == SemanticType.TIMESTAMP:
        if isinstance(value, str):
            try:
                return _parse_timestamp(value)
            except ValueError:
                pass
    elif kind in (SemanticType.STRING, SemanticType.JSON, SemanticType.OTHER):
        if isinstance(value, str):
            return value
    raise TypeMismatch(
        f"Literal {value!r} is not compatible with {kind.value} property {name!r}"
    )


def _check_property(name: str, collection: Collection):
    prop = collection.get_property(name)
    if prop is None:
        raise UnknownProperty(f"Unknown property {name!r} in filter")
    return prop


def bind_filter(tree: Predicate, collection: Collection) -> Predicate:
    """Validate property names and coerce literals for ``collection``."""
    if isinstance(tree, Comparison):
        prop = _check_property(tree.property, collection)
        if tree.op in LIKE_OPS:
            if prop.semantic_type not in (
                SemanticType.STRING, SemanticType.OTHER, SemanticType.JSON
            ):
                raise TypeMismatch(
                    f"LIKE is not applicable to {prop.semantic_type.value} "
                    f"property {prop.name!r}"
                )
            return tree
        value = coerce_literal(tree.value, prop.semantic_type, prop.name)
        return Comparison(tree.property, tree.op, value)
    if isinstance(tree, NullCheck):
        _check_property(tree.property, collection)
        return tree
    if isinstance(tree, InList):
        prop = _check_property(tree.property, collection)
        values = tuple(
            coerce_literal(v, prop.semantic_type, prop.name) for v in tree.values
        )
        return InList(tree.property, values, tree.negated)
    if isinstance(tree, Not):
        return Not(bind_filter(tree.operand, collection))
    if isinstance(tree, And):
        return And(bind_filter(tree.left, collection), bind_filter(tree.right, collection))
    if isinstance(tree, Or):
        return Or(bind_filter(tree.left, collection), bind_filter(tree.right, collection))
    raise FilterSyntax(f"Unsupported predicate node {tree!r}")


# --- Rendering -------------------------------------------------------------


def render_sql(tree: Predicate, params: list) -> str:
    """Render ``tree`` as SQL, appending literal values to ``params``.

    Every node is parenthesised. Literals only ever appear as ``?``.
    """
    if isinstance(tree, Comparison):
        params.append(tree.value)
        return f"({quote_identifier(tree.property, trusted=True)} {tree.op} ?)"
    if isinstance(tree, NullCheck):
        test = "IS NOT NULL" if tree.negated else "IS NULL"
        return f"({quote_identifier(tree.property, trusted=True)} {test})"
    if isinstance(tree, InList):
        params.extend(tree.values)
        marks = ", ".join("?" for _ in tree.values)
        op = "NOT IN" if tree.negated else "IN"
        return f"({quote_identifier(tree.property, trusted=True)} {op} ({marks}))"
    if isinstance(tree, Not):
        return f"(NOT {render_sql(tree.operand, params)})"
    if isinstance(tree, And):
        left = render_sql(tree.left, params)
        return f"({left} AND {render_sql(tree.right, params)})"
    if isinstance(tree, Or):
        left = render_sql(tree.left, params)
        return f"({left} OR {render_sql(tree.right, params)})"
    raise FilterSyntax(f"Unsupported predicate node {tree!r}")


def _render_name(name: str) -> str:
    if is_valid_identifier(name) and name.upper() not in _KEYWORDS:
        return name
    return '"' + name.replace('"', '""') + '"'


def _render_literal(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, datetime):
        value = value.isoformat()
    return "'" + str(value).replace("'", "''") + "'"


def render_filter(tree: Predicate) -> str:
    """Render ``tree`` back to filter text accepted by ``parse_filter``."""
    if isinstance(tree, Comparison):
        return f"{_render_name(tree.property)} {tree.op} {_render_literal(tree.value)}"
    if isinstance(tree, NullCheck):
        test = "IS NOT NULL" if tree.negated else "IS NULL"
        return f"{_render_name(tree.property)} {test}"
    if isinstance(tree, InList):
        values = ", ".join(_render_literal(v) for v in tree.values)
        op = "NOT IN" if tree.negated else "IN"
        return f"{_render_name(tree.property)} {op} ({values})"
    if isinstance(tree, Not):
        return f"(NOT {render_filter(tree.operand)})"
    if isinstance(tree, And):
        return f"({render_filter(tree.left)} AND {render_filter(tree.right)})"
    if isinstance(tree, Or):
        return f"({render_filter(tree.left)} OR {render_filter(tree.right)})"
    raise FilterSyntax(f"Unsupported predicate node {tree!r}")


# --- In-memory evaluation (mock source) ------------------------------------


def _like_regex(pattern: str):
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def _compare(left, op: str, right) -> Optional[bool]:
    if left is None or right is None:
        return None
    if op == "LIKE":
        return bool(_like_regex(right).match(str(left)))
    if op == "NOT LIKE":
        return not _like_regex(right).match(str(left))
    try:
        if op == "=":
            return left == right
        if op == "<>":
            return left != right
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
    except TypeError:
        return None
    raise FilterSyntax(f"Unsupported operator {op!r}")


def evaluate(tree: Predicate, row: dict) -> Optional[bool]:
    """Evaluate ``tree`` against ``row`` with SQL three-valued logic."""
    if isinstance(tree, Comparison):
        return _compare(row.get(tree.property), tree.op, tree.value)
    if isinstance(tree, NullCheck):
        is_null = row.get(tree.property) is None
        return not is_null if tree.negated else is_null
    if isinstance(tree, InList):
        value = row.get(tree.property)
        if value is None:
            return None
        if value in [v for v in tree.values if v is not None]:
            found = True
        elif None in tree.values:
            return None
        else:
            found = False
        return not found if tree.negated else found
    if isinstance(tree, Not):
        inner = evaluate(tree.operand, row)
        return None if inner is None else not inner
    if isinstance(tree, And):
        left, right = evaluate(tree.left, row), evaluate(tree.right, row)
        if left is False or right is False:
            return False
        if left is None or right is None:
            return None
        return True
    if isinstance(tree, Or):
        left, right = evaluate(tree.left, row), evaluate(tree.right, row)
        if left is True or right is True:
            return True
        if left is None or right is None:
            return None
        return False
    raise FilterSyntax(f"Unsupported predicate node {tree!r}")

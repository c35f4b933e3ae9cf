from __future__ import annotations
from enum import Enum
from typing import Any, Iterable, List, Optional, Set, Union, TYPE_CHECKING
if TYPE_CHECKING:
    from .tags import Tag
    from .tokenize import Token

class DataKind(str, Enum):
    TAG = "tag"
    ATTRIBUTE = "attribute"
    CONDITION = "condition"
    MODIFIER = "modifier"
    EQUATION = "equation"
    VALUE = "value"

class TagParseErrorKind(str, Enum):
    TAG_EMPTY = "tag_empty"
    SUB_TAG_EMPTY = "sub_tag_empty"
    INVALID_CHARACTER = "invalid_character"
    FIRST_TAG_NUMERIC = "first_tag_numeric"

class EvalParseErrorKind(str, Enum):
    TOKEN_INVALID = "token_invalid"
    NUMBER_MULTIPLE_DECIMALS = "number_multiple_decimals"
    UNBALANCED_PARENTHESES = "unbalanced_parentheses"
    MISSING_PARENTHESES = "missing_parentheses"
    OPERATION_TYPE_MISMATCH = "operation_type_mismatch"
    NESTING_TOO_DEEP = "nesting_too_deep"

class TokenizationErrorKind(str, Enum):
    METHOD_DOES_NOT_EXIST = "method_does_not_exist"
    OPERAND_NOT_FOUND = "operand_not_found"
    OPERATION_NOT_FOUND = "operation_not_found"
    MULTIPLE_OPERANDS_FOUND = "multiple_operands_found"

class EvalErrorKind(str, Enum):
    OPERATION_TYPE_MISMATCH = "operation_type_mismatch"
    INVALID_QUERY_KEY = "invalid_query_key"
    DEPTH_EXCEEDED = "depth_exceeded"

class JsonErrorKind(str, Enum):
    INVALID_JSON = "invalid_json"
    INVALID_ROOT_VALUE = "invalid_root_value"
    EXPECTED_VALUE_NOT_FOUND = "expected_value_not_found"
    INVALID_VALUE_FOUND = "invalid_value_found"
    DUPLICATE_KEY = "duplicate_key"


class DataError(Exception):
    """Base class of every failure caused by rule data (tags, formulas, wire input)."""


class DoesNotExistError(DataError):
    def __init__(self, kind: DataKind, tag: "Tag"):
        self.kind = kind
        self.tag = tag
        super().__init__(f"{kind.value} '{tag}' does not exist")

    @classmethod
    def tag_dne(cls, t: "Tag") -> "DoesNotExistError": return cls(DataKind.TAG, t)
    @classmethod
    def attribute_dne(cls, t: "Tag") -> "DoesNotExistError": return cls(DataKind.ATTRIBUTE, t)
    @classmethod
    def condition_dne(cls, t: "Tag") -> "DoesNotExistError": return cls(DataKind.CONDITION, t)
    @classmethod
    def modifier_dne(cls, t: "Tag") -> "DoesNotExistError": return cls(DataKind.MODIFIER, t)
    @classmethod
    def equation_dne(cls, t: "Tag") -> "DoesNotExistError": return cls(DataKind.EQUATION, t)
    @classmethod
    def value_dne(cls, t: "Tag") -> "DoesNotExistError": return cls(DataKind.VALUE, t)


class ConflictingTypeError(DataError):
    def __init__(self, tag: "Tag", expected: DataKind, found: DataKind):
        self.tag = tag
        self.expected = expected
        self.found = found
        super().__init__(f"'{tag}' is a {found.value}, expected a {expected.value}")


class InvalidStateError(DataError):
    pass


class EvaluationError(DataError):
    def __init__(self, kind: EvalErrorKind, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.value)


class ParseError(DataError):
    def __init__(self, string: str, index: int, kind: Union[TagParseErrorKind, EvalParseErrorKind]):
        self.string = string
        self.index = index
        self.kind = kind
        super().__init__(f"{kind.value} at index {index} in {string!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParseError):
            return NotImplemented
        return (self.string, self.index, self.kind) == (other.string, other.index, other.kind)

    def __hash__(self) -> int:
        return hash((self.string, self.index, self.kind))


class TemplateError(DataError):
    """Raised when a template is completed while placeholders are still unfilled."""

    def __init__(self, missing: Iterable[str]):
        self.missing: Set[str] = set(missing)
        super().__init__(f"missing template values: {sorted(self.missing)}")


class TokenizationError(DataError):
    def __init__(self, kind: TokenizationErrorKind, index: int = -1, detail: str = ""):
        self.kind = kind
        self.index = index
        msg = f"{kind.value} at index {index}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class TokenSyntaxError(DataError):
    def __init__(self, token: "Token"):
        self.token = token
        super().__init__(f"unexpected token {token.text!r} at index {token.index}")


class CyclicEvaluationError(DataError):
    def __init__(self, chain: List["Tag"]):
        self.chain = list(chain)
        super().__init__("cyclic evaluation: " + " -> ".join(str(t) for t in self.chain))


class JsonParseError(DataError):
    def __init__(self, kind: JsonErrorKind, key: Optional[str] = None, value: Any = None, detail: str = ""):
        self.kind = kind
        self.key = key
        self.value = value
        where = f" at '{key}'" if key else ""
        msg = f"{kind.value}{where}"
        super().__init__(f"{msg}: {detail}" if detail else msg)

from __future__ import annotations
from enum import Enum
from typing import Dict, Optional

class ResultType(str, Enum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    ANY = "any"   # tag references and lookups: decided by the caller

class Operation(str, Enum):
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    NEGATE = "neg"
    POW = "^"
    SQRT = "sqrt"
    ROUND = "round"
    ROUND_DOWN = "rounddown"
    ROUND_UP = "roundup"
    TERNARY = "?"
    QUERY = "::"
    FIND = "find"
    EQUAL = "=="
    NOT_EQUAL = "!="
    LESS_THAN = "<"
    LESS_THAN_EQ = "<="
    GREATER_THAN = ">"
    GREATER_THAN_EQ = ">="
    NOT = "!"
    OR = "||"
    AND = "&&"

    @property
    def arity(self) -> int:
        if self in _UNARY:
            return 1
        if self is Operation.TERNARY:
            return 3
        return 2

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self]

    @property
    def right_assoc(self) -> bool:
        return self in (Operation.POW, Operation.TERNARY)

    @property
    def result_type(self) -> ResultType:
        if self in _BOOLEAN_RESULT:
            return ResultType.BOOLEAN
        if self in (Operation.TERNARY, Operation.QUERY, Operation.FIND):
            return ResultType.ANY
        return ResultType.NUMBER

    @property
    def is_method(self) -> bool:
        return self in _METHODS.values()

    @property
    def symbol(self) -> str:
        if self is Operation.NEGATE:
            return "-"
        return self.value


_UNARY = {Operation.NEGATE, Operation.NOT, Operation.SQRT, Operation.ROUND, Operation.ROUND_DOWN, Operation.ROUND_UP}

_BOOLEAN_RESULT = {
    Operation.EQUAL, Operation.NOT_EQUAL, Operation.LESS_THAN, Operation.LESS_THAN_EQ,
    Operation.GREATER_THAN, Operation.GREATER_THAN_EQ, Operation.NOT, Operation.OR, Operation.AND,
}

# Higher binds tighter. Conventional arithmetic ordering; see DESIGN.md for the migration note.
_PRECEDENCE: Dict[Operation, int] = {
    Operation.TERNARY: 0,
    Operation.OR: 1,
    Operation.AND: 2,
    Operation.EQUAL: 3, Operation.NOT_EQUAL: 3,
    Operation.LESS_THAN: 3, Operation.LESS_THAN_EQ: 3,
    Operation.GREATER_THAN: 3, Operation.GREATER_THAN_EQ: 3,
    Operation.ADD: 4, Operation.SUBTRACT: 4,
    Operation.MULTIPLY: 5, Operation.DIVIDE: 5,
    Operation.NEGATE: 6, Operation.NOT: 6,
    Operation.SQRT: 6, Operation.ROUND: 6, Operation.ROUND_DOWN: 6, Operation.ROUND_UP: 6,
    Operation.POW: 7,
    Operation.QUERY: 8, Operation.FIND: 8,
}

_METHODS: Dict[str, Operation] = {
    "sqrt": Operation.SQRT,
    "pow": Operation.POW,
    "round": Operation.ROUND,
    "rounddown": Operation.ROUND_DOWN,
    "roundup": Operation.ROUND_UP,
    "find": Operation.FIND,
}

_INFIX: Dict[str, Operation] = {
    "+": Operation.ADD,
    "-": Operation.SUBTRACT,
    "*": Operation.MULTIPLY,
    "/": Operation.DIVIDE,
    "^": Operation.POW,
    "?": Operation.TERNARY,
    "::": Operation.QUERY,
    "==": Operation.EQUAL,
    "!=": Operation.NOT_EQUAL,
    "<": Operation.LESS_THAN,
    "<=": Operation.LESS_THAN_EQ,
    ">": Operation.GREATER_THAN,
    ">=": Operation.GREATER_THAN_EQ,
    "||": Operation.OR,
    "&&": Operation.AND,
}

_PREFIX: Dict[str, Operation] = {
    "-": Operation.NEGATE,
    "!": Operation.NOT,
}

# Longest first so "<=" wins over "<"
OPERATOR_SYMBOLS = sorted(set(_INFIX) | set(_PREFIX) | {":"}, key=len, reverse=True)

def is_method_operator(s: str) -> bool:
    return s in _METHODS

def method_operator(s: str) -> Optional[Operation]:
    return _METHODS.get(s)

def get_operator(s: str, is_prefix: bool) -> Optional[Operation]:
    """Operator for a symbol; '-' and '!' mean Negate/Not in prefix position."""
    if is_prefix:
        return _PREFIX.get(s)
    return _INFIX.get(s)

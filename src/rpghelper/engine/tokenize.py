from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import re
from typing import List, Optional

from .errors import EvalParseErrorKind, ParseError, TokenSyntaxError, TokenizationError, TokenizationErrorKind
from .operators import OPERATOR_SYMBOLS, Operation, get_operator, method_operator

class TokenKind(str, Enum):
    NUMBER = "number"
    BOOLEAN = "boolean"
    IDENT = "ident"       # tag reference, possibly a template
    METHOD = "method"     # sqrt( pow( round( rounddown( roundup( find(
    OPERATOR = "operator"
    LPAREN = "("
    RPAREN = ")"
    COMMA = ","
    COLON = ":"

@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    index: int
    op: Optional[Operation] = None

_NUMBER_RE = re.compile(r"[0-9.]+")
_BOOLEANS = {"true", "false"}

# After these a '-' or '!' is a prefix operator
_PREFIX_CONTEXT = {TokenKind.OPERATOR, TokenKind.LPAREN, TokenKind.COMMA, TokenKind.COLON, TokenKind.METHOD}

def _is_ident_char(c: str) -> bool:
    return c.isalnum() or c.isspace() or c in ".[]"

def brackets_are_balanced(s: str) -> bool:
    depth = 0
    for c in s:
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0

def _classify_word(source: str, text: str, index: int) -> Token:
    m = method_operator(text)
    if m is not None:
        return Token(TokenKind.METHOD, text, index, m)
    if text in _BOOLEANS:
        return Token(TokenKind.BOOLEAN, text, index)
    if _NUMBER_RE.fullmatch(text):
        if text.count(".") > 1:
            raise ParseError(source, index + text.index(".", text.index(".") + 1), EvalParseErrorKind.NUMBER_MULTIPLE_DECIMALS)
        if text == ".":
            raise ParseError(source, index, EvalParseErrorKind.TOKEN_INVALID)
        return Token(TokenKind.NUMBER, text, index)
    return Token(TokenKind.IDENT, text, index)

def tokenize_expression(source: str) -> List[Token]:
    """
    Lexer half of the formula parser.
    "rounddown((sqrt(8 * Exp + 1) - 1) / 2)" ->
        rounddown ( ( sqrt ( 8 * Exp + 1 ) - 1 ) / 2 )
    Words keep their inner spaces ("Casting Score") and dots ("ability.Latin.exp").
    """
    out: List[Token] = []
    i, n = 0, len(source)
    while i < n:
        c = source[i]
        if c.isspace():
            i += 1
            continue
        if c.isalnum() or c in ".[":
            start = i
            while i < n and _is_ident_char(source[i]):
                i += 1
            # only a whole word is a keyword: "find familiar" and "true strike" are tags
            out.append(_classify_word(source, source[start:i].strip(), start))
            continue
        if c == "(":
            out.append(Token(TokenKind.LPAREN, c, i))
            i += 1
            continue
        if c == ")":
            out.append(Token(TokenKind.RPAREN, c, i))
            i += 1
            continue
        if c == ",":
            out.append(Token(TokenKind.COMMA, c, i))
            i += 1
            continue
        sym = next((s for s in OPERATOR_SYMBOLS if source.startswith(s, i)), None)
        if sym is None:
            raise ParseError(source, i, EvalParseErrorKind.TOKEN_INVALID)
        if sym == ":":
            out.append(Token(TokenKind.COLON, sym, i))
        else:
            prev = out[-1] if out else None
            is_prefix = prev is None or prev.kind in _PREFIX_CONTEXT
            op = get_operator(sym, is_prefix)
            if op is None:
                if is_prefix:
                    # binary operator with nothing on its left
                    raise TokenizationError(TokenizationErrorKind.OPERAND_NOT_FOUND, i, sym)
                # '!' after an operand
                raise TokenSyntaxError(Token(TokenKind.OPERATOR, sym, i))
            out.append(Token(TokenKind.OPERATOR, sym, i, op))
        i += len(sym)
    return out

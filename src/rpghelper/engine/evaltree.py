from __future__ import annotations
from dataclasses import dataclass, field
from functools import lru_cache
import copy
import math
import operator
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple, Union, TYPE_CHECKING

from .errors import (
    ConflictingTypeError, DataKind, EvalErrorKind, EvalParseErrorKind, EvaluationError, ParseError,
    TokenSyntaxError, TokenizationError, TokenizationErrorKind,
)
from .operators import Operation, ResultType
from .tags import Tag, TagTemplate, parse_tag_or_template
from .tokenize import Token, TokenKind, brackets_are_balanced, tokenize_expression
if TYPE_CHECKING:
    from .context import Context

# Maximum depth of parentheses, prefix operators and method calls in one formula
MAX_NESTING = 128
# Hard cap on parsed tree height (a flat sum of n terms is n high); taller input is rejected, not evaluated
MAX_TREE_HEIGHT = 256

# -------- IEEE-754 helpers (python floats raise where f32 math would not) --------
def _div(a: float, b: float) -> float:
    if b == 0.0:
        if a == 0.0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b

def _pow(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        if a < 0 and b.is_integer() and int(b) % 2 == 1:
            return -math.inf
        return math.inf
    except ValueError:
        if a == 0.0 and b < 0:
            return math.inf
        return math.nan

def _sqrt(a: float) -> float:
    if a < 0:
        return math.nan
    return math.sqrt(a)

def _round(a: float) -> float:
    # half away from zero, not python's banker's rounding
    if not math.isfinite(a):
        return a
    if a < 0:
        return -_round(-a)
    f = math.floor(a)
    return float(f + 1) if a - f >= 0.5 else float(f)

def _round_up(a: float) -> float:
    return float(math.ceil(a)) if math.isfinite(a) else a

def _round_down(a: float) -> float:
    return float(math.floor(a)) if math.isfinite(a) else a

_NUM_BINARY: Dict[Operation, Callable[[float, float], float]] = {
    Operation.ADD: operator.add,
    Operation.SUBTRACT: operator.sub,
    Operation.MULTIPLY: operator.mul,
    Operation.DIVIDE: _div,
    Operation.POW: _pow,
}

_NUM_UNARY: Dict[Operation, Callable[[float], float]] = {
    Operation.NEGATE: operator.neg,
    Operation.SQRT: _sqrt,
    Operation.ROUND: _round,
    Operation.ROUND_UP: _round_up,
    Operation.ROUND_DOWN: _round_down,
}

_COMPARE: Dict[Operation, Callable[[float, float], bool]] = {
    Operation.LESS_THAN: operator.lt,
    Operation.LESS_THAN_EQ: operator.le,
    Operation.GREATER_THAN: operator.gt,
    Operation.GREATER_THAN_EQ: operator.ge,
}

_NUMERIC_OPERANDS = set(_NUM_BINARY) | set(_NUM_UNARY) | set(_COMPARE)
_BOOLEAN_OPERANDS = {Operation.AND, Operation.OR, Operation.NOT}

def format_number(v: float) -> str:
    if v.is_integer() and abs(v) < 1e16:
        return str(int(v))
    s = repr(v)
    if "e" in s or "E" in s:
        s = f"{v:.20f}".rstrip("0").rstrip(".")
    return s

def _mismatch(expected: ResultType, node: "EvalNode") -> EvaluationError:
    return EvaluationError(
        EvalErrorKind.OPERATION_TYPE_MISMATCH,
        f"expected a {expected.value} from '{node.to_expr()}', found a {node.result_type.value}",
    )


# -------- AST --------
class EvalNode:
    result_type: ResultType = ResultType.ANY
    height: int = 1

    def eval_num(self, ctx: "Context") -> float:
        raise _mismatch(ResultType.NUMBER, self)

    def eval_bool(self, ctx: "Context") -> bool:
        raise _mismatch(ResultType.BOOLEAN, self)

    def children(self) -> List["EvalNode"]:
        return []

    def copy(self) -> "EvalNode":
        return copy.copy(self)

    def walk(self) -> Iterator["EvalNode"]:
        yield self
        for c in self.children():
            yield from c.walk()

    def to_expr(self) -> str:
        raise NotImplementedError


@dataclass(eq=True)
class NumberNode(EvalNode):
    value: float
    result_type = ResultType.NUMBER

    def eval_num(self, ctx: "Context") -> float:
        return self.value

    def to_expr(self) -> str:
        return format_number(self.value)


@dataclass(eq=True)
class BooleanNode(EvalNode):
    value: bool
    result_type = ResultType.BOOLEAN

    def eval_bool(self, ctx: "Context") -> bool:
        return self.value

    def to_expr(self) -> str:
        return "true" if self.value else "false"


@dataclass(eq=True)
class TagNode(EvalNode):
    """
    A tag reference. In numeric position it is a value (attribute or equation,
    with modifiers applied). In boolean position it is a conditional of that
    name, or else whether the tag is present in the context.
    """
    tag: Union[Tag, TagTemplate]
    result_type = ResultType.ANY

    def resolve_tag(self) -> Tag:
        if isinstance(self.tag, TagTemplate):
            return self.tag.attempt_complete()
        return self.tag

    def is_template(self) -> bool:
        return isinstance(self.tag, TagTemplate) and self.tag.is_template()

    def copy(self) -> "TagNode":
        return TagNode(self.tag.copy() if isinstance(self.tag, TagTemplate) else self.tag)

    def eval_num(self, ctx: "Context") -> float:
        return ctx.get_value(self.resolve_tag())

    def eval_bool(self, ctx: "Context") -> bool:
        t = self.resolve_tag()
        kind = ctx.kind_of(t)
        if kind is DataKind.CONDITION:
            return ctx.eval_conditional(t)
        if kind is not None:
            raise ConflictingTypeError(t, DataKind.CONDITION, kind)
        return ctx.has_tag(t)

    def reads_as_bool(self, ctx: "Context") -> bool:
        t = self.resolve_tag()
        kind = ctx.kind_of(t)
        return kind is DataKind.CONDITION or (kind is None and ctx.has_tag(t))

    def to_expr(self) -> str:
        return str(self.tag)


@dataclass(eq=True)
class OperationNode(EvalNode):
    op: Operation
    operands: List[EvalNode]
    result_type: ResultType = field(init=False, compare=False)
    height: int = field(init=False, compare=False)

    def __post_init__(self) -> None:
        self.height = 1 + max(c.height for c in self.operands)
        if self.op is Operation.TERNARY:
            branch_types = {self.operands[1].result_type, self.operands[2].result_type} - {ResultType.ANY}
            self.result_type = branch_types.pop() if len(branch_types) == 1 else ResultType.ANY
        else:
            self.result_type = self.op.result_type

    def children(self) -> List[EvalNode]:
        return self.operands

    def copy(self) -> "OperationNode":
        return OperationNode(self.op, [c.copy() for c in self.operands])

    def _compare_as_bool(self, ctx: "Context") -> bool:
        types = {c.result_type for c in self.operands}
        if ResultType.BOOLEAN in types:
            return True
        if ResultType.NUMBER in types:
            return False
        # two untyped sides: "p == q" over conditionals or state tags is a bool comparison
        return any(isinstance(c, TagNode) and c.reads_as_bool(ctx) for c in self.operands)

    def lookup_tag(self, ctx: "Context") -> Tag:
        """key :: table / find(key, table) -> the tag table.<key>"""
        key = self.operands[0].eval_num(ctx)
        table = self.operands[1]
        assert isinstance(table, TagNode)
        if not math.isfinite(key) or key < 0 or not key.is_integer():
            raise EvaluationError(EvalErrorKind.INVALID_QUERY_KEY, f"'{format_number(key)}' can not index '{table.to_expr()}'")
        return table.resolve_tag().add_suffix(str(int(key)))

    def eval_num(self, ctx: "Context") -> float:
        op = self.op
        if op in _NUM_BINARY:
            a = self.operands[0].eval_num(ctx)
            b = self.operands[1].eval_num(ctx)
            return _NUM_BINARY[op](a, b)
        if op in _NUM_UNARY:
            return _NUM_UNARY[op](self.operands[0].eval_num(ctx))
        if op is Operation.TERNARY:
            branch = self.operands[1] if self.operands[0].eval_bool(ctx) else self.operands[2]
            return branch.eval_num(ctx)
        if op in (Operation.QUERY, Operation.FIND):
            return ctx.get_value(self.lookup_tag(ctx), strict=True)
        raise _mismatch(ResultType.NUMBER, self)

    def eval_bool(self, ctx: "Context") -> bool:
        op = self.op
        lhs = self.operands[0]
        if op in _COMPARE:
            return _COMPARE[op](lhs.eval_num(ctx), self.operands[1].eval_num(ctx))
        if op in (Operation.EQUAL, Operation.NOT_EQUAL):
            if self._compare_as_bool(ctx):
                same = lhs.eval_bool(ctx) == self.operands[1].eval_bool(ctx)
            else:
                same = lhs.eval_num(ctx) == self.operands[1].eval_num(ctx)
            return same if op is Operation.EQUAL else not same
        if op is Operation.NOT:
            return not lhs.eval_bool(ctx)
        if op is Operation.AND:
            return lhs.eval_bool(ctx) and self.operands[1].eval_bool(ctx)
        if op is Operation.OR:
            return lhs.eval_bool(ctx) or self.operands[1].eval_bool(ctx)
        if op is Operation.TERNARY:
            branch = self.operands[1] if lhs.eval_bool(ctx) else self.operands[2]
            return branch.eval_bool(ctx)
        if op in (Operation.QUERY, Operation.FIND):
            return ctx.eval_conditional(self.lookup_tag(ctx))
        raise _mismatch(ResultType.BOOLEAN, self)

    # -------- printing --------
    def _binding(self) -> int:
        if self.op.is_method and self.op is not Operation.POW:
            return 99
        return self.op.precedence

    def to_expr(self) -> str:
        op = self.op
        ops = self.operands
        if op.is_method and op is not Operation.POW:
            return f"{op.value}({', '.join(c.to_expr() for c in ops)})"
        if op in (Operation.NEGATE, Operation.NOT):
            return op.symbol + _wrap(ops[0], lambda b: b < op.precedence or b == 0)
        if op is Operation.TERNARY:
            return f"{_wrap(ops[0], lambda b: b == 0)} ? {ops[1].to_expr()} : {ops[2].to_expr()}"
        prec = op.precedence
        left = _wrap(ops[0], lambda b: b < prec or (b == prec and op.right_assoc))
        right = _wrap(ops[1], lambda b: b < prec or (b == prec and not op.right_assoc))
        return f"{left} {op.symbol} {right}"


def _wrap(node: EvalNode, needs_parens: Callable[[int], bool]) -> str:
    if isinstance(node, OperationNode) and needs_parens(node._binding()):
        return f"({node.to_expr()})"
    return node.to_expr()


# -------- parser --------
@lru_cache(maxsize=8192)
def _tokens(source: str) -> Tuple[Token, ...]:
    return tuple(tokenize_expression(source))

def expr_cache_info() -> str:
    info = _tokens.cache_info()
    return f"expr-cache: hits={info.hits}, misses={info.misses}, size={info.currsize}/{info.maxsize}"

class _Parser:
    """Precedence climbing over the token stream; one OperationNode per operator."""

    def __init__(self, source: str, tokens: Tuple[Token, ...], max_nesting: int):
        self.source = source
        self.tokens = tokens
        self.pos = 0
        self.depth = 0
        self.max_nesting = min(max_nesting, MAX_TREE_HEIGHT)

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _index(self) -> int:
        tok = self.peek()
        return tok.index if tok else len(self.source)

    def parse(self) -> EvalNode:
        if not self.tokens:
            raise TokenizationError(TokenizationErrorKind.OPERAND_NOT_FOUND, 0, "empty expression")
        node = self.expression(0)
        tok = self.peek()
        if tok is not None:
            raise self.unexpected(tok)
        return node

    def expression(self, min_prec: int) -> EvalNode:
        self.depth += 1
        if self.depth > self.max_nesting:
            raise ParseError(self.source, self._index(), EvalParseErrorKind.NESTING_TOO_DEEP)
        try:
            left = self.prefix()
            while True:
                tok = self.peek()
                if tok is None or tok.kind is not TokenKind.OPERATOR:
                    break
                op = tok.op
                if op.precedence < min_prec:
                    break
                self.pos += 1
                if op is Operation.TERNARY:
                    then = self.expression(0)
                    colon = self.peek()
                    if colon is None or colon.kind is not TokenKind.COLON:
                        raise TokenizationError(TokenizationErrorKind.OPERATION_NOT_FOUND, tok.index, "'?' without matching ':'")
                    self.pos += 1
                    otherwise = self.expression(op.precedence)
                    left = self.make(op, [left, then, otherwise], tok)
                    continue
                right = self.expression(op.precedence if op.right_assoc else op.precedence + 1)
                left = self.make(op, [left, right], tok)
            return left
        finally:
            self.depth -= 1

    def prefix(self) -> EvalNode:
        tok = self.peek()
        if tok is None:
            raise TokenizationError(TokenizationErrorKind.OPERAND_NOT_FOUND, len(self.source), "expression ended early")
        self.pos += 1
        kind = tok.kind
        if kind is TokenKind.NUMBER:
            return NumberNode(float(tok.text))
        if kind is TokenKind.BOOLEAN:
            return BooleanNode(tok.text == "true")
        if kind is TokenKind.IDENT:
            return TagNode(self.tag(tok))
        if kind is TokenKind.LPAREN:
            if self.peek() is not None and self.peek().kind is TokenKind.RPAREN:
                raise TokenizationError(TokenizationErrorKind.OPERAND_NOT_FOUND, tok.index, "empty parentheses")
            node = self.expression(0)
            self.expect_close(tok)
            return node
        if kind is TokenKind.OPERATOR and tok.op in (Operation.NEGATE, Operation.NOT):
            operand = self.expression(tok.op.precedence)
            return self.make(tok.op, [operand], tok)
        if kind is TokenKind.METHOD:
            return self.method(tok)
        if kind is TokenKind.RPAREN:
            raise TokenizationError(TokenizationErrorKind.OPERAND_NOT_FOUND, tok.index)
        raise TokenSyntaxError(tok)

    def method(self, tok: Token) -> EvalNode:
        op = tok.op
        lp = self.peek()
        if lp is None or lp.kind is not TokenKind.LPAREN:
            raise ParseError(self.source, tok.index, EvalParseErrorKind.MISSING_PARENTHESES)
        self.pos += 1
        args: List[EvalNode] = []
        if self.peek() is not None and self.peek().kind is TokenKind.RPAREN:
            self.pos += 1
        else:
            while True:
                args.append(self.expression(0))
                t = self.peek()
                if t is not None and t.kind is TokenKind.COMMA:
                    self.pos += 1
                    continue
                self.expect_close(lp)
                break
        if len(args) < op.arity:
            raise TokenizationError(TokenizationErrorKind.OPERAND_NOT_FOUND, tok.index, f"{tok.text} takes {op.arity} argument(s)")
        if len(args) > op.arity:
            raise TokenizationError(TokenizationErrorKind.MULTIPLE_OPERANDS_FOUND, tok.index, f"{tok.text} takes {op.arity} argument(s)")
        return self.make(op, args, tok)

    def expect_close(self, opening: Token) -> None:
        t = self.peek()
        if t is None:
            raise ParseError(self.source, opening.index, EvalParseErrorKind.MISSING_PARENTHESES)
        if t.kind is not TokenKind.RPAREN:
            raise self.unexpected(t)
        self.pos += 1

    def unexpected(self, tok: Token) -> Exception:
        prev = self.tokens[self.pos - 1] if self.pos > 0 else None
        if tok.kind is TokenKind.LPAREN and prev is not None and prev.kind is TokenKind.IDENT:
            return TokenizationError(TokenizationErrorKind.METHOD_DOES_NOT_EXIST, prev.index, prev.text)
        if tok.kind in (TokenKind.NUMBER, TokenKind.BOOLEAN, TokenKind.IDENT, TokenKind.METHOD, TokenKind.LPAREN):
            return TokenizationError(TokenizationErrorKind.MULTIPLE_OPERANDS_FOUND, tok.index, tok.text)
        if tok.kind is TokenKind.RPAREN:
            return ParseError(self.source, tok.index, EvalParseErrorKind.UNBALANCED_PARENTHESES)
        return TokenSyntaxError(tok)

    def tag(self, tok: Token) -> Union[Tag, TagTemplate]:
        try:
            return parse_tag_or_template(tok.text)
        except ParseError as e:
            raise ParseError(self.source, tok.index + e.index, e.kind) from e

    def make(self, op: Operation, operands: List[EvalNode], tok: Token) -> OperationNode:
        self.check_types(op, operands, tok)
        node = OperationNode(op, operands)
        if node.height > MAX_TREE_HEIGHT:
            raise ParseError(self.source, tok.index, EvalParseErrorKind.NESTING_TOO_DEEP)
        return node

    def check_types(self, op: Operation, operands: List[EvalNode], tok: Token) -> None:
        def fail() -> ParseError:
            return ParseError(self.source, tok.index, EvalParseErrorKind.OPERATION_TYPE_MISMATCH)

        def want(node: EvalNode, rt: ResultType) -> None:
            if node.result_type is not ResultType.ANY and node.result_type is not rt:
                raise fail()

        if op in (Operation.QUERY, Operation.FIND):
            want(operands[0], ResultType.NUMBER)
            if not isinstance(operands[1], TagNode):
                raise fail()
        elif op in _NUMERIC_OPERANDS:
            for o in operands:
                want(o, ResultType.NUMBER)
        elif op in _BOOLEAN_OPERANDS:
            for o in operands:
                want(o, ResultType.BOOLEAN)
        elif op in (Operation.EQUAL, Operation.NOT_EQUAL):
            kinds = {o.result_type for o in operands} - {ResultType.ANY}
            if len(kinds) > 1:
                raise fail()
        elif op is Operation.TERNARY:
            want(operands[0], ResultType.BOOLEAN)
            kinds = {o.result_type for o in operands[1:]} - {ResultType.ANY}
            if len(kinds) > 1:
                raise fail()


class EvalTree:
    """
    A parsed formula. Built once from its source text and evaluated
    against a Context as a number or as a boolean.
    """

    __slots__ = ("root",)

    def __init__(self, root: EvalNode):
        self.root = root

    @classmethod
    def from_str(cls, source: str, max_nesting: int = MAX_NESTING) -> "EvalTree":
        if not brackets_are_balanced(source):
            raise ParseError(source, len(source), EvalParseErrorKind.UNBALANCED_PARENTHESES)
        return cls(_Parser(source, _tokens(source), max_nesting).parse())

    @property
    def expected_result(self) -> ResultType:
        return self.root.result_type

    def eval_as_num(self, ctx: "Context") -> float:
        if self.root.result_type is ResultType.BOOLEAN:
            raise _mismatch(ResultType.NUMBER, self.root)
        return self.root.eval_num(ctx)

    def eval_as_bool(self, ctx: "Context") -> bool:
        if self.root.result_type is ResultType.NUMBER:
            raise _mismatch(ResultType.BOOLEAN, self.root)
        return self.root.eval_bool(ctx)

    # -------- templates --------
    def _tag_nodes(self) -> Iterator[TagNode]:
        for n in self.root.walk():
            if isinstance(n, TagNode):
                yield n

    def is_template(self) -> bool:
        return any(n.is_template() for n in self._tag_nodes())

    def get_template_inputs(self) -> Set[str]:
        res: Set[str] = set()
        for n in self._tag_nodes():
            if isinstance(n.tag, TagTemplate):
                res |= n.tag.get_required_inputs()
        return res

    def fill_template_value(self, input_name: str, input_value: Tag) -> None:
        for n in self._tag_nodes():
            if isinstance(n.tag, TagTemplate):
                n.tag.fill_template_value(input_name, input_value)

    def referenced_tags(self, include_tables: bool = False) -> Set[Tag]:
        """Tags this formula reads directly; lookup tables (the right of '::') only on request."""
        tables = set()
        if not include_tables:
            tables = {id(n.operands[1]) for n in self.root.walk()
                      if isinstance(n, OperationNode) and n.op in (Operation.QUERY, Operation.FIND)}
        res: Set[Tag] = set()
        for n in self._tag_nodes():
            if id(n) in tables or n.is_template():
                continue
            res.add(n.resolve_tag())
        return res

    def to_expression_string(self) -> str:
        return self.root.to_expr()

    def copy(self) -> "EvalTree":
        return EvalTree(self.root.copy())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EvalTree):
            return NotImplemented
        return self.root == other.root

    def __repr__(self) -> str:
        return f"EvalTree({self.to_expression_string()!r})"

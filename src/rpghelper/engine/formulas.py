from __future__ import annotations
from typing import Dict, Generic, Iterator, List, Optional, Set, TypeVar, Union

from .errors import DataKind, DoesNotExistError, EvalParseErrorKind, ParseError, TemplateError
from .evaltree import MAX_NESTING, EvalTree
from .operators import ResultType
from .tags import Tag, TagTemplate, parse_tag_or_template
from .templates import Template, Templated

# Shared machinery of Equation and Conditional: a name bound to a parsed formula.

class NamedFormula:
    kind: DataKind = DataKind.EQUATION
    # the static type a formula must not have, e.g. a boolean equation
    forbidden_result: ResultType = ResultType.BOOLEAN

    __slots__ = ("name", "source", "ast")

    def __init__(self, name: Union[Tag, str], source: str, max_nesting: int = MAX_NESTING):
        ast = EvalTree.from_str(source, max_nesting)
        if ast.is_template():
            raise TemplateError(ast.get_template_inputs())
        if ast.expected_result is self.forbidden_result:
            raise ParseError(source, 0, EvalParseErrorKind.OPERATION_TYPE_MISMATCH)
        self.name = Tag(name)
        self.source = source
        self.ast = ast

    def referenced_tags(self) -> Set[Tag]:
        return self.ast.referenced_tags()

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self.name == other.name and self.ast == other.ast

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.name)!r}, {self.source!r})"


F = TypeVar("F", bound=NamedFormula)

class FormulaSet(Generic[F]):
    kind: DataKind = DataKind.EQUATION

    def __init__(self, items: Optional[List[F]] = None) -> None:
        self._items: Dict[Tag, F] = {}
        for f in items or []:
            self._items[f.name] = f

    def get(self, name: Tag) -> Optional[F]:
        return self._items.get(name)

    def has(self, name: Tag) -> bool:
        return name in self._items

    def __contains__(self, name: Tag) -> bool:
        return name in self._items

    def set(self, item: F) -> Optional[F]:
        old = self._items.get(item.name)
        self._items[item.name] = item
        return old

    def remove(self, name: Tag) -> Optional[F]:
        return self._items.pop(name, None)

    def require(self, name: Tag) -> F:
        f = self._items.get(name)
        if f is None:
            raise DoesNotExistError(self.kind, name)
        return f

    def names(self) -> List[Tag]:
        return sorted(self._items)

    def __iter__(self) -> Iterator[F]:
        for k in sorted(self._items):
            yield self._items[k]

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._items == other._items

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self)!r})"


class FormulaTemplate(Template[F]):
    """
    A named formula whose name and/or formula text still contain [NAME]
    placeholders. The completed formula is rebuilt from the filled tree,
    so it reads back in normalized form.
    """

    formula_class: type = NamedFormula

    def __init__(self, name: Union[TagTemplate, Tag, str], source: str):
        if isinstance(name, str):
            name = parse_tag_or_template(name)
        if isinstance(name, TagTemplate):
            self.name_template: Templated[TagTemplate, Tag] = Templated.of_template(name)
        else:
            self.name_template = Templated.of_complete(name)
        self.source = source
        self.ast = EvalTree.from_str(source)

    @classmethod
    def create(cls, name: str, source: str) -> Templated:
        """A template when anything is left to fill, otherwise the finished formula."""
        t = cls(name, source)
        if t.get_required_inputs():
            return Templated.of_template(t)
        return Templated.of_complete(t.attempt_complete())

    def get_required_inputs(self) -> Set[str]:
        return self.name_template.get_required_inputs() | self.ast.get_template_inputs()

    def fill_template_value(self, input_name: str, input_value: Tag) -> Optional[F]:
        self.name_template.insert_template_value(input_name, input_value)
        self.ast.fill_template_value(input_name, input_value)
        if self.get_required_inputs():
            return None
        return self.attempt_complete()

    def attempt_complete(self) -> F:
        missing = self.get_required_inputs()
        if missing:
            raise TemplateError(missing)
        return self.formula_class(self.name_template.attempt_complete(), self.ast.to_expression_string())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.source!r})"

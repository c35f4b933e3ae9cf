from __future__ import annotations
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .errors import DataKind
from .evaltree import MAX_NESTING
from .formulas import FormulaSet, FormulaTemplate, NamedFormula
from .jsonio import ensure_unique, validate
from .operators import ResultType
from .schema_models import ConditionalModel, ConditionalSetAdapter
from .tags import Tag
if TYPE_CHECKING:
    from .context import Context

class Conditional(NamedFormula):
    """A named boolean formula, e.g. Has Familiar = Familiar.Bond >= 1."""

    kind = DataKind.CONDITION
    forbidden_result = ResultType.NUMBER

    def eval(self, ctx: "Context") -> bool:
        return self.ast.eval_as_bool(ctx)

    def to_json(self) -> Dict[str, Any]:
        return ConditionalModel(tag=str(self.name), conditional=self.source).model_dump()

    @classmethod
    def from_json(cls, value: Any, max_nesting: int = MAX_NESTING) -> "Conditional":
        m = validate(ConditionalModel, value)
        return cls(Tag(m.tag), m.conditional, max_nesting)


class ConditionalSet(FormulaSet[Conditional]):
    kind = DataKind.CONDITION

    def has_conditional(self, name: Tag) -> bool:
        return self.has(name)

    def set_conditional(self, conditional: Conditional) -> Optional[Conditional]:
        return self.set(conditional)

    def remove_conditional(self, name: Tag) -> Optional[Conditional]:
        return self.remove(name)

    def eval(self, name: Tag, ctx: "Context") -> bool:
        return self.require(name).eval(ctx)

    def copy(self) -> "ConditionalSet":
        return ConditionalSet(list(self))

    def to_json(self) -> List[Dict[str, Any]]:
        return [c.to_json() for c in self]

    @classmethod
    def from_json(cls, value: Any, max_nesting: int = MAX_NESTING) -> "ConditionalSet":
        models = validate(ConditionalSetAdapter, value)
        ensure_unique(str(Tag(m.tag)) for m in models)
        return cls([Conditional(Tag(m.tag), m.conditional, max_nesting) for m in models])


class ConditionalTemplate(FormulaTemplate[Conditional]):
    formula_class = Conditional

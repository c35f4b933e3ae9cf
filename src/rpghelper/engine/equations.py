from __future__ import annotations
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .errors import DataKind
from .evaltree import MAX_NESTING
from .formulas import FormulaSet, FormulaTemplate, NamedFormula
from .jsonio import ensure_unique, validate
from .operators import ResultType
from .schema_models import EquationModel, EquationSetAdapter
from .tags import Tag
if TYPE_CHECKING:
    from .context import Context

class Equation(NamedFormula):
    """A named numeric formula, e.g. Ability.Latin = rounddown((sqrt(8 * Ability.Latin.Exp + 1) - 1) / 2)."""

    kind = DataKind.EQUATION
    forbidden_result = ResultType.BOOLEAN

    def eval(self, ctx: "Context") -> float:
        return self.ast.eval_as_num(ctx)

    def to_json(self) -> Dict[str, Any]:
        return EquationModel(name=str(self.name), equation=self.source).model_dump()

    @classmethod
    def from_json(cls, value: Any, max_nesting: int = MAX_NESTING) -> "Equation":
        m = validate(EquationModel, value)
        return cls(Tag(m.name), m.equation, max_nesting)


class EquationSet(FormulaSet[Equation]):
    kind = DataKind.EQUATION

    def has_equation(self, name: Tag) -> bool:
        return self.has(name)

    def set_equation(self, equation: Equation) -> Optional[Equation]:
        return self.set(equation)

    def remove_equation(self, name: Tag) -> Optional[Equation]:
        return self.remove(name)

    def eval(self, name: Tag, ctx: "Context") -> float:
        return self.require(name).eval(ctx)

    def copy(self) -> "EquationSet":
        # equations are immutable, sharing them is fine
        return EquationSet(list(self))

    def to_json(self) -> List[Dict[str, Any]]:
        return [e.to_json() for e in self]

    @classmethod
    def from_json(cls, value: Any, max_nesting: int = MAX_NESTING) -> "EquationSet":
        models = validate(EquationSetAdapter, value)
        ensure_unique(str(Tag(m.name)) for m in models)
        return cls([Equation(Tag(m.name), m.equation, max_nesting) for m in models])


class EquationTemplate(FormulaTemplate[Equation]):
    formula_class = Equation

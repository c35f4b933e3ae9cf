from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Union, TYPE_CHECKING

from .conditionals import Conditional
from .equations import Equation
from .jsonio import validate
from .modifiers import Modifier
from .schema_models import (
    AddStateTagModel, EffectAdapter, EffectListAdapter, RemoveModifierModel, RemoveStateTagModel,
    SetAttributeFromValueModel, SetAttributeModel, SetConditionalModel, SetEquationModel, SetModifierModel,
)
from .tags import Tag
if TYPE_CHECKING:
    from .context import Context

# Rule-driven mutations of a context (an event happened, a spell was learned, ...).
# Each effect knows how to apply itself; Context.apply_effect is the entry point.

@dataclass(frozen=True)
class AddStateTag:
    tag: Tag

    def apply(self, ctx: "Context") -> None:
        ctx.state_tags.add_tag(self.tag)

    def to_json(self) -> Dict[str, Any]:
        return {"AddStateTag": str(self.tag)}

@dataclass(frozen=True)
class RemoveStateTag:
    tag: Tag

    def apply(self, ctx: "Context") -> None:
        ctx.state_tags.remove_tag(self.tag)

    def to_json(self) -> Dict[str, Any]:
        return {"RemoveStateTag": str(self.tag)}

@dataclass(frozen=True)
class SetAttribute:
    tag: Tag
    value: float

    def apply(self, ctx: "Context") -> None:
        ctx.set_attribute(self.tag, self.value)

    def to_json(self) -> Dict[str, Any]:
        return {"SetAttribute": [str(self.tag), self.value]}

@dataclass(frozen=True)
class SetAttributeFromValue:
    """Copy the current effective value of `source` (modifiers included) into attribute `tag`."""
    tag: Tag
    source: Tag

    def apply(self, ctx: "Context") -> None:
        ctx.set_attribute(self.tag, ctx.get_value(self.source, strict=True))

    def to_json(self) -> Dict[str, Any]:
        return {"SetAttributeFromValue": [str(self.tag), str(self.source)]}

@dataclass(frozen=True)
class SetEquation:
    equation: Equation

    def apply(self, ctx: "Context") -> None:
        ctx.set_equation(self.equation)

    def to_json(self) -> Dict[str, Any]:
        return {"SetEquation": self.equation.to_json()}

@dataclass(frozen=True)
class SetConditional:
    conditional: Conditional

    def apply(self, ctx: "Context") -> None:
        ctx.set_conditional(self.conditional)

    def to_json(self) -> Dict[str, Any]:
        return {"SetConditional": self.conditional.to_json()}

@dataclass(frozen=True)
class SetModifier:
    modifier: Modifier

    def apply(self, ctx: "Context") -> None:
        ctx.set_modifier(self.modifier)

    def to_json(self) -> Dict[str, Any]:
        return {"SetModifier": self.modifier.to_json()}

@dataclass(frozen=True)
class RemoveModifier:
    name: Tag

    def apply(self, ctx: "Context") -> None:
        ctx.remove_modifier(self.name)

    def to_json(self) -> Dict[str, Any]:
        return {"RemoveModifier": str(self.name)}

Effect = Union[
    AddStateTag, RemoveStateTag, SetAttribute, SetAttributeFromValue,
    SetEquation, SetConditional, SetModifier, RemoveModifier,
]

def _from_model(m: Any) -> Effect:
    if isinstance(m, AddStateTagModel):
        return AddStateTag(Tag(m.AddStateTag))
    if isinstance(m, RemoveStateTagModel):
        return RemoveStateTag(Tag(m.RemoveStateTag))
    if isinstance(m, SetAttributeModel):
        return SetAttribute(Tag(m.SetAttribute[0]), m.SetAttribute[1])
    if isinstance(m, SetAttributeFromValueModel):
        return SetAttributeFromValue(Tag(m.SetAttributeFromValue[0]), Tag(m.SetAttributeFromValue[1]))
    if isinstance(m, SetEquationModel):
        return SetEquation(Equation(Tag(m.SetEquation.name), m.SetEquation.equation))
    if isinstance(m, SetConditionalModel):
        return SetConditional(Conditional(Tag(m.SetConditional.tag), m.SetConditional.conditional))
    if isinstance(m, SetModifierModel):
        return SetModifier(Modifier._from_model(m.SetModifier))
    if isinstance(m, RemoveModifierModel):
        return RemoveModifier(Tag(m.RemoveModifier))
    raise TypeError(f"not an effect model: {m!r}")

def effect_from_json(value: Any) -> Effect:
    return _from_model(validate(EffectAdapter, value))

def effects_from_json(value: Any) -> List[Effect]:
    return [_from_model(m) for m in validate(EffectListAdapter, value)]

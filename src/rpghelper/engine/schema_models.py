from __future__ import annotations
from typing import Dict, List, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, RootModel, TypeAdapter

# Wire (JSON) shapes exchanged with storage and the network layer.
# Tags and formulas stay plain strings here; the runtime types parse them.

class WireModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

class TagSetModel(RootModel[Dict[str, int]]):
    """Primary tag -> count. Prefix counts are derived on load."""

class AttributeModel(WireModel):
    name: str
    value: float

class ConditionalModel(WireModel):
    tag: str
    conditional: str

class EquationModel(WireModel):
    name: str
    equation: str

class BasicValueChange(WireModel):
    BasicValue: float

class FromOtherValueChange(WireModel):
    FromOtherValue: str

ModifierChangeModel = Union[BasicValueChange, FromOtherValueChange]

class SingleTargetModel(WireModel):
    Single: str

class MatchingStartTargetModel(WireModel):
    MatchingStart: str

class MatchingEndTargetModel(WireModel):
    MatchingEnd: str

# a bare tag string is shorthand for {"Single": tag}
ModifierTargetModel = Union[str, SingleTargetModel, MatchingStartTargetModel, MatchingEndTargetModel]

class ModifierModel(WireModel):
    name: str
    target: ModifierTargetModel
    condition: str
    change: ModifierChangeModel

class ContextModel(WireModel):
    state_tags: Dict[str, int] = Field(default_factory=dict)
    attributes: List[AttributeModel] = Field(default_factory=list)
    modifiers: List[ModifierModel] = Field(default_factory=list)
    equations: List[EquationModel] = Field(default_factory=list)
    conditions: List[ConditionalModel] = Field(default_factory=list)

TagAdapter = TypeAdapter(str)
AttributeSetAdapter = TypeAdapter(List[AttributeModel])
ConditionalSetAdapter = TypeAdapter(List[ConditionalModel])
EquationSetAdapter = TypeAdapter(List[EquationModel])
ModifierSetAdapter = TypeAdapter(List[ModifierModel])

# Effects: externally tagged, one key naming the variant
class AddStateTagModel(WireModel):
    AddStateTag: str

class RemoveStateTagModel(WireModel):
    RemoveStateTag: str

class SetAttributeModel(WireModel):
    SetAttribute: Tuple[str, float]

class SetAttributeFromValueModel(WireModel):
    SetAttributeFromValue: Tuple[str, str]

class SetEquationModel(WireModel):
    SetEquation: EquationModel

class SetConditionalModel(WireModel):
    SetConditional: ConditionalModel

class SetModifierModel(WireModel):
    SetModifier: ModifierModel

class RemoveModifierModel(WireModel):
    RemoveModifier: str

EffectModel = Union[
    AddStateTagModel, RemoveStateTagModel, SetAttributeModel, SetAttributeFromValueModel,
    SetEquationModel, SetConditionalModel, SetModifierModel, RemoveModifierModel,
]

EffectAdapter = TypeAdapter(EffectModel)
EffectListAdapter = TypeAdapter(List[EffectModel])

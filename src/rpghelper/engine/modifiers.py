from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Any, Dict, Iterator, List, Optional, Set, Type, Union, TYPE_CHECKING

from pydantic import TypeAdapter

from .errors import InvalidStateError
from .jsonio import ensure_unique, validate
from .schema_models import (
    BasicValueChange, FromOtherValueChange, MatchingEndTargetModel, MatchingStartTargetModel, ModifierChangeModel,
    ModifierModel, ModifierSetAdapter, SingleTargetModel,
)
from .tags import Tag, TagTemplate, parse_tag_or_template
from .templates import Template, Templated
if TYPE_CHECKING:
    from .context import Context

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class BasicValue:
    """Flat addend."""
    value: float

    def to_json(self) -> Dict[str, Any]:
        return BasicValueChange(BasicValue=self.value).model_dump()

@dataclass(frozen=True)
class FromOtherValue:
    """Addend read from another value of the same context, modifiers included."""
    tag: Tag

    def to_json(self) -> Dict[str, Any]:
        return FromOtherValueChange(FromOtherValue=str(self.tag)).model_dump()

ModifierChange = Union[BasicValue, FromOtherValue]

_ChangeAdapter = TypeAdapter(ModifierChangeModel)

def change_from_json(value: Any) -> ModifierChange:
    return _change_from_model(validate(_ChangeAdapter, value))

def _change_from_model(m: Any) -> ModifierChange:
    if isinstance(m, BasicValueChange):
        return BasicValue(m.BasicValue)
    return FromOtherValue(Tag(m.FromOtherValue))


@dataclass(frozen=True)
class _Target:
    tag: Tag

    def __post_init__(self) -> None:
        object.__setattr__(self, "tag", Tag(self.tag))

@dataclass(frozen=True)
class Single(_Target):
    """The one value named `tag`."""

    def matches(self, t: Tag) -> bool:
        return t == self.tag

    def to_json(self) -> Any:
        return str(self.tag)

@dataclass(frozen=True)
class MatchingStart(_Target):
    """Every value whose leading subtags are `tag`: MatchingStart(ability) hits ability.Latin.Exp."""

    def matches(self, t: Tag) -> bool:
        return t.has_prefix(self.tag)

    def to_json(self) -> Any:
        return MatchingStartTargetModel(MatchingStart=str(self.tag)).model_dump()

@dataclass(frozen=True)
class MatchingEnd(_Target):
    """Every value whose trailing subtags are `tag`: MatchingEnd(Exp) hits ability.Latin.Exp."""

    def matches(self, t: Tag) -> bool:
        return t.has_suffix(self.tag)

    def to_json(self) -> Any:
        return MatchingEndTargetModel(MatchingEnd=str(self.tag)).model_dump()

ModifierTarget = Union[Single, MatchingStart, MatchingEnd]

def _target_from_model(m: Any) -> ModifierTarget:
    if isinstance(m, str):
        return Single(Tag(m))
    if isinstance(m, SingleTargetModel):
        return Single(Tag(m.Single))
    if isinstance(m, MatchingStartTargetModel):
        return MatchingStart(Tag(m.MatchingStart))
    return MatchingEnd(Tag(m.MatchingEnd))

def _as_target(target: Union[ModifierTarget, Tag, str]) -> ModifierTarget:
    if isinstance(target, _Target):
        return target
    return Single(Tag(target))


class Modifier:
    """
    While `condition` (a conditional name) holds, adds `change` to the value named `target`.
    e.g. Modifier("Familiar Bonus", "Ability.Latin", "Has Familiar", BasicValue(3))

    A MatchingStart/MatchingEnd target applies to every value it matches, and
    the condition is looked up per value as <value>.<condition>: with target
    MatchingEnd("Exp") and condition "Studying", ability.Latin.Exp is raised
    while ability.Latin.Exp.Studying holds.
    """

    __slots__ = ("name", "target", "condition", "change")

    def __init__(self, name: Union[Tag, str], target: Union[ModifierTarget, Tag, str], condition: Union[Tag, str], change: ModifierChange):
        self.name = Tag(name)
        self.target = _as_target(target)
        self.condition = Tag(condition)
        self.change = change

    def condition_for(self, t: Tag) -> Tag:
        if isinstance(self.target, Single):
            return self.condition
        return t.add_suffix(self.condition)

    def addend(self, ctx: "Context") -> float:
        if isinstance(self.change, BasicValue):
            return self.change.value
        return ctx.get_value(self.change.tag, strict=True)

    def referenced_tags(self) -> Set[Tag]:
        # per-value conditions of matching targets are not known until a value is evaluated
        res = {self.condition} if isinstance(self.target, Single) else set()
        if isinstance(self.change, FromOtherValue):
            res.add(self.change.tag)
        return res

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Modifier):
            return NotImplemented
        return (self.name, self.target, self.condition, self.change) == (other.name, other.target, other.condition, other.change)

    def __repr__(self) -> str:
        return f"Modifier({str(self.name)!r}, target={self.target!r}, condition={str(self.condition)!r}, change={self.change!r})"

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": str(self.name),
            "target": self.target.to_json(),
            "condition": str(self.condition),
            "change": self.change.to_json(),
        }

    @classmethod
    def _from_model(cls, m: ModifierModel) -> "Modifier":
        return cls(Tag(m.name), _target_from_model(m.target), Tag(m.condition), _change_from_model(m.change))

    @classmethod
    def from_json(cls, value: Any) -> "Modifier":
        return cls._from_model(validate(ModifierModel, value))


@dataclass
class AppliedModifier:
    # explain/debug record
    name: Tag
    condition: Tag
    active: bool
    addend: float


class ModifierSet:
    """Modifiers by name, plus a target -> names index for single-target ones."""

    def __init__(self, modifiers: Optional[List[Modifier]] = None) -> None:
        self._modifiers: Dict[Tag, Modifier] = {}
        self._by_target: Dict[Tag, Set[Tag]] = {}
        # MatchingStart / MatchingEnd modifiers, tested against each value looked up
        self._matching: Set[Tag] = set()
        for m in modifiers or []:
            self.set_modifier(m)

    def get_modifier(self, name: Tag) -> Optional[Modifier]:
        return self._modifiers.get(name)

    def has_modifier(self, name: Tag) -> bool:
        return name in self._modifiers

    def __contains__(self, name: Tag) -> bool:
        return name in self._modifiers

    def set_modifier(self, m: Modifier) -> Optional[Modifier]:
        old = self._modifiers.get(m.name)
        if old is not None:
            self._unindex(old)
        self._modifiers[m.name] = m
        if isinstance(m.target, Single):
            self._by_target.setdefault(m.target.tag, set()).add(m.name)
        else:
            self._matching.add(m.name)
        return old

    def remove_modifier(self, name: Tag) -> Optional[Modifier]:
        old = self._modifiers.pop(name, None)
        if old is not None:
            self._unindex(old)
        return old

    def _unindex(self, m: Modifier) -> None:
        if not isinstance(m.target, Single):
            self._matching.discard(m.name)
            return
        names = self._by_target.get(m.target.tag)
        if names is None:
            return
        names.discard(m.name)
        if not names:
            del self._by_target[m.target.tag]

    def _stored(self, name: Tag, target: Tag) -> Modifier:
        m = self._modifiers.get(name)
        if m is None:
            raise InvalidStateError(f"modifier '{name}' is indexed for '{target}' but not stored")
        return m

    def modifiers_for(self, target: Tag) -> List[Modifier]:
        """Modifiers that apply to `target`, single or matching, in name order."""
        names = set(self._by_target.get(target, ()))
        for name in self._matching:
            if self._stored(name, target).target.matches(target):
                names.add(name)
        return [self._stored(name, target) for name in sorted(names)]

    def collect(self, ctx: "Context", target: Tag) -> List[AppliedModifier]:
        res: List[AppliedModifier] = []
        for m in self.modifiers_for(target):
            cond = m.condition_for(target)
            active = ctx.eval_conditional(cond)
            res.append(AppliedModifier(m.name, cond, active, m.addend(ctx) if active else 0.0))
        return res

    def apply_modifiers(self, ctx: "Context", target: Tag, base: float) -> float:
        # name order keeps float sums identical across loads
        v = base
        for m in self.modifiers_for(target):
            if not ctx.eval_conditional(m.condition_for(target)):
                continue
            add = m.addend(ctx)
            logger.debug("modifier %s: %s %+g", m.name, target, add)
            v += add
        return v

    def targets(self) -> List[Tag]:
        """Single targets only; matching modifiers have no fixed target."""
        return sorted(self._by_target)

    def matching(self) -> List[Modifier]:
        return [self._modifiers[n] for n in sorted(self._matching)]

    def names(self) -> List[Tag]:
        return sorted(self._modifiers)

    def __iter__(self) -> Iterator[Modifier]:
        for k in sorted(self._modifiers):
            yield self._modifiers[k]

    def __len__(self) -> int:
        return len(self._modifiers)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModifierSet):
            return NotImplemented
        return self._modifiers == other._modifiers

    def __repr__(self) -> str:
        return f"ModifierSet({list(self)!r})"

    def copy(self) -> "ModifierSet":
        return ModifierSet(list(self))

    def to_json(self) -> List[Dict[str, Any]]:
        return [m.to_json() for m in self]

    @classmethod
    def from_json(cls, value: Any) -> "ModifierSet":
        models = validate(ModifierSetAdapter, value)
        ensure_unique(str(Tag(m.name)) for m in models)
        return cls([Modifier._from_model(m) for m in models])


class ModifierTemplate(Template[Modifier]):
    """
    A modifier whose name, target, condition or source value tag hold placeholders.
    `target_kind` (Single, MatchingStart or MatchingEnd) wraps the filled target tag.
    """

    def __init__(self, name: str, target: str, condition: str, change: Union[BasicValue, str, float],
                 target_kind: Type[ModifierTarget] = Single):
        self.target_kind = target_kind
        self.parts: Dict[str, Templated[TagTemplate, Tag]] = {
            "name": _templated(name),
            "target": _templated(target),
            "condition": _templated(condition),
        }
        if isinstance(change, BasicValue):
            self.basic: Optional[float] = change.value
        elif isinstance(change, (int, float)):
            self.basic = float(change)
        else:
            # a tag (or tag template) to read the addend from
            self.basic = None
            self.parts["change"] = _templated(change)

    def get_required_inputs(self) -> Set[str]:
        res: Set[str] = set()
        for p in self.parts.values():
            res |= p.get_required_inputs()
        return res

    def fill_template_value(self, input_name: str, input_value: Tag) -> Optional[Modifier]:
        for p in self.parts.values():
            p.insert_template_value(input_name, input_value)
        if self.get_required_inputs():
            return None
        return self.attempt_complete()

    def attempt_complete(self) -> Modifier:
        done = {k: p.attempt_complete() for k, p in self.parts.items()}
        change: ModifierChange = BasicValue(self.basic) if self.basic is not None else FromOtherValue(done["change"])
        return Modifier(done["name"], self.target_kind(done["target"]), done["condition"], change)


def _templated(s: str) -> Templated[TagTemplate, Tag]:
    t = parse_tag_or_template(s)
    if isinstance(t, TagTemplate):
        return Templated.of_template(t)
    return Templated.of_complete(t)

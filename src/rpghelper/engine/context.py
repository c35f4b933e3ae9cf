from __future__ import annotations
from contextlib import contextmanager
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from .attributes import Attribute, AttributeSet, AttributeTemplate
from .conditionals import Conditional, ConditionalSet, ConditionalTemplate
from .effects import Effect
from .equations import Equation, EquationSet, EquationTemplate
from .evaltree import format_number
from .errors import (
    ConflictingTypeError, CyclicEvaluationError, DataKind, DoesNotExistError, EvalErrorKind, EvaluationError,
)
from .jsonio import loads, validate
from .modifiers import FromOtherValue, Modifier, ModifierSet, ModifierTemplate
from .references import ContainerKind, Reference
from .schema_models import ContextModel
from .settings import Settings
from .tags import Tag, TagSet, TagTemplate
from .templates import Template, Templated
from .trace import TraceSession

logger = logging.getLogger(__name__)

# Per-thread chain of (context id, tag) currently being evaluated; a repeat is a cycle.
class _EvalTLS(threading.local):
    def __init__(self):
        self.stack: List[Tuple[int, Tag]] = []

_TLS = _EvalTLS()


class Context:
    """
    Everything a set of rules can look at: state tags, attributes, modifiers,
    equations and conditionals. A name holds at most one kind of entry.

    Reads are safe from several threads at once; writes need a single writer
    (see sessions.SessionArena).
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.state_tags = TagSet()
        # names of every stored entry, so "has_tag" also sees definitions
        self.general_tags = TagSet()
        self.attributes = AttributeSet()
        self.modifiers = ModifierSet()
        self.equations = EquationSet()
        self.conditionals = ConditionalSet()

    # -------- lookups --------
    def has_tag(self, t: Tag) -> bool:
        return self.general_tags.has_tag(t) or self.state_tags.has_tag(t)

    def has_attribute(self, t: Tag) -> bool:
        return self.attributes.has_attribute(t)

    def has_modifier(self, t: Tag) -> bool:
        return self.modifiers.has_modifier(t)

    def has_equation(self, t: Tag) -> bool:
        return self.equations.has_equation(t)

    def has_conditional(self, t: Tag) -> bool:
        return self.conditionals.has_conditional(t)

    def has_value(self, t: Tag) -> bool:
        return self.has_attribute(t) or self.has_equation(t)

    def kind_of(self, t: Tag) -> Optional[DataKind]:
        if self.has_attribute(t):
            return DataKind.ATTRIBUTE
        if self.has_equation(t):
            return DataKind.EQUATION
        if self.has_conditional(t):
            return DataKind.CONDITION
        if self.has_modifier(t):
            return DataKind.MODIFIER
        return None

    def _ensure_target(self, t: Tag, kind: DataKind) -> None:
        found = self.kind_of(t)
        if found is not None and found is not kind:
            raise ConflictingTypeError(t, kind, found)

    # -------- evaluation --------
    @contextmanager
    def _guard(self, t: Tag) -> Iterator[None]:
        stack = _TLS.stack
        key = (id(self), t)
        if key in stack:
            start = stack.index(key)
            raise CyclicEvaluationError([tag for _, tag in stack[start:]] + [t])
        if len(stack) >= self.settings.max_eval_depth:
            raise EvaluationError(EvalErrorKind.DEPTH_EXCEEDED, f"evaluating '{t}' nests deeper than {self.settings.max_eval_depth}")
        outermost = not stack
        stack.append(key)
        try:
            yield
        except RecursionError as e:
            if not outermost:
                raise
            raise EvaluationError(EvalErrorKind.DEPTH_EXCEEDED, f"evaluating '{t}' recursed too deeply") from e
        finally:
            stack.pop()

    def _base_value(self, t: Tag, kind: Optional[DataKind], strict: Optional[bool]) -> float:
        if kind is DataKind.ATTRIBUTE:
            return self.attributes.get_value(t)
        if kind is DataKind.EQUATION:
            return self.equations.eval(t, self)
        if strict or (strict is None and self.settings.strict_values):
            raise DoesNotExistError.value_dne(t)
        return 0.0

    def get_value(self, t: Union[Tag, str], strict: Optional[bool] = None) -> float:
        """
        Effective value of `t`: the attribute, else the equation result, else 0.0,
        plus every modifier targeting `t` whose condition holds.
        `strict` (default: Settings.strict_values) makes an unknown name an error.
        """
        t = Tag(t)
        kind = self.kind_of(t)
        if kind in (DataKind.CONDITION, DataKind.MODIFIER):
            raise ConflictingTypeError(t, DataKind.VALUE, kind)
        with self._guard(t):
            base = self._base_value(t, kind, strict)
            v = self.modifiers.apply_modifiers(self, t, base)
        if self.settings.trace_evaluation:
            logger.debug("%s%s = %s", "  " * len(_TLS.stack), t, format_number(v))
        return v

    def eval_equation(self, t: Union[Tag, str]) -> float:
        """Raw equation result, no modifiers on the equation's own name."""
        t = Tag(t)
        self._ensure_target(t, DataKind.EQUATION)
        with self._guard(t):
            return self.equations.eval(t, self)

    def eval_conditional(self, t: Union[Tag, str]) -> bool:
        t = Tag(t)
        self._ensure_target(t, DataKind.CONDITION)
        with self._guard(t):
            return self.conditionals.eval(t, self)

    def values(self) -> Dict[Tag, float]:
        """Effective value of every attribute and equation, by name."""
        names = sorted(set(self.attributes.names()) | set(self.equations.names()))
        return {t: self.get_value(t) for t in names}

    # -------- mutation --------
    def set_attribute(self, t: Union[Tag, str], value: float) -> Optional[float]:
        """Direct write, for setup; rules should go through apply_effect. Returns the old value."""
        t = Tag(t)
        self._ensure_target(t, DataKind.ATTRIBUTE)
        old = self.attributes.set_attribute(t, value)
        if old is None:
            self.general_tags.add_tag(t)
            return None
        return old.value

    def remove_attribute(self, t: Union[Tag, str]) -> Optional[float]:
        t = Tag(t)
        self._ensure_target(t, DataKind.ATTRIBUTE)
        old = self.attributes.remove_attribute(t)
        if old is None:
            return None
        self.general_tags.remove_tag(t)
        return old.value

    def set_modifier(self, m: Modifier) -> Optional[Modifier]:
        self._ensure_target(m.name, DataKind.MODIFIER)
        old = self.modifiers.set_modifier(m)
        if old is None:
            self.general_tags.add_tag(m.name)
        return old

    def remove_modifier(self, t: Union[Tag, str]) -> Optional[Modifier]:
        t = Tag(t)
        self._ensure_target(t, DataKind.MODIFIER)
        old = self.modifiers.remove_modifier(t)
        if old is not None:
            self.general_tags.remove_tag(t)
        return old

    def set_equation(self, e: Equation) -> Optional[Equation]:
        self._ensure_target(e.name, DataKind.EQUATION)
        old = self.equations.set_equation(e)
        if old is None:
            self.general_tags.add_tag(e.name)
        return old

    def remove_equation(self, t: Union[Tag, str]) -> Optional[Equation]:
        t = Tag(t)
        self._ensure_target(t, DataKind.EQUATION)
        old = self.equations.remove_equation(t)
        if old is not None:
            self.general_tags.remove_tag(t)
        return old

    def set_conditional(self, c: Conditional) -> Optional[Conditional]:
        self._ensure_target(c.name, DataKind.CONDITION)
        old = self.conditionals.set_conditional(c)
        if old is None:
            self.general_tags.add_tag(c.name)
        return old

    def remove_conditional(self, t: Union[Tag, str]) -> Optional[Conditional]:
        t = Tag(t)
        self._ensure_target(t, DataKind.CONDITION)
        old = self.conditionals.remove_conditional(t)
        if old is not None:
            self.general_tags.remove_tag(t)
        return old

    def apply_effect(self, e: Effect) -> None:
        logger.debug("apply effect %r", e)
        e.apply(self)

    def apply_effects(self, effects: Iterable[Effect]) -> None:
        for e in effects:
            self.apply_effect(e)

    def _merge(self, other: "Context") -> None:
        for a in other.attributes:
            self.set_attribute(a.name, a.value)
        for m in other.modifiers:
            self.set_modifier(m)
        for e in other.equations:
            self.set_equation(e)
        for c in other.conditionals:
            self.set_conditional(c)
        self.state_tags = self.state_tags.layer(other.state_tags)

    def layer_context(self, other: "Context") -> None:
        """
        Add everything from `other` on top of this context; `other` wins on
        same-kind name clashes. A clash between kinds leaves this context untouched.
        """
        staged = self.copy()
        staged._merge(other)
        self._take(staged)

    def _take(self, other: "Context") -> None:
        self.state_tags = other.state_tags
        self.general_tags = other.general_tags
        self.attributes = other.attributes
        self.modifiers = other.modifiers
        self.equations = other.equations
        self.conditionals = other.conditionals

    # -------- references --------
    def resolve(self, ref: Union[Reference, str]) -> Any:
        if isinstance(ref, str):
            ref = Reference.parse(ref)
        t = ref.path
        if ref.kind is ContainerKind.VALUE:
            return self.get_value(t, strict=True)
        if ref.kind is ContainerKind.TAG:
            if not self.has_tag(t):
                raise DoesNotExistError.tag_dne(t)
            return self.state_tags.count_tag(t)
        found = {
            ContainerKind.ATTRIBUTE: (self.attributes.get, DataKind.ATTRIBUTE),
            ContainerKind.EQUATION: (self.equations.get, DataKind.EQUATION),
            ContainerKind.CONDITIONAL: (self.conditionals.get, DataKind.CONDITION),
            ContainerKind.MODIFIER: (self.modifiers.get_modifier, DataKind.MODIFIER),
        }[ref.kind]
        getter, kind = found
        v = getter(t)
        if v is None:
            raise DoesNotExistError(kind, t)
        return v

    # -------- diagnostics --------
    def explain_value(self, t: Union[Tag, str], trace: Optional[TraceSession] = None) -> List[str]:
        trace = trace or TraceSession()
        t = Tag(t)
        kind = self.kind_of(t)
        if kind in (DataKind.CONDITION, DataKind.MODIFIER):
            raise ConflictingTypeError(t, DataKind.VALUE, kind)
        with self._guard(t):
            base = self._base_value(t, kind, None)
            if kind is DataKind.ATTRIBUTE:
                trace.add(f"{t}: attribute {format_number(base)}")
            elif kind is DataKind.EQUATION:
                trace.add(f"{t}: equation {self.equations.get(t).source} = {format_number(base)}")
            else:
                trace.add(f"{t}: not set, 0")
            total = base
            trace.indent()
            for am in self.modifiers.collect(self, t):
                if am.active:
                    trace.add(f"+ {format_number(am.addend)} from {am.name} ({am.condition} holds)")
                    total += am.addend
                else:
                    trace.add(f"  skipped {am.name} ({am.condition} is false)")
            trace.dedent()
        trace.add(f"{t} = {format_number(total)}")
        return trace.dump()

    def dependencies(self, t: Tag) -> Set[Tag]:
        """Names that evaluating `t` reads directly (formula references, modifier conditions and sources)."""
        deps: Set[Tag] = set()
        e = self.equations.get(t)
        if e is not None:
            deps |= e.referenced_tags()
        c = self.conditionals.get(t)
        if c is not None:
            deps |= c.referenced_tags()
        for m in self.modifiers.modifiers_for(t):
            deps.add(m.condition_for(t))
            if isinstance(m.change, FromOtherValue):
                deps.add(m.change.tag)
        return deps

    def find_cycles(self) -> List[List[Tag]]:
        """
        Every evaluation cycle reachable through formulas and modifiers, e.g.
        atr <- modifier gated by cond, cond = atr == 3. Each chain ends where it starts.
        Lookups through '::'/find are resolved at run time and not followed.
        """
        nodes = sorted(set(self.attributes.names()) | set(self.equations.names()) | set(self.conditionals.names()))
        graph = {n: sorted(self.dependencies(n)) for n in nodes}
        cycles: List[List[Tag]] = []
        seen_cycles: Set[frozenset] = set()
        done: Set[Tag] = set()

        def visit(n: Tag, path: List[Tag], on_path: Set[Tag]) -> None:
            for d in graph.get(n, ()):
                if d in on_path:
                    chain = path[path.index(d):] + [d]
                    key = frozenset(chain)
                    if key not in seen_cycles:
                        seen_cycles.add(key)
                        cycles.append(chain)
                elif d not in done and d in graph:
                    path.append(d)
                    on_path.add(d)
                    visit(d, path, on_path)
                    on_path.discard(d)
                    path.pop()
            done.add(n)

        for n in nodes:
            if n not in done:
                visit(n, [n], {n})
        return cycles

    # -------- copies and conversions --------
    def copy(self) -> "Context":
        res = Context(self.settings)
        res.state_tags = self.state_tags.copy()
        res.general_tags = self.general_tags.copy()
        res.attributes = self.attributes.copy()
        res.modifiers = self.modifiers.copy()
        res.equations = self.equations.copy()
        res.conditionals = self.conditionals.copy()
        return res

    @classmethod
    def from_attributes(cls, attrs: AttributeSet, settings: Optional[Settings] = None) -> "Context":
        res = cls(settings)
        for a in attrs:
            res.set_attribute(a.name, a.value)
        return res

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Context):
            return NotImplemented
        return (
            self.state_tags == other.state_tags
            and self.attributes == other.attributes
            and self.modifiers == other.modifiers
            and self.equations == other.equations
            and self.conditionals == other.conditionals
        )

    def __repr__(self) -> str:
        return (f"Context(state_tags={len(self.state_tags)}, attributes={len(self.attributes)}, "
                f"modifiers={len(self.modifiers)}, equations={len(self.equations)}, conditions={len(self.conditionals)})")

    def to_json(self) -> Dict[str, Any]:
        return {
            "state_tags": self.state_tags.to_json(),
            "attributes": self.attributes.to_json(),
            "modifiers": self.modifiers.to_json(),
            "equations": self.equations.to_json(),
            "conditions": self.conditionals.to_json(),
        }

    @classmethod
    def from_json(cls, value: Any, settings: Optional[Settings] = None) -> "Context":
        validate(ContextModel, value)
        res = cls(settings)
        nesting = res.settings.max_expression_nesting
        res.state_tags = TagSet.from_json(value.get("state_tags", {}))
        # the set parsers reject duplicate names; the setters reject cross-kind clashes
        for a in AttributeSet.from_json(value.get("attributes", [])):
            res.set_attribute(a.name, a.value)
        for m in ModifierSet.from_json(value.get("modifiers", [])):
            res.set_modifier(m)
        for e in EquationSet.from_json(value.get("equations", []), nesting):
            res.set_equation(e)
        for c in ConditionalSet.from_json(value.get("conditions", []), nesting):
            res.set_conditional(c)
        return res

    @classmethod
    def from_json_text(cls, text: Union[str, bytes], settings: Optional[Settings] = None) -> "Context":
        return cls.from_json(loads(text), settings)


class ContextTemplate(Template[Context]):
    """
    A partial context plus entries that still need inputs, e.g. a character
    preset that asks for the chosen school of magic. Completing it fills every
    entry and layers them onto a copy of the partial context.
    """

    def __init__(self, partial: Optional[Context] = None):
        self.partial = partial or Context()
        self.attributes: List[Templated[AttributeTemplate, Attribute]] = []
        self.equations: List[Templated[EquationTemplate, Equation]] = []
        self.conditionals: List[Templated[ConditionalTemplate, Conditional]] = []
        self.modifiers: List[Templated[ModifierTemplate, Modifier]] = []
        self.state_tags: List[Templated[TagTemplate, Tag]] = []

    def get_partial_context(self) -> Context:
        return self.partial

    def add_attribute(self, t: AttributeTemplate) -> None:
        self.attributes.append(Templated.of_template(t))

    def add_equation(self, name: str, source: str) -> None:
        self.equations.append(EquationTemplate.create(name, source))

    def add_conditional(self, name: str, source: str) -> None:
        self.conditionals.append(ConditionalTemplate.create(name, source))

    def add_modifier(self, t: ModifierTemplate) -> None:
        self.modifiers.append(Templated.of_template(t))

    def add_state_tag(self, t: TagTemplate) -> None:
        self.state_tags.append(Templated.of_template(t))

    def _entries(self) -> Iterator[Templated]:
        yield from self.attributes
        yield from self.equations
        yield from self.conditionals
        yield from self.modifiers
        yield from self.state_tags

    def get_required_inputs(self) -> Set[str]:
        res: Set[str] = set()
        for e in self._entries():
            res |= e.get_required_inputs()
        return res

    def fill_template_value(self, input_name: str, input_value: Tag) -> Optional[Context]:
        for e in self._entries():
            e.insert_template_value(input_name, input_value)
        if self.get_required_inputs():
            return None
        return self.attempt_complete()

    def attempt_complete(self) -> Context:
        res = self.partial.copy()
        for a in self.attributes:
            done = a.attempt_complete()
            res.set_attribute(done.name, done.value)
        for e in self.equations:
            res.set_equation(e.attempt_complete())
        for c in self.conditionals:
            res.set_conditional(c.attempt_complete())
        for m in self.modifiers:
            res.set_modifier(m.attempt_complete())
        for t in self.state_tags:
            res.state_tags.add_tag(t.attempt_complete())
        return res

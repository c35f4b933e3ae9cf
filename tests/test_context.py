import pytest
from rpghelper.engine.attributes import Attribute, AttributeSet
from rpghelper.engine.conditionals import Conditional
from rpghelper.engine.context import Context
from rpghelper.engine.effects import (
    AddStateTag, RemoveModifier, RemoveStateTag, SetAttribute, SetAttributeFromValue, SetConditional, SetEquation,
    SetModifier, effect_from_json, effects_from_json,
)
from rpghelper.engine.equations import Equation
from rpghelper.engine.errors import (
    ConflictingTypeError, CyclicEvaluationError, DataKind, DoesNotExistError, EvalErrorKind, EvaluationError,
    JsonErrorKind, JsonParseError, ParseError,
)
from rpghelper.engine.modifiers import BasicValue, FromOtherValue, Modifier
from rpghelper.engine.references import ContainerKind, Reference
from rpghelper.engine.settings import Settings
from rpghelper.engine.tags import Tag

@pytest.fixture
def ctx():
    c = Context()
    c.set_conditional(Conditional("always", "true"))
    c.set_conditional(Conditional("never", "false"))
    return c

def test_modifier_adds_to_attribute(ctx):
    ctx.set_attribute("atr.1", 1212.23)
    ctx.set_modifier(Modifier("bonus", "atr.1", "always", BasicValue(1.0)))
    assert ctx.get_value("atr.1") == pytest.approx(1213.23)

def test_equation_reads_attribute(ctx):
    ctx.set_attribute("atr.1", 1212.23)
    ctx.set_equation(Equation("test.eq", "atr.1 + 3"))
    assert ctx.eval_equation("test.eq") == pytest.approx(1215.23)
    assert ctx.get_value("test.eq") == pytest.approx(1215.23)

def test_equation_value_includes_its_own_modifiers(ctx):
    ctx.set_attribute("Ability.Latin.Exp", 15)
    ctx.set_equation(Equation("Ability.Latin", "rounddown((sqrt(8 * Ability.Latin.Exp + 1) - 1) / 2)"))
    ctx.set_modifier(Modifier("Familiar Bonus", "Ability.Latin", "always", BasicValue(3)))
    assert ctx.eval_equation("Ability.Latin") == pytest.approx(5)
    assert ctx.get_value("Ability.Latin") == pytest.approx(8)

def test_unknown_value_defaults_to_zero(ctx):
    assert ctx.get_value("ghost") == 0.0
    ctx.set_modifier(Modifier("haunt", "ghost", "always", BasicValue(2)))
    assert ctx.get_value("ghost") == pytest.approx(2)

def test_strict_values(ctx):
    with pytest.raises(DoesNotExistError) as ei:
        ctx.get_value("ghost", strict=True)
    assert ei.value.kind is DataKind.VALUE
    strict = Context(Settings(strict_values=True))
    with pytest.raises(DoesNotExistError):
        strict.get_value("ghost")
    assert strict.get_value("ghost", strict=False) == 0.0

def test_conditional_gating(ctx):
    ctx.set_attribute("Familiar.Bond", 0)
    ctx.set_attribute("Ability.Latin", 4)
    ctx.set_conditional(Conditional("Has Familiar", "Familiar.Bond >= 1"))
    ctx.set_modifier(Modifier("Familiar Bonus", "Ability.Latin", "Has Familiar", BasicValue(3)))
    assert ctx.get_value("Ability.Latin") == pytest.approx(4)
    ctx.set_attribute("Familiar.Bond", 1)
    assert ctx.get_value("Ability.Latin") == pytest.approx(7)

def test_missing_condition_is_an_error(ctx):
    ctx.set_attribute("a", 1)
    ctx.set_modifier(Modifier("m", "a", "undefined", BasicValue(1)))
    with pytest.raises(DoesNotExistError) as ei:
        ctx.get_value("a")
    assert ei.value.kind is DataKind.CONDITION
    assert ei.value.tag == Tag("undefined")

def test_state_tags_drive_conditionals(ctx):
    ctx.set_attribute("Fatigue", 0)
    ctx.set_conditional(Conditional("Tired", "state.Sleeping || Fatigue > 2"))
    assert ctx.eval_conditional("Tired") is False
    ctx.apply_effect(AddStateTag(Tag("state.Sleeping")))
    assert ctx.eval_conditional("Tired") is True

def test_modifier_sum_is_order_independent(ctx):
    parts = [("m1", 0.1), ("m2", 0.2), ("m3", 0.3), ("m4", 1e16), ("m5", -1e16)]
    results = set()
    for order in (parts, list(reversed(parts)), parts[2:] + parts[:2]):
        c = ctx.copy()
        c.set_attribute("t", 0.7)
        for name, v in order:
            c.set_modifier(Modifier(name, "t", "always", BasicValue(v)))
        results.add(c.get_value("t"))
    assert len(results) == 1

def test_equation_cycle(ctx):
    ctx.set_equation(Equation("a", "b + 1"))
    ctx.set_equation(Equation("b", "a + 1"))
    with pytest.raises(CyclicEvaluationError) as ei:
        ctx.get_value("a")
    assert ei.value.chain == [Tag("a"), Tag("b"), Tag("a")]
    # the evaluation stack is unwound afterwards
    ctx.remove_equation("b")
    assert ctx.get_value("a") == pytest.approx(1)

def test_modifier_condition_cycle(ctx):
    ctx.set_attribute("atr", 1)
    ctx.set_conditional(Conditional("cond", "atr == 3"))
    ctx.set_modifier(Modifier("m", "atr", "cond", BasicValue(2)))
    with pytest.raises(CyclicEvaluationError) as ei:
        ctx.get_value("atr")
    assert ei.value.chain == [Tag("atr"), Tag("cond"), Tag("atr")]
    assert ctx.find_cycles() == [[Tag("atr"), Tag("cond"), Tag("atr")]]

def test_find_cycles(ctx):
    assert ctx.find_cycles() == []
    ctx.set_equation(Equation("a", "b + 1"))
    ctx.set_equation(Equation("b", "a + 1"))
    ctx.set_equation(Equation("c", "a"))
    assert ctx.find_cycles() == [[Tag("a"), Tag("b"), Tag("a")]]

def test_depth_limit():
    c = Context(Settings(max_eval_depth=5))
    for i in range(9):
        c.set_equation(Equation(f"e{i}", f"e{i + 1} + 1"))
    c.set_attribute("e9", 0)
    with pytest.raises(EvaluationError) as ei:
        c.get_value("e0")
    assert ei.value.kind is EvalErrorKind.DEPTH_EXCEEDED
    assert c.get_value("e6") == pytest.approx(3)

def test_one_kind_per_name(ctx):
    ctx.set_attribute("x", 1)
    with pytest.raises(ConflictingTypeError) as ei:
        ctx.set_equation(Equation("x", "1"))
    assert (ei.value.expected, ei.value.found) == (DataKind.EQUATION, DataKind.ATTRIBUTE)
    with pytest.raises(ConflictingTypeError):
        ctx.set_modifier(Modifier("always", "x", "always", BasicValue(1)))
    with pytest.raises(ConflictingTypeError):
        ctx.get_value("always")
    with pytest.raises(ConflictingTypeError):
        ctx.eval_conditional("x")
    with pytest.raises(ConflictingTypeError):
        ctx.remove_attribute("always")

def test_setters_return_old_and_track_names(ctx):
    assert ctx.set_attribute("Ability.Latin.Exp", 5) is None
    assert ctx.set_attribute("Ability.Latin.Exp", 6) == 5.0
    assert ctx.has_tag(Tag("Ability"))
    assert ctx.remove_attribute("Ability.Latin.Exp") == 6.0
    assert not ctx.has_tag(Tag("Ability"))
    assert ctx.remove_attribute("Ability.Latin.Exp") is None
    e = Equation("e", "1")
    assert ctx.set_equation(e) is None
    assert ctx.set_equation(Equation("e", "2")) == e

def test_layer_context():
    base = Context()
    base.set_attribute("a", 1)
    base.state_tags.add_tag(Tag("state.Sleeping"))
    top = Context()
    top.set_attribute("a", 2)
    top.set_equation(Equation("b", "a * 2"))
    top.state_tags.add_tag(Tag("state.Sleeping"))
    base.layer_context(top)
    assert base.get_value("b") == pytest.approx(4)
    assert base.state_tags.count_tag(Tag("state.Sleeping")) == 2

def test_layer_context_is_atomic():
    base = Context()
    base.set_attribute("x", 1)
    top = Context()
    top.set_attribute("y", 2)
    top.set_equation(Equation("x", "3"))
    before = base.copy()
    with pytest.raises(ConflictingTypeError):
        base.layer_context(top)
    assert base == before
    assert not base.has_attribute(Tag("y"))

def test_apply_effects(ctx):
    ctx.apply_effects([
        SetAttribute(Tag("Ability.Latin.Exp"), 15),
        SetEquation(Equation("Ability.Latin", "rounddown((sqrt(8 * Ability.Latin.Exp + 1) - 1) / 2)")),
        SetModifier(Modifier("bonus", "Ability.Latin", "always", BasicValue(1))),
        SetAttributeFromValue(Tag("Snapshot"), Tag("Ability.Latin")),
        AddStateTag(Tag("state.Studying")),
        SetConditional(Conditional("Studying", "state.Studying")),
    ])
    assert ctx.get_value("Snapshot") == pytest.approx(6)
    assert ctx.eval_conditional("Studying") is True
    ctx.apply_effects([RemoveStateTag(Tag("state.Studying")), RemoveModifier(Tag("bonus"))])
    assert ctx.eval_conditional("Studying") is False
    assert ctx.get_value("Ability.Latin") == pytest.approx(5)

def test_set_attribute_from_missing_value(ctx):
    with pytest.raises(DoesNotExistError) as ei:
        ctx.apply_effect(SetAttributeFromValue(Tag("copy"), Tag("ghost")))
    assert ei.value.kind is DataKind.VALUE
    assert not ctx.has_attribute(Tag("copy"))

def test_effect_json():
    effects = [
        AddStateTag(Tag("state.Sleeping")),
        SetAttribute(Tag("a"), 2.5),
        SetAttributeFromValue(Tag("b"), Tag("a")),
        SetEquation(Equation("c", "a + b")),
        SetConditional(Conditional("d", "c > 1")),
        SetModifier(Modifier("m", "a", "d", FromOtherValue(Tag("b")))),
        RemoveModifier(Tag("m")),
        RemoveStateTag(Tag("state.Sleeping")),
    ]
    wire = [e.to_json() for e in effects]
    assert wire[1] == {"SetAttribute": ["a", 2.5]}
    assert effects_from_json(wire) == effects
    with pytest.raises(JsonParseError):
        effect_from_json({"Explode": "a"})

def test_resolve(ctx):
    ctx.set_attribute("atr.1", 2)
    ctx.set_equation(Equation("eq", "atr.1 * 2"))
    ctx.state_tags.add_tag(Tag("state.Sleeping"))
    assert ctx.resolve("value:eq") == pytest.approx(4)
    assert ctx.resolve("attribute:atr.1") == Attribute("atr.1", 2)
    assert ctx.resolve(Reference.of(ContainerKind.EQUATION, "eq")) == Equation("eq", "atr.1 * 2")
    assert ctx.resolve("conditional:always") == Conditional("always", "true")
    assert ctx.resolve("tag:state") == 1
    with pytest.raises(DoesNotExistError) as ei:
        ctx.resolve("modifier:nope")
    assert ei.value.kind is DataKind.MODIFIER
    with pytest.raises(DoesNotExistError):
        ctx.resolve("value:nope")

def test_reference_parse():
    r = Reference.parse("Equation: Ability.Latin")
    assert r == Reference(ContainerKind.EQUATION, Tag("Ability.Latin"))
    assert str(r) == "equation:Ability.Latin"
    for bad in ["Ability.Latin", "bogus:a"]:
        with pytest.raises(ParseError):
            Reference.parse(bad)

def test_explain_value(ctx):
    ctx.set_attribute("atr", 10)
    ctx.set_modifier(Modifier("bonus", "atr", "always", BasicValue(2.5)))
    ctx.set_modifier(Modifier("off", "atr", "never", BasicValue(100)))
    assert ctx.explain_value("atr") == [
        "atr: attribute 10",
        "  + 2.5 from bonus (always holds)",
        "    skipped off (never is false)",
        "atr = 12.5",
    ]
    assert ctx.explain_value("unset") == ["unset: not set, 0", "unset = 0"]

def test_values_and_from_attributes():
    c = Context.from_attributes(AttributeSet([Attribute("a", 1), Attribute("b", 2)]))
    c.set_equation(Equation("c", "a + b"))
    assert c.values() == {Tag("a"): 1.0, Tag("b"): 2.0, Tag("c"): 3.0}

def test_copy_is_independent(ctx):
    ctx.set_attribute("a", 1)
    other = ctx.copy()
    other.set_attribute("a", 2)
    other.state_tags.add_tag(Tag("state.x"))
    assert ctx.get_value("a") == 1.0
    assert not ctx.has_tag(Tag("state.x"))

def test_json_round_trip(ctx):
    ctx.set_attribute("atr.1", 1212.23)
    ctx.set_equation(Equation("test.eq", "atr.1 + 3"))
    ctx.set_modifier(Modifier("bonus", "atr.1", "always", BasicValue(1.0)))
    ctx.state_tags.add_tag_count(Tag("state.Sleeping"), 2)
    data = ctx.to_json()
    assert set(data) == {"state_tags", "attributes", "modifiers", "equations", "conditions"}
    assert data["state_tags"] == {"state.Sleeping": 2}
    back = Context.from_json(data)
    assert back == ctx
    assert back.get_value("test.eq") == ctx.get_value("test.eq")

def test_from_json_defaults_and_errors():
    assert Context.from_json({}) == Context()
    with pytest.raises(JsonParseError) as ei:
        Context.from_json({"attributes": [], "extra": 1})
    assert ei.value.kind is JsonErrorKind.INVALID_VALUE_FOUND
    with pytest.raises(ConflictingTypeError):
        Context.from_json({
            "attributes": [{"name": "x", "value": 1}],
            "equations": [{"name": "x", "equation": "2"}],
        })

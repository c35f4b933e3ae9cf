import pytest
from rpghelper.engine.attributes import Attribute, AttributeTemplate
from rpghelper.engine.conditionals import Conditional, ConditionalTemplate
from rpghelper.engine.context import Context, ContextTemplate
from rpghelper.engine.equations import Equation, EquationTemplate
from rpghelper.engine.errors import TemplateError
from rpghelper.engine.modifiers import BasicValue, Modifier, ModifierTemplate
from rpghelper.engine.tags import Tag, TagTemplate
from rpghelper.engine.templates import Templated

def test_templated_states():
    t = Templated.of_template(TagTemplate.parse("ability.[name]"))
    assert not t.is_complete
    assert t.get_required_inputs() == {"name"}
    t.insert_template_value("other", Tag("x"))
    assert not t.is_complete
    t.insert_template_value("name", Tag("Latin"))
    assert t.is_complete
    assert t.as_complete() == Tag("ability.Latin")
    assert t.get_required_inputs() == set()
    # complete never goes back
    t.insert_template_value("name", Tag("Greek"))
    assert t.attempt_complete() == Tag("ability.Latin")

def test_templated_needs_exactly_one_state():
    with pytest.raises(ValueError):
        Templated()

def test_templated_attempt_complete_raises():
    t = Templated.of_template(TagTemplate.parse("ability.[name]"))
    with pytest.raises(TemplateError) as ei:
        t.attempt_complete()
    assert ei.value.missing == {"name"}
    assert not t.is_complete

def test_equation_template():
    t = EquationTemplate.create("ability.[spell].total", "ability.[spell].exp * 2 + [bonus]")
    assert t.get_required_inputs() == {"spell", "bonus"}
    t.insert_template_value("spell", Tag("Fireball"))
    t.insert_template_value("bonus", Tag("familiar.bond"))
    e = t.attempt_complete()
    assert e == Equation("ability.Fireball.total", "ability.Fireball.exp * 2 + familiar.bond")
    assert e.source == "ability.Fireball.exp * 2 + familiar.bond"

def test_formula_template_without_inputs_is_complete():
    t = EquationTemplate.create("plain", "1 + 1")
    assert t.is_complete
    assert t.as_complete() == Equation("plain", "1 + 1")

def test_conditional_template():
    t = ConditionalTemplate.create("knows.[spell]", "ability.[spell].exp > 0")
    t.insert_template_value("spell", Tag("Fireball"))
    assert t.as_complete() == Conditional("knows.Fireball", "ability.Fireball.exp > 0")

def test_attribute_template():
    t = AttributeTemplate("ability.[name].exp", 5)
    assert t.fill_template_value("name", Tag("Latin")) == Attribute("ability.Latin.exp", 5)
    with pytest.raises(TemplateError):
        AttributeTemplate("a.[b]").attempt_complete()

def test_modifier_template_partial_fill():
    t = ModifierTemplate("bonus.[x]", "[y]", "always", BasicValue(1))
    assert t.fill_template_value("x", Tag("a")) is None
    assert t.get_required_inputs() == {"y"}
    assert t.fill_template_value("y", Tag("b")) == Modifier("bonus.a", "b", "always", BasicValue(1))

def test_context_template():
    partial = Context()
    partial.set_conditional(Conditional("always", "true"))
    partial.set_attribute("Familiar.Bond", 2)
    ct = ContextTemplate(partial)
    ct.add_attribute(AttributeTemplate("ability.[spell].exp", 10))
    ct.add_equation("ability.[spell]", "ability.[spell].exp / 2")
    ct.add_conditional("knows.[spell]", "ability.[spell].exp > 0")
    ct.add_modifier(ModifierTemplate("familiar.[spell]", "ability.[spell]", "always", "Familiar.Bond"))
    ct.add_state_tag(TagTemplate.parse("state.learning.[spell]"))
    assert ct.get_required_inputs() == {"spell"}
    assert ct.fill_template_value("other", Tag("x")) is None
    ctx = ct.fill_template_value("spell", Tag("Fireball"))
    assert ctx is not None
    assert ctx.get_value("ability.Fireball") == pytest.approx(7)
    assert ctx.eval_conditional("knows.Fireball") is True
    assert ctx.has_tag(Tag("state.learning.Fireball"))
    # the partial context is left as it was
    assert not ct.get_partial_context().has_attribute(Tag("ability.Fireball.exp"))

def test_context_template_missing_inputs():
    ct = ContextTemplate()
    ct.add_equation("x", "[a] + [b]")
    ct.fill_template_value("a", Tag("one"))
    with pytest.raises(TemplateError) as ei:
        ct.attempt_complete()
    assert ei.value.missing == {"b"}

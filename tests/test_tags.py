import pytest
from rpghelper.engine.errors import ParseError, TagParseErrorKind, TemplateError
from rpghelper.engine.tags import Tag, TagSet, TagTemplate, parse_tag_or_template

def test_parse_normalizes_whitespace():
    t = Tag(" Ability . Magic Theory .Exp ")
    assert str(t) == "Ability.Magic Theory.Exp"
    assert t == Tag("Ability.Magic Theory.Exp")

def test_tags_are_interned():
    assert Tag("a.b") is Tag("a.b")
    assert Tag(Tag("a.b")) is Tag("a.b")

@pytest.mark.parametrize("s,kind,index", [
    ("", TagParseErrorKind.TAG_EMPTY, 0),
    ("   ", TagParseErrorKind.TAG_EMPTY, 3),
    ("0.a", TagParseErrorKind.FIRST_TAG_NUMERIC, 0),
    ("a..b", TagParseErrorKind.SUB_TAG_EMPTY, 2),
    ("a. .b", TagParseErrorKind.SUB_TAG_EMPTY, 2),
    ("a-b", TagParseErrorKind.INVALID_CHARACTER, 1),
])
def test_parse_errors(s, kind, index):
    with pytest.raises(ParseError) as ei:
        Tag.parse(s)
    assert ei.value.kind is kind
    assert ei.value.index == index

def test_numeric_subtag_allowed_after_first():
    assert str(Tag("a.0")) == "a.0"

def test_tag_is_immutable():
    t = Tag("a")
    with pytest.raises(AttributeError):
        t._name = "b"

def test_hierarchy():
    t = Tag("ability.spell.Fireball")
    assert t.subtags() == ["ability", "spell", "Fireball"]
    assert t.count_subtags() == 2
    assert t.prefixes() == ["ability", "ability.spell", "ability.spell.Fireball"]
    assert t.root() == Tag("ability")
    assert t.parent() == Tag("ability.spell")
    assert Tag("ability").parent() is None
    assert t.has_prefix("ability.spell")
    assert not t.has_prefix("abil")
    assert t.has_suffix("Fireball")
    assert not t.has_suffix("ball")

def test_prefix_and_suffix_editing():
    t = Tag("date.year")
    assert t.add_prefix(Tag("lhs")) == Tag("lhs.date.year")
    assert t.add_suffix("0") == Tag("date.year.0")
    assert Tag("ability.spell.Fireball.Exp").remove_prefix("ability.spell") == Tag("Fireball.Exp")
    assert Tag("ability.1.x").remove_prefix("ability") is None  # remainder starts numeric
    assert t.remove_prefix("other") is None

@pytest.mark.parametrize("s", ["simple", "compound.tag", "compound space.tag"])
def test_json_round_trip(s):
    t = Tag(s)
    assert Tag.from_json(t.to_json()) == t

def test_find_all_parse_errors():
    kinds = {e.kind for e in Tag.find_all_parse_errors("0.a..b-")}
    assert kinds == {
        TagParseErrorKind.FIRST_TAG_NUMERIC,
        TagParseErrorKind.SUB_TAG_EMPTY,
        TagParseErrorKind.INVALID_CHARACTER,
    }
    assert Tag.find_all_parse_errors("fine.tag") == []

def test_tagset_counts_prefixes():
    ts = TagSet()
    ts.add_tag(Tag("a.b.c"))
    ts.add_tag(Tag("a.d"))
    assert ts.has_tag(Tag("a"))
    assert ts.count_tag(Tag("a")) == 2
    assert ts.count_tag(Tag("a.b")) == 1
    assert Tag("a.b.c") in ts
    assert not ts.has_tag(Tag("b"))
    assert ts.get_immediate_subtags(Tag("a")) == [Tag("a.b"), Tag("a.d")]
    assert ts.get_subtags(Tag("a.b")) == [Tag("a.b.c")]

def test_tagset_remove_clamps_at_zero():
    ts = TagSet()
    ts.add_tag_count(Tag("x.y"), 2)
    ts.remove_tag_count(Tag("x.y"), 5)
    assert ts.count_tag(Tag("x.y")) == 0
    assert not ts.has_tag(Tag("x"))
    ts.add_tag(Tag("x.y"))
    assert ts.count_tag(Tag("x")) == 1

def test_tagset_layer_and_json():
    a = TagSet()
    a.add_tag(Tag("state.Sleeping"))
    b = TagSet()
    b.add_tag_count(Tag("state.Sleeping"), 2)
    b.add_tag(Tag("state.Hungry"))
    merged = a.layer(b)
    assert merged.count_tag(Tag("state.Sleeping")) == 3
    assert merged.count_tag(Tag("state")) == 4
    assert merged.to_json() == {"state.Hungry": 1, "state.Sleeping": 3}
    assert TagSet.from_json(merged.to_json()) == merged
    assert a.count_tag(Tag("state.Sleeping")) == 1

def test_tag_template_fill():
    tt = TagTemplate.parse("ability.[name].exp")
    assert tt.get_required_inputs() == {"name"}
    assert tt.fill_template_value("other", Tag("x")) is None
    assert tt.fill_template_value("name", Tag("spell.Fireball")) == Tag("ability.spell.Fireball.exp")
    assert tt.get_required_inputs() == set()

def test_tag_template_missing_values():
    tt = TagTemplate.parse("[school].[spell]")
    tt.fill_template_value("school", Tag("Ignem"))
    with pytest.raises(TemplateError) as ei:
        tt.attempt_complete()
    assert ei.value.missing == {"spell"}
    assert str(tt) == "Ignem.[spell]"

def test_tag_template_parse_errors():
    with pytest.raises(ParseError) as ei:
        TagTemplate.parse("a.[].b")
    assert ei.value.kind is TagParseErrorKind.SUB_TAG_EMPTY
    with pytest.raises(ParseError) as ei:
        TagTemplate.parse("a.[x-y]")
    assert ei.value.kind is TagParseErrorKind.INVALID_CHARACTER

def test_parse_tag_or_template():
    assert isinstance(parse_tag_or_template("a.b"), Tag)
    assert isinstance(parse_tag_or_template("a.[b]"), TagTemplate)

import json
import pytest
from rpghelper.engine.errors import JsonErrorKind, JsonParseError
from rpghelper.engine.effects import SetAttribute
from rpghelper.engine.loader import load_any, load_context, load_effects, load_ruleset, save_context
from rpghelper.engine.settings import Settings, load_settings, save_settings
from rpghelper.engine.tags import Tag

CORE_YAML = """
attributes:
  - {name: Ability.Latin.Exp, value: 15}
equations:
  - name: Ability.Latin
    equation: rounddown((sqrt(8 * Ability.Latin.Exp + 1) - 1) / 2)
conditions:
  - {tag: always, conditional: "true"}
"""

BONUS_JSON = {
    "modifiers": [{
        "name": "Familiar Bonus",
        "target": "Ability.Latin",
        "condition": "always",
        "change": {"BasicValue": 3},
    }],
    "state_tags": {"state.Awake": 1},
}

@pytest.fixture
def ruleset(tmp_path):
    d = tmp_path / "rules"
    (d / "extra").mkdir(parents=True)
    (d / "core.yaml").write_text(CORE_YAML, encoding="utf-8")
    (d / "extra" / "bonus.json").write_text(json.dumps(BONUS_JSON), encoding="utf-8")
    (d / "README.txt").write_text("not a context", encoding="utf-8")
    return d

def test_load_yaml_context(ruleset):
    ctx = load_context(ruleset / "core.yaml")
    assert ctx.get_value("Ability.Latin") == pytest.approx(5)

def test_load_ruleset_layers_files(ruleset):
    ctx = load_ruleset(ruleset)
    assert ctx.get_value("Ability.Latin") == pytest.approx(8)
    assert ctx.has_tag(Tag("state.Awake"))
    assert load_any(ruleset) == ctx

def test_ruleset_duplicates_are_errors(ruleset):
    (ruleset / "again.yml").write_text("attributes:\n  - {name: Ability.Latin.Exp, value: 1}\n", encoding="utf-8")
    with pytest.raises(RuntimeError, match="Duplicate definition 'Ability.Latin.Exp'"):
        load_ruleset(ruleset)

def test_bad_yaml(tmp_path):
    p = tmp_path / "bad.yaml"
    p.write_text("attributes: [unclosed", encoding="utf-8")
    with pytest.raises(JsonParseError) as ei:
        load_context(p)
    assert ei.value.kind is JsonErrorKind.INVALID_JSON

def test_deeply_nested_yaml(tmp_path):
    p = tmp_path / "deep.yaml"
    p.write_text("attributes: " + "[" * 5000 + "]" * 5000, encoding="utf-8")
    with pytest.raises(JsonParseError) as ei:
        load_context(p)
    assert ei.value.kind is JsonErrorKind.INVALID_JSON

def test_empty_yaml_is_empty_context(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("", encoding="utf-8")
    assert len(load_context(p).attributes) == 0

@pytest.mark.parametrize("name", ["saved.json", "saved.yaml"])
def test_save_round_trip(ruleset, tmp_path, name):
    ctx = load_ruleset(ruleset)
    out = tmp_path / "out" / name
    save_context(out, ctx)
    assert load_context(out) == ctx

def test_load_effects(tmp_path):
    p = tmp_path / "effects.json"
    p.write_text(json.dumps([{"SetAttribute": ["a", 2]}]), encoding="utf-8")
    assert load_effects(p) == [SetAttribute(Tag("a"), 2.0)]

def test_settings_file(tmp_path):
    p = tmp_path / "cfg" / "settings.json"
    s = load_settings(p)
    assert p.exists()
    assert s == Settings()
    save_settings(Settings(max_eval_depth=8, strict_values=True), p)
    loaded = load_settings(p)
    assert loaded.max_eval_depth == 8
    assert loaded.strict_values is True

def test_settings_passed_to_contexts(ruleset):
    ctx = load_ruleset(ruleset, Settings(strict_values=True))
    assert ctx.settings.strict_values is True

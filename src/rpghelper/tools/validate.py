from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import typer
from rich.console import Console
from rich.table import Table

from rpghelper.engine.context import Context
from rpghelper.engine.errors import DataError
from rpghelper.engine.evaltree import format_number
from rpghelper.engine.jsonio import dumps
from rpghelper.engine.loader import load_any
from rpghelper.engine.modifiers import FromOtherValue, Single
from rpghelper.engine.schema_models import ContextModel, EffectAdapter, ModifierModel
from rpghelper.engine.settings import SETTINGS_PATH, Settings, load_settings

app = typer.Typer(add_completion=False)

def _settings(path: Optional[Path]) -> Settings:
    if path is not None:
        return load_settings(path)
    if SETTINGS_PATH.exists():
        return load_settings()
    return Settings()

def _load_or_exit(path: Path, settings: Settings) -> Context:
    try:
        return load_any(path, settings)
    except (DataError, RuntimeError, OSError) as e:
        typer.echo(f"[ERROR] {path}: {e}", err=True)
        raise typer.Exit(code=1)

def undefined_references(ctx: Context) -> List[str]:
    """Formula and modifier references to names nothing in the context defines."""
    errs: List[str] = []
    for e in ctx.equations:
        for t in sorted(e.referenced_tags()):
            if not ctx.has_tag(t):
                errs.append(f"equation '{e.name}' reads undefined '{t}'")
    for c in ctx.conditionals:
        for t in sorted(c.referenced_tags()):
            if not ctx.has_tag(t):
                errs.append(f"conditional '{c.name}' reads undefined '{t}'")
    values = sorted(set(ctx.attributes.names()) | set(ctx.equations.names()))
    for m in ctx.modifiers:
        if isinstance(m.target, Single):
            gates = [m.condition]
        else:
            gates = [m.condition_for(v) for v in values if m.target.matches(v)]
        for cond in gates:
            if not ctx.has_conditional(cond):
                errs.append(f"modifier '{m.name}' is gated by undefined conditional '{cond}'")
        if isinstance(m.change, FromOtherValue) and not ctx.has_value(m.change.tag):
            errs.append(f"modifier '{m.name}' adds undefined value '{m.change.tag}'")
    return errs

@app.command("validate")
def validate_cmd(
    files: List[Path] = typer.Argument(..., help="Context files or ruleset directories"),
    strict_refs: bool = typer.Option(False, "--strict-refs", help="Report references to undefined names"),
    check_cycles: bool = typer.Option(False, "--check-cycles", help="Report evaluation cycles"),
    settings_path: Optional[Path] = typer.Option(None, "--settings"),
):
    settings = _settings(settings_path)
    ok = True
    for fp in files:
        try:
            ctx = load_any(fp, settings)
        except (DataError, RuntimeError, OSError) as e:
            ok = False
            typer.echo(f"[ERROR] {fp}: {e}", err=True)
            continue
        if strict_refs:
            for msg in undefined_references(ctx):
                ok = False
                typer.echo(f"[ERROR] {fp}: {msg}", err=True)
        if check_cycles:
            for chain in ctx.find_cycles():
                ok = False
                typer.echo(f"[ERROR] {fp}: evaluation cycle {' -> '.join(str(t) for t in chain)}", err=True)
    if not ok:
        raise typer.Exit(code=1)
    typer.echo(f"Validated {len(files)} file(s) successfully.")

@app.command("eval")
def eval_cmd(
    file: Path,
    tag: str,
    conditional: bool = typer.Option(False, "--conditional", help="Evaluate TAG as a conditional"),
    strict: bool = typer.Option(False, "--strict", help="Unknown values are errors instead of 0"),
    settings_path: Optional[Path] = typer.Option(None, "--settings"),
):
    ctx = _load_or_exit(file, _settings(settings_path))
    try:
        if conditional:
            typer.echo("true" if ctx.eval_conditional(tag) else "false")
        else:
            typer.echo(format_number(ctx.get_value(tag, strict=strict or None)))
    except DataError as e:
        typer.echo(f"[ERROR] {tag}: {e}", err=True)
        raise typer.Exit(code=1)

@app.command("explain")
def explain_cmd(file: Path, tag: str, settings_path: Optional[Path] = typer.Option(None, "--settings")):
    ctx = _load_or_exit(file, _settings(settings_path))
    try:
        lines = ctx.explain_value(tag)
    except DataError as e:
        typer.echo(f"[ERROR] {tag}: {e}", err=True)
        raise typer.Exit(code=1)
    for line in lines:
        typer.echo(line)

@app.command("values")
def values_cmd(file: Path, settings_path: Optional[Path] = typer.Option(None, "--settings")):
    ctx = _load_or_exit(file, _settings(settings_path))
    table = Table(title=f"Values ({file.name})")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Value", justify="right")
    for t in sorted(set(ctx.attributes.names()) | set(ctx.equations.names())):
        kind = "attribute" if ctx.has_attribute(t) else "equation"
        try:
            shown = format_number(ctx.get_value(t))
        except DataError as e:
            shown = f"error: {e}"
        table.add_row(str(t), kind, shown)
    Console().print(table)

# name -> JSON Schema of the wire model, written as <name>.schema.json
_SCHEMAS = {
    "Context": ContextModel.model_json_schema,
    "Effect": EffectAdapter.json_schema,
    "Modifier": ModifierModel.model_json_schema,
    "Settings": Settings.model_json_schema,
}

@app.command("export-schemas")
def export_schemas_cmd(
    out: Path = typer.Option(Path("docs/schemas"), "--out"),
    only: Optional[List[str]] = typer.Option(None, "--only", help="Schema names to write (default: all)"),
):
    names = only or list(_SCHEMAS)
    unknown = [n for n in names if n not in _SCHEMAS]
    if unknown:
        typer.echo(f"[ERROR] unknown schema(s): {', '.join(unknown)}; choose from {', '.join(_SCHEMAS)}", err=True)
        raise typer.Exit(code=1)
    out.mkdir(parents=True, exist_ok=True)
    for name in names:
        (out / f"{name}.schema.json").write_text(dumps(_SCHEMAS[name]()), encoding="utf-8")
    typer.echo(f"Exported {len(names)} schema(s) to {out}")

if __name__ == "__main__":
    app()

import typer
from pathlib import Path
from typing import Optional

from rpghelper.engine.errors import DataError
from rpghelper.engine.evaltree import format_number
from rpghelper.engine.jsonio import dumps
from rpghelper.engine.loader import load_context, load_effects, save_context
from rpghelper.engine.sessions import SessionArena

app = typer.Typer()

@app.command()
def apply(context_file: Path, effects_file: Path, out: Optional[Path] = typer.Option(None, "--out", help="Defaults to overwriting CONTEXT_FILE")):
    """Apply a list of effects to a saved context."""
    arena = SessionArena()
    try:
        sid = arena.open(load_context(context_file))
        effects = load_effects(effects_file)
        with arena.write(sid) as ctx:
            ctx.apply_effects(effects)
    except DataError as e:
        typer.echo(f"[ERROR] {e}", err=True)
        raise typer.Exit(code=1)
    target = out or context_file
    save_context(target, arena.close(sid))
    typer.echo(f"Applied {len(effects)} effect(s), saved {target}")

@app.command()
def get(context_file: Path, reference: str):
    """Print one entry, e.g. `get char.json value:Ability.Latin`."""
    arena = SessionArena()
    try:
        sid = arena.open(load_context(context_file))
        found = arena.resolve(sid, reference)
    except DataError as e:
        typer.echo(f"[ERROR] {e}", err=True)
        raise typer.Exit(code=1)
    if isinstance(found, float):
        typer.echo(format_number(found))
    elif hasattr(found, "to_json"):
        typer.echo(dumps(found.to_json()))
    else:
        typer.echo(found)


if __name__ == "__main__":
    app()

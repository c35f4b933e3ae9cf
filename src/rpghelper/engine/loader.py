from __future__ import annotations
from pathlib import Path
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
import yaml

from .context import Context
from .effects import Effect, effects_from_json
from .errors import JsonErrorKind, JsonParseError
from .jsonio import dumps, loads
from .settings import Settings
from .tags import Tag

logger = logging.getLogger(__name__)

CONTEXT_EXTS = (".json", ".yaml", ".yml")

def _load_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in [".yaml", ".yml"]:
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise JsonParseError(JsonErrorKind.INVALID_JSON, detail=f"{path}: {e}") from e
        except RecursionError as e:
            raise JsonParseError(JsonErrorKind.INVALID_JSON, detail=f"{path}: nested too deeply") from e
    return loads(text)

def _iter_files(root: Path, exts: Tuple[str, ...] = CONTEXT_EXTS) -> Iterable[Path]:
    if not root.exists():
        return []
    # sorted so layering order does not depend on the filesystem
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in exts)

def load_context(path: Path, settings: Optional[Settings] = None) -> Context:
    ctx = Context.from_json(_load_file(path), settings)
    logger.debug("loaded %s: %r", path, ctx)
    return ctx

def load_effects(path: Path) -> List[Effect]:
    return effects_from_json(_load_file(path))

def save_context(path: Path, ctx: Context) -> None:
    data = ctx.to_json()
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in [".yaml", ".yml"]:
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(dumps(data), encoding="utf-8")

def load_ruleset(base_dir: Path, settings: Optional[Settings] = None) -> Context:
    """
    Layer every context file under base_dir, in path order, into one context.
    A name defined by two files is an authoring error.
    """
    res = Context(settings)
    defined_in: Dict[Tag, Path] = {}
    for fp in _iter_files(base_dir):
        part = load_context(fp, settings)
        names = (
            part.attributes.names() + part.modifiers.names()
            + part.equations.names() + part.conditionals.names()
        )
        for n in names:
            if n in defined_in:
                raise RuntimeError(f"Duplicate definition '{n}' in {fp} (first defined in {defined_in[n]})")
            defined_in[n] = fp
        res.layer_context(part)
    logger.debug("loaded ruleset %s: %r", base_dir, res)
    return res

def load_any(path: Path, settings: Optional[Settings] = None) -> Context:
    """A single context file, or a ruleset directory."""
    if path.is_dir():
        return load_ruleset(path, settings)
    return load_context(path, settings)

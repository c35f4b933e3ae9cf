from __future__ import annotations
from pathlib import Path
from pydantic import BaseModel, Field
from typing import Optional

SETTINGS_PATH = Path.home() / ".rpghelper" / "settings.json"

class Settings(BaseModel):
    max_eval_depth: int = Field(default=64, ge=1)          # nested value/conditional lookups per evaluation
    max_expression_nesting: int = Field(default=128, ge=1)  # parenthesis and call depth of one formula
    strict_values: bool = False   # unknown values raise instead of reading as 0.0
    trace_evaluation: bool = False
    default_ruleset: Optional[str] = None

def load_settings(path: Path = SETTINGS_PATH) -> Settings:
    if path.exists():
        return Settings.model_validate_json(path.read_text(encoding="utf-8"))
    path.parent.mkdir(parents=True, exist_ok=True)
    s = Settings()
    path.write_text(s.model_dump_json(indent=2), encoding="utf-8")
    return s

def save_settings(s: Settings, path: Path = SETTINGS_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(s.model_dump_json(indent=2), encoding="utf-8")

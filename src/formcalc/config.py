"""Engine settings, optionally loaded from YAML."""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DefinitionError


class EngineSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    staleness_window: float = Field(default=0.1, ge=0)  # seconds a cached result stays fresh
    empty_placeholder: str = "-"  # template text for unresolved {{tokens}}
    template_functions: bool = True  # allow {{sum(items)}} style helpers
    alias_leaf_names: bool = True  # bind "maxMortgage" for "resultColumn.maxMortgage"


def load_settings(path: str | Path) -> EngineSettings:
    """Load settings from a YAML mapping.

    A top-level "settings:" key is honoured so a form definition file can be
    passed directly.
    """
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise DefinitionError(f"{path}: settings must be a mapping")
    if isinstance(data.get("settings"), dict):
        data = data["settings"]
    try:
        return EngineSettings(**data)
    except ValidationError as e:
        raise DefinitionError(f"{path}: invalid settings: {e}") from e

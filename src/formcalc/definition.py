"""Form definitions read from YAML.

Format:
    settings:
      staleness_window: 0
    arrays:
      products: [quantity, unitPrice, lineTotal]
    fields:
      - id: subtotal
        expression: price * 2
        dependencies: [price]
        default: 0
    templates:
      summary: "Total: {{total}}"
    values:
      price: 10
    cases:
      - name: basic
        inputs: {price: 10}
        expect: {subtotal: 20}

"fields" may also be a mapping of id -> expression text or id -> field body.
"""

import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from .config import EngineSettings
from .errors import DefinitionError
from .session import CalculationSession


class FieldSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    expression: str | None = None
    dependencies: list[str] | None = None  # None = extract from expression
    default: Any = None


class CaseSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    inputs: dict[str, Any] = {}
    expect: dict[str, Any] = {}
    templates: dict[str, str] = {}  # template name -> expected rendering


class FormDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str = ""
    settings: EngineSettings = EngineSettings()
    arrays: dict[str, list[str]] = {}
    fields: list[FieldSpec] = []
    templates: dict[str, str] = {}
    values: dict[str, Any] = {}
    cases: list[CaseSpec] = []

    @model_validator(mode="before")
    @classmethod
    def _fields_from_mapping(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("fields"), dict):
            fields = []
            for field_id, body in data["fields"].items():
                if body is None or isinstance(body, str):
                    body = {"expression": body}
                fields.append({"id": field_id, **body})
            data = {**data, "fields": fields}
        return data

    def build_session(self, clock: Callable[[], float] = time.monotonic) -> CalculationSession:
        """A fresh session with every array and field registered."""
        session = CalculationSession(self.settings, clock=clock)
        for array_id, children in self.arrays.items():
            session.register_array(array_id, children)
        for spec in self.fields:
            session.register_field(spec.id, spec.expression, spec.dependencies, spec.default)
        return session


def parse_definition(source: str, path: str = "") -> FormDefinition:
    """Parse YAML text into a FormDefinition."""
    try:
        data = yaml.safe_load(source)
    except yaml.YAMLError as e:
        raise DefinitionError(f"{path or '<string>'}: invalid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DefinitionError(f"{path or '<string>'}: form definition must be a mapping")
    try:
        return FormDefinition(path=path, **data)
    except ValidationError as e:
        raise DefinitionError(f"{path or '<string>'}: {e}") from e


def load_definition(filepath: str | Path) -> FormDefinition:
    """Load a form definition file."""
    filepath = Path(filepath)
    try:
        source = filepath.read_text()
    except OSError as e:
        raise DefinitionError(f"{filepath}: {e.strerror or e}") from e
    return parse_definition(source, str(filepath))

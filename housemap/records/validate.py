"""JSON Schema validation for store payloads."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import jsonschema
import orjson

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parents[2] / "config" / "schemas" / "building.schema.json"


@dataclass
class ValidationResult:
    """Outcome of validating a single payload."""

    ok: bool
    errors: List[str]


class RecordSchema:
    """Lazily loads the building document schema."""

    def __init__(self, path: Path = DEFAULT_SCHEMA_PATH) -> None:
        self._path = path
        self._schema: Optional[Dict] = None

    def _load(self) -> Dict:
        if self._schema is None:
            if not self._path.exists():
                raise FileNotFoundError(f"Schema not found: {self._path}")
            self._schema = orjson.loads(self._path.read_bytes())
        return self._schema

    def validate(self, payload: Dict[str, object]) -> ValidationResult:
        validator = jsonschema.Draft202012Validator(self._load())
        errors = [f"{error.json_path}: {error.message}" for error in validator.iter_errors(payload)]
        return ValidationResult(ok=not errors, errors=errors)

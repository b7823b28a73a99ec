"""JSON Schema validation for keyvault documents.

Ledger snapshots and scenario files are validated before anything is loaded
from them. Schemas ship inside the package under ``keyvault/schemas``.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, List

import yaml
from jsonschema import Draft202012Validator

SCHEMAS_DIR = Path(__file__).resolve().parent / "schemas"

LEDGER_SNAPSHOT_SCHEMA = "ledger-snapshot.schema.json"
SCENARIO_SCHEMA = "scenario.schema.json"


def load_json(path: Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def load_yaml(path: Path) -> Any:
    return yaml.safe_load(Path(path).read_text(encoding="utf-8"))


def load_document(path: Path) -> Any:
    """Load a JSON or YAML document, chosen by file suffix."""
    path = Path(path)
    if path.suffix.lower() in (".yaml", ".yml"):
        return load_yaml(path)
    return load_json(path)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str) -> Draft202012Validator:
    """Create (and cache) a validator for a bundled schema."""
    schema = load_json(SCHEMAS_DIR / schema_name)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def validate_against_schema(obj: Any, schema_name: str) -> List[str]:
    """Validate an object against a bundled schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=str)
    ]

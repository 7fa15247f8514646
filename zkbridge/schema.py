"""JSON Schema validation for bridge documents.

Provides:
- A cross-reference registry over the bundled ``schemas/*.schema.json``
- Cached validators
- Error lists (``validate_document``) or hard failures (``require_valid``)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, List

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from zkbridge.core import PACKAGE_ROOT, load_json
from zkbridge.hardening import SchemaValidationError

SCHEMAS_DIR = PACKAGE_ROOT / "schemas"


def schema_path(name: str) -> Path:
    return SCHEMAS_DIR / f"{name}.schema.json"


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMAS_DIR) -> Registry:
    """Registry of all bundled schemas, keyed by ``$id``, for $ref resolution."""
    resources = []
    for path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(path)
        schema_id = schema.get("$id") or f"urn:zkbridge:schema:{path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Draft202012Validator:
    """Create a validator for a bundled schema."""
    path = schema_path(name)
    if not path.exists():
        raise SchemaValidationError(f"Unknown schema: {name}", schema=name)
    schema = load_json(path)
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_document(obj: Any, name: str) -> List[str]:
    """Validate an object against a bundled schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


def require_valid(obj: Any, name: str) -> Any:
    """Return ``obj`` unchanged, or raise SchemaValidationError."""
    errors = validate_document(obj, name)
    if errors:
        raise SchemaValidationError(
            f"Document does not match schema {name}: {errors[0]}",
            errors=errors,
            schema=name,
        )
    return obj

"""Schema and SQL file inputs referenced from the warehouse configuration."""

import json
import os
from typing import Any, Dict, List

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

FIELD_TYPES = {
    "STRING", "BYTES", "INTEGER", "INT64", "FLOAT", "FLOAT64", "NUMERIC",
    "BIGNUMERIC", "BOOLEAN", "BOOL", "TIMESTAMP", "DATE", "TIME", "DATETIME",
    "GEOGRAPHY", "JSON", "INTERVAL", "RANGE", "RECORD", "STRUCT",
}
FIELD_MODES = {"NULLABLE", "REQUIRED", "REPEATED"}


def resolve_path(base_dir: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.normpath(os.path.join(base_dir, path))


def read_text(base_dir: str, path: str) -> str:
    full_path = resolve_path(base_dir, path)
    if not os.path.isfile(full_path):
        raise FileNotFoundError(f"Referenced file '{path}' not found (looked in {full_path})")
    with open(full_path, "r") as file:
        return file.read()


def validate_schema_fields(schema_fields: Any, source: str, prefix: str = "") -> None:
    """Check a BigQuery JSON schema, recursing into RECORD fields."""
    if not isinstance(schema_fields, list):
        raise ValueError(f"Schema '{source}' must be a JSON list of fields")

    seen = set()
    for position, schema_field in enumerate(schema_fields):
        if not isinstance(schema_field, dict):
            raise ValueError(f"Schema '{source}': field #{position} of '{prefix or '<root>'}' is not an object")
        name = schema_field.get("name")
        field_type = str(schema_field.get("type", "")).upper()
        if not name:
            raise ValueError(f"Schema '{source}': field #{position} of '{prefix or '<root>'}' has no name")
        if not isinstance(name, str):
            raise ValueError(f"Schema '{source}': field #{position} of '{prefix or '<root>'}' has a non-string name {name!r}")
        qualified = f"{prefix}.{name}" if prefix else name
        if name.lower() in seen:
            raise ValueError(f"Schema '{source}': duplicate field '{qualified}'")
        seen.add(name.lower())
        if field_type not in FIELD_TYPES:
            raise ValueError(f"Schema '{source}': field '{qualified}' has unsupported type '{field_type}'")
        mode = schema_field.get("mode")
        if mode is not None and str(mode).upper() not in FIELD_MODES:
            raise ValueError(f"Schema '{source}': field '{qualified}' has unsupported mode '{mode}'")
        if field_type in ("RECORD", "STRUCT"):
            if not schema_field.get("fields"):
                raise ValueError(f"Schema '{source}': record field '{qualified}' declares no fields")
            validate_schema_fields(schema_field["fields"], source, qualified)
        elif "fields" in schema_field:
            raise ValueError(f"Schema '{source}': non-record field '{qualified}' declares nested fields")


def load_schema(base_dir: str, path: str) -> str:
    """Read a JSON schema file and return it as compact JSON text for Table.schema."""
    raw = read_text(base_dir, path)
    try:
        schema_fields = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Schema '{path}' is not valid JSON: {e}") from e
    validate_schema_fields(schema_fields, path)
    return json.dumps(schema_fields, separators=(",", ":"))


def schema_field_names(schema_json: str) -> List[str]:
    """Top-level column names of a schema produced by load_schema."""
    return [schema_field["name"] for schema_field in json.loads(schema_json)]


def sql_environment() -> Environment:
    # SQL is plain text: no HTML escaping, and unknown names must fail loudly
    return Environment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def render_sql(text: str, variables: Dict[str, str], source: str = "<inline>") -> str:
    """Render {{ name }} placeholders; BigQuery's own '$' syntax passes through untouched."""
    try:
        return sql_environment().from_string(text).render(**variables)
    except UndefinedError as e:
        raise ValueError(f"SQL '{source}' uses unknown placeholder: {e.message}") from e
    except TemplateSyntaxError as e:
        raise ValueError(f"SQL '{source}' has an invalid placeholder: {e.message} (line {e.lineno})") from e


def load_sql(base_dir: str, path: str, variables: Dict[str, str]) -> str:
    return render_sql(read_text(base_dir, path), variables, path)

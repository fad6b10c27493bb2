"""Schema validation helpers for capture artifacts."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

MANIFEST_SCHEMA_VERSION = "1"


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    with resources.files("mapmosaic.schemas").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_manifest(manifest: Mapping[str, Any]) -> None:
    """Validate a capture manifest against the schema."""
    schema = _load_schema("capture_manifest.schema.json")
    jsonschema.validate(manifest, schema)

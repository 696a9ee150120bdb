"""Load chain definitions and prompt templates from JSON or YAML files.

Chain files hold a single ChainDefinition in its persisted shape.  Template
files hold either a list of templates or ``{"templates": [...]}``.
"""

import json
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from promptchain.exceptions import ChainValidationError
from promptchain.types import ChainDefinition, PromptTemplate


def _read_document(path: Union[str, Path]) -> Any:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"File not found: {p}")
    text = p.read_text()
    if p.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def load_chain_file(path: Union[str, Path]) -> ChainDefinition:
    """Load a chain file → ChainDefinition.

    Raises:
        FileNotFoundError: if the file does not exist.
        ChainValidationError: if the document does not match the chain shape.
    """
    raw = _read_document(path)
    if not isinstance(raw, dict):
        raise ChainValidationError(
            f"{path}: expected a mapping at the top level",
            violations=["chain document must be an object"],
        )
    try:
        return ChainDefinition.model_validate(raw)
    except ValidationError as exc:
        raise ChainValidationError(
            f"{path}: invalid chain definition",
            violations=[
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ],
        ) from exc


def load_templates_file(path: Union[str, Path]) -> list[PromptTemplate]:
    """Load a templates file → list of PromptTemplate objects."""
    raw = _read_document(path) or []
    if isinstance(raw, dict):
        raw = raw.get("templates", [])
    try:
        return [PromptTemplate.model_validate(entry) for entry in raw]
    except ValidationError as exc:
        raise ChainValidationError(
            f"{path}: invalid template file",
            violations=[err["msg"] for err in exc.errors()],
        ) from exc

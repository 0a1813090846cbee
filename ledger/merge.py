import json
from collections.abc import Mapping
from typing import Any, Union

Document = dict[str, Any]
DocumentInput = Union[Mapping[str, Any], str, bytes, None]


class InvalidDocument(Exception):
    pass


def load_document(value: DocumentInput) -> Document:
    """Normalize a parsed or serialized JSON document to a new dict. None and blank text are empty."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (str, bytes)):
        if not value.strip():
            return {}
        try:
            parsed = json.loads(value)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidDocument(str(e)) from e
        if not isinstance(parsed, dict):
            raise InvalidDocument(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed
    raise InvalidDocument(f"Expected a JSON object, got {type(value).__name__}")


def merge(base: DocumentInput, patch: DocumentInput) -> Document:
    """
    Shallow merge: top-level keys of `patch` win, nested values are replaced
    wholesale, keys only in `base` are kept. Neither input is modified.
    """
    return {**load_document(base), **load_document(patch)}

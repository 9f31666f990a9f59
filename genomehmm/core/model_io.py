"""
genomehmm model I/O module

Models and emission schemes are stored as versioned JSON envelopes:

    {"type_tag": "...", "format_version": 1, "payload": {...}}

Every persistable class registers its tag and current format version with
`register_type`. Nested objects (emission schemes inside a model) are
envelopes themselves. Loading checks the tag and the version before the
payload is touched, then rebuilds derived indices.
"""

import importlib
import json
import os
import warnings
from typing import Any, Callable, Dict, Tuple

from genomehmm.core.errors import ModelFormatError

# type_tag -> (class, current format version)
_REGISTRY: Dict[str, Tuple[type, int]] = {}

_MODEL_MODULES = (
    "genomehmm.core.emission",
    "genomehmm.core.hmm",
    "genomehmm.core.mixture",
)


def register_type(type_tag: str, format_version: int = 1) -> Callable[[type], type]:
    """
    Class decorator: make instances persistable under `type_tag`.

    The class must provide `to_payload()` and a `from_payload(payload)`
    classmethod.
    """
    def decorate(cls):
        if type_tag in _REGISTRY and _REGISTRY[type_tag][0] is not cls:
            raise ValueError(f"type tag {type_tag!r} is already registered")
        cls.type_tag = type_tag
        cls.format_version = format_version
        _REGISTRY[type_tag] = (cls, format_version)
        return cls
    return decorate


def registered_types() -> Dict[str, Tuple[type, int]]:
    _ensure_registered()
    return dict(_REGISTRY)


def _ensure_registered():
    for name in _MODEL_MODULES:
        importlib.import_module(name)


def to_envelope(obj) -> Dict[str, Any]:
    """Wrap a registered object into its versioned envelope."""
    type_tag = getattr(obj, "type_tag", None)
    if type_tag not in _REGISTRY:
        raise ModelFormatError(f"{type(obj).__name__} is not a persistable type")
    return {
        "type_tag": type_tag,
        "format_version": obj.format_version,
        "payload": obj.to_payload(),
    }


def from_envelope(data: Dict[str, Any]):
    """Reconstruct an object from its envelope, validating tag and version."""
    _ensure_registered()
    try:
        type_tag = data["type_tag"]
        version = data["format_version"]
        payload = data["payload"]
    except (KeyError, TypeError):
        raise ModelFormatError(f"not a model envelope: {str(data)[:80]}")

    if type_tag not in _REGISTRY:
        raise ModelFormatError(f"unknown model type tag {type_tag!r}")
    cls, current = _REGISTRY[type_tag]
    if version != current:
        raise ModelFormatError(
            f"{type_tag} format version {version} is not supported, expected {current}"
        )

    obj = cls.from_payload(payload)
    obj.rebuild_derived_indices()
    return obj


# =============================================================================
# Saving and loading
# =============================================================================

def dumps_model(model) -> str:
    """Serialise a model to a JSON string."""
    return json.dumps(to_envelope(model), indent=2)


def loads_model(text: str):
    """Deserialise a model from a JSON string."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ModelFormatError(f"malformed model JSON: {e}")
    return from_envelope(data)


def save_model(model, filepath: str) -> str:
    """
    Save model to file in JSON format.

    If the filepath does not end in .json, the extension is replaced with .json
    and a warning is issued.

    Args:
        model: A registered model (MLHMM, MLFreeMixture, ...)
        filepath: Output path (.json recommended)

    Returns:
        The path actually written
    """
    filepath = str(filepath)
    if not filepath.endswith('.json'):
        old_path = filepath
        base, _ = os.path.splitext(filepath)
        filepath = base + '.json'
        warnings.warn(
            f"Only JSON format is supported for saving. "
            f"Saving to '{filepath}' instead of '{old_path}'."
        )

    text = dumps_model(model)
    with open(filepath, 'w') as f:
        f.write(text)
    return filepath


def load_model(filepath: str):
    """
    Load a model saved by `save_model`.

    Raises:
        ModelFormatError: unknown type tag, stale format version or malformed file
    """
    with open(filepath, 'r') as f:
        return loads_model(f.read())

from __future__ import annotations
import json
from typing import Any

from ..domain.errors import SchemaMismatchError


def load_abi_file(path: str) -> list[dict[str, Any]]:
    """ABI from a JSON file: a bare ABI array or a compiler artifact with an `abi` key."""
    with open(path) as f:
        doc = json.load(f)
    abi = doc.get("abi") if isinstance(doc, dict) else doc
    if not isinstance(abi, list):
        raise SchemaMismatchError(f"{path}: no ABI array found")
    return abi

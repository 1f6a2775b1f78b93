"""Message catalogue lookups backed by the YAML files in ``casa/locales``."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml


LOCALE_DIR = Path(__file__).resolve().parent / "locales"
DEFAULT_LOCALE = "en"


@lru_cache(maxsize=None)
def _load_catalogue(locale: str) -> Dict[str, Any]:
    path = LOCALE_DIR / f"{locale}.yml"
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    catalogue = raw.get(locale)
    if not isinstance(catalogue, dict):
        raise ValueError(f"Locale file {path} must define a '{locale}' mapping")
    return catalogue


def translate(key: str, *, locale: str = DEFAULT_LOCALE, **params: Any) -> str:
    """Return the message stored under the dotted ``key``.

    Placeholders written as ``{name}`` are filled from ``params``. A missing key
    raises :class:`KeyError` so typos surface in tests rather than in the UI.
    """

    node: Any = _load_catalogue(locale)
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Missing translation for '{key}' ({locale})")
        node = node[part]
    if not isinstance(node, str):
        raise KeyError(f"Translation '{key}' ({locale}) is not a message")
    return node.format(**params) if params else node


__all__ = ["translate"]

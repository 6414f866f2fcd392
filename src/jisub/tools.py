from __future__ import annotations

import importlib
import os
from dataclasses import dataclass
from pathlib import Path

__all__ = ["DictionaryStatus", "get_unidic_dicdir", "resolve_dictionary"]


@dataclass(slots=True)
class DictionaryStatus:
    source: str
    path: Path | None


def _has_dicrc(path: Path | None) -> bool:
    return bool(path) and (path / "dicrc").is_file()


def _package_dicdir(module_name: str) -> Path | None:
    try:
        module = importlib.import_module(module_name)
    except ImportError:
        return None
    dicdir = getattr(module, "DICDIR", None)
    if not dicdir:
        return None
    candidate = Path(dicdir)
    return candidate if _has_dicrc(candidate) else None


def resolve_dictionary(override: Path | None = None) -> DictionaryStatus:
    """
    Locate the MeCab dictionary the dictionary segmenter should load.

    Order: explicit override, ``JISUB_UNIDIC_DIR``, the full ``unidic``
    package (when its data has been downloaded), then the bundled
    ``unidic-lite`` dictionary.
    """
    if override is not None:
        candidate = override.expanduser()
        if _has_dicrc(candidate):
            return DictionaryStatus(source="override", path=candidate)
    env_dir = os.environ.get("JISUB_UNIDIC_DIR")
    if env_dir:
        candidate = Path(env_dir).expanduser()
        if _has_dicrc(candidate):
            return DictionaryStatus(source="env", path=candidate)
    full = _package_dicdir("unidic")
    if full is not None:
        return DictionaryStatus(source="unidic", path=full)
    lite = _package_dicdir("unidic_lite")
    if lite is not None:
        return DictionaryStatus(source="unidic-lite", path=lite)
    return DictionaryStatus(source="default", path=None)


def get_unidic_dicdir(override: Path | None = None) -> Path | None:
    return resolve_dictionary(override).path

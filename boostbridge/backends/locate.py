"""Discovery of the native shared object on disk."""

from __future__ import annotations

import os
import sys
from importlib.util import find_spec
from typing import List

from ..config import LibraryConfig

__all__ = ["candidate_paths", "library_names"]


def library_names() -> List[str]:
    """File names the shared object is published under on this platform."""
    if sys.platform.startswith(("win32", "cygwin")):
        return ["xgboost.dll", "libxgboost.dll"]
    if sys.platform == "darwin":
        return ["libxgboost.dylib"]
    return ["libxgboost.so"]


def _search_dirs() -> List[str]:
    dirs: List[str] = []
    # find_spec on a top-level name locates the package without importing it
    spec = find_spec("xgboost")
    if spec is not None and spec.submodule_search_locations:
        for location in spec.submodule_search_locations:
            dirs.append(os.path.join(location, "lib"))
    for prefix in (sys.prefix, sys.base_prefix):
        dirs.append(os.path.join(prefix, "lib"))
        if sys.platform.startswith("win32"):
            dirs.append(os.path.join(prefix, "Library", "bin"))
    seen: set[str] = set()
    unique: List[str] = []
    for d in dirs:
        if d not in seen:
            seen.add(d)
            unique.append(d)
    return unique


def candidate_paths(config: LibraryConfig) -> List[str]:
    """Return existing shared-object paths in the order they should be tried.

    An explicit ``config.lib_path`` is returned as the sole candidate, even
    when it does not exist, so that a wrong override fails loudly instead of
    silently picking up another copy of the library.
    """

    if config.lib_path:
        return [os.path.abspath(os.path.expanduser(config.lib_path))]
    found: List[str] = []
    for directory in _search_dirs():
        for name in library_names():
            path = os.path.join(directory, name)
            if os.path.isfile(path):
                found.append(path)
    return found

"""Process-global native configuration (verbosity and friends)."""

from __future__ import annotations

import ctypes
import json
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from .backends import get_library
from .errors import InvalidParameter

__all__ = ["config_context", "get_global_config", "set_global_config"]


def set_global_config(**options: Any) -> None:
    """Update the native global configuration, e.g. ``set_global_config(verbosity=2)``.

    A value the native library cannot coerce raises
    :class:`~boostbridge.errors.InvalidParameter` naming the key.
    """

    if not options:
        return
    for key, value in options.items():
        if not isinstance(value, (str, int, float, bool, type(None))):
            raise InvalidParameter(
                key, str(value), f"global option {key!r} takes a JSON scalar, got {type(value).__name__}"
            )
    staged = {k: json.dumps(v) if not isinstance(v, str) else v for k, v in options.items()}
    get_library().call("XGBSetGlobalConfig", json.dumps(options).encode("utf-8"), staged=staged)


def get_global_config() -> Dict[str, Any]:
    lib = get_library()
    out = ctypes.c_char_p()
    with lib.locked():
        lib.call("XGBGetGlobalConfig", ctypes.byref(out))
        raw = (out.value or b"{}").decode("utf-8")
    return json.loads(raw)


@contextmanager
def config_context(**options: Any) -> Iterator[None]:
    """Apply ``options`` for the duration of the block, then restore the previous values."""
    previous = get_global_config()
    set_global_config(**options)
    try:
        yield
    finally:
        set_global_config(**previous)

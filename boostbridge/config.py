"""Configuration objects for boostbridge."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class LibraryConfig:
    """Settings steering how the native shared object is located and wired.

    Parameters
    ----------
    lib_path:
        Explicit path to the shared object. ``None`` falls back to the
        ``BOOSTBRIDGE_LIB_PATH`` environment variable and then to the library
        shipped with the installed ``xgboost`` distribution.
    log_native_messages:
        Route native log lines into :mod:`logging` through the library's log
        callback. Forced off when ``BOOSTBRIDGE_DISABLE_LOG_CALLBACK=1``.
    """

    lib_path: str | None = None
    log_native_messages: bool = True

    @classmethod
    def from_env(cls) -> "LibraryConfig":
        return cls(
            lib_path=os.getenv("BOOSTBRIDGE_LIB_PATH") or None,
            log_native_messages=not _env_flag("BOOSTBRIDGE_DISABLE_LOG_CALLBACK"),
        )


@dataclass(frozen=True, slots=True)
class DatasetConfig:
    """Options forwarded to the native dataset constructors.

    Parameters
    ----------
    missing:
        Value treated as missing in dense and sparse input. ``nan`` by default.
    nthread:
        Threads used while ingesting data. ``0`` lets the native library
        decide; ``BOOSTBRIDGE_NTHREAD`` overrides the default.
    data_split_mode:
        ``0`` for row split, ``1`` for column split (distributed setups only).
    """

    missing: float = math.nan
    nthread: int = field(default_factory=lambda: int(os.getenv("BOOSTBRIDGE_NTHREAD", "0")))
    data_split_mode: int = 0

    def to_json(self) -> bytes:
        """Return the flat JSON document the native constructors expect."""
        payload = {
            "missing": float(self.missing),
            "nthread": int(self.nthread),
            "data_split_mode": int(self.data_split_mode),
        }
        return json.dumps(payload).encode("utf-8")

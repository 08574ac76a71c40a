"""Native library adapter: the only code path that calls into the shared object."""

from __future__ import annotations

import ctypes
import json
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..config import LibraryConfig
from ..errors import LoadError, NativeError, classify_native_error
from .locate import candidate_paths, library_names

__all__ = [
    "NativeLibrary",
    "NativeModuleState",
    "bst_ulong",
    "build_info",
    "c_str",
    "c_str_array",
    "from_c_str_array",
    "get_library",
    "library_available",
    "load_library",
    "version",
]

_log = logging.getLogger(__name__)

bst_ulong = ctypes.c_uint64

_c_void_pp = ctypes.POINTER(ctypes.c_void_p)
_c_str_p = ctypes.POINTER(ctypes.c_char_p)
_c_str_pp = ctypes.POINTER(_c_str_p)
_c_ulong_p = ctypes.POINTER(bst_ulong)

LogCallback = ctypes.CFUNCTYPE(None, ctypes.c_char_p)

# name -> (argtypes, restype); every entry point returns 0 on success
# unless its restype says otherwise.
_SIGNATURES: Dict[str, Tuple[List[Any], Any]] = {
    "XGBoostVersion": (
        [ctypes.POINTER(ctypes.c_int)] * 3,
        None,
    ),
    "XGBGetLastError": ([], ctypes.c_char_p),
    "XGBRegisterLogCallback": ([LogCallback], ctypes.c_int),
    "XGBuildInfo": ([_c_str_p], ctypes.c_int),
    "XGBSetGlobalConfig": ([ctypes.c_char_p], ctypes.c_int),
    "XGBGetGlobalConfig": ([_c_str_p], ctypes.c_int),
    # datasets
    "XGDMatrixCreateFromDense": (
        [ctypes.c_char_p, ctypes.c_char_p, _c_void_pp],
        ctypes.c_int,
    ),
    "XGDMatrixCreateFromCSR": (
        [ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, bst_ulong, ctypes.c_char_p, _c_void_pp],
        ctypes.c_int,
    ),
    "XGDMatrixCreateFromCSC": (
        [ctypes.c_char_p, ctypes.c_char_p, ctypes.c_char_p, bst_ulong, ctypes.c_char_p, _c_void_pp],
        ctypes.c_int,
    ),
    "XGDMatrixCreateFromURI": ([ctypes.c_char_p, _c_void_pp], ctypes.c_int),
    "XGDMatrixFree": ([ctypes.c_void_p], ctypes.c_int),
    "XGDMatrixNumRow": ([ctypes.c_void_p, _c_ulong_p], ctypes.c_int),
    "XGDMatrixNumCol": ([ctypes.c_void_p, _c_ulong_p], ctypes.c_int),
    "XGDMatrixNumNonMissing": ([ctypes.c_void_p, _c_ulong_p], ctypes.c_int),
    "XGDMatrixSetInfoFromInterface": (
        [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p],
        ctypes.c_int,
    ),
    "XGDMatrixGetFloatInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_ulong_p, ctypes.POINTER(ctypes.POINTER(ctypes.c_float))],
        ctypes.c_int,
    ),
    "XGDMatrixGetUIntInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_ulong_p, ctypes.POINTER(ctypes.POINTER(ctypes.c_uint))],
        ctypes.c_int,
    ),
    "XGDMatrixSetStrFeatureInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_str_p, bst_ulong],
        ctypes.c_int,
    ),
    "XGDMatrixGetStrFeatureInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_ulong_p, _c_str_pp],
        ctypes.c_int,
    ),
    "XGDMatrixGetDataAsCSR": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_ulong_p, ctypes.POINTER(ctypes.c_uint), ctypes.POINTER(ctypes.c_float)],
        ctypes.c_int,
    ),
    "XGDMatrixSaveBinary": ([ctypes.c_void_p, ctypes.c_char_p, ctypes.c_int], ctypes.c_int),
    # boosters
    "XGBoosterCreate": ([_c_void_pp, bst_ulong, _c_void_pp], ctypes.c_int),
    "XGBoosterFree": ([ctypes.c_void_p], ctypes.c_int),
    "XGBoosterSetParam": ([ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p], ctypes.c_int),
    "XGBoosterGetNumFeature": ([ctypes.c_void_p, _c_ulong_p], ctypes.c_int),
    "XGBoosterBoostedRounds": ([ctypes.c_void_p, ctypes.POINTER(ctypes.c_int)], ctypes.c_int),
    "XGBoosterUpdateOneIter": ([ctypes.c_void_p, ctypes.c_int, ctypes.c_void_p], ctypes.c_int),
    "XGBoosterTrainOneIter": (
        [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_int, ctypes.c_char_p, ctypes.c_char_p],
        ctypes.c_int,
    ),
    "XGBoosterEvalOneIter": (
        [ctypes.c_void_p, ctypes.c_int, _c_void_pp, _c_str_p, bst_ulong, _c_str_p],
        ctypes.c_int,
    ),
    "XGBoosterGetAttr": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_str_p, ctypes.POINTER(ctypes.c_int)],
        ctypes.c_int,
    ),
    "XGBoosterSetAttr": ([ctypes.c_void_p, ctypes.c_char_p, ctypes.c_char_p], ctypes.c_int),
    "XGBoosterGetAttrNames": ([ctypes.c_void_p, _c_ulong_p, _c_str_pp], ctypes.c_int),
    "XGBoosterSetStrFeatureInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_str_p, bst_ulong],
        ctypes.c_int,
    ),
    "XGBoosterGetStrFeatureInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_ulong_p, _c_str_pp],
        ctypes.c_int,
    ),
    "XGBoosterPredictFromDMatrix": (
        [
            ctypes.c_void_p,
            ctypes.c_void_p,
            ctypes.c_char_p,
            ctypes.POINTER(_c_ulong_p),
            _c_ulong_p,
            ctypes.POINTER(ctypes.POINTER(ctypes.c_float)),
        ],
        ctypes.c_int,
    ),
    "XGBoosterSaveModelToBuffer": (
        [ctypes.c_void_p, ctypes.c_char_p, _c_ulong_p, ctypes.POINTER(ctypes.POINTER(ctypes.c_char))],
        ctypes.c_int,
    ),
    "XGBoosterLoadModelFromBuffer": ([ctypes.c_void_p, ctypes.c_void_p, bst_ulong], ctypes.c_int),
    "XGBoosterSaveModel": ([ctypes.c_void_p, ctypes.c_char_p], ctypes.c_int),
    "XGBoosterLoadModel": ([ctypes.c_void_p, ctypes.c_char_p], ctypes.c_int),
}

# Legacy entry points some builds no longer export; see NativeLibrary.has.
_OPTIONAL_SIGNATURES: Dict[str, Tuple[List[Any], Any]] = {
    "XGDMatrixCreateFromMat": (
        [ctypes.POINTER(ctypes.c_float), bst_ulong, bst_ulong, ctypes.c_float, _c_void_pp],
        ctypes.c_int,
    ),
    "XGDMatrixSetDenseInfo": (
        [ctypes.c_void_p, ctypes.c_char_p, ctypes.c_void_p, bst_ulong, ctypes.c_int],
        ctypes.c_int,
    ),
}

# Serialises every native call together with the read of the last-error slot.
_CALL_LOCK = threading.RLock()


def _decode(raw: Optional[bytes]) -> str:
    if raw is None:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def c_str(string: str) -> ctypes.c_char_p:
    """Convert a python string to cstring."""
    return ctypes.c_char_p(string.encode("utf-8"))


def c_str_array(values: List[str]) -> ctypes.Array:
    """Convert a list of python strings to a ``char**`` array."""
    encoded = [v.encode("utf-8") for v in values]
    return (ctypes.c_char_p * len(encoded))(*encoded)


def from_c_str_array(data: Any, length: int) -> List[str]:
    """Copy ``length`` native strings behind ``char**`` into python strings."""
    return [_decode(data[i]) for i in range(length)]


def _native_log(raw: bytes) -> None:
    message = _decode(raw).rstrip()
    if "WARNING:" in message:
        _log.warning(message)
    else:
        _log.info(message)


class NativeLibrary:
    """Loaded shared object plus the call discipline around it."""

    def __init__(self, lib: ctypes.CDLL, path: str) -> None:
        self._lib = lib
        self.path = path
        self._log_callback: Optional[Callable] = None
        for name, (argtypes, restype) in _SIGNATURES.items():
            fn = getattr(lib, name, None)
            if fn is None:
                raise LoadError(f"{path} does not export {name}; unsupported library version")
            fn.argtypes = argtypes
            fn.restype = restype
        self._missing = set()
        for name, (argtypes, restype) in _OPTIONAL_SIGNATURES.items():
            fn = getattr(lib, name, None)
            if fn is None:
                self._missing.add(name)
                continue
            fn.argtypes = argtypes
            fn.restype = restype

    def has(self, name: str) -> bool:
        """Whether the loaded build exports the entry point ``name``."""
        return name not in self._missing and hasattr(self._lib, name)

    def _last_error(self) -> str:
        return _decode(self._lib.XGBGetLastError())

    def call(self, name: str, *args: Any, staged: Mapping[str, str] | None = None) -> None:
        """Invoke ``name`` and raise a classified error on a non-zero return.

        The last-error slot is read before the lock is released, so no other
        caller can overwrite it in between.
        """
        if name in self._missing:
            raise NativeError(f"{self.path} does not export {name}")
        fn = getattr(self._lib, name)
        with _CALL_LOCK:
            ret = fn(*args)
            if ret != 0:
                message = self._last_error()
                raise classify_native_error(message, staged)

    def locked(self) -> threading.RLock:
        """The call lock, for copying native-owned result buffers atomically.

        Result pointers handed out by the library stay valid only until the
        next native call, so callers copy them while holding this lock.
        """
        return _CALL_LOCK

    def invoke(self, name: str, *args: Any) -> Any:
        """Invoke an entry point that does not report through a return code."""
        fn = getattr(self._lib, name)
        with _CALL_LOCK:
            return fn(*args)

    def register_log_callback(self) -> None:
        callback = LogCallback(_native_log)
        # the callback object must outlive every native call that may log
        self._log_callback = callback
        self.call("XGBRegisterLogCallback", callback)

    def version(self) -> Tuple[int, int, int]:
        major, minor, patch = ctypes.c_int(), ctypes.c_int(), ctypes.c_int()
        self.invoke("XGBoostVersion", ctypes.byref(major), ctypes.byref(minor), ctypes.byref(patch))
        return major.value, minor.value, patch.value


def _load(config: LibraryConfig) -> NativeLibrary:
    paths = candidate_paths(config)
    if not paths:
        raise LoadError(
            f"Could not find {' or '.join(library_names())}. Install the xgboost "
            "distribution or set BOOSTBRIDGE_LIB_PATH to the shared object."
        )
    errors: List[str] = []
    for path in paths:
        try:
            lib = ctypes.cdll.LoadLibrary(path)
        except OSError as exc:
            errors.append(f"{path}: {exc}")
            continue
        native = NativeLibrary(lib, os.path.normpath(path))
        if config.log_native_messages:
            try:
                native.register_log_callback()
            except Exception as exc:
                raise LoadError(f"Failed to register log callback: {exc}") from exc
        _log.info("Loaded native library %s (version %s)", native.path, ".".join(map(str, native.version())))
        return native
    raise LoadError("Native library could not be loaded. Error message(s): " + "; ".join(errors))


class NativeModuleState:
    """Process-wide load-once holder for the native library.

    A failed load is remembered and re-raised on every later request; the
    library is never reinitialised.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._library: Optional[NativeLibrary] = None
        self._error: Optional[LoadError] = None

    def get(self, config: LibraryConfig | None = None) -> NativeLibrary:
        if self._library is not None:
            return self._library
        with self._lock:
            if self._library is not None:
                return self._library
            if self._error is not None:
                raise self._error
            try:
                self._library = _load(config or LibraryConfig.from_env())
            except LoadError as exc:
                self._error = exc
                raise
            return self._library

    @property
    def loaded(self) -> bool:
        return self._library is not None

    @property
    def failed(self) -> bool:
        return self._error is not None


_STATE = NativeModuleState()


def load_library(config: LibraryConfig | None = None) -> NativeLibrary:
    """Load the shared object with ``config`` unless it is already loaded."""
    if _STATE.loaded and config is not None:
        _log.debug("Native library already loaded; ignoring %r", config)
    return _STATE.get(config)


def get_library() -> NativeLibrary:
    """Return the process-wide library, loading it on first use."""
    return _STATE.get()


def library_available() -> bool:
    """Check whether the native library can be (or already is) loaded."""
    try:
        get_library()
    except LoadError:
        return False
    return True


# ------------------------------ info API --------------------------------


def version() -> Tuple[int, int, int]:
    """``(major, minor, patch)`` of the loaded native library."""
    return get_library().version()


def build_info() -> dict:
    """Compile-time information of the native library as a dictionary."""
    lib = get_library()
    out = ctypes.c_char_p()
    with lib.locked():
        lib.call("XGBuildInfo", ctypes.byref(out))
        raw = _decode(out.value)
    info = json.loads(raw)
    info["lib_path"] = lib.path
    return info

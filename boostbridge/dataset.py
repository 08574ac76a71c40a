"""Dataset construction and meta-info access over native dataset handles."""

from __future__ import annotations

import ctypes
import json
import logging
import math
import os
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .backends import bst_ulong, c_str, c_str_array, from_c_str_array, get_library
from .config import DatasetConfig
from .core.array_interface import ArrayInterfaceDescriptor, encode, encode_array
from .core.handles import HandleKind, HandleRegistry, NativeHandle, default_registry
from .data import as_supported_array, dataframe_feature_names, ensure_numpy
from .errors import EncodingError, InvalidField, ShapeMismatch

__all__ = ["Dataset", "FLOAT_INFO_FIELDS", "INFO_FIELDS", "STR_INFO_FIELDS", "UINT_INFO_FIELDS"]

_log = logging.getLogger(__name__)

# field -> typestr sent through SetInfoFromInterface
INFO_FIELDS = {
    "label": "<f4",
    "weight": "<f4",
    "base_margin": "<f4",
    "group": "<u4",
    "label_lower_bound": "<f4",
    "label_upper_bound": "<f4",
    "feature_weights": "<f4",
}
FLOAT_INFO_FIELDS = frozenset(
    {"label", "weight", "base_margin", "label_lower_bound", "label_upper_bound", "feature_weights"}
)
UINT_INFO_FIELDS = frozenset({"group_ptr"})
STR_INFO_FIELDS = frozenset({"feature_name", "feature_type"})
# typestr -> native DataType code taken by XGDMatrixSetDenseInfo
_DENSE_INFO_TYPES = {"<f4": 1, "<f8": 2, "<u4": 3, "<u8": 4}


def _check_field(field: str, allowed: Any) -> None:
    if field not in allowed:
        raise InvalidField(f"Unknown field {field!r}; expected one of {sorted(allowed)}")


def _as_1d(values: Any, dtype: str, what: str) -> np.ndarray:
    arr = as_supported_array(values, dtype)
    if arr.ndim != 1:
        raise ShapeMismatch(f"{what} must be one-dimensional, got shape {arr.shape}")
    return arr


class Dataset:
    """Host reference to a native dataset (``DMatrix``).

    Instances are built through :meth:`from_dense`, :meth:`from_sparse` or
    :meth:`from_file`. Every accessor raises
    :class:`~boostbridge.errors.InvalidHandle` once :meth:`release` has run.
    """

    def __init__(self, handle: NativeHandle) -> None:
        if handle.kind is not HandleKind.DATASET:
            raise TypeError(f"expected a dataset handle, got {handle.kind.value}")
        self.handle = handle

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    @classmethod
    def _issue(cls, out: ctypes.c_void_p, registry: HandleRegistry) -> "Dataset":
        return cls(registry.issue(HandleKind.DATASET, out))

    @classmethod
    def from_dense(
        cls,
        data: Any,
        config: DatasetConfig | None = None,
        *,
        feature_names: Optional[Sequence[str]] = None,
        registry: HandleRegistry = default_registry,
    ) -> "Dataset":
        """Build a dataset from a row-major ``[rows, cols]`` table.

        ``data`` is either an :class:`ArrayInterfaceDescriptor` or any 2-D
        array-like. DataFrame column labels become feature names unless
        ``feature_names`` is given.
        """

        config = config or DatasetConfig()
        if isinstance(data, pd.DataFrame) and feature_names is None:
            feature_names = dataframe_feature_names(data)
        if isinstance(data, ArrayInterfaceDescriptor):
            descriptor = data
        else:
            arr = ensure_numpy(data)
            if arr.ndim != 2:
                raise ShapeMismatch(f"dense data must be two-dimensional, got shape {arr.shape}")
            descriptor = encode_array(arr)
        if len(descriptor.shape) != 2:
            raise ShapeMismatch(f"dense data must be two-dimensional, got shape {descriptor.shape}")

        lib = get_library()
        out = ctypes.c_void_p()
        lib.call("XGDMatrixCreateFromDense", descriptor.to_json(), config.to_json(), ctypes.byref(out))
        dataset = cls._issue(out, registry)
        if feature_names is not None:
            try:
                dataset.set_str_feature_info("feature_name", list(feature_names))
            except Exception:
                dataset.release()
                raise
        return dataset

    @classmethod
    def from_mat(
        cls,
        data: Any,
        nrow: int,
        ncol: int,
        missing: float = math.nan,
        *,
        registry: HandleRegistry = default_registry,
    ) -> "Dataset":
        """Build a dataset from ``nrow * ncol`` row-major float32 values.

        Uses the legacy ``XGDMatrixCreateFromMat`` entry point; raises
        :class:`~boostbridge.errors.NativeError` when the loaded build lacks it.
        """

        descriptor = encode(data, (nrow, ncol), "<f4")
        if descriptor.strides is not None:
            raise EncodingError("from_mat needs row-major values")
        lib = get_library()
        out = ctypes.c_void_p()
        values = ctypes.cast(ctypes.c_void_p(descriptor.data[0]), ctypes.POINTER(ctypes.c_float))
        lib.call(
            "XGDMatrixCreateFromMat", values, bst_ulong(nrow), bst_ulong(ncol), ctypes.c_float(missing), ctypes.byref(out)
        )
        return cls._issue(out, registry)

    @classmethod
    def from_sparse(
        cls,
        indptr: Any,
        indices: Any,
        data: Any,
        n: int,
        config: DatasetConfig | None = None,
        fmt: str = "csr",
        *,
        num_minor: Optional[int] = None,
        registry: HandleRegistry = default_registry,
    ) -> "Dataset":
        """Build a dataset from compressed sparse rows (``csr``) or columns (``csc``).

        Parameters
        ----------
        indptr, indices, data:
            The three compressed-sparse components.
        n:
            Size of the major dimension: rows for CSR, columns for CSC.
            ``len(indptr)`` must equal ``n + 1``.
        fmt:
            ``"csr"`` or ``"csc"``.
        num_minor:
            Size of the minor dimension. Defaults to ``max(indices) + 1``.
        """

        fmt = fmt.lower()
        if fmt not in ("csr", "csc"):
            raise ValueError(f"Unknown sparse format {fmt!r}; expected 'csr' or 'csc'")
        config = config or DatasetConfig()

        raw_indptr = ensure_numpy(indptr)
        raw_indices = ensure_numpy(indices)
        if raw_indptr.size and np.any(raw_indptr < 0):
            raise ShapeMismatch("indptr must not contain negative offsets")
        if raw_indices.size and np.any(raw_indices < 0):
            raise ShapeMismatch("indices must not be negative")
        c_indptr = _as_1d(raw_indptr, "<u8", "indptr")
        c_indices = _as_1d(raw_indices, "<u4", "indices")
        c_data = _as_1d(data, "<f4", "data")

        if c_indptr.shape[0] != n + 1:
            raise ShapeMismatch(f"indptr has {c_indptr.shape[0]} entries, expected n + 1 = {n + 1}")
        if c_indptr[0] != 0 or np.any(np.diff(c_indptr.astype(np.int64)) < 0):
            raise ShapeMismatch("indptr must start at 0 and be non-decreasing")
        nnz = int(c_indptr[-1])
        if c_indices.shape[0] != nnz or c_data.shape[0] != nnz:
            raise ShapeMismatch(
                f"indices ({c_indices.shape[0]}) and data ({c_data.shape[0]}) must both hold indptr[-1] = {nnz} entries"
            )
        observed = int(c_indices.max()) + 1 if nnz else 0
        if num_minor is None:
            num_minor = observed
        elif observed > num_minor:
            raise ShapeMismatch(f"index {observed - 1} is out of range for num_minor={num_minor}")

        lib = get_library()
        out = ctypes.c_void_p()
        lib.call(
            "XGDMatrixCreateFromCSR" if fmt == "csr" else "XGDMatrixCreateFromCSC",
            encode_array(c_indptr).to_json(),
            encode_array(c_indices).to_json(),
            encode_array(c_data).to_json(),
            bst_ulong(num_minor),
            config.to_json(),
            ctypes.byref(out),
        )
        return cls._issue(out, registry)

    @classmethod
    def from_file(
        cls,
        path: str | os.PathLike,
        silent: bool = True,
        fmt: Optional[str] = None,
        *,
        registry: HandleRegistry = default_registry,
    ) -> "Dataset":
        """Load a dataset through the native text/binary parsers.

        Unsafe: the file is parsed inside the native library without any
        validation on this side, and malformed input is not guarded against.
        """

        uri = os.fspath(os.path.expanduser(path))
        _log.warning("Loading %s with the native parser; input is not validated", uri)
        if fmt is not None:
            uri = f"{uri}?format={fmt}"
        config = json.dumps({"uri": uri, "silent": int(bool(silent)), "data_split_mode": 0})
        lib = get_library()
        out = ctypes.c_void_p()
        lib.call("XGDMatrixCreateFromURI", config.encode("utf-8"), ctypes.byref(out))
        return cls._issue(out, registry)

    # ------------------------------------------------------------------
    # shape
    # ------------------------------------------------------------------
    def _count(self, name: str) -> int:
        out = bst_ulong()
        with self.handle.exclusive() as h:
            get_library().call(name, h.pointer, ctypes.byref(out))
        return int(out.value)

    def num_row(self) -> int:
        return self._count("XGDMatrixNumRow")

    def num_col(self) -> int:
        return self._count("XGDMatrixNumCol")

    def num_non_missing(self) -> int:
        return self._count("XGDMatrixNumNonMissing")

    # ------------------------------------------------------------------
    # meta info
    # ------------------------------------------------------------------
    def _num_groups(self) -> int:
        group_ptr = self.get_uint_info("group_ptr")
        return max(int(group_ptr.shape[0]) - 1, 0)

    def set_info(self, field: str, data: Any) -> None:
        """Set a meta-info field.

        ``group`` takes group sizes; ``weight`` may be per row or per group.
        Lengths are checked against the dataset before the native call.
        """

        _check_field(field, INFO_FIELDS)
        arr = as_supported_array(data, INFO_FIELDS[field])
        if arr.ndim == 0:
            arr = arr.reshape(1)
        with self.handle.exclusive() as h:
            self._check_info_length(field, arr)
            descriptor = encode_array(arr, INFO_FIELDS[field])
            get_library().call("XGDMatrixSetInfoFromInterface", h.pointer, c_str(field), descriptor.to_json())

    def set_dense_info(self, field: str, data: Any, size: int, dtype: Any) -> None:
        """Set a meta-info field from ``size`` raw values of ``dtype``.

        Goes through the legacy ``XGDMatrixSetDenseInfo`` entry point, which
        converts the values natively; raises
        :class:`~boostbridge.errors.NativeError` when the loaded build lacks it.
        """

        _check_field(field, INFO_FIELDS)
        descriptor = encode(data, (size,), dtype)
        with self.handle.exclusive() as h:
            self._check_info_length(field, np.asarray(descriptor))
            get_library().call(
                "XGDMatrixSetDenseInfo",
                h.pointer,
                c_str(field),
                ctypes.c_void_p(descriptor.data[0]),
                bst_ulong(size),
                _DENSE_INFO_TYPES[descriptor.typestr],
            )

    def _check_info_length(self, field: str, arr: np.ndarray) -> None:
        length = int(arr.shape[0])
        if field == "feature_weights":
            expected = self.num_col()
            if arr.ndim != 1 or length != expected:
                raise ShapeMismatch(f"feature_weights has {length} entries, dataset has {expected} columns")
        elif field == "group":
            rows = self.num_row()
            if arr.ndim != 1 or int(arr.sum(dtype=np.uint64)) != rows:
                raise ShapeMismatch(f"group sizes sum to {int(arr.sum())}, dataset has {rows} rows")
        elif field == "weight":
            rows = self.num_row()
            groups = self._num_groups()
            if arr.ndim != 1 or length not in {rows, groups} - {0}:
                raise ShapeMismatch(
                    f"weight has {length} entries, expected {rows} rows" + (f" or {groups} groups" if groups else "")
                )
        else:
            rows = self.num_row()
            # label and base_margin may carry one column per target
            if length != rows or (field not in ("label", "base_margin") and arr.ndim != 1):
                raise ShapeMismatch(f"{field} has {length} entries, dataset has {rows} rows")

    def get_float_info(self, field: str) -> np.ndarray:
        """Copy of a float meta-info field; empty when it was never set."""
        _check_field(field, FLOAT_INFO_FIELDS)
        lib = get_library()
        length = bst_ulong()
        ptr = ctypes.POINTER(ctypes.c_float)()
        with self.handle.exclusive() as h, lib.locked():
            lib.call("XGDMatrixGetFloatInfo", h.pointer, c_str(field), ctypes.byref(length), ctypes.byref(ptr))
            if not length.value:
                return np.empty(0, dtype=np.float32)
            return np.ctypeslib.as_array(ptr, shape=(length.value,)).copy()

    def get_uint_info(self, field: str) -> np.ndarray:
        _check_field(field, UINT_INFO_FIELDS)
        lib = get_library()
        length = bst_ulong()
        ptr = ctypes.POINTER(ctypes.c_uint)()
        with self.handle.exclusive() as h, lib.locked():
            lib.call("XGDMatrixGetUIntInfo", h.pointer, c_str(field), ctypes.byref(length), ctypes.byref(ptr))
            if not length.value:
                return np.empty(0, dtype=np.uint32)
            return np.ctypeslib.as_array(ptr, shape=(length.value,)).astype(np.uint32, copy=True)

    def set_str_feature_info(self, field: str, values: Optional[Sequence[str]]) -> None:
        """Set ``feature_name`` or ``feature_type``; ``None`` clears the field."""
        _check_field(field, STR_INFO_FIELDS)
        with self.handle.exclusive() as h:
            if values is None:
                get_library().call("XGDMatrixSetStrFeatureInfo", h.pointer, c_str(field), None, bst_ulong(0))
                return
            names = [str(v) for v in values]
            expected = self.num_col()
            if len(names) != expected:
                raise ShapeMismatch(f"{field} has {len(names)} entries, dataset has {expected} columns")
            get_library().call(
                "XGDMatrixSetStrFeatureInfo", h.pointer, c_str(field), c_str_array(names), bst_ulong(len(names))
            )

    def get_str_feature_info(self, field: str) -> List[str]:
        _check_field(field, STR_INFO_FIELDS)
        lib = get_library()
        length = bst_ulong()
        sarr = ctypes.POINTER(ctypes.c_char_p)()
        with self.handle.exclusive() as h, lib.locked():
            lib.call("XGDMatrixGetStrFeatureInfo", h.pointer, c_str(field), ctypes.byref(length), ctypes.byref(sarr))
            return from_c_str_array(sarr, length.value)

    # ------------------------------------------------------------------
    # data export
    # ------------------------------------------------------------------
    def get_data_as_csr(self, config: Optional[dict] = None) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(indptr: uint64, indices: uint32, data: float32)`` copies."""
        with self.handle.exclusive() as h:
            rows = self.num_row()
            nnz = self.num_non_missing()
            indptr = np.empty(rows + 1, dtype=np.uint64)
            indices = np.empty(nnz, dtype=np.uint32)
            values = np.empty(nnz, dtype=np.float32)
            get_library().call(
                "XGDMatrixGetDataAsCSR",
                h.pointer,
                json.dumps(config or {}).encode("utf-8"),
                indptr.ctypes.data_as(ctypes.POINTER(bst_ulong)),
                indices.ctypes.data_as(ctypes.POINTER(ctypes.c_uint)),
                values.ctypes.data_as(ctypes.POINTER(ctypes.c_float)),
            )
        return indptr, indices, values

    def save_binary(self, path: str | os.PathLike, silent: bool = True) -> None:
        """Write the dataset in the native binary layout."""
        fname = os.fspath(os.path.expanduser(path))
        with self.handle.exclusive() as h:
            get_library().call("XGDMatrixSaveBinary", h.pointer, c_str(fname), ctypes.c_int(int(bool(silent))))

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    @property
    def is_live(self) -> bool:
        return self.handle.is_live

    def release(self) -> None:
        self.handle.release()

    def __enter__(self) -> "Dataset":
        self.handle.require_live()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.handle.is_live:
            self.release()

    def __repr__(self) -> str:
        if not self.is_live:
            return "Dataset(<released>)"
        return f"Dataset(num_row={self.num_row()}, num_col={self.num_col()})"

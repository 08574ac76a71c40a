"""Host-side data coercion ahead of the array interface codec."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
import torch

__all__ = [
    "SUPPORTED_DTYPES",
    "as_supported_array",
    "dataframe_feature_names",
    "ensure_numpy",
]

# numpy dtypes the native boundary accepts, keyed by array-interface typestr
SUPPORTED_DTYPES: dict[str, np.dtype] = {
    "<f4": np.dtype("<f4"),
    "<f8": np.dtype("<f8"),
    "<u4": np.dtype("<u4"),
    "<u8": np.dtype("<u8"),
}


def ensure_numpy(array: np.ndarray | torch.Tensor | pd.DataFrame | Sequence[float]) -> np.ndarray:
    """Convert ``array`` to an ``np.ndarray`` without copying when possible."""

    if isinstance(array, np.ndarray):
        return array
    if isinstance(array, torch.Tensor):
        return array.detach().cpu().numpy()
    if isinstance(array, (pd.DataFrame, pd.Series)):
        return array.to_numpy()
    return np.asarray(array)


def _default_dtype(arr: np.ndarray) -> np.dtype:
    if arr.dtype.kind == "f" and arr.dtype.itemsize == 8:
        return SUPPORTED_DTYPES["<f8"]
    if arr.dtype.kind == "u" and arr.dtype.itemsize == 8:
        return SUPPORTED_DTYPES["<u8"]
    if arr.dtype.kind in "ub" and arr.dtype.itemsize <= 4:
        return SUPPORTED_DTYPES["<u4"]
    return SUPPORTED_DTYPES["<f4"]


def as_supported_array(
    values: np.ndarray | torch.Tensor | pd.DataFrame | Sequence[float],
    dtype: str | np.dtype | None = None,
    *,
    order: str = "C",
) -> np.ndarray:
    """Return ``values`` as a contiguous little-endian array of a supported dtype.

    Parameters
    ----------
    values:
        Array-like input (numpy, torch, pandas or nested sequences).
    dtype:
        Target typestr or dtype. ``None`` keeps ``float64``/``uint64``/small
        unsigned ints as they are and maps everything else to ``float32``.
    order:
        ``"C"`` or ``"F"`` memory layout of the result.
    """

    arr = ensure_numpy(values)
    if arr.dtype.hasobject:
        raise TypeError("Input data contains `object` dtype. Expecting numeric data.")
    target = _default_dtype(arr) if dtype is None else np.dtype(dtype).newbyteorder("<")
    if target.str not in SUPPORTED_DTYPES:
        raise TypeError(f"Unsupported dtype {target.str}; expected one of {sorted(SUPPORTED_DTYPES)}")
    if order == "F":
        return np.asfortranarray(arr, dtype=target)
    return np.ascontiguousarray(arr, dtype=target)


def dataframe_feature_names(frame: pd.DataFrame) -> list[str]:
    """Column labels of ``frame`` as feature names."""

    return [str(c) for c in frame.columns]

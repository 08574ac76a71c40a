"""Array interface codec: numeric buffers <-> self-describing descriptors.

Descriptors follow the numpy ``__array_interface__`` protocol (version 3)
restricted to the little-endian typestrs the native boundary understands.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence, Tuple

import numpy as np
import torch

from ..data import SUPPORTED_DTYPES, as_supported_array, ensure_numpy
from ..errors import EncodingError

__all__ = [
    "ArrayInterfaceDescriptor",
    "decode",
    "encode",
    "encode_array",
    "typestr_of",
]

_VERSION = 3


def typestr_of(dtype: Any) -> str:
    """Normalise ``dtype`` into one of the supported typestrs."""
    try:
        typestr = np.dtype(dtype).str
    except TypeError as exc:
        raise EncodingError(f"Unrecognised dtype {dtype!r}") from exc
    if typestr not in SUPPORTED_DTYPES:
        raise EncodingError(f"Unsupported typestr {typestr}; expected one of {sorted(SUPPORTED_DTYPES)}")
    return typestr


def _validate_shape(shape: Sequence[int], *, allow_empty: bool = False) -> Tuple[int, ...]:
    dims = tuple(shape)
    if not dims:
        raise EncodingError("shape must have at least one dimension")
    for dim in dims:
        if isinstance(dim, bool) or not isinstance(dim, (int, np.integer)):
            raise EncodingError(f"shape entries must be integers, got {dim!r}")
        if dim < 0 or (dim == 0 and not allow_empty):
            raise EncodingError(f"shape entries must be positive, got {dims}")
    return tuple(int(d) for d in dims)


def _contiguous_strides(shape: Tuple[int, ...], itemsize: int, order: str) -> Tuple[int, ...]:
    strides = [0] * len(shape)
    step = itemsize
    axes = range(len(shape) - 1, -1, -1) if order == "C" else range(len(shape))
    for axis in axes:
        strides[axis] = step
        step *= max(shape[axis], 1)
    return tuple(strides)


def _validate_strides(
    strides: Sequence[int] | None, shape: Tuple[int, ...], itemsize: int
) -> Tuple[int, ...] | None:
    if strides is None:
        return None
    given = tuple(int(s) for s in strides)
    if len(given) != len(shape):
        raise EncodingError(f"strides {given} do not match shape {shape}")
    if given in (
        _contiguous_strides(shape, itemsize, "C"),
        _contiguous_strides(shape, itemsize, "F"),
    ):
        return given
    raise EncodingError(f"strides {given} describe neither a row-major nor a column-major layout")


@dataclass(frozen=True)
class ArrayInterfaceDescriptor:
    """Descriptor of a host buffer handed to (or returned by) the native layer.

    ``_owner`` keeps the memory behind ``data[0]`` alive for as long as the
    descriptor itself is reachable.
    """

    typestr: str
    shape: Tuple[int, ...]
    data: Tuple[int, bool]
    strides: Tuple[int, ...] | None = None
    version: int = _VERSION
    _owner: Any = field(default=None, repr=False, compare=False)

    @property
    def itemsize(self) -> int:
        return SUPPORTED_DTYPES[self.typestr].itemsize

    @property
    def size(self) -> int:
        return math.prod(self.shape)

    @property
    def nbytes(self) -> int:
        return self.size * self.itemsize

    @property
    def read_only(self) -> bool:
        return bool(self.data[1])

    @property
    def __array_interface__(self) -> dict:
        return {
            "data": (self.data[0], self.data[1]),
            "shape": self.shape,
            "strides": self.strides,
            "typestr": self.typestr,
            "version": self.version,
        }

    def to_dict(self) -> dict:
        return {
            "data": [self.data[0], self.data[1]],
            "shape": list(self.shape),
            "strides": list(self.strides) if self.strides is not None else None,
            "typestr": self.typestr,
            "version": self.version,
        }

    def to_json(self) -> bytes:
        """Wire form consumed by the native ``*FromInterface`` entry points."""
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_dict(cls, interface: Mapping[str, Any]) -> "ArrayInterfaceDescriptor":
        """Parse a descriptor produced by the native library (no ownership)."""
        try:
            typestr = str(interface["typestr"])
            shape_raw = interface["shape"]
            data_raw = interface["data"]
        except KeyError as exc:
            raise EncodingError(f"array interface is missing field {exc}") from exc
        typestr = typestr_of(typestr)
        shape = _validate_shape(shape_raw, allow_empty=True)
        itemsize = SUPPORTED_DTYPES[typestr].itemsize
        strides = _validate_strides(interface.get("strides"), shape, itemsize)
        if data_raw is None:
            address, read_only = 0, True
        else:
            address, read_only = int(data_raw[0] or 0), bool(data_raw[1])
        if address == 0 and math.prod(shape) > 0:
            raise EncodingError("array interface has a null data pointer for a non-empty shape")
        return cls(
            typestr=typestr,
            shape=shape,
            data=(address, read_only),
            strides=strides,
            version=int(interface.get("version", _VERSION)),
        )


def _buffer_as_array(buffer: Any, typestr: str) -> np.ndarray:
    if isinstance(buffer, torch.Tensor):
        buffer = ensure_numpy(buffer)
    if isinstance(buffer, np.ndarray):
        if buffer.dtype.str != typestr:
            raise EncodingError(f"buffer dtype {buffer.dtype.str} does not match typestr {typestr}")
        return buffer
    try:
        view = memoryview(buffer)
    except TypeError as exc:
        raise EncodingError(f"Cannot take a buffer of {type(buffer).__name__}") from exc
    raw = view.cast("B") if view.c_contiguous else None
    if raw is None:
        raise EncodingError("buffer must be contiguous")
    itemsize = SUPPORTED_DTYPES[typestr].itemsize
    if raw.nbytes % itemsize:
        raise EncodingError(f"buffer of {raw.nbytes} bytes is not a multiple of itemsize {itemsize}")
    return np.frombuffer(raw, dtype=SUPPORTED_DTYPES[typestr])


def encode(buffer: Any, shape: Sequence[int], dtype: Any) -> ArrayInterfaceDescriptor:
    """Describe ``buffer`` as an array of ``shape`` and ``dtype``.

    Parameters
    ----------
    buffer:
        ``bytes``-like object, numpy array or torch tensor holding the values.
    shape:
        Positive dimension sizes.
    dtype:
        One of ``<f4``, ``<f8``, ``<u4``, ``<u8`` (or an equivalent dtype).

    Raises
    ------
    EncodingError
        When the dtype is unsupported, the shape is empty or non-positive, the
        buffer is not contiguous, or its byte length differs from
        ``product(shape) * itemsize``.
    """

    typestr = typestr_of(dtype)
    dims = _validate_shape(shape)
    itemsize = SUPPORTED_DTYPES[typestr].itemsize
    expected = math.prod(dims) * itemsize
    arr = _buffer_as_array(buffer, typestr)
    if arr.nbytes != expected:
        raise EncodingError(
            f"buffer holds {arr.nbytes} bytes but shape {dims} of {typestr} needs {expected}"
        )

    strides: Tuple[int, ...] | None = None
    if arr.flags.c_contiguous:
        arr = arr.reshape(dims)
    elif arr.flags.f_contiguous and tuple(arr.shape) == dims:
        strides = tuple(int(s) for s in arr.strides)
    else:
        raise EncodingError("buffer must be C- or F-contiguous in the requested shape")

    address = int(arr.__array_interface__["data"][0])
    return ArrayInterfaceDescriptor(
        typestr=typestr,
        shape=dims,
        data=(address, not arr.flags.writeable),
        strides=strides,
        _owner=arr,
    )


def encode_array(values: Any, dtype: Any = None, *, order: str = "C") -> ArrayInterfaceDescriptor:
    """Coerce an array-like to a supported dtype and layout, then :func:`encode` it."""

    if isinstance(values, ArrayInterfaceDescriptor):
        if dtype is not None and typestr_of(dtype) != values.typestr:
            raise EncodingError(f"descriptor is {values.typestr}, expected {typestr_of(dtype)}")
        return values
    try:
        arr = as_supported_array(values, dtype, order=order)
    except (TypeError, ValueError) as exc:
        raise EncodingError(str(exc)) from exc
    if arr.ndim == 0:
        raise EncodingError("scalars cannot be encoded; expected at least one dimension")
    return encode(arr, arr.shape, arr.dtype)


def decode(descriptor: ArrayInterfaceDescriptor | Mapping[str, Any] | str | bytes) -> np.ndarray:
    """Copy the memory a descriptor points at into a host-owned numpy array."""

    if isinstance(descriptor, (str, bytes)):
        descriptor = json.loads(descriptor)
    if not isinstance(descriptor, ArrayInterfaceDescriptor):
        descriptor = ArrayInterfaceDescriptor.from_dict(descriptor)
    if descriptor.size == 0:
        return np.empty(descriptor.shape, dtype=SUPPORTED_DTYPES[descriptor.typestr])
    return np.array(descriptor, copy=True)

"""Boundary primitives: the array interface codec and native handles."""

from .array_interface import ArrayInterfaceDescriptor, decode, encode, encode_array
from .handles import HandleKind, HandleRegistry, NativeHandle, default_registry

__all__ = [
    "ArrayInterfaceDescriptor",
    "HandleKind",
    "HandleRegistry",
    "NativeHandle",
    "decode",
    "default_registry",
    "encode",
    "encode_array",
]

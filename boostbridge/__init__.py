"""boostbridge: a resource-safe boundary over the XGBoost native library."""

from .backends import build_info, library_available, load_library, version
from .booster import Booster
from .config import DatasetConfig, LibraryConfig
from .core import ArrayInterfaceDescriptor, HandleKind, decode, encode, encode_array
from .dataset import Dataset
from .errors import (
    BoostBridgeError,
    EncodingError,
    InvalidField,
    InvalidHandle,
    InvalidParameter,
    LoadError,
    NativeError,
    NotFound,
    ShapeMismatch,
)
from .global_config import config_context, get_global_config, set_global_config
from .training import train

__all__ = [
    "ArrayInterfaceDescriptor",
    "BoostBridgeError",
    "Booster",
    "Dataset",
    "DatasetConfig",
    "EncodingError",
    "HandleKind",
    "InvalidField",
    "InvalidHandle",
    "InvalidParameter",
    "LibraryConfig",
    "LoadError",
    "NativeError",
    "NotFound",
    "ShapeMismatch",
    "build_info",
    "config_context",
    "decode",
    "encode",
    "encode_array",
    "get_global_config",
    "library_available",
    "load_library",
    "set_global_config",
    "train",
    "version",
]

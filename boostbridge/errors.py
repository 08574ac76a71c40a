"""Exception taxonomy for every boundary-crossing operation."""

from __future__ import annotations

import re
from typing import Mapping

__all__ = [
    "BoostBridgeError",
    "EncodingError",
    "InvalidField",
    "InvalidHandle",
    "InvalidParameter",
    "LoadError",
    "NativeError",
    "NotFound",
    "ShapeMismatch",
    "classify_native_error",
]


class BoostBridgeError(Exception):
    """Base class for all errors raised by boostbridge."""


class LoadError(BoostBridgeError):
    """The native shared object could not be located or initialised.

    Fatal for the lifetime of the process: once raised, every later attempt
    to use the library raises the same error again.
    """


class InvalidHandle(BoostBridgeError):
    """A released (or foreign) native handle was used."""


class InvalidField(BoostBridgeError, KeyError):
    """A meta-info field name outside the accepted set."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class ShapeMismatch(BoostBridgeError, ValueError):
    """A buffer length disagrees with the dataset or model it is applied to."""


class EncodingError(BoostBridgeError, ValueError):
    """A buffer could not be described as an array interface."""


class NotFound(BoostBridgeError, KeyError):
    """A model attribute key is not present in the attribute store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class NativeError(BoostBridgeError):
    """Failure reported by the native library through its last-error slot."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidParameter(NativeError):
    """The native library rejected a hyperparameter or global option value."""

    def __init__(self, key: str, value: str, message: str | None = None) -> None:
        self.key = key
        self.value = value
        text = message or f"Invalid value {value!r} for parameter {key!r}"
        super().__init__(text)


# dmlc-core: "Invalid Parameter format for max_depth expect int but value='abc'"
_PARAM_FORMAT = re.compile(
    r"Invalid Parameter format for (?P<key>[\w.]+) expect \S+ but value='(?P<value>[^']*)'"
)
# dmlc-core enum fields: "Invalid Input: 'foo', valid values are: {...}"
_PARAM_ENUM = re.compile(r"Invalid Input: '(?P<value>[^']*)', valid values are")
# dmlc-core numeric fields: "Some trailing characters could not be parsed: 'ast'"
_PARAM_TRAILING = re.compile(r"Some trailing characters could not be parsed: '(?P<rest>[^']*)'")


def classify_native_error(
    message: str, staged: Mapping[str, str] | None = None
) -> NativeError:
    """Map a native last-error message onto the exception taxonomy.

    ``staged`` holds the textual parameters supplied by the caller; when the
    native message names one of them the supplied value is reported verbatim.
    """

    match = _PARAM_FORMAT.search(message)
    if match is not None:
        key = match.group("key")
        value = match.group("value")
        if staged is not None:
            if key in staged:
                return InvalidParameter(key, staged[key], message)
            # the message names the canonical field, e.g. reg_lambda for lambda
            for supplied_key, supplied in staged.items():
                if supplied.strip() == value.strip():
                    return InvalidParameter(supplied_key, supplied, message)
        return InvalidParameter(key, value, message)

    match = _PARAM_ENUM.search(message)
    if match is not None and staged:
        value = match.group("value")
        for key, supplied in staged.items():
            if supplied == value:
                return InvalidParameter(key, value, message)

    match = _PARAM_TRAILING.search(message)
    if match is not None and staged:
        rest = match.group("rest")
        for key, supplied in staged.items():
            if rest and supplied.endswith(rest) and supplied != rest:
                return InvalidParameter(key, supplied, message)

    return NativeError(message)

"""Booster controller: model handles, staged parameters and the training protocol."""

from __future__ import annotations

import ctypes
import json
import logging
import math
import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from .backends import bst_ulong, c_str, c_str_array, from_c_str_array, get_library
from .core.array_interface import encode_array
from .core.handles import HandleKind, HandleRegistry, default_registry, hold_all
from .data import as_supported_array
from .dataset import STR_INFO_FIELDS, Dataset
from .errors import InvalidField, NotFound, ShapeMismatch

__all__ = ["Booster"]

_log = logging.getLogger(__name__)


def _param_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _dataset_array(datasets: Sequence[Dataset]) -> ctypes.Array:
    return (ctypes.c_void_p * len(datasets))(*[d.handle.pointer.value for d in datasets])


class Booster:
    """Host reference to a native model (``Learner``).

    Parameters
    ----------
    datasets:
        Datasets whose caches the model keeps warm (training and evaluation sets).
    params:
        Initial hyperparameters; see :meth:`set_params`.
    """

    def __init__(
        self,
        datasets: Iterable[Dataset] = (),
        params: Optional[Mapping[str, Any]] = None,
        *,
        registry: HandleRegistry = default_registry,
    ) -> None:
        cache = list(datasets)
        for dataset in cache:
            dataset.handle.require_live()
        out = ctypes.c_void_p()
        with hold_all(d.handle for d in cache):
            get_library().call(
                "XGBoosterCreate", _dataset_array(cache), bst_ulong(len(cache)), ctypes.byref(out)
            )
        self.handle = registry.issue(HandleKind.MODEL, out)
        # textual values as last sent; used to attribute deferred native failures
        self._staged: Dict[str, str] = {}
        self.round_metrics: List[Dict[str, Any]] = []
        if params:
            self.set_params(params)

    def _call(self, name: str, *args: Any) -> None:
        get_library().call(name, *args, staged=self._staged)

    # ------------------------------------------------------------------
    # parameters
    # ------------------------------------------------------------------
    def set_param(self, name: str, value: Any) -> None:
        """Stage one hyperparameter.

        The native library may only validate the value when the model is next
        configured (first training step, prediction, evaluation); a rejected
        value then surfaces there as :class:`~boostbridge.errors.InvalidParameter`
        naming this key.
        """

        text = _param_text(value)
        with self.handle.exclusive() as h:
            get_library().call("XGBoosterSetParam", h.pointer, c_str(name), c_str(text), staged={name: text})
            self._staged[name] = text

    def set_params(self, params: Mapping[str, Any] | Iterable[Tuple[str, Any]]) -> None:
        items = params.items() if isinstance(params, Mapping) else params
        for name, value in items:
            if isinstance(value, (list, tuple)) and name == "eval_metric":
                # the native side appends repeated eval_metric entries
                for metric in value:
                    self.set_param(name, metric)
            else:
                self.set_param(name, value)

    @property
    def params(self) -> Dict[str, str]:
        """Hyperparameters staged through this reference, as text."""
        return dict(self._staged)

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------
    def num_feature(self) -> int:
        """Feature count of the model; ``0`` until the model has been configured."""
        out = bst_ulong()
        with self.handle.exclusive() as h:
            self._call("XGBoosterGetNumFeature", h.pointer, ctypes.byref(out))
        return int(out.value)

    def boosted_rounds(self) -> int:
        out = ctypes.c_int()
        with self.handle.exclusive() as h:
            self._call("XGBoosterBoostedRounds", h.pointer, ctypes.byref(out))
        return int(out.value)

    # ------------------------------------------------------------------
    # training
    # ------------------------------------------------------------------
    def update_one_iter(self, iteration: int, dtrain: Dataset) -> None:
        """Run one boosting round with the configured objective."""
        with hold_all((self.handle, dtrain.handle)):
            self._call("XGBoosterUpdateOneIter", self.handle.pointer, ctypes.c_int(iteration), dtrain.handle.pointer)

    def _gradient(self, values: Any, rows: int, what: str) -> np.ndarray:
        arr = as_supported_array(values, "<f4")
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2 or arr.shape[0] != rows:
            raise ShapeMismatch(f"{what} has shape {arr.shape}, expected {rows} rows")
        return arr

    def boost_one_iter(
        self, dtrain: Dataset, grad: Any, hess: Any, iteration: Optional[int] = None
    ) -> None:
        """Run one boosting round with externally supplied gradient statistics.

        ``grad`` and ``hess`` hold one value per training row (or one row of
        values per target). ``iteration`` defaults to :meth:`boosted_rounds`.
        """

        with hold_all((self.handle, dtrain.handle)):
            rows = dtrain.num_row()
            g = self._gradient(grad, rows, "grad")
            hs = self._gradient(hess, rows, "hess")
            if g.shape != hs.shape:
                raise ShapeMismatch(f"grad shape {g.shape} differs from hess shape {hs.shape}")
            if iteration is None:
                iteration = self.boosted_rounds()
            self._call(
                "XGBoosterTrainOneIter",
                self.handle.pointer,
                dtrain.handle.pointer,
                ctypes.c_int(iteration),
                encode_array(g).to_json(),
                encode_array(hs).to_json(),
            )

    def eval_one_iter(self, iteration: int, datasets: Sequence[Dataset], names: Sequence[str]) -> str:
        """Evaluate the configured metrics on ``datasets``; returns the native report line."""
        datasets = list(datasets)
        names = [str(n) for n in names]
        if len(datasets) != len(names):
            raise ShapeMismatch(f"{len(datasets)} datasets but {len(names)} names")
        lib = get_library()
        out = ctypes.c_char_p()
        with hold_all([self.handle] + [d.handle for d in datasets]), lib.locked():
            self._call(
                "XGBoosterEvalOneIter",
                self.handle.pointer,
                ctypes.c_int(iteration),
                _dataset_array(datasets),
                c_str_array(names),
                bst_ulong(len(datasets)),
                ctypes.byref(out),
            )
            return (out.value or b"").decode("utf-8")

    # ------------------------------------------------------------------
    # attribute store
    # ------------------------------------------------------------------
    def get_attr_names(self) -> Set[str]:
        lib = get_library()
        length = bst_ulong()
        sarr = ctypes.POINTER(ctypes.c_char_p)()
        with self.handle.exclusive() as h, lib.locked():
            self._call("XGBoosterGetAttrNames", h.pointer, ctypes.byref(length), ctypes.byref(sarr))
            return set(from_c_str_array(sarr, length.value))

    def get_attr(self, key: str) -> str:
        lib = get_library()
        out = ctypes.c_char_p()
        success = ctypes.c_int()
        with self.handle.exclusive() as h, lib.locked():
            self._call("XGBoosterGetAttr", h.pointer, c_str(key), ctypes.byref(out), ctypes.byref(success))
            if success.value == 0:
                raise NotFound(f"No attribute named {key!r}")
            return (out.value or b"").decode("utf-8")

    def set_attr(self, key: str, value: Optional[Any]) -> None:
        """Insert or replace an attribute; ``None`` deletes it."""
        raw = None if value is None else c_str(str(value))
        with self.handle.exclusive() as h:
            self._call("XGBoosterSetAttr", h.pointer, c_str(key), raw)

    # ------------------------------------------------------------------
    # feature info
    # ------------------------------------------------------------------
    def set_str_feature_info(self, field: str, values: Optional[Sequence[str]]) -> None:
        if field not in STR_INFO_FIELDS:
            raise InvalidField(f"Unknown field {field!r}; expected one of {sorted(STR_INFO_FIELDS)}")
        with self.handle.exclusive() as h:
            if values is None:
                self._call("XGBoosterSetStrFeatureInfo", h.pointer, c_str(field), None, bst_ulong(0))
                return
            names = [str(v) for v in values]
            expected = self.num_feature()
            if expected and len(names) != expected:
                raise ShapeMismatch(f"{field} has {len(names)} entries, model has {expected} features")
            self._call(
                "XGBoosterSetStrFeatureInfo", h.pointer, c_str(field), c_str_array(names), bst_ulong(len(names))
            )

    def get_str_feature_info(self, field: str) -> List[str]:
        if field not in STR_INFO_FIELDS:
            raise InvalidField(f"Unknown field {field!r}; expected one of {sorted(STR_INFO_FIELDS)}")
        lib = get_library()
        length = bst_ulong()
        sarr = ctypes.POINTER(ctypes.c_char_p)()
        with self.handle.exclusive() as h, lib.locked():
            self._call("XGBoosterGetStrFeatureInfo", h.pointer, c_str(field), ctypes.byref(length), ctypes.byref(sarr))
            return from_c_str_array(sarr, length.value)

    # ------------------------------------------------------------------
    # inference
    # ------------------------------------------------------------------
    def predict(
        self,
        dataset: Dataset,
        *,
        output_margin: bool = False,
        iteration_range: Tuple[int, int] = (0, 0),
        training: bool = False,
    ) -> np.ndarray:
        """Predict ``dataset``; ``iteration_range=(0, 0)`` uses every round."""
        config = {
            "type": 1 if output_margin else 0,
            "training": bool(training),
            "iteration_begin": int(iteration_range[0]),
            "iteration_end": int(iteration_range[1]),
            "strict_shape": False,
        }
        lib = get_library()
        shape = ctypes.POINTER(bst_ulong)()
        dims = bst_ulong()
        preds = ctypes.POINTER(ctypes.c_float)()
        with hold_all((self.handle, dataset.handle)), lib.locked():
            self._call(
                "XGBoosterPredictFromDMatrix",
                self.handle.pointer,
                dataset.handle.pointer,
                json.dumps(config).encode("utf-8"),
                ctypes.byref(shape),
                ctypes.byref(dims),
                ctypes.byref(preds),
            )
            out_shape = tuple(int(shape[i]) for i in range(dims.value))
            size = math.prod(out_shape)
            if size == 0:
                return np.empty(out_shape, dtype=np.float32)
            return np.ctypeslib.as_array(preds, shape=(size,)).copy().reshape(out_shape)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def save_raw(self, fmt: str = "ubj") -> bytearray:
        """Serialise the model into a native-owned format (``ubj`` or ``json``)."""
        lib = get_library()
        length = bst_ulong()
        cptr = ctypes.POINTER(ctypes.c_char)()
        config = json.dumps({"format": fmt}).encode("utf-8")
        with self.handle.exclusive() as h, lib.locked():
            self._call("XGBoosterSaveModelToBuffer", h.pointer, config, ctypes.byref(length), ctypes.byref(cptr))
            return bytearray(ctypes.string_at(cptr, length.value))

    def load_raw(self, buffer: bytes | bytearray | memoryview) -> None:
        raw = bytes(buffer)
        cbuf = (ctypes.c_char * len(raw)).from_buffer_copy(raw)
        with self.handle.exclusive() as h:
            self._call("XGBoosterLoadModelFromBuffer", h.pointer, cbuf, bst_ulong(len(raw)))

    def save_model(self, path: str | os.PathLike) -> None:
        fname = os.fspath(os.path.expanduser(path))
        with self.handle.exclusive() as h:
            self._call("XGBoosterSaveModel", h.pointer, c_str(fname))

    def load_model(self, path: str | os.PathLike) -> None:
        fname = os.fspath(os.path.expanduser(path))
        with self.handle.exclusive() as h:
            self._call("XGBoosterLoadModel", h.pointer, c_str(fname))
        _log.debug("Loaded model from %s (%d rounds)", fname, self.boosted_rounds())

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    @property
    def is_live(self) -> bool:
        return self.handle.is_live

    def release(self) -> None:
        self.handle.release()

    def __enter__(self) -> "Booster":
        self.handle.require_live()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self.handle.is_live:
            self.release()

    def __repr__(self) -> str:
        if not self.is_live:
            return "Booster(<released>)"
        return f"Booster(boosted_rounds={self.boosted_rounds()})"

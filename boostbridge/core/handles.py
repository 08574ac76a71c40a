"""Host references owning native opaque pointers."""

from __future__ import annotations

import contextlib
import ctypes
import enum
import itertools
import logging
import threading
import weakref
from typing import Iterable, Iterator, Optional

from ..backends import get_library
from ..errors import InvalidHandle, NativeError

__all__ = [
    "HandleKind",
    "HandleRegistry",
    "NativeHandle",
    "default_registry",
    "hold_all",
]

_log = logging.getLogger(__name__)


class HandleKind(enum.Enum):
    DATASET = "dataset"
    MODEL = "model"


_FREE_FUNCTIONS = {
    HandleKind.DATASET: "XGDMatrixFree",
    HandleKind.MODEL: "XGBoosterFree",
}

_ids = itertools.count(1)


def _free(kind: HandleKind, address: int) -> None:
    get_library().call(_FREE_FUNCTIONS[kind], ctypes.c_void_p(address))


def _reclaim(kind: HandleKind, address: int, handle_id: int, registry: "HandleRegistry") -> None:
    # runs from weakref.finalize once the owning reference is unreachable
    registry._note_reclaimed(handle_id)
    _log.debug("%s handle #%d reclaimed without an explicit release", kind.value, handle_id)
    _free(kind, address)


class NativeHandle:
    """Opaque native pointer plus its release state.

    Native memory is freed exactly once: either by :meth:`release` or by the
    finalizer when the handle becomes unreachable. ``weakref.finalize``
    guarantees that only one of the two paths runs.
    """

    def __init__(self, kind: HandleKind, address: int, registry: "HandleRegistry") -> None:
        self.kind = kind
        self.id = next(_ids)
        self._address = address
        self._lock = threading.RLock()
        self._released = False
        self._finalizer = weakref.finalize(self, _reclaim, kind, address, self.id, registry)
        # process teardown reclaims native memory on its own
        self._finalizer.atexit = False
        self._registry = registry

    @property
    def is_live(self) -> bool:
        return not self._released

    def require_live(self) -> None:
        if self._released:
            raise InvalidHandle(f"{self.kind.value} handle #{self.id} has been released")

    @property
    def pointer(self) -> ctypes.c_void_p:
        """The native pointer; raises :class:`InvalidHandle` once released."""
        self.require_live()
        return ctypes.c_void_p(self._address)

    @contextlib.contextmanager
    def exclusive(self) -> Iterator["NativeHandle"]:
        """Hold the per-handle lock for a multi-call sequence on a live handle."""
        with self._lock:
            self.require_live()
            yield self

    def release(self) -> None:
        """Free the native object. A second call raises :class:`InvalidHandle`."""
        with self._lock:
            self.require_live()
            self._released = True
            self._registry._forget(self.id)
            if self._finalizer.detach() is not None:
                _free(self.kind, self._address)

    def __repr__(self) -> str:
        state = "live" if self.is_live else "released"
        return f"NativeHandle(kind={self.kind.value}, id={self.id}, {state})"


class HandleRegistry:
    """Issues handles and keeps weak track of the live ones."""

    def __init__(self) -> None:
        # finalizers never take this lock; a collection may run them while it is held
        self._lock = threading.RLock()
        self._live: "weakref.WeakValueDictionary[int, NativeHandle]" = weakref.WeakValueDictionary()
        self._reclaimed_ids: list[int] = []

    def issue(self, kind: HandleKind, pointer: ctypes.c_void_p) -> NativeHandle:
        """Wrap ``pointer`` returned by a successful native constructor."""
        if not pointer.value:
            raise NativeError(f"native constructor returned a null {kind.value} handle")
        handle = NativeHandle(kind, int(pointer.value), self)
        with self._lock:
            self._live[handle.id] = handle
        return handle

    def live_count(self, kind: Optional[HandleKind] = None) -> int:
        with self._lock:
            handles = list(self._live.values())
        return sum(1 for h in handles if h.is_live and (kind is None or h.kind is kind))

    @property
    def reclaimed_count(self) -> int:
        """Handles freed by the garbage collector instead of an explicit release."""
        return len(self._reclaimed_ids)

    def _forget(self, handle_id: int) -> None:
        with self._lock:
            self._live.pop(handle_id, None)

    def _note_reclaimed(self, handle_id: int) -> None:
        # the weak mapping drops the dead entry by itself; list.append needs no lock
        self._reclaimed_ids.append(handle_id)


default_registry = HandleRegistry()


@contextlib.contextmanager
def hold_all(handles: Iterable[NativeHandle]) -> Iterator[None]:
    """Hold several handles exclusively, locking in a stable order."""
    unique = {h.id: h for h in handles}
    with contextlib.ExitStack() as stack:
        for handle_id in sorted(unique):
            stack.enter_context(unique[handle_id].exclusive())
        yield

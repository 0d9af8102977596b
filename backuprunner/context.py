"""
Cancellation contexts for backup operations.

A Context is handed to every storage and backup call. It is cancelled
explicitly (shutdown, caller abort) or when its deadline passes, and
blocking work checks it between steps or races against it with
run_cancellable().
"""

import queue
import threading
import time
from typing import Callable, List, Optional


class ContextCancelled(Exception):
    """Raised when an operation observes a cancelled context."""
    pass


class DeadlineExceeded(ContextCancelled):
    """Raised when an operation observes a context whose deadline passed."""
    pass


class Context:
    """
    Cancellation token with an optional deadline.

    Children created with with_cancel() or with_timeout() are cancelled
    together with their parent.
    """

    def __init__(self, parent: Optional['Context'] = None, deadline: Optional[float] = None):
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._error: Optional[ContextCancelled] = None
        self._callbacks: List[Callable[[], None]] = []
        self._timer: Optional[threading.Timer] = None
        self._parent = parent

        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self.deadline = deadline

        if parent is not None:
            parent.add_done_callback(self._cancel_from_parent)

        if deadline is not None and not self._done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._finish(DeadlineExceeded("context deadline exceeded"))
            else:
                self._timer = threading.Timer(remaining, self._expire)
                self._timer.daemon = True
                self._timer.start()

    @classmethod
    def background(cls) -> 'Context':
        """Root context: never cancelled unless cancel() is called."""
        return cls()

    def with_cancel(self) -> 'Context':
        return Context(parent=self)

    def with_timeout(self, seconds: float) -> 'Context':
        return Context(parent=self, deadline=time.monotonic() + seconds)

    @property
    def error(self) -> Optional[ContextCancelled]:
        return self._error

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the context is done. Returns False on timeout."""
        return self._done.wait(timeout)

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, None when the context has none."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def raise_if_done(self):
        if self._done.is_set():
            raise self._error

    def cancel(self):
        self._finish(ContextCancelled("context cancelled"))

    def add_done_callback(self, callback: Callable[[], None]):
        """Call callback once the context is done (immediately if it already is)."""
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_done_callback(self, callback: Callable[[], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def _expire(self):
        self._finish(DeadlineExceeded("context deadline exceeded"))

    def _cancel_from_parent(self):
        self._finish(self._parent.error or ContextCancelled("context cancelled"))

    def _finish(self, error: ContextCancelled):
        with self._lock:
            if self._done.is_set():
                return
            self._error = error
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []

        if self._timer is not None:
            self._timer.cancel()
        if self._parent is not None:
            self._parent.remove_done_callback(self._cancel_from_parent)

        for callback in callbacks:
            callback()


def run_cancellable(ctx: Context, func: Callable, *args, **kwargs):
    """
    Run a blocking call on a worker thread, racing it against ctx.

    The worker reports into a single-slot queue. If ctx finishes first its
    error is raised right away; the worker is left to notice the context on
    its own (callers pass ctx through so it can stop early).

    Args:
        ctx: Context bounding the call
        func: Blocking callable

    Returns:
        Whatever func returns

    Raises:
        ContextCancelled: If ctx is done before func completes
        Exception: Whatever func raised
    """
    ctx.raise_if_done()

    slot = queue.Queue(maxsize=1)
    wake = threading.Event()

    def worker():
        try:
            slot.put((True, func(*args, **kwargs)))
        except Exception as e:
            slot.put((False, e))
        finally:
            wake.set()

    ctx.add_done_callback(wake.set)
    try:
        thread = threading.Thread(target=worker, name='cancellable-call', daemon=True)
        thread.start()
        wake.wait()
    finally:
        ctx.remove_done_callback(wake.set)

    try:
        ok, value = slot.get_nowait()
    except queue.Empty:
        raise ctx.error

    if not ok:
        raise value
    return value

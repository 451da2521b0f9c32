"""
Avatar Voice Agent - Control Loop
=================================

Single-threaded actor loop for the orchestrator.

All conversation state is read and written on one control thread. Work that
blocks (network round trips, tool execution, memory retrieval) runs on a
small worker pool and reports back by posting a callback onto the loop.

Features:
- post(): run a callable on the control thread
- call_later(): cancellable scheduled callables (TimerHandle)
- submit(): run a callable on a worker, deliver the Future on the loop

Usage:
    loop = ControlLoop()
    loop.start()

    handle = loop.call_later(10.0, on_timeout)
    ...
    handle.cancel()  # natural completion won the race

    loop.submit(client.send, history, callback=on_reply)
"""

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_STOP = object()


class TimerHandle:
    """
    Handle to a scheduled callable.

    cancel() is idempotent. A cancelled handle never runs, even when its
    timer already fired and the call is waiting in the loop queue.
    """

    def __init__(self, fn: Callable, args: tuple):
        self._fn = fn
        self._args = args
        self._cancelled = False
        self._fired = False
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None

    def cancel(self) -> None:
        """Cancel the scheduled call (no-op if already run or cancelled)."""
        with self._lock:
            self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    def _run(self) -> None:
        """Run on the control thread unless cancelled in the meantime."""
        with self._lock:
            if self._cancelled or self._fired:
                return
            self._fired = True
        self._fn(*self._args)


class ControlLoop:
    """
    Queue-driven actor thread with a worker pool.

    Usage:
        loop = ControlLoop(max_workers=4)
        loop.start()
        loop.post(orchestrator.on_wake_detected)
        loop.stop()
    """

    def __init__(self, name: str = "control", max_workers: int = 4):
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=f"{name}-worker",
        )
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._timers: "set[TimerHandle]" = set()
        self._timers_lock = threading.Lock()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the control thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the control thread, cancel timers and shut down workers."""
        if not self._running:
            return
        self._running = False

        with self._timers_lock:
            timers = list(self._timers)
            self._timers.clear()
        for handle in timers:
            handle.cancel()

        self._queue.put(_STOP)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._executor.shutdown(wait=False)

    @property
    def is_running(self) -> bool:
        return self._running

    def in_loop_thread(self) -> bool:
        """True when called from the control thread."""
        return threading.current_thread() is self._thread

    # =========================================================================
    # Scheduling
    # =========================================================================

    def post(self, fn: Callable, *args: Any) -> None:
        """Queue fn(*args) to run on the control thread."""
        self._queue.put((fn, args))

    def call_later(self, delay_sec: float, fn: Callable, *args: Any) -> TimerHandle:
        """
        Schedule fn(*args) on the control thread after delay_sec.

        Returns:
            TimerHandle that can cancel the call
        """
        handle = TimerHandle(fn, args)

        def fire():
            with self._timers_lock:
                self._timers.discard(handle)
            self.post(handle._run)

        timer = threading.Timer(max(0.0, delay_sec), fire)
        timer.daemon = True
        handle._timer = timer
        with self._timers_lock:
            self._timers.add(handle)
        timer.start()
        return handle

    def submit(
        self,
        fn: Callable,
        *args: Any,
        callback: Optional[Callable[[Future], None]] = None,
    ) -> Future:
        """
        Run fn(*args) on a worker thread.

        Args:
            fn: Blocking callable
            callback: Called on the control thread with the finished Future

        Returns:
            The worker Future
        """
        future = self._executor.submit(fn, *args)
        if callback is not None:
            future.add_done_callback(lambda f: self.post(callback, f))
        return future

    # =========================================================================
    # Control thread
    # =========================================================================

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            fn, args = item
            try:
                fn(*args)
            except Exception:
                # One bad callback must not take the actor down
                logger.exception("control_loop_callback_failed %s", getattr(fn, "__name__", fn))

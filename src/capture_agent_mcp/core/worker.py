from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .capability_base import DISPATCH_BREAK, CaptureHandle
from .errors import CaptureAgentError, DeviceOpenError, DispatchError
from .filters import FilterCompiler
from .models import CaptureSession

logger = logging.getLogger(__name__)

OpenHandle = Callable[[str, bool], CaptureHandle]


class WorkerState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    RUNNING = "running"
    FILTER_SWAPPING = "filter_swapping"
    STOPPED = "stopped"


class CaptureWorker:
    """
    Owns one open capture handle and the thread that dispatches from it.

    Lifecycle:
      idle -> opening -> running <-> filter_swapping -> stopped

    Interruption:
      dispatch() may block forever on an idle interface, so both stop() and
      update_filter() call handle.breakloop(). A flag alone would only be
      seen once the next packet arrives.

    Failures:
      DeviceOpenError and DispatchError end the loop. on_finished is called
      exactly once when the thread exits, with the error or None.
      A filter that fails to compile during a swap is logged and kept in
      filter_error, capture continues under the previous filter.
    """

    def __init__(
        self,
        open_handle: OpenHandle,
        on_packet: Callable[[Any], None],
        on_finished: Optional[Callable[[Optional[CaptureAgentError]], None]] = None,
        optimize: bool = False,
    ):
        self._open_handle = open_handle
        self._on_packet = on_packet
        self._on_finished = on_finished
        self._optimize = optimize

        self.session: Optional[CaptureSession] = None
        self.state = WorkerState.IDLE
        self.error: Optional[CaptureAgentError] = None
        self.filter_error: Optional[str] = None

        self.packets = 0
        self.callback_errors = 0
        self.filter_swaps = 0

        self._handle: Optional[CaptureHandle] = None
        self._handle_lock = threading.Lock()

        # Staged filter text, guarded by _filter_lock. Last write wins.
        self._filter_lock = threading.Lock()
        self._pending_filter: Optional[str] = None
        self._filter_requested = False

        self._running = threading.Event()
        self._finished = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self, interface: str, filter_expression: str = "", promiscuous: bool = True) -> None:
        """
        Spawn the capture thread. Opening the device happens on that thread,
        open failures are reported through on_finished.
        """
        if self.state != WorkerState.IDLE:
            raise RuntimeError(f"capture worker already {self.state.value}")

        self.session = CaptureSession(
            interface=interface,
            filter_expression=filter_expression or "",
            promiscuous=bool(promiscuous),
        )
        self.state = WorkerState.OPENING
        self._running.set()
        self._thread = threading.Thread(target=self.run, name=f"capture-{interface}", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Request cancellation and break the blocking dispatch.

        Idempotent. Returns True once the capture thread has exited.
        """
        if self.state == WorkerState.IDLE:
            self.state = WorkerState.STOPPED
            return True

        self._running.clear()
        self._break()

        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(timeout)
            return not t.is_alive()
        return self._finished.is_set()

    def update_filter(self, expression: str) -> bool:
        """
        Stage a new filter and break the current dispatch so the capture
        thread installs it before resuming. Returns False when not running.
        """
        if not self._running.is_set():
            return False

        with self._filter_lock:
            self._pending_filter = expression or ""
            self._filter_requested = True

        self._break()
        return True

    def join(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)

    def status(self) -> Dict[str, Any]:
        s = self.session
        return {
            "state": self.state.value,
            "interface": s.interface if s else None,
            "filter": s.filter_expression if s else None,
            "promiscuous": s.promiscuous if s else None,
            "link_type": s.link_type if s else None,
            "netmask": s.netmask if s else None,
            "packets": self.packets,
            "callback_errors": self.callback_errors,
            "filter_swaps": self.filter_swaps,
            "filter_error": self.filter_error,
            "error": str(self.error) if self.error else None,
        }

    def run(self) -> None:
        """
        Body of the capture thread.
        """
        session = self.session
        if session is None:
            raise RuntimeError("start() must be called before run()")

        try:
            handle = self._open_handle(session.interface, session.promiscuous)
        except DeviceOpenError as exc:
            logger.error("Could not open %s: %s", session.interface, exc)
            self._finish(exc)
            return

        with self._handle_lock:
            self._handle = handle

        error: Optional[CaptureAgentError] = None
        try:
            compiler = FilterCompiler(handle, session.interface)
            session.link_type = handle.link_type
            session.net, session.netmask = compiler.resolve_netmask()

            if session.filter_expression:
                if not compiler.compile(session.filter_expression, session.netmask, self._optimize):
                    self.filter_error = compiler.last_error
                    logger.warning("Initial filter installation failed, capturing unfiltered")
                    session.filter_expression = ""

            if self._running.is_set():
                self.state = WorkerState.RUNNING
                logger.info("Capture running on %s (link type %s)", session.interface, session.link_type)

            while self._running.is_set():
                self._apply_pending_filter(compiler, session)
                if not self._running.is_set():
                    break

                ret = handle.dispatch(self._deliver)
                if ret == DISPATCH_BREAK:
                    # stop or filter swap, the loop condition decides which
                    continue
        except DispatchError as exc:
            logger.error("Dispatch failed on %s: %s", session.interface, exc)
            error = exc
        except Exception as exc:
            logger.exception("Capture loop crashed on %s", session.interface)
            error = DispatchError(str(exc))
        finally:
            with self._handle_lock:
                self._handle = None
            try:
                handle.close()
            except OSError as exc:
                logger.warning("Error closing capture handle: %s", exc)
            self._finish(error)

    def _deliver(self, raw: Any) -> None:
        self.packets += 1
        try:
            self._on_packet(raw)
        except Exception:
            self.callback_errors += 1
            logger.exception("Packet callback failed")

    def _apply_pending_filter(self, compiler: FilterCompiler, session: CaptureSession) -> bool:
        with self._filter_lock:
            if not self._filter_requested:
                return False
            self._filter_requested = False
            expression = self._pending_filter or ""

        self.state = WorkerState.FILTER_SWAPPING
        ok = compiler.compile(expression, session.netmask, self._optimize)
        if ok:
            session.filter_expression = expression
            self.filter_swaps += 1
            self.filter_error = None
        else:
            self.filter_error = compiler.last_error
            logger.warning(
                "Failed to apply runtime filter %r, keeping %r", expression, session.filter_expression
            )

        if self._running.is_set():
            self.state = WorkerState.RUNNING
        return ok

    def _break(self) -> None:
        with self._handle_lock:
            handle = self._handle
        if handle is not None:
            handle.breakloop()

    def _finish(self, error: Optional[CaptureAgentError]) -> None:
        self.error = error
        self._running.clear()
        self.state = WorkerState.STOPPED
        if self._on_finished is not None:
            try:
                self._on_finished(error)
            except Exception:
                logger.exception("on_finished callback failed")
        # join() returns only after the callback ran
        self._finished.set()

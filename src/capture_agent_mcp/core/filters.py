from __future__ import annotations

import logging
from typing import Optional, Tuple

from .capability_base import CaptureHandle, CompiledFilter
from .errors import FilterCompileError

logger = logging.getLogger(__name__)


class FilterCompiler:
    """
    Compiles filter expressions and installs them on one capture handle.

    Behavior:
      - netmask lookup failure falls back to net 0 / mask 0 and is logged
      - an expression is compiled and verified before anything is installed
      - any failure leaves the previously installed filter in place
      - every compiled program is released exactly once, right after the
        install attempt, so the next compile never reuses a live program
    """

    def __init__(self, handle: CaptureHandle, interface: str = ""):
        self.handle = handle
        self.interface = interface
        self.net = 0
        self.netmask = 0
        self.last_error: Optional[str] = None

    def resolve_netmask(self) -> Tuple[int, int]:
        try:
            net, mask = self.handle.lookup_netmask()
        except (LookupError, OSError, ValueError) as exc:
            logger.warning("Netmask lookup failed for %s, using 0: %s", self.interface or "device", exc)
            net, mask = 0, 0
        self.net, self.netmask = int(net), int(mask)
        return self.net, self.netmask

    def compile(
        self,
        expression: str,
        netmask: Optional[int] = None,
        optimize: bool = False,
    ) -> bool:
        """
        Compile expression against netmask and install it atomically.

        Returns True once the new filter is active. On failure the reason is
        kept in last_error and False is returned.
        """
        mask = self.netmask if netmask is None else int(netmask)

        try:
            compiled: CompiledFilter = self.handle.compile(expression, optimize, mask)
        except FilterCompileError as exc:
            self.last_error = str(exc)
            logger.warning("Filter compile failed for %r: %s", expression, exc)
            return False

        try:
            self.handle.install(compiled)
        except FilterCompileError as exc:
            self.last_error = str(exc)
            logger.warning("Filter install failed for %r: %s", expression, exc)
            return False
        finally:
            self.handle.release(compiled)

        self.last_error = None
        logger.info("Installed capture filter %r", expression)
        return True

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from .config import AgentConfig
from .models import AnomalyEvent, FeatureSnapshot

# Returned by CaptureHandle.dispatch when breakloop() interrupted it.
DISPATCH_BREAK = -2


@dataclass
class CompiledFilter:
    """
    A verified filter program ready to install.

    program is backend specific bytecode. It must be handed back to
    CaptureHandle.release exactly once.
    """

    expression: str
    program: Any = None


class Detector(Protocol):
    """
    Anything that scores one finalized second.
    """

    def observe(self, snapshot: FeatureSnapshot) -> Optional[AnomalyEvent]:
        ...


class CaptureHandle(Protocol):
    """
    An open capture device, as seen by the CaptureWorker and FilterCompiler.

    Backends live in capabilities. The core only talks to this interface.

    dispatch
      Blocks until at least one packet was handed to callback, or until
      breakloop() is called, in which case it returns DISPATCH_BREAK.
      A breakloop() issued while nothing is blocked makes the next dispatch
      return DISPATCH_BREAK immediately. Raises DispatchError on failure.

    breakloop
      Safe to call from any thread.
    """

    link_type: int

    def lookup_netmask(self) -> Tuple[int, int]:
        ...

    def compile(self, expression: str, optimize: bool, netmask: int) -> CompiledFilter:
        ...

    def install(self, compiled: CompiledFilter) -> None:
        ...

    def release(self, compiled: CompiledFilter) -> None:
        ...

    def dispatch(self, callback: Callable[[Any], None]) -> int:
        ...

    def breakloop(self) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class CapabilityContext:
    """
    Shared runtime objects provided by the core server to each capability.

    store
      Shared AnomalyLog where every session appends its AnomalyEvents.

    config
      AgentConfig with output directories and detector defaults.

    log
      Simple logging function. Goes to the server logger.

    detector_factory
      Builds a fresh Detector for a new session. The baseline_anomaly
      capability installs its factory here. None means aggregate only.

    sessions
      Last aggregator per capability name, so core tools can report on it.
    """

    store: Any
    config: AgentConfig
    log: Callable[[str], None]
    detector_factory: Optional[Callable[[], Detector]] = None
    sessions: Dict[str, Any] = field(default_factory=dict)

    def new_detector(self) -> Optional[Detector]:
        if self.detector_factory is None:
            return None
        return self.detector_factory()


class Capability(Protocol):
    """
    Required interface for a capability plugin.

    A capability is responsible for
    1. Registering MCP tools, like start_capture and stop_capture
    2. Acquiring packets or analyzing finalized seconds
    3. Feeding a StatsAggregator and reporting events to ctx.store

    The core server never imports specific capabilities directly.
    It loads them via registry using import paths.
    """

    name: str

    def register_tools(self, mcp: Any, ctx: CapabilityContext) -> None:
        """
        Called once at server startup. Capabilities should register tools here.
        """
        ...

    def status(self) -> Dict[str, Any]:
        """
        Return quick health and counters. Must be fast and side effect free.
        """
        ...

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Dict, List

from .capability_base import Capability

logger = logging.getLogger(__name__)


@dataclass
class LoadedCapability:
    name: str
    import_path: str
    instance: Capability


class CapabilityRegistry:
    """
    Holds loaded capability instances, keyed by capability name.

    Core never imports capture backends or detectors directly. They are
    loaded from import strings of the form

      "some.module.path:factory_function"

    e.g. "capture_agent_mcp.capabilities.live_capture.capability:build_capability"
    """

    def __init__(self):
        self._caps: Dict[str, LoadedCapability] = {}

    def register(self, cap: Capability, import_path: str = "") -> None:
        if cap.name in self._caps:
            raise ValueError(f"duplicate capability name {cap.name}")
        self._caps[cap.name] = LoadedCapability(name=cap.name, import_path=import_path, instance=cap)

    def get(self, name: str) -> Capability:
        if name not in self._caps:
            raise KeyError(f"capability not loaded {name}")
        return self._caps[name].instance

    def list(self) -> List[str]:
        return sorted(self._caps.keys())

    def load_from_import_paths(self, import_paths: List[str]) -> None:
        for path in import_paths:
            module_path, sep, factory_name = path.partition(":")
            if not sep or not factory_name:
                raise ValueError(f"capability import string needs module:factory, got {path!r}")
            module = importlib.import_module(module_path)
            factory = getattr(module, factory_name)
            cap = factory()
            self.register(cap, import_path=path)
            logger.info("Loaded capability %s from %s", cap.name, path)

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .capability_base import CapabilityContext
from .config import AgentConfig
from .errors import PersistenceError
from .persistence import list_sessions as _list_sessions
from .persistence import load_session as _load_session
from .registry import CapabilityRegistry
from .store import AnomalyLog

logger = logging.getLogger(__name__)


class CaptureMCPServer:
    """
    Capture neutral MCP server.

    Responsibilities:
      Load configured capabilities
      Register capability tools
      Expose core tools over the shared anomaly log and saved sessions
      Provide config, the anomaly log and the detector factory to capabilities
    """

    def __init__(self, config: Optional[AgentConfig] = None, mcp: Any = None):
        self.config = config or AgentConfig()
        self.store = AnomalyLog()
        self.registry = CapabilityRegistry()
        self.mcp = mcp if mcp is not None else FastMCP("capture_agent_mcp")
        self.ctx = CapabilityContext(store=self.store, config=self.config, log=self._log)

        self._load_capabilities(self.config.capabilities)
        self._register_core_tools()

    def _log(self, msg: str) -> None:
        logger.info(msg)

    def _load_capabilities(self, imports: List[str]) -> None:
        self.registry.load_from_import_paths(imports)
        for name in self.registry.list():
            cap = self.registry.get(name)
            cap.register_tools(self.mcp, self.ctx)

    def list_sessions(self, directory: Optional[str] = None) -> List[Dict[str, Any]]:
        d = directory or self.config.sessions_dir
        return [
            {"path": str(r.path), "sessionStart": r.session_start, "sessionEnd": r.session_end}
            for r in _list_sessions(d)
        ]

    def load_session(self, path: str) -> Dict[str, Any]:
        try:
            doc = _load_session(path)
        except PersistenceError as exc:
            return {"ok": False, "error": str(exc)}
        out = doc.to_dict()
        out["ok"] = True
        out["path"] = str(doc.path)
        return out

    def _register_core_tools(self) -> None:
        @self.mcp.tool()
        def list_capabilities() -> List[str]:
            return self.registry.list()

        @self.mcp.tool()
        def capability_status(name: str) -> Dict[str, Any]:
            cap = self.registry.get(name)
            return cap.status()

        @self.mcp.tool()
        def recent_anomalies(limit: int = 50, tag: Optional[str] = None) -> List[Dict[str, Any]]:
            return [e.to_dict() for e in self.store.recent(limit=limit, tag=tag)]

        @self.mcp.tool()
        def anomaly_tags() -> List[str]:
            return self.store.tags()

        @self.mcp.tool()
        def list_sessions(directory: Optional[str] = None) -> List[Dict[str, Any]]:
            return self.list_sessions(directory)

        @self.mcp.tool()
        def load_session(path: str) -> Dict[str, Any]:
            return self.load_session(path)

    def run(self) -> None:
        logger.info("Starting MCP server with capabilities %s", ", ".join(self.registry.list()))
        self.mcp.run()

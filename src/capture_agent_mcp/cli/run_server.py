from __future__ import annotations

import logging

from capture_agent_mcp.core.config import AgentConfig
from capture_agent_mcp.core.logging_config import setup_logging
from capture_agent_mcp.core.server import CaptureMCPServer

logger = logging.getLogger(__name__)


def main() -> None:
    """
    Start the MCP server configured from CAPTURE_* environment variables.

    Example:
      export CAPTURE_INTERFACE=eth0
      export CAPTURE_SESSIONS_DIR=/var/lib/capture/sessions
      export CAPTURE_CAPABILITIES='[
        "capture_agent_mcp.capabilities.baseline_anomaly.capability:build_capability",
        "capture_agent_mcp.capabilities.live_capture.capability:build_capability"
      ]'
      python -m capture_agent_mcp.cli.run_server
    """
    config = AgentConfig.from_env()
    setup_logging(config.log_level, config.log_file)
    logger.debug("Configuration: %s", config.to_dict())

    server = CaptureMCPServer(config)
    server.run()


if __name__ == "__main__":
    main()

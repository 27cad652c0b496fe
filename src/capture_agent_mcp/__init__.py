"""
capture_agent_mcp

Capture neutral MCP server plus pluggable capture and detection capabilities.

Core ideas
1. Capabilities acquire packets, live from an interface or from a pcap file
2. Packets are normalized into PacketRecord and aggregated per second
3. A pluggable detector scores every finalized second without knowing the source
"""

__all__ = ["core", "capabilities", "cli"]

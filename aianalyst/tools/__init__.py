"""
Tool Integration Layer.

Registries that resolve tool names to local functions or MCP server tools,
and the gateway the orchestration loop dispatches through.
"""

from aianalyst.tools.base import LocalToolRegistry, ToolRegistry
from aianalyst.tools.gateway import ToolGateway

__all__ = [
    "LocalToolRegistry",
    "ToolGateway",
    "ToolRegistry",
]

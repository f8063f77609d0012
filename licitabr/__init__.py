"""
LicitaBR: PNCP procurement monitoring, risk analysis and MCP tools.
"""

__version__ = "1.0.0"

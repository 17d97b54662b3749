"""
API package - FastAPI routes and schemas.
"""

from flowpilot.api.routes import executions, tools, websocket, workflows

__all__ = ["executions", "tools", "websocket", "workflows"]

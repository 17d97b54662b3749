"""
API routes - workflows, executions, tools and WebSocket streaming.
"""

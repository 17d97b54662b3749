"""
FlowPilot - An async workflow orchestration engine for agent pipelines.

Run graph-based workflows that mix LLM agents, tool calls, data transforms,
conditional branching and human approval checkpoints.
"""

__version__ = "1.0.0"

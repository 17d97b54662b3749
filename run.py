#!/usr/bin/env python3
"""
Simple run script for FlowPilot.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 python run.py
"""

import uvicorn
import os


def main():
    """Run the FastAPI application."""
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("RELOAD", "true").lower() == "true"

    print(f"""
FlowPilot - workflow orchestration engine
  Server:    http://{host}:{port}
  API Docs:  http://{host}:{port}/docs
  Workflows: http://{host}:{port}/workflows
    """)

    uvicorn.run(
        "flowpilot.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()

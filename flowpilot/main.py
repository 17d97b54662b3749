"""
FlowPilot - FastAPI Application Entry Point.

A graph-based workflow orchestration engine with agent, tool and
human-in-the-loop steps.
"""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from flowpilot.config import settings
from flowpilot.api.routes import executions, tools, websocket, workflows
from flowpilot.api.routes.websocket import ConnectionManager
from flowpilot.engine.engine import WorkflowEngine
from flowpilot.storage.memory import WorkflowStore
from flowpilot.tools.registry import ToolRegistry, tool_registry
from flowpilot.workflows.library import register_builtin_workflows

# Import builtin tools to register them
import flowpilot.tools.builtin  # noqa: F401


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


DESCRIPTION = """
## Workflow Orchestration API

Run graph-based workflows made of agent, tool, transform, decision and
human checkpoint nodes.

### Features
- **Workflows**: JSON definitions with nodes, conditional edges and cycles
- **Agents**: LLM steps with tool use and structured output
- **Human checkpoints**: executions pause until someone responds
- **Loop bounds**: every execution has an iteration cap
- **Real-time Updates**: WebSocket streaming of execution events

### Quick Start
1. List workflows: `GET /workflows`
2. Start one: `POST /workflows/{id}/executions`
3. Answer a checkpoint: `POST /executions/{id}/respond`
4. Check execution state: `GET /executions/{id}`
"""


def create_app(
    engine: Optional[WorkflowEngine] = None,
    workflow_store: Optional[WorkflowStore] = None,
    tools_registry: Optional[ToolRegistry] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        engine: Workflow engine (one using the global tool registry if not provided)
        workflow_store: Definition store (a fresh in-memory one if not provided)
        tools_registry: Registry shown by the tools endpoints

    Returns:
        The configured application
    """
    tools_registry = tools_registry or tool_registry
    engine = engine or WorkflowEngine(tools=tools_registry)
    workflow_store = workflow_store or WorkflowStore()
    connections = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

        unsubscribe = engine.subscribe(connections.on_engine_event)
        if settings.REGISTER_BUILTIN_WORKFLOWS:
            await register_builtin_workflows(workflow_store, engine)
        recovered = await engine.recover()
        if recovered:
            logger.info(f"Recovered {recovered} executions from the state store")

        yield

        # Shutdown
        unsubscribe()
        logger.info("Shutting down...")

    app = FastAPI(
        title=settings.APP_NAME,
        description=DESCRIPTION,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.workflow_store = workflow_store
    app.state.tool_registry = tools_registry
    app.state.connections = connections

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(workflows.router)
    app.include_router(executions.router)
    app.include_router(tools.router)
    app.include_router(websocket.router)

    # ============================================================
    # Root Endpoints
    # ============================================================

    @app.get("/", tags=["Root"])
    async def root():
        """API root - returns basic info and links."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "description": "Graph-based workflow orchestration with human checkpoints",
            "docs": "/docs",
            "redoc": "/redoc",
            "endpoints": {
                "workflows": "/workflows",
                "executions": "/executions",
                "tools": "/tools",
                "websocket": "/ws/executions/{execution_id}",
            },
        }

    @app.get("/health", tags=["Root"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "workflows_count": len(workflow_store),
            "executions_count": len(engine.registry),
        }

    # ============================================================
    # Error Handlers
    # ============================================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors."""
        logger.exception(f"Unhandled error: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            },
        )

    return app


# Create FastAPI application
app = create_app()

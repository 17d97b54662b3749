"""
Configuration settings for FlowPilot.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    # Application
    APP_NAME: str = "FlowPilot"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    
    # Workflow Engine
    MAX_ITERATIONS: int = 100  # Used when a workflow declares no cap
    NODE_TIMEOUT_SECONDS: float = 300  # Per agent/tool call
    AGENT_MAX_ITERATIONS: int = 10  # Agent tool-use rounds
    DEFAULT_ERROR_POLICY: str = "fail"  # "fail" or "continue"
    
    # State persistence
    STATE_BACKEND: str = "memory"  # "memory" or "file"
    STATE_DIR: str = "contents/workflow-state"
    MAX_STATE_SIZE_BYTES: int = 50 * 1024 * 1024
    
    # Startup
    REGISTER_BUILTIN_WORKFLOWS: bool = True
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()

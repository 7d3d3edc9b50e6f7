from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    """Configuration for the update dispatcher.

    Environment variables are prefixed with UPDATE_DISPATCH_.
    """

    model_config = SettingsConfigDict(env_prefix="UPDATE_DISPATCH_", extra="ignore")

    # --- Core ---
    log_level: str = Field(default="INFO", description="Python logging level")
    enable_update_jobs: bool = Field(
        default=True,
        description="If false, plans are resolved but never handed to the queue",
    )

    # --- Redis queue ---
    redis_url: str = "redis://localhost:6379/0"
    update_queue_name: str = "update-dispatch:update:queue"
    pending_set_name: str = "update-dispatch:update:pending"
    dispatch_queue_name: str = "update-dispatch:dispatch:queue"

    # --- Graph DB (Neo4j) ---
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str | None = None
    neo4j_database: str = "neo4j"

    # Adapter retries for transient backend errors
    retry_attempts: int = Field(default=3, ge=1)


settings = DispatchSettings()

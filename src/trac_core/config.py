"""Runtime configuration for the Trac MCP server.

Values come from the environment (prefix ``TRAC_MCP_``) or a local ``.env``.
"""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings shared by the stdio server and the HTTP transport."""

    model_config = SettingsConfigDict(
        env_prefix="TRAC_MCP_",
        env_file=".env",
        extra="ignore",
    )

    # Upstream tracker
    trac_base_url: str = "https://core.trac.wordpress.org"
    user_agent: str = "WordPress-Trac-MCP-Server/1.0"
    request_timeout: float = 10.0

    # Ticket cache capacity
    cache_size: int = Field(default=500, gt=0)

    log_level: str = "INFO"

    # HTTP transport
    cors_origins: list[str] = ["*"]
    http_host: str = "0.0.0.0"
    http_port: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()

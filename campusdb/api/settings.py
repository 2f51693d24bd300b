"""
Configuration for the campusdb HTTP API.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """API configuration loaded from environment."""

    title: str = Field(default="Contoso University API", description="OpenAPI title")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Pagination defaults
    default_page_size: int = Field(default=4, description="Default students per page")
    max_page_size: int = Field(default=100, description="Maximum students per page")

    model_config = {"env_prefix": "CAMPUSDB_API_"}

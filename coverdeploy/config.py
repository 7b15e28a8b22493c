"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables (.env file).
"""

import os
import tempfile
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COVERDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="development", description="Environment (development/ci/production)")
    log_level: str = Field(default="INFO", description="Log level")

    # GitHub
    github_token: Optional[str] = Field(default=None, description="GitHub token for API and push access")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub REST API base URL")
    http_timeout: float = Field(default=30.0, description="GitHub API request timeout in seconds")

    # Retry
    retry_max_attempts: int = Field(default=3, description="Default maximum retry attempts")
    retry_initial_delay: float = Field(default=0.1, description="Default initial backoff in seconds")
    retry_max_delay: float = Field(default=30.0, description="Default backoff cap in seconds")

    # Circuit Breaker
    circuit_breaker_failure_threshold: int = Field(default=5, description="Consecutive failures before opening")
    circuit_breaker_timeout: float = Field(default=60.0, description="Seconds before a probe call is allowed")

    # Fallback
    fallback_enabled: bool = Field(default=True, description="Enable fallback strategies")
    fallback_max_attempts: int = Field(default=3, description="Attempts per fallback strategy")
    fallback_backoff_base: float = Field(default=1.0, description="Linear backoff step between strategy attempts")
    fallback_backoff_max: float = Field(default=30.0, description="Backoff cap between strategy attempts")
    fallback_recovery_samples: int = Field(default=100, description="Recovery time samples kept for metrics")
    fallback_cache_dir: str = Field(
        default=os.path.join(tempfile.gettempdir(), "github-fallback-cache"),
        description="Local cache used by the GitHub API fallback",
    )
    fallback_deploy_dir: str = Field(
        default=os.path.join(tempfile.gettempdir(), "coverage-deployment-fallback"),
        description="Local output directory used by the deployment fallback",
    )
    fallback_skip_deployment: bool = Field(default=False, description="Skip deployment instead of staging locally")

    # Deployment
    main_branches: str = Field(default="main,master", description="Comma separated list of main branches")
    pages_branch: str = Field(default="gh-pages", description="Branch that hosts the published reports")
    lock_ttl: float = Field(default=300.0, description="Deployment lock TTL in seconds")
    verification_delay: float = Field(default=5.0, description="Seconds to wait for Pages propagation")
    verification_request_timeout: float = Field(default=10.0, description="Per-request verification timeout")
    git_user_name: str = Field(default="GitHub Action", description="Commit author name")
    git_user_email: str = Field(default="action@github.com", description="Commit author email")

    @property
    def main_branch_list(self) -> List[str]:
        """Get configured main branches as a list."""
        return [b.strip() for b in self.main_branches.split(",") if b.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.env.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()

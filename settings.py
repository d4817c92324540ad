"""Configuration loaded from environment variables and an optional .env file."""

import logging
import re
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    project_dir: Path = Field(description="Root of the GitOps working tree")
    cluster_name: str = Field(min_length=1, description="Directory under clusters/ holding this cluster")

    # Git identity and remote
    user_name: str = Field(min_length=1)
    user_email: str
    github_token: SecretStr
    git_remote: str = "origin"
    git_branch: str = "main"

    # GitRepository poked after every push
    flux_repository: str = "flux-system"
    flux_namespace: str = "flux-system"

    idp_url: Optional[str] = Field(default=None, description="External identity provider used by AuthClients")

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @field_validator("user_email")
    @classmethod
    def check_email(cls, value):
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", value):
            raise ValueError("USER_EMAIL must be a valid email")
        return value

    @property
    def cluster_dir(self) -> Path:
        return self.project_dir / "clusters" / self.cluster_name


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

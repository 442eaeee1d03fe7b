"""Runtime configuration and credential lookup."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pr_decorator.errors import ConfigurationError
from pr_decorator.models import Alm

SETTINGS_ENV_PREFIX = "PR_DECORATOR_"
DEFAULT_SERVER_URL = "http://localhost:9000"
DEFAULT_CHECK_RUN_NAME = "Code Analysis"

TOKEN_ENV_VARS: dict[Alm, tuple[str, ...]] = {
    Alm.GITHUB: ("GITHUB_TOKEN", "GH_TOKEN"),
    Alm.GITLAB: ("GITLAB_TOKEN",),
    Alm.BITBUCKET: ("BITBUCKET_TOKEN",),
    Alm.BITBUCKET_CLOUD: ("BITBUCKET_TOKEN",),
    Alm.AZURE_DEVOPS: ("AZURE_DEVOPS_TOKEN",),
}


class DecoratorSettings(BaseModel):
    """Settings shared by every decoration run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    server_url: str = Field(default=DEFAULT_SERVER_URL, min_length=1)
    image_base_url: str | None = None
    timeout_seconds: float = Field(default=20.0, gt=0.0)
    trust_env: bool = True
    max_annotations: int = Field(default=50, ge=0)
    max_messages_per_annotation: int = Field(default=10, ge=1)
    check_run_name: str = Field(default=DEFAULT_CHECK_RUN_NAME, min_length=1)

    @property
    def resolved_image_base_url(self) -> str:
        """Image base URL, defaulting to static assets on the analysis server."""
        if self.image_base_url:
            return self.image_base_url.rstrip("/")
        return f"{self.server_url.rstrip('/')}/static/communityBranchPlugin"


def _load_dotenv() -> None:
    """Load ``.env`` from the working directory without overriding the environment."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)


def load_settings() -> DecoratorSettings:
    """Build settings from ``PR_DECORATOR_*`` environment variables."""
    _load_dotenv()
    values: dict[str, str] = {}
    for name in DecoratorSettings.model_fields:
        env_value = os.getenv(f"{SETTINGS_ENV_PREFIX}{name.upper()}")
        if env_value is not None:
            values[name] = env_value
    try:
        return DecoratorSettings.model_validate(values)
    except ValidationError as error:
        raise ConfigurationError(f"Invalid {SETTINGS_ENV_PREFIX}* settings: {error}") from error


def get_token_from_environment(alm: Alm) -> tuple[str, str] | None:
    """Return ``(token, env_var)`` for the first configured fallback variable."""
    _load_dotenv()
    for env_var in TOKEN_ENV_VARS.get(alm, ()):
        token = os.getenv(env_var)
        if token:
            return token, env_var
    return None

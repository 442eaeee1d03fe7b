"""Build authenticated platform clients for one decoration call."""

from __future__ import annotations

import httpx
from loguru import logger

from pr_decorator.errors import ConfigurationError
from pr_decorator.models import ALM_LABELS, Alm, AlmSettings, ProjectAlmSettings
from pr_decorator.platforms.azure_devops import AzureDevopsClient, build_azure_devops_http_client
from pr_decorator.platforms.base import PlatformClient
from pr_decorator.platforms.bitbucket_cloud import (
    BitbucketCloudClient,
    build_bitbucket_cloud_http_client,
)
from pr_decorator.platforms.bitbucket_server import (
    BitbucketServerClient,
    build_bitbucket_server_http_client,
)
from pr_decorator.platforms.github import GithubClient, build_github_http_client
from pr_decorator.platforms.gitlab import GitlabClient, build_gitlab_http_client
from pr_decorator.platforms.http import AlmAuthError, AlmInputError
from pr_decorator.settings import TOKEN_ENV_VARS, DecoratorSettings, get_token_from_environment


def resolve_token(alm_setting: AlmSettings) -> tuple[str, str]:
    """Return ``(token, source)`` from the ALM setting or the environment fallback."""
    if alm_setting.personal_access_token is not None:
        token = alm_setting.personal_access_token.get_secret_value()
        if token:
            return token, f"ALM setting '{alm_setting.key}'"

    from_environment = get_token_from_environment(alm_setting.alm)
    if from_environment is not None:
        return from_environment

    variables = " or ".join(TOKEN_ENV_VARS.get(alm_setting.alm, ()))
    raise AlmAuthError(
        f"No {ALM_LABELS[alm_setting.alm]} token configured for ALM setting "
        f"'{alm_setting.key}'. Set a personal access token or {variables}."
    )


def _require_url(alm_setting: AlmSettings) -> str:
    if not alm_setting.url:
        raise ConfigurationError(
            f"ALM setting '{alm_setting.key}' needs a URL for {ALM_LABELS[alm_setting.alm]}."
        )
    return alm_setting.url


class ClientFactory:
    """Creates a fresh, unshared client per decoration call."""

    def __init__(self, settings: DecoratorSettings) -> None:
        self._settings = settings

    def create_client(
        self, alm_setting: AlmSettings, project_alm_setting: ProjectAlmSettings
    ) -> PlatformClient:
        if project_alm_setting.alm_setting_key != alm_setting.key:
            raise ConfigurationError(
                f"Project is bound to ALM setting '{project_alm_setting.alm_setting_key}', "
                f"not '{alm_setting.key}'."
            )
        token, source = resolve_token(alm_setting)
        logger.debug("Using {} token from {}", ALM_LABELS[alm_setting.alm], source)

        http_client = self._build_http_client(alm_setting, token)
        try:
            return self._bind(http_client, alm_setting, project_alm_setting)
        except (AlmInputError, ConfigurationError):
            http_client.close()
            raise

    def _build_http_client(self, alm_setting: AlmSettings, token: str) -> httpx.Client:
        options = {
            "timeout_seconds": self._settings.timeout_seconds,
            "trust_env": self._settings.trust_env,
        }
        alm = alm_setting.alm
        if alm is Alm.GITHUB:
            return build_github_http_client(token, base_url=alm_setting.url, **options)
        if alm is Alm.GITLAB:
            return build_gitlab_http_client(token, base_url=alm_setting.url, **options)
        if alm is Alm.BITBUCKET:
            return build_bitbucket_server_http_client(
                token, base_url=_require_url(alm_setting), **options
            )
        if alm is Alm.BITBUCKET_CLOUD:
            return build_bitbucket_cloud_http_client(token, base_url=alm_setting.url, **options)
        if alm is Alm.AZURE_DEVOPS:
            return build_azure_devops_http_client(
                token, base_url=_require_url(alm_setting), **options
            )
        raise ConfigurationError(f"Unsupported ALM '{alm}'.")

    def _bind(
        self,
        http_client: httpx.Client,
        alm_setting: AlmSettings,
        project_alm_setting: ProjectAlmSettings,
    ) -> PlatformClient:
        alm = alm_setting.alm
        repository = project_alm_setting.alm_repo
        if alm is Alm.GITHUB:
            return GithubClient(http_client, repository)
        if alm is Alm.GITLAB:
            return GitlabClient(http_client, repository)
        if alm is Alm.BITBUCKET:
            return BitbucketServerClient(
                http_client, repository, project_alm_setting.alm_slug or ""
            )
        if alm is Alm.BITBUCKET_CLOUD:
            if not alm_setting.workspace:
                raise ConfigurationError(
                    f"ALM setting '{alm_setting.key}' needs a Bitbucket Cloud workspace."
                )
            return BitbucketCloudClient(http_client, alm_setting.workspace, repository)
        if alm is Alm.AZURE_DEVOPS:
            return AzureDevopsClient(http_client, project_alm_setting.alm_slug or "", repository)
        raise ConfigurationError(f"Unsupported ALM '{alm}'.")

"""Decoration error taxonomy."""

from __future__ import annotations

from pr_decorator.models import ALM_LABELS, Alm


class DecorationError(RuntimeError):
    """Base class for every error raised by decoration logic."""


class ConfigurationError(DecorationError):
    """Raised when a platform is unsupported or misconfigured."""


class DecorationFailedError(DecorationError):
    """Raised when one decoration call cannot complete.

    The message names the platform and pull request; the original exception is
    kept as ``__cause__``.
    """

    step = "decoration"

    def __init__(self, *, alm: Alm, pull_request_id: str, detail: str | None = None) -> None:
        label = ALM_LABELS.get(alm, str(alm))
        message = f"Could not decorate Pull Request {pull_request_id} on {label}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.alm = alm
        self.pull_request_id = pull_request_id


class ClientResolutionError(DecorationFailedError):
    """Raised when an authenticated platform client cannot be created."""

    step = "client resolution"


class PullRequestNotFoundError(DecorationFailedError):
    """Raised when the pull request does not exist on the platform."""

    step = "pull request lookup"


class RemoteStateFetchError(DecorationFailedError):
    """Raised when existing decorations or the diff cannot be read."""

    step = "remote state fetch"


class SummaryApplyError(DecorationFailedError):
    """Raised when the summary comment or check-run cannot be written."""

    step = "summary apply"


class AnnotationApplyError(DecorationError):
    """Raised when one inline annotation cannot be applied."""

    def __init__(self, message: str, *, path: str, line: int, action: str) -> None:
        super().__init__(message)
        self.path = path
        self.line = line
        self.action = action

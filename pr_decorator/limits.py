"""Per-platform size limits applied when rendering decorations."""

from __future__ import annotations

from dataclasses import dataclass

from pr_decorator.errors import ConfigurationError
from pr_decorator.models import Alm


@dataclass(frozen=True, slots=True)
class PlatformLimits:
    """Size constraints a platform enforces on comments."""

    max_comment_length: int


PLATFORM_LIMITS: dict[Alm, PlatformLimits] = {
    Alm.GITHUB: PlatformLimits(max_comment_length=65536),
    Alm.GITLAB: PlatformLimits(max_comment_length=1_000_000),
    Alm.BITBUCKET: PlatformLimits(max_comment_length=32768),
    Alm.BITBUCKET_CLOUD: PlatformLimits(max_comment_length=32768),
    Alm.AZURE_DEVOPS: PlatformLimits(max_comment_length=150000),
}


def limits_for_alm(alm: Alm) -> PlatformLimits:
    try:
        return PLATFORM_LIMITS[alm]
    except KeyError as error:
        raise ConfigurationError(f"No size limits registered for ALM '{alm}'.") from error

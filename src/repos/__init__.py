"""Package source resolvers.

Map package names to upstream locations and fetch those locations into
the mirror's package directory.
"""

from .base import (
    FetchResult,
    FetchStatus,
    Locator,
    ResolveResult,
    ResolveStatus,
    SourceResolver,
)
from .yum import YumSourceResolver

__all__ = [
    "FetchResult",
    "FetchStatus",
    "Locator",
    "ResolveResult",
    "ResolveStatus",
    "SourceResolver",
    "YumSourceResolver",
]

"""Base classes and protocols for package source resolvers.

A source resolver answers two questions: where does a package come from
(``resolve_source``), and can that location be turned into a local file
(``fetch``). Expected failures are reported through result objects so
that callers can branch on them instead of catching exceptions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlparse

from ..common.errors import FetchError, InvalidArtifact, NotFound


class ResolveStatus(Enum):
    """Status of a source lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class FetchStatus(Enum):
    """Status of a fetch."""

    FETCHED = "fetched"
    ALREADY_PRESENT = "already_present"
    INVALID = "invalid"
    ERROR = "error"


@dataclass(frozen=True)
class Locator:
    """Upstream location of a package artifact."""

    url: str

    @property
    def scheme(self) -> str:
        """URI scheme of the locator (e.g. ``https``)."""
        return urlparse(self.url).scheme

    @property
    def filename(self) -> str:
        """Artifact filename the locator points at."""
        return Path(unquote(urlparse(self.url).path)).name

    def __str__(self) -> str:
        return self.url


@dataclass
class ResolveResult:
    """Result of resolving a package name to a locator."""

    status: ResolveStatus
    name: str
    locator: Optional[Locator] = None
    error: Optional[Union[NotFound, FetchError]] = None

    @property
    def is_found(self) -> bool:
        """Check if a locator was found."""
        return self.status is ResolveStatus.FOUND

    @classmethod
    def found(cls, name: str, url: str) -> "ResolveResult":
        return cls(status=ResolveStatus.FOUND, name=name, locator=Locator(url))

    @classmethod
    def not_found(cls, name: str) -> "ResolveResult":
        return cls(status=ResolveStatus.NOT_FOUND, name=name, error=NotFound(name))

    @classmethod
    def failed(cls, name: str, message: str) -> "ResolveResult":
        return cls(status=ResolveStatus.ERROR, name=name, error=FetchError(message))


@dataclass
class FetchResult:
    """Result of fetching a locator to a local file."""

    status: FetchStatus
    locator: Optional[Locator] = None
    path: Optional[Path] = None
    error: Optional[Union[NotFound, FetchError, InvalidArtifact]] = None

    @property
    def is_success(self) -> bool:
        """Check if a usable local file exists."""
        return self.status in (FetchStatus.FETCHED, FetchStatus.ALREADY_PRESENT)

    @property
    def rpm_name(self) -> Optional[str]:
        """Filename of the fetched artifact."""
        return self.path.name if self.path is not None else None

    @classmethod
    def from_resolve_failure(cls, result: ResolveResult) -> "FetchResult":
        """Carry a failed lookup over into a fetch result."""
        return cls(status=FetchStatus.ERROR, error=result.error)


class SourceResolver(ABC):
    """Abstract base class for package source resolvers."""

    @property
    @abstractmethod
    def resolver_name(self) -> str:
        """Return the resolver identifier (e.g., 'yum')."""
        pass

    @abstractmethod
    def resolve_source(self, name: str) -> ResolveResult:
        """Find the upstream locator of a package.

        Args:
            name: Package name, artifact name (with or without ``.rpm``)
                or a glob understood by the resolver

        Returns:
            ResolveResult; NOT_FOUND when nothing matches
        """
        pass

    @abstractmethod
    def fetch(self, locator: Locator, dest_dir: Path) -> FetchResult:
        """Fetch a locator into ``dest_dir``.

        The file is written under ``locator.filename``.

        Args:
            locator: Locator previously returned by ``resolve_source`` or
                recorded in a manifest
            dest_dir: Destination directory

        Returns:
            FetchResult with the local path on success
        """
        pass

    def close(self) -> None:
        """Release resources held by the resolver."""
        pass


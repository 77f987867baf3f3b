"""Base classes and protocols for package format handlers.

Defines the identity a package artifact is reduced to, the ordering
between identities, and the interface format handlers implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List


class VersionComparison(Enum):
    """Outcome of comparing two package identities."""

    NEWER = "newer"
    OLDER = "older"
    EQUAL = "equal"
    INCOMPARABLE = "incomparable"

    def reverse(self) -> "VersionComparison":
        """Return the comparison seen from the other side."""
        if self is VersionComparison.NEWER:
            return VersionComparison.OLDER
        if self is VersionComparison.OLDER:
            return VersionComparison.NEWER
        return self


@dataclass(frozen=True)
class PackageIdentity:
    """Structured identity of a package artifact."""

    base_name: str
    version: str
    release: str
    architecture: str
    full_artifact_name: str

    @property
    def nvra(self) -> str:
        """Name-version-release.arch without the file extension."""
        return f"{self.base_name}-{self.version}-{self.release}.{self.architecture}"

    def is_comparable(self, other: "PackageIdentity") -> bool:
        """Check whether both identities describe the same package."""
        return (
            self.base_name == other.base_name
            and self.architecture == other.architecture
        )


class PackageFormat(ABC):
    """Abstract base class for package format handlers.

    Each format handler must implement methods for:
    - Detecting if a file is of this format
    - Parsing artifact filenames into identities and rendering them back
    - Ordering identities of the same package
    """

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Return the format identifier (e.g., 'rpm')."""
        pass

    @property
    @abstractmethod
    def file_extensions(self) -> List[str]:
        """Return supported file extensions (e.g., ['.rpm'])."""
        pass

    @abstractmethod
    def detect(self, path: Path) -> bool:
        """Detect if a file is of this format.

        Args:
            path: Path to the package file

        Returns:
            True if file is of this format
        """
        pass

    @abstractmethod
    def parse(self, filename: str) -> PackageIdentity:
        """Parse an artifact filename into a package identity.

        Args:
            filename: Artifact filename (directories are ignored)

        Returns:
            PackageIdentity

        Raises:
            MalformedArtifactName: If the filename does not follow the
                naming grammar of this format
        """
        pass

    @abstractmethod
    def render(self, identity: PackageIdentity) -> str:
        """Render an identity back into an artifact filename."""
        pass

    @abstractmethod
    def compare(self, a: PackageIdentity, b: PackageIdentity) -> VersionComparison:
        """Compare two identities.

        Args:
            a: Identity being compared
            b: Identity compared against

        Returns:
            NEWER if ``a`` supersedes ``b``, OLDER if ``b`` supersedes ``a``,
            EQUAL if neither does, INCOMPARABLE if they are different packages
        """
        pass

    def is_newer(self, a: PackageIdentity, b: PackageIdentity) -> bool:
        """Check whether ``a`` supersedes ``b``."""
        return self.compare(a, b) is VersionComparison.NEWER


"""RPM package format handler.

Implements filename parsing and version ordering for RPM packages.
"""

import re
from pathlib import Path
from typing import List

from ..common.errors import MalformedArtifactName
from ..common.logger import get_logger
from .base import PackageFormat, PackageIdentity, VersionComparison
from .version import rpm_version_compare

logger = get_logger("format.rpm")

RPM_MAGIC = b"\xed\xab\xee\xdb"
RPM_EXTENSION = ".rpm"

# name-version-release.arch.rpm; only the name may contain dashes
RPM_FILENAME_RE = re.compile(
    r"^(?P<name>.+)-(?P<version>[^-]+)-(?P<release>[^-]+)"
    r"\.(?P<arch>[^.-]+)\.rpm$"
)


class RpmPackageFormat(PackageFormat):
    """Handler for RPM package format (.rpm files).

    Artifact filenames follow ``name-version-release.arch.rpm``. Epochs
    are not part of the filename and are not considered.
    """

    @property
    def format_name(self) -> str:
        """Return format identifier."""
        return "rpm"

    @property
    def file_extensions(self) -> List[str]:
        """Return supported file extensions."""
        return [RPM_EXTENSION]

    def detect(self, path: Path) -> bool:
        """Detect if file is an RPM package.

        Checks for RPM magic bytes (0xedabeedb).

        Args:
            path: Path to the file

        Returns:
            True if file is an RPM package
        """
        if not path.exists():
            return False

        try:
            with open(path, "rb") as f:
                if f.read(4) == RPM_MAGIC:
                    return True
        except OSError:
            pass

        # Fall back to extension
        return path.suffix.lower() == RPM_EXTENSION

    def parse(self, filename: str) -> PackageIdentity:
        """Parse an .rpm filename.

        Args:
            filename: Package filename (e.g., 'curl-7.76.1-14.el8.x86_64.rpm')

        Returns:
            PackageIdentity

        Raises:
            MalformedArtifactName: If the name cannot be decomposed
        """
        name = Path(filename).name
        match = RPM_FILENAME_RE.match(name)
        if not match:
            raise MalformedArtifactName(name)

        return PackageIdentity(
            base_name=match.group("name"),
            version=match.group("version"),
            release=match.group("release"),
            architecture=match.group("arch"),
            full_artifact_name=name,
        )

    def render(self, identity: PackageIdentity) -> str:
        """Render an identity as ``name-version-release.arch.rpm``."""
        return f"{identity.nvra}{RPM_EXTENSION}"

    def compare(self, a: PackageIdentity, b: PackageIdentity) -> VersionComparison:
        """Compare two RPM identities by version, then release."""
        if not a.is_comparable(b):
            return VersionComparison.INCOMPARABLE

        result = rpm_version_compare(a.version, b.version)
        if result == 0:
            result = rpm_version_compare(a.release, b.release)

        if result > 0:
            return VersionComparison.NEWER
        if result < 0:
            return VersionComparison.OLDER
        return VersionComparison.EQUAL

    def strip_extension(self, name: str) -> str:
        """Turn an artifact filename into the name a resolver is queried with.

        Args:
            name: Package name or artifact filename

        Returns:
            Name without a trailing ``.rpm``
        """
        if name.endswith(RPM_EXTENSION):
            return name[: -len(RPM_EXTENSION)]
        return name

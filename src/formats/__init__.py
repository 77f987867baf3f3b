"""Package format handlers.

Reduces artifact filenames to package identities and orders identities
of the same package.
"""

from .base import (
    PackageFormat,
    PackageIdentity,
    VersionComparison,
)
from .rpm import RpmPackageFormat, RPM_EXTENSION
from .version import rpm_version_compare

__all__ = [
    "PackageFormat",
    "PackageIdentity",
    "VersionComparison",
    "RpmPackageFormat",
    "RPM_EXTENSION",
    "rpm_version_compare",
]

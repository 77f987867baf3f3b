"""Difference between the known manifest and the package directory."""

import re
from dataclasses import dataclass, field
from typing import List

from ..common.config import SyncContext
from ..scanner.scan_packages import scan_packages
from .state import ManifestStore

NOT_DOWNLOADED_HEADER = "=== Packages Not Downloaded ==="
NOT_RECORDED_HEADER = "=== Packages Downloaded not Recorded ==="
NO_DIFFERENCES = "=== No Differences Found ==="

# "  ~ foo-bar-1.0-1.el8.x86_64.rpm" lines of a saved diff
_NOT_RECORDED_LINE_RE = re.compile(r"^\s+~\s+(\S.*)$")
_VERSION_START_RE = re.compile(r"-\d+")


@dataclass
class PackageDiff:
    """Known packages without artifacts, and artifacts without records."""

    not_downloaded: List[str] = field(default_factory=list)
    not_recorded: List[str] = field(default_factory=list)

    @property
    def has_differences(self) -> bool:
        return bool(self.not_downloaded or self.not_recorded)


def diff_packages(context: SyncContext) -> PackageDiff:
    """Compare known package keys with the base names found on disk.

    Args:
        context: Target directory to inspect

    Returns:
        PackageDiff; ``not_downloaded`` holds keys, ``not_recorded``
        artifact filenames

    Raises:
        PersistenceError: If the known manifest cannot be read
    """
    store = ManifestStore(context.target_dir, context.known_manifest, context.unknown_manifest)
    known = store.load_known()
    downloaded = scan_packages(context.packages_path)

    return PackageDiff(
        not_downloaded=sorted(set(known) - set(downloaded)),
        not_recorded=[
            downloaded[base].rpm_name for base in sorted(set(downloaded) - set(known))
        ],
    )


def format_diff(diff: PackageDiff) -> str:
    """Render a diff the way ``parse_diff_output`` reads it back."""
    if not diff.has_differences:
        return NO_DIFFERENCES

    lines = []
    if diff.not_downloaded:
        lines.append(NOT_DOWNLOADED_HEADER)
        lines.extend(f"  - {key}" for key in diff.not_downloaded)
    if diff.not_recorded:
        lines.append(NOT_RECORDED_HEADER)
        lines.extend(f"  ~ {rpm_name}" for rpm_name in diff.not_recorded)
    return "\n".join(lines)


def parse_diff_output(text: str) -> List[str]:
    """Extract package names from the "not recorded" lines of a saved diff.

    The name is everything before the first ``-<digit>``, so
    ``foo-bar-1.0-1.x86_64.rpm`` yields ``foo-bar``.
    """
    names = []
    for line in text.splitlines():
        match = _NOT_RECORDED_LINE_RE.match(line)
        if match:
            names.append(_VERSION_START_RE.split(match.group(1).strip(), maxsplit=1)[0])
    return names

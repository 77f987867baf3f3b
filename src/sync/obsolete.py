"""Retirement of superseded artifacts.

When a newer artifact of a package arrives, older artifacts of the same
package are moved into the obsolete area instead of being deleted.
"""

import glob
from pathlib import Path
from typing import List, Optional, Tuple

from ..common.errors import MalformedArtifactName
from ..common.logger import get_logger
from ..formats.base import PackageIdentity
from ..formats.rpm import RPM_EXTENSION
from .fetch import PackageFetcher
from .records import PackageRecord

logger = get_logger("sync.obsolete")


class ObsolescenceManager:
    """Fetches the latest artifact of a package and retires older ones."""

    def __init__(self, fetcher: PackageFetcher, obsolete_dir: Path):
        self.fetcher = fetcher
        self.packages_dir = fetcher.packages_dir
        self.obsolete_dir = Path(obsolete_dir)
        self.rpm_format = fetcher.rpm_format

    def update(self, package_key: str) -> Optional[PackageRecord]:
        """Fetch the latest artifact for a package.

        Args:
            package_key: Package name; globs understood by the resolver
                are allowed

        Returns:
            Record of the fetched artifact keyed by its base name, or
            None if it could not be resolved, fetched or validated
        """
        record, _ = self.update_and_retire(package_key)
        return record

    def update_and_retire(
        self, package_key: str
    ) -> Tuple[Optional[PackageRecord], List[str]]:
        """Like ``update`` but also report which artifacts were retired."""
        result = self.fetcher.fetch_by_name(package_key)
        if not result.is_success:
            logger.info(f"Failed to update {package_key} -> {result.error}")
            return None, []

        try:
            identity = self.rpm_format.parse(result.rpm_name)
        except MalformedArtifactName as e:
            logger.warning(f"Failed to update {package_key} -> {e}")
            return None, []

        retired = self.retire_older(identity)
        source = result.locator.url if result.locator else None
        record = PackageRecord(
            key=identity.base_name, rpm_name=identity.full_artifact_name, source=source
        )
        return record, retired

    def retire_older(self, identity: PackageIdentity) -> List[str]:
        """Move artifacts superseded by ``identity`` into the obsolete area.

        Only artifacts of the same base name and architecture that are
        strictly older move; ``identity`` itself never does.

        Args:
            identity: Identity of the artifact just adopted

        Returns:
            Filenames of the retired artifacts
        """
        retired = []
        pattern = f"{glob.escape(identity.base_name)}*{RPM_EXTENSION}"

        with self.fetcher.locks.hold(identity.base_name):
            for candidate in sorted(self.packages_dir.glob(pattern)):
                if candidate.name == identity.full_artifact_name or not candidate.is_file():
                    continue

                try:
                    other = self.rpm_format.parse(candidate.name)
                except MalformedArtifactName:
                    continue

                if not self.rpm_format.is_newer(identity, other):
                    continue

                logger.info(f"Retiring {candidate.name}")
                try:
                    self.obsolete_dir.mkdir(parents=True, exist_ok=True)
                    candidate.replace(self.obsolete_dir / candidate.name)
                except OSError as e:
                    logger.error(f"Could not retire {candidate.name}: {e}")
                    continue
                retired.append(candidate.name)

        return retired

"""Inventory of the artifacts physically present in a package directory."""

from pathlib import Path
from typing import Dict, Optional

from ..common.errors import MalformedArtifactName
from ..common.logger import get_logger
from ..formats.base import VersionComparison
from ..formats.rpm import RPM_EXTENSION, RpmPackageFormat
from ..sync.records import PackageRecord

logger = get_logger("scanner.packages")


def scan_packages(
    directory: Path, rpm_format: Optional[RpmPackageFormat] = None
) -> Dict[str, PackageRecord]:
    """Enumerate the artifacts in a package directory.

    Only files directly under ``directory`` are considered, so the
    obsolete area and partial downloads are never picked up. Files whose
    names cannot be parsed are skipped.

    Args:
        directory: Package directory to scan
        rpm_format: Format handler used to parse filenames

    Returns:
        Mapping of base name to a record carrying only ``rpm_name``. When
        several artifacts share a base name the newest one is kept.
    """
    rpm_format = rpm_format or RpmPackageFormat()
    directory = Path(directory)
    downloaded: Dict[str, PackageRecord] = {}

    if not directory.is_dir():
        logger.debug(f"Package directory {directory} does not exist")
        return downloaded

    identities = {}
    for artifact in sorted(directory.glob(f"*{RPM_EXTENSION}")):
        if not artifact.is_file():
            continue

        try:
            identity = rpm_format.parse(artifact.name)
        except MalformedArtifactName as e:
            logger.warning(f"Skipping {artifact.name}: {e}")
            continue

        current = identities.get(identity.base_name)
        if current is not None:
            if rpm_format.compare(identity, current) is not VersionComparison.NEWER:
                logger.debug(
                    f"Multiple artifacts for {identity.base_name}, keeping "
                    f"{current.full_artifact_name} over {artifact.name}"
                )
                continue
            logger.debug(
                f"Multiple artifacts for {identity.base_name}, keeping "
                f"{artifact.name} over {current.full_artifact_name}"
            )

        identities[identity.base_name] = identity
        downloaded[identity.base_name] = PackageRecord(
            key=identity.base_name, rpm_name=artifact.name
        )

    return downloaded

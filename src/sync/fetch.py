"""Resolve, fetch and validate a single artifact into the package directory."""

from pathlib import Path
from typing import Optional

from ..common.errors import FetchError, MalformedArtifactName
from ..common.logger import get_logger
from ..formats.rpm import RpmPackageFormat
from ..repos.base import FetchResult, FetchStatus, Locator, SourceResolver
from ..scanner.base import ArtifactValidator
from .locks import KeyedLocks

logger = get_logger("sync.fetch")


class PackageFetcher:
    """Brings artifacts into the package directory.

    A file that already exists under the artifact's name is reused.
    Fresh downloads only count once the validator accepts them; rejected
    files are removed again.
    """

    def __init__(
        self,
        packages_dir: Path,
        resolver: SourceResolver,
        validator: ArtifactValidator,
        rpm_format: Optional[RpmPackageFormat] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.packages_dir = Path(packages_dir)
        self.resolver = resolver
        self.validator = validator
        self.rpm_format = rpm_format or RpmPackageFormat()
        self.locks = locks or KeyedLocks()

    def lock_key(self, filename: str) -> str:
        """Key serialising writes for an artifact: its base name if known."""
        try:
            return self.rpm_format.parse(filename).base_name
        except MalformedArtifactName:
            return filename

    def fetch_by_name(self, name: str) -> FetchResult:
        """Resolve a package name through the resolver and fetch it.

        Args:
            name: Package name, glob or artifact filename

        Returns:
            FetchResult; carries the lookup error when resolution failed
        """
        resolved = self.resolver.resolve_source(name)
        if not resolved.is_found:
            logger.debug(f"Could not resolve {name}: {resolved.error}")
            return FetchResult.from_resolve_failure(resolved)

        return self.fetch_locator(resolved.locator)

    def fetch_locator(self, locator: Locator) -> FetchResult:
        """Fetch a known locator.

        Args:
            locator: Location of the artifact

        Returns:
            FetchResult; INVALID when the validator rejected the download
        """
        filename = locator.filename
        dest = self.packages_dir / filename

        with self.locks.hold(self.lock_key(filename)):
            if filename and dest.is_file():
                return FetchResult(
                    status=FetchStatus.ALREADY_PRESENT, locator=locator, path=dest
                )

            try:
                self.packages_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Cannot create {self.packages_dir}: {e}")
                return FetchResult(
                    status=FetchStatus.ERROR,
                    locator=locator,
                    error=FetchError(
                        f"{filename} could not be stored in {self.packages_dir}: {e}",
                        locator=locator.url,
                    ),
                )

            result = self.resolver.fetch(locator, self.packages_dir)
            if not result.is_success:
                return result

            validation = self.validator.validate(result.path)
            if not validation.valid:
                logger.warning(f"Removing invalid download {result.path.name}: {validation.reason}")
                result.path.unlink(missing_ok=True)
                return FetchResult(
                    status=FetchStatus.INVALID, locator=locator, error=validation.error
                )

            return result

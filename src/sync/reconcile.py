"""Reconciliation of the known manifest, the package directory and the
unknown manifest of a target directory.

A run goes through four phases:

1. Integrity sweep: artifacts already on disk are validated and corrupt
   ones removed.
2. Known packages without an artifact on disk are fetched, falling back
   to an update of the package when the recorded artifact is gone.
3. Artifacts on disk that no known record names are promoted into the
   known manifest when their source resolves, and filed as unknown
   otherwise.
4. Both manifests are rewritten.

Per-package failures never abort a run; they are collected in the
report, whose status tells the caller whether anything went wrong.
"""

import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from ..common.config import SyncContext
from ..common.errors import MalformedArtifactName, NothingToReconcile, SyncError
from ..common.logger import get_logger
from ..formats.rpm import RPM_EXTENSION, RpmPackageFormat
from ..repos.base import FetchResult, FetchStatus, Locator, SourceResolver
from ..scanner.base import ArtifactValidator, ValidationResult
from ..scanner.scan_packages import scan_packages
from .fetch import PackageFetcher
from .obsolete import ObsolescenceManager
from .records import Manifest, PackageRecord
from .state import ManifestStore

logger = get_logger("sync.reconcile")

# A recorded source is only fetched directly when it is a URI
SOURCE_SCHEME_RE = re.compile(r"^[a-z]+://")

T = TypeVar("T")
R = TypeVar("R")


class ReconcileStatus(Enum):
    """Overall outcome of a reconciliation run."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class Substitution:
    """A known package that now refers to a different artifact."""

    key: str
    original: str
    adopted: str
    reason: str


@dataclass
class ReconciliationReport:
    """Result of a reconciliation run."""

    status: ReconcileStatus
    updated_known: Manifest = field(default_factory=dict)
    updated_unknown: Manifest = field(default_factory=dict)
    failures: Dict[str, SyncError] = field(default_factory=dict)
    substitutions: List[Substitution] = field(default_factory=list)
    retired: List[str] = field(default_factory=list)
    fetched: List[str] = field(default_factory=list)
    resolved_unknowns: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def is_success(self) -> bool:
        """Check whether every package reconciled cleanly."""
        return self.status is ReconcileStatus.SUCCESS

    def format_failures(self) -> List[str]:
        """Render failures as ``  * key => error`` lines, sorted by key."""
        return [f"  * {key} => {self.failures[key]}" for key in sorted(self.failures)]


@dataclass
class _KeyOutcome:
    """What happened to one known package during step 2."""

    key: str
    record: Optional[PackageRecord] = None
    fetched: bool = False
    retired: List[str] = field(default_factory=list)
    substitution: Optional[Substitution] = None
    error: Optional[SyncError] = None


class ReconciliationEngine:
    """Brings a target directory into a consistent state.

    The engine owns no global state: everything about the target comes
    from the ``SyncContext`` it is built with, and the source resolver
    and validator are injected.
    """

    def __init__(
        self,
        context: SyncContext,
        resolver: SourceResolver,
        validator: ArtifactValidator,
        rpm_format: Optional[RpmPackageFormat] = None,
        store: Optional[ManifestStore] = None,
    ):
        self.context = context
        self.resolver = resolver
        self.validator = validator
        self.rpm_format = rpm_format or RpmPackageFormat()
        self.store = store or ManifestStore(
            context.target_dir, context.known_manifest, context.unknown_manifest
        )
        self.fetcher = PackageFetcher(
            context.packages_path, resolver, validator, rpm_format=self.rpm_format
        )
        self.obsolescence = ObsolescenceManager(self.fetcher, context.obsolete_path)

    def reconcile(self) -> ReconciliationReport:
        """Run a full reconciliation.

        Returns:
            ReconciliationReport; PARTIAL_FAILURE when any package failed

        Raises:
            NothingToReconcile: If the target holds nothing to work on
            PersistenceError: If a manifest cannot be read or written
        """
        start = time.monotonic()
        target = self.context.target_dir

        if not target.is_dir():
            raise NothingToReconcile(f"Target directory {target} does not exist")

        if not self.store.has_known_manifest() and not self.context.packages_path.is_dir():
            raise NothingToReconcile(
                f"Neither {self.store.known_path.name} nor "
                f"{self.context.packages_dir}/ exist in {target}"
            )

        known = self.store.load_known()
        previous_unknown = self.store.load_unknown()
        downloaded = scan_packages(self.context.packages_path, self.rpm_format)

        if not known and not downloaded and not self._has_mirrored_repos():
            raise NothingToReconcile(
                f"No packages in {self.store.known_path.name} or "
                f"{self.context.packages_dir}/ and no repos in reposync/ under {target}"
            )

        logger.info(
            f"Reconciling {target}: {len(known)} known, {len(downloaded)} downloaded"
        )

        report = ReconciliationReport(status=ReconcileStatus.SUCCESS)

        if self._sweep(report):
            downloaded = scan_packages(self.context.packages_path, self.rpm_format)
        self._fetch_known(known, downloaded, report)
        unknown = self._absorb_unknowns(known, downloaded, report)

        self.store.save_known(known)
        self.store.save_unknown(unknown)

        report.updated_known = known
        report.updated_unknown = unknown
        report.resolved_unknowns = sorted(set(previous_unknown) - set(unknown))
        if report.failures:
            report.status = ReconcileStatus.PARTIAL_FAILURE
        report.duration_seconds = time.monotonic() - start

        logger.info(
            f"Reconciliation of {target} finished in {report.duration_seconds:.2f}s: "
            f"{len(report.fetched)} fetched, {len(report.retired)} retired, "
            f"{len(report.failures)} failed"
        )
        return report

    def _has_mirrored_repos(self) -> bool:
        return any((self.context.target_dir / "reposync").glob("**/repomd.xml"))

    def _map(self, func: Callable[[T], R], items: Iterable[T]) -> List[R]:
        """Apply ``func`` to every item, in parallel when allowed.

        Results come back in the order of ``items``.
        """
        items = list(items)
        workers = min(self.context.max_parallel_fetches, len(items))
        if workers <= 1:
            return [func(item) for item in items]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rpmsync") as pool:
            return list(pool.map(func, items))

    def _sweep(self, report: ReconciliationReport) -> bool:
        """Validate every artifact on disk and drop anything corrupt.

        Older versions and other architectures sharing a base name are
        validated too, not only the artifact the scan picks per base name.

        Returns:
            True when at least one artifact was removed
        """
        packages_path = self.context.packages_path
        if not packages_path.is_dir():
            return False

        artifacts = sorted(
            path for path in packages_path.glob(f"*{RPM_EXTENSION}") if path.is_file()
        )
        results = self._map(self.validator.validate, artifacts)

        removed = False
        for path, result in zip(artifacts, results):
            if result.valid:
                continue
            self._discard(path, result)
            report.failures[path.name] = result.error
            removed = True
        return removed

    def _discard(self, path: Path, result: ValidationResult) -> None:
        logger.warning(f"Removing invalid artifact {path.name}: {result.reason}")
        try:
            with self.fetcher.locks.hold(self.fetcher.lock_key(path.name)):
                path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not remove {path.name}: {e}")

    def _fetch_known(
        self, known: Manifest, downloaded: Manifest, report: ReconciliationReport
    ) -> None:
        """Fetch known packages whose artifact is not on disk."""
        packages_path = self.context.packages_path
        missing = [
            (key, known[key])
            for key in sorted(known)
            if not (packages_path / known[key].rpm_name).is_file()
        ]
        if not missing:
            return

        logger.info(f"Fetching {len(missing)} known packages")
        outcomes = self._map(lambda item: self._resolve_known(*item), missing)

        # Single writer: manifests only change here, after all workers finished
        for outcome in outcomes:
            report.retired.extend(outcome.retired)

            if outcome.error is not None:
                logger.error(f"Could not fetch {outcome.key}: {outcome.error}")
                report.failures[outcome.key] = outcome.error
                continue

            record = outcome.record
            known[outcome.key] = record
            if outcome.fetched:
                report.fetched.append(record.rpm_name)
            if outcome.substitution is not None:
                sub = outcome.substitution
                logger.warning(f"Updating: {sub.original} with {sub.adopted} ({sub.reason})")
                report.substitutions.append(sub)

            self._remember(downloaded, record.rpm_name, outcome.retired)

    def _remember(self, downloaded: Manifest, rpm_name: str, retired: List[str]) -> None:
        """Record a freshly adopted artifact in the downloaded set."""
        identity = self.rpm_format.parse(rpm_name)
        current = downloaded.get(identity.base_name)
        if current is not None and current.rpm_name not in retired:
            try:
                other = self.rpm_format.parse(current.rpm_name)
            except MalformedArtifactName:
                other = None
            if other is not None and not self.rpm_format.is_newer(identity, other):
                return

        downloaded[identity.base_name] = PackageRecord(
            key=identity.base_name, rpm_name=rpm_name
        )

    def _resolve_known(self, key: str, record: PackageRecord) -> _KeyOutcome:
        """Fetch one known package, runs on a worker thread."""
        source = record.source
        if source and SOURCE_SCHEME_RE.match(source):
            result = self.fetcher.fetch_locator(Locator(source))
            if not result.is_success and self.context.allow_substitution:
                logger.info(
                    f"Fetching {record.rpm_name} from {source} failed ({result.error}); "
                    f"resolving {key} instead"
                )
                fallback = self.fetcher.fetch_by_name(key)
                if fallback.is_success:
                    result = fallback
        else:
            result = self.fetcher.fetch_by_name(
                self.rpm_format.strip_extension(record.rpm_name)
            )

        if result.is_success:
            return self._adopt(key, record, result)

        # Last resort: whatever the latest artifact of the package is
        updated, retired = self.obsolescence.update_and_retire(key)
        if updated is None:
            return _KeyOutcome(key=key, error=result.error)

        return _KeyOutcome(
            key=key,
            record=record.with_artifact(updated.rpm_name, updated.source),
            fetched=True,
            retired=retired,
            substitution=self._substitution(
                key, record, updated.rpm_name, f"updated after: {result.error}"
            ),
        )

    def _adopt(self, key: str, record: PackageRecord, result: FetchResult) -> _KeyOutcome:
        rpm_name = result.rpm_name
        try:
            identity = self.rpm_format.parse(rpm_name)
        except MalformedArtifactName as e:
            return _KeyOutcome(key=key, error=e)

        retired = self.obsolescence.retire_older(identity)
        adopted = record
        if rpm_name != record.rpm_name:
            source = result.locator.url if result.locator else None
            adopted = record.with_artifact(rpm_name, source)
        return _KeyOutcome(
            key=key,
            record=adopted,
            fetched=result.status is FetchStatus.FETCHED,
            retired=retired,
            substitution=self._substitution(
                key, record, rpm_name, "resolved to a different artifact"
            ),
        )

    def _substitution(
        self, key: str, record: PackageRecord, rpm_name: str, reason: str
    ) -> Optional[Substitution]:
        if rpm_name == record.rpm_name:
            return None
        return Substitution(key=key, original=record.rpm_name, adopted=rpm_name, reason=reason)

    def _absorb_unknowns(
        self, known: Manifest, downloaded: Manifest, report: ReconciliationReport
    ) -> Manifest:
        """Record artifacts on disk that no known package refers to.

        Returns:
            The new unknown manifest
        """
        recorded = {record.rpm_name for record in known.values()}
        new = [
            downloaded[base]
            for base in sorted(downloaded)
            if downloaded[base].rpm_name not in recorded
            and not self._is_outdated(downloaded[base], known.get(base))
        ]
        unknown: Manifest = {}
        if not new:
            return unknown

        logger.info(f"Looking up sources of {len(new)} unrecorded packages")
        lookups = self._map(
            lambda record: self.resolver.resolve_source(
                self.rpm_format.strip_extension(record.rpm_name)
            ),
            new,
        )

        for record, lookup in zip(new, lookups):
            if lookup.is_found:
                current = known.get(record.key)
                if current is not None:
                    known[record.key] = current.with_artifact(record.rpm_name, lookup.locator.url)
                    self._supersede(current, record.rpm_name, report)
                else:
                    known[record.key] = PackageRecord(
                        key=record.key, rpm_name=record.rpm_name, source=lookup.locator.url
                    )
                logger.info(f"Recording {record.rpm_name} from {lookup.locator}")
                continue

            logger.warning(f"No source for {record.rpm_name}: {lookup.error}")
            unknown[record.key] = PackageRecord(key=record.key, rpm_name=record.rpm_name)
            report.failures[record.key] = lookup.error

        return unknown

    def _supersede(
        self, current: PackageRecord, rpm_name: str, report: ReconciliationReport
    ) -> None:
        """Report a known record moving to a newer artifact found on disk."""
        sub = self._substitution(current.key, current, rpm_name, "newer artifact on disk")
        logger.warning(f"Updating: {sub.original} with {sub.adopted} ({sub.reason})")
        report.substitutions.append(sub)
        report.retired.extend(self.obsolescence.retire_older(self.rpm_format.parse(rpm_name)))

    def _is_outdated(self, record: PackageRecord, current: Optional[PackageRecord]) -> bool:
        """Check whether a known record already names a newer artifact."""
        if current is None:
            return False
        try:
            on_disk = self.rpm_format.parse(record.rpm_name)
            recorded = self.rpm_format.parse(current.rpm_name)
        except MalformedArtifactName:
            return False
        if self.rpm_format.is_newer(on_disk, recorded):
            return False
        logger.debug(f"Leaving {record.rpm_name}, {current.key} records {current.rpm_name}")
        return True


def reconcile(
    context: SyncContext, resolver: SourceResolver, validator: ArtifactValidator
) -> ReconciliationReport:
    """Reconcile the target directory of ``context``.

    Args:
        context: Target directory and run options
        resolver: Source resolver used for lookups and downloads
        validator: Validator gating every artifact

    Returns:
        ReconciliationReport

    Raises:
        NothingToReconcile: If the target holds nothing to work on
        PersistenceError: If a manifest cannot be read or written
    """
    return ReconciliationEngine(context, resolver, validator).reconcile()

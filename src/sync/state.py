"""Persistence of the known and unknown package manifests.

Both manifests are YAML mappings of package key to record. They are
always rewritten whole, sorted by key with fields sorted by name, so that
successive runs produce reviewable diffs.
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict

import yaml

from ..common.errors import PersistenceError
from ..common.logger import get_logger
from .records import Manifest, PackageRecord

logger = get_logger("sync.state")

KNOWN_MANIFEST = "packages.yaml"
UNKNOWN_MANIFEST = "unknown_packages.yaml"


class ManifestStore:
    """Loads and saves the manifests of one target directory."""

    def __init__(
        self,
        target_dir: Path,
        known_name: str = KNOWN_MANIFEST,
        unknown_name: str = UNKNOWN_MANIFEST,
    ):
        self.target_dir = Path(target_dir)
        self.known_path = self.target_dir / known_name
        self.unknown_path = self.target_dir / unknown_name

    def has_known_manifest(self) -> bool:
        """Check whether the known manifest file exists."""
        return self.known_path.is_file()

    def load_known(self) -> Manifest:
        """Load the known manifest.

        Returns:
            Manifest, empty if the file does not exist

        Raises:
            PersistenceError: If the file cannot be read or mixes legacy
                and current records
        """
        return self._load(self.known_path)

    def load_unknown(self) -> Manifest:
        """Load the unknown manifest."""
        return self._load(self.unknown_path)

    def save_known(self, manifest: Manifest) -> None:
        """Rewrite the known manifest.

        Raises:
            PersistenceError: If the file cannot be written
        """
        self._write(self.known_path, manifest)

    def save_unknown(self, manifest: Manifest) -> None:
        """Rewrite the unknown manifest, or remove it when empty.

        Raises:
            PersistenceError: If the file cannot be written or removed
        """
        if manifest:
            self._write(self.unknown_path, manifest)
            return

        try:
            self.unknown_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Could not remove {self.unknown_path}: {e}") from e

    def _load(self, path: Path) -> Manifest:
        raw = self._read_document(path)
        records = {
            str(key): self._normalise_fields(path, key, value)
            for key, value in raw.items()
        }
        records = self._migrate(path, records)

        manifest: Manifest = {}
        for key, data in records.items():
            record = PackageRecord.from_dict(key, data)
            if not record.is_well_formed:
                logger.warning(
                    f"Dropping malformed entry '{key}' from {path.name}: "
                    f"rpm_name {record.rpm_name!r}"
                )
                continue
            manifest[key] = record

        return manifest

    def _read_document(self, path: Path) -> Dict[Any, Any]:
        if not path.exists():
            return {}

        try:
            with path.open("r") as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

        # An empty (or fully commented) file holds no document
        if document is None:
            return {}

        if not isinstance(document, dict):
            raise PersistenceError(
                f"{path} must contain a mapping, got {type(document).__name__}"
            )

        return document

    def _normalise_fields(self, path: Path, key: Any, value: Any) -> Dict[str, Any]:
        """Turn one manifest value into a field mapping.

        Older tooling serialised field names as symbols (``:rpm_name:``);
        the leading colon is dropped.
        """
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise PersistenceError(
                f"Entry '{key}' in {path} must be a mapping, got {type(value).__name__}"
            )
        return {str(name).lstrip(":"): field for name, field in value.items()}

    def _migrate(
        self, path: Path, records: Dict[str, Dict[str, Any]]
    ) -> Dict[str, Dict[str, Any]]:
        """Convert a legacy manifest, keyed by artifact name, to the current shape.

        A manifest is either entirely legacy (no record names its artifact)
        or entirely current; anything in between is rejected.
        """
        if not records:
            return records

        missing = [key for key, data in records.items() if "rpm_name" not in data]
        if not missing:
            return records

        if len(missing) != len(records):
            raise PersistenceError(
                f"{path} mixes legacy and current entries; "
                f"entries without rpm_name: {', '.join(sorted(missing))}"
            )

        logger.info(f"Converting legacy manifest {path.name}")
        return {key: dict(data, rpm_name=key) for key, data in records.items()}

    def _write(self, path: Path, manifest: Manifest) -> None:
        document = {}
        for key in sorted(manifest):
            record = manifest[key]
            # Never persist malformed entries
            if record.is_well_formed:
                document[key] = record.to_dict()

        temp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=str(path.parent), prefix=f".{path.name}.", delete=False
            ) as handle:
                temp_name = handle.name
                yaml.safe_dump(document, handle, default_flow_style=False, sort_keys=True)
            os.replace(temp_name, path)
        except (OSError, yaml.YAMLError) as e:
            if temp_name and os.path.exists(temp_name):
                os.unlink(temp_name)
            raise PersistenceError(f"Could not write {path}: {e}") from e

        logger.debug(f"Wrote {len(document)} entries to {path}")

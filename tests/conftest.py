"""Pytest configuration and shared fixtures."""

import threading
from pathlib import Path
from typing import Dict, List

import pytest
import yaml

from src.common.config import SyncContext
from src.common.errors import FetchError
from src.formats.rpm import RPM_MAGIC
from src.repos.base import FetchResult, FetchStatus, Locator, ResolveResult, SourceResolver
from src.scanner.base import ArtifactValidator, ValidationResult

MIRROR_URL = "https://mirror.example.com/el8/x86_64"

# Smallest payload the fake validator accepts
VALID_RPM = RPM_MAGIC + b"\x00" * 96
CORRUPT_RPM = b"<html>404 Not Found</html>"


def write_rpm(directory: Path, rpm_name: str, payload: bytes = VALID_RPM) -> Path:
    """Create an artifact file in ``directory``."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / rpm_name
    path.write_bytes(payload)
    return path


def write_manifest(path: Path, data: Dict) -> Path:
    """Write a manifest file the way an operator would."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    return path


def read_manifest(path: Path) -> Dict:
    """Read a manifest file back as plain data."""
    return yaml.safe_load(path.read_text())


class FakeResolver(SourceResolver):
    """In-memory resolver serving artifacts published to it."""

    def __init__(self):
        self.sources: Dict[str, str] = {}
        self.payloads: Dict[str, bytes] = {}
        self.resolve_calls: List[str] = []
        self.fetch_calls: List[str] = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def resolver_name(self) -> str:
        return "fake"

    def publish(self, rpm_name: str, *names: str, payload: bytes = VALID_RPM) -> str:
        """Serve ``rpm_name`` and make it resolvable under ``names``.

        The artifact name without ``.rpm`` always resolves.
        """
        url = f"{MIRROR_URL}/{rpm_name}"
        self.payloads[url] = payload
        self.sources[rpm_name[: -len(".rpm")]] = url
        for name in names:
            self.sources[name] = url
        return url

    def resolve_source(self, name: str) -> ResolveResult:
        with self._lock:
            self.resolve_calls.append(name)
        url = self.sources.get(name)
        if url is None:
            return ResolveResult.not_found(name)
        return ResolveResult.found(name, url)

    def fetch(self, locator: Locator, dest_dir: Path) -> FetchResult:
        with self._lock:
            self.fetch_calls.append(locator.url)
        payload = self.payloads.get(locator.url)
        if payload is None:
            return FetchResult(
                status=FetchStatus.ERROR,
                locator=locator,
                error=FetchError(f"{locator.filename} could not be downloaded: HTTP 404"),
            )
        path = write_rpm(Path(dest_dir), locator.filename, payload)
        return FetchResult(status=FetchStatus.FETCHED, locator=locator, path=path)

    def close(self) -> None:
        self.closed = True


class FakeValidator(ArtifactValidator):
    """Accepts any file that starts with the RPM lead magic."""

    def __init__(self):
        self.validated: List[str] = []
        self._lock = threading.Lock()

    def validate(self, path: Path) -> ValidationResult:
        path = Path(path)
        with self._lock:
            self.validated.append(path.name)
        if not path.is_file():
            return ValidationResult.invalid(str(path), "file not found")
        if path.read_bytes()[:4] != RPM_MAGIC:
            return ValidationResult.invalid(str(path), "invalid RPM magic bytes")
        return ValidationResult(path=str(path), valid=True, checks_passed=["file_header"])


@pytest.fixture
def target_dir(tmp_path) -> Path:
    """Empty target directory with a package directory."""
    target = tmp_path / "yum_data"
    (target / "packages").mkdir(parents=True)
    return target


@pytest.fixture
def packages_dir(target_dir) -> Path:
    return target_dir / "packages"


@pytest.fixture
def context(target_dir) -> SyncContext:
    """Single-threaded context without substitution."""
    return SyncContext(target_dir=target_dir, max_parallel_fetches=1)


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def validator() -> FakeValidator:
    return FakeValidator()


@pytest.fixture
def sample_config() -> Dict:
    """Sample configuration dictionary."""
    return {
        "target_dir": "/srv/mirror/yum_data",
        "arch": "aarch64",
        "allow_substitution": False,
        "max_parallel_fetches": 8,
        "resolver": {
            "yum_conf": "/srv/mirror/yum.conf",
            "repoquery_command": ["dnf", "repoquery"],
            "timeout": 120,
            "max_retries": 5,
            "retry_delay": 1,
        },
        "validator": {
            "timeout": 30,
            "check_signature": True,
        },
        "logging": {
            "level": "DEBUG",
            "log_dir": "/tmp/rpmsync-logs",
        },
    }


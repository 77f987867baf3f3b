"""YUM-backed source resolver for RPM packages.

Looks packages up with ``repoquery --location`` against the repositories
of a yum configuration and downloads the resulting locations over HTTP,
or copies them for ``file://`` repositories.
"""

import os
import re
import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote, urlparse

import httpx

from ..common.errors import FetchError, MalformedArtifactName
from ..common.logger import get_logger
from ..formats.rpm import RpmPackageFormat
from .base import FetchResult, FetchStatus, Locator, ResolveResult, SourceResolver

logger = get_logger("repo.yum")

LOCATION_RE = re.compile(r"^[a-z]+://\S+$")


class YumSourceResolver(SourceResolver):
    """Source resolver using repoquery and plain HTTP downloads."""

    def __init__(
        self,
        yum_conf: Optional[str] = None,
        arch: str = "x86_64",
        repoquery_command: Optional[List[str]] = None,
        timeout: int = 300,
        max_retries: int = 3,
        retry_delay: int = 2,
        http_timeout: int = 300,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize the resolver.

        Args:
            yum_conf: Optional yum configuration file passed with ``-c``
            arch: Architecture to resolve for (``noarch`` is always allowed)
            repoquery_command: Command used to query repositories
            timeout: repoquery timeout in seconds
            max_retries: Maximum attempts for a repoquery call
            retry_delay: Initial delay between retries (doubles each retry)
            http_timeout: Download timeout in seconds
            client: Optional preconfigured HTTP client

        Raises:
            RuntimeError: If repoquery is not available
        """
        self.yum_conf = yum_conf
        self.arch = arch
        self.repoquery_command = list(repoquery_command or ["repoquery"])
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.http_timeout = http_timeout
        self._client = client
        self._client_lock = threading.Lock()
        self._owns_client = client is None
        self._rpm_format = RpmPackageFormat()

        self._validate_repoquery()

    @property
    def resolver_name(self) -> str:
        """Return resolver identifier."""
        return "yum"

    def _validate_repoquery(self) -> None:
        """Validate that repoquery is installed and available."""
        try:
            subprocess.run(
                self.repoquery_command + ["--version"],
                capture_output=True,
                check=True,
                timeout=30,
            )
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise RuntimeError(
                f"{' '.join(self.repoquery_command)} not available - install yum-utils or dnf-plugins-core"
            ) from e

    def _run_repoquery(self, args: List[str]) -> subprocess.CompletedProcess:
        """Run a repoquery command with retry logic.

        Args:
            args: Command arguments (without the repoquery command itself)

        Returns:
            CompletedProcess of the first successful attempt

        Raises:
            RuntimeError: If the command fails after all retries
        """
        cmd = self.repoquery_command + args
        delay = self.retry_delay
        last_error = ""

        for attempt in range(self.max_retries):
            try:
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    timeout=self.timeout,
                    check=False,
                )
                if result.returncode == 0:
                    return result
                last_error = result.stderr.decode(errors="replace").strip()
                logger.warning(
                    f"repoquery failed (attempt {attempt + 1}/{self.max_retries}): {last_error}"
                )
            except subprocess.TimeoutExpired:
                last_error = f"timed out after {self.timeout} seconds"
                logger.warning(
                    f"repoquery timed out (attempt {attempt + 1}/{self.max_retries})"
                )

            # Exponential backoff
            if attempt < self.max_retries - 1:
                time.sleep(delay)
                delay *= 2

        raise RuntimeError(
            f"repoquery failed after {self.max_retries} attempts: {last_error}"
        )

    def resolve_source(self, name: str) -> ResolveResult:
        """Find where the repositories serve a package from.

        Args:
            name: Package name, glob or artifact filename

        Returns:
            ResolveResult carrying the newest matching location
        """
        query = self._rpm_format.strip_extension(name)
        args = ["--location", f"--archlist={self.arch},noarch"]
        if self.yum_conf:
            args.extend(["-c", self.yum_conf])
        args.append(query)

        logger.debug(f"Looking up: {query}")

        try:
            result = self._run_repoquery(args)
        except RuntimeError as e:
            return ResolveResult.failed(name, str(e))

        output = result.stdout.decode("utf-8", errors="replace")
        locations = [
            line.strip() for line in output.splitlines() if LOCATION_RE.match(line.strip())
        ]

        if not locations:
            return ResolveResult.not_found(name)

        return ResolveResult.found(name, self._newest_location(locations))

    def _newest_location(self, locations: List[str]) -> str:
        """Pick the location of the newest artifact among several matches."""
        best = locations[-1]
        best_identity = None

        for location in locations:
            try:
                identity = self._rpm_format.parse(Locator(location).filename)
            except MalformedArtifactName:
                continue
            if best_identity is None or self._rpm_format.is_newer(identity, best_identity):
                best, best_identity = location, identity

        return best

    def fetch(self, locator: Locator, dest_dir: Path) -> FetchResult:
        """Download a locator into ``dest_dir``.

        Args:
            locator: Location of the artifact
            dest_dir: Destination directory

        Returns:
            FetchResult with the local path on success
        """
        filename = locator.filename
        if not filename:
            return self._fetch_error(locator, f"{locator} does not name a file")

        dest_dir = Path(dest_dir)
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return self._fetch_error(locator, f"Cannot create {dest_dir}: {e}")
        dest = dest_dir / filename

        logger.info(f"Downloading: {filename}")

        if locator.scheme in ("http", "https"):
            return self._download_http(locator, dest)
        if locator.scheme == "file":
            return self._copy_file(locator, dest)

        return self._fetch_error(locator, f"Unsupported locator scheme: {locator.scheme}")

    def _download_http(self, locator: Locator, dest: Path) -> FetchResult:
        """Stream an HTTP(S) locator into place through a temporary file."""
        try:
            fd, tmp_name = tempfile.mkstemp(dir=str(dest.parent), prefix=".part-", suffix=".tmp")
        except OSError as e:
            return self._fetch_error(locator, f"{dest.name} could not be downloaded: {e}")

        try:
            with os.fdopen(fd, "wb") as f:
                with self.client.stream("GET", locator.url) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes(chunk_size=65536):
                        f.write(chunk)
            os.replace(tmp_name, dest)
        except httpx.HTTPStatusError as e:
            return self._fetch_error(
                locator, f"{dest.name} could not be downloaded: HTTP {e.response.status_code}"
            )
        except (httpx.HTTPError, OSError) as e:
            return self._fetch_error(locator, f"{dest.name} could not be downloaded: {e}")
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)

        return FetchResult(status=FetchStatus.FETCHED, locator=locator, path=dest)

    def _copy_file(self, locator: Locator, dest: Path) -> FetchResult:
        """Copy a ``file://`` locator into place."""
        source = Path(unquote(urlparse(locator.url).path))
        if not source.is_file():
            return self._fetch_error(locator, f"{source} does not exist")

        try:
            shutil.copy2(source, dest)
        except OSError as e:
            return self._fetch_error(locator, f"{dest.name} could not be copied: {e}")

        return FetchResult(status=FetchStatus.FETCHED, locator=locator, path=dest)

    def _fetch_error(self, locator: Locator, message: str) -> FetchResult:
        logger.warning(message)
        return FetchResult(
            status=FetchStatus.ERROR,
            locator=locator,
            error=FetchError(message, locator=locator.url),
        )

    @property
    def client(self) -> httpx.Client:
        """HTTP client used for downloads, created on first use."""
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self.http_timeout, follow_redirects=True)
            return self._client

    def close(self) -> None:
        """Close the HTTP client if this resolver created it."""
        with self._client_lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None

    def __enter__(self) -> "YumSourceResolver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

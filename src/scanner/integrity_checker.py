"""Package integrity verification for RPM packages.

Verifies that a file is a readable RPM with intact digests before it is
accepted into the mirror. Signature verification is opt-in because
mirrored third-party packages are frequently signed with keys the build
host does not carry.
"""

import subprocess
from pathlib import Path
from typing import List

from ..common.logger import get_logger
from ..formats.rpm import RPM_MAGIC
from .base import ArtifactValidator, ValidationResult


class IntegrityChecker(ArtifactValidator):
    """Integrity verification for .rpm files using ``rpm -K``."""

    def __init__(self, timeout: int = 60, check_signature: bool = False):
        """Initialize integrity checker.

        Args:
            timeout: Timeout in seconds for a single ``rpm -K`` call
            check_signature: Also require a valid signature

        Raises:
            RuntimeError: If the rpm tool is not available
        """
        self.timeout = timeout
        self.check_signature = check_signature
        self.logger = get_logger("integrity_checker")

        self._validate_rpm_tool()

    def _validate_rpm_tool(self) -> None:
        """Validate that rpm is installed and available."""
        try:
            subprocess.run(
                ["rpm", "--version"],
                capture_output=True,
                check=True,
                timeout=10,
            )
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            raise RuntimeError("rpm not available - install the rpm package") from e

    def validate(self, path: Path) -> ValidationResult:
        """Perform integrity checks on a package.

        Args:
            path: Path to .rpm package file

        Returns:
            ValidationResult with validation results
        """
        package_file = Path(path)

        if not package_file.is_file():
            return ValidationResult.invalid(
                str(path), "file not found", checks_failed=["package_exists"]
            )

        checks_passed: List[str] = ["package_exists"]

        header_error = self._check_file_header(package_file)
        if header_error:
            self.logger.warning(f"Package {package_file.name} rejected: {header_error}")
            return ValidationResult.invalid(
                str(path), header_error, checks_failed=["file_header"]
            )
        checks_passed.append("file_header")

        digest_error = self._check_digests(package_file)
        if digest_error:
            self.logger.warning(f"Package {package_file.name} rejected: {digest_error}")
            return ValidationResult.invalid(
                str(path), digest_error, checks_failed=["digests"]
            )
        checks_passed.append("digests")

        self.logger.debug(f"Package {package_file.name} passed integrity checks")
        return ValidationResult(path=str(path), valid=True, checks_passed=checks_passed)

    def _check_file_header(self, package_file: Path) -> str:
        """Check the file is non-empty and starts with the RPM lead magic.

        Returns:
            Empty string if the header is valid, otherwise the reason
        """
        try:
            if package_file.stat().st_size == 0:
                return "package file is empty"

            with package_file.open("rb") as f:
                if f.read(4) != RPM_MAGIC:
                    return "invalid RPM magic bytes"
        except OSError as e:
            return f"cannot read package file: {e}"

        return ""

    def _check_digests(self, package_file: Path) -> str:
        """Run ``rpm -K`` against the package.

        Returns:
            Empty string if the digests verify, otherwise the reason
        """
        cmd = ["rpm", "-K"]
        if not self.check_signature:
            cmd.append("--nosignature")
        cmd.append(str(package_file))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return f"integrity check timed out after {self.timeout} seconds"

        if result.returncode != 0:
            output = (result.stdout.decode() + result.stderr.decode()).strip()
            return output or f"rpm -K exited with status {result.returncode}"

        return ""

"""Artifact validation contract.

A validator answers one question about a downloaded file: is it a
well-formed package that may be kept in the mirror.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..common.errors import InvalidArtifact


@dataclass
class ValidationResult:
    """Result of validating an artifact."""

    path: str
    valid: bool
    checks_passed: List[str] = field(default_factory=list)
    checks_failed: List[str] = field(default_factory=list)
    check_date: str = field(default_factory=lambda: datetime.now().isoformat())
    error: Optional[InvalidArtifact] = None

    @property
    def reason(self) -> Optional[str]:
        """Human readable failure reason, if any."""
        return self.error.reason if self.error else None

    @classmethod
    def invalid(
        cls, path: str, reason: str, checks_failed: Optional[List[str]] = None
    ) -> "ValidationResult":
        """Build a failing result."""
        return cls(
            path=path,
            valid=False,
            checks_failed=checks_failed or [],
            error=InvalidArtifact(path, reason),
        )


class ArtifactValidator(ABC):
    """Abstract base class for artifact validators."""

    @abstractmethod
    def validate(self, path: Path) -> ValidationResult:
        """Validate a downloaded artifact.

        Args:
            path: Path to the artifact

        Returns:
            ValidationResult; never raises for a bad artifact
        """
        pass


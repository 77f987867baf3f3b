"""Artifact validation and package directory inventory."""

from .base import ArtifactValidator, ValidationResult
from .integrity_checker import IntegrityChecker
from .scan_packages import scan_packages

__all__ = [
    "ArtifactValidator",
    "ValidationResult",
    "IntegrityChecker",
    "scan_packages",
]

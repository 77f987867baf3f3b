"""Manifest record types."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from ..formats.rpm import RPM_EXTENSION


@dataclass
class PackageRecord:
    """A package the mirror tracks.

    ``key`` is the stable handle a project uses for the package,
    ``rpm_name`` the artifact currently adopted for it, and ``source``
    the upstream location it was fetched from. Fields the manifest
    carries beyond these are kept in ``extra`` and written back as-is.
    """

    key: str
    rpm_name: str
    source: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_well_formed(self) -> bool:
        """Check the artifact name carries the package extension."""
        return isinstance(self.rpm_name, str) and self.rpm_name.endswith(RPM_EXTENSION)

    def with_artifact(self, rpm_name: str, source: Optional[str]) -> "PackageRecord":
        """Return a copy adopting a different artifact."""
        return replace(self, rpm_name=rpm_name, source=source or self.source)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the manifest representation, fields sorted by name."""
        data = dict(self.extra)
        data["rpm_name"] = self.rpm_name
        if self.source:
            data["source"] = self.source
        return {name: data[name] for name in sorted(data)}

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "PackageRecord":
        """Build a record from its manifest representation."""
        extra = {
            name: value
            for name, value in data.items()
            if name not in ("rpm_name", "source")
        }
        return cls(
            key=key,
            rpm_name=data["rpm_name"],
            source=data.get("source"),
            extra=extra,
        )


# key -> record, kept in insertion order
Manifest = Dict[str, PackageRecord]

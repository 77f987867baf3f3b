"""Creation of a fresh target directory."""

from typing import List

import yaml

from ..common.config import SyncContext
from ..common.logger import get_logger

logger = get_logger("sync.scaffold")

EXAMPLE_PACKAGE = "example-package-name"


def example_manifest(os_name: str, os_version: str, arch: str) -> str:
    """Build the commented-out example known manifest.

    Args:
        os_name: Distribution name used in the example URL (e.g. ``RedHat``)
        os_version: Distribution version; only the major part is used
        arch: Architecture

    Returns:
        YAML text with every line commented out
    """
    major = str(os_version).split(".")[0]
    rpm_name = f"{EXAMPLE_PACKAGE}-1.0.0-1.el{major}.{arch}.rpm"
    source = f"https://yum.server/{os_name}/{major}/{arch}/{rpm_name}"
    document = yaml.safe_dump(
        {EXAMPLE_PACKAGE: {"rpm_name": rpm_name, "source": source}},
        default_flow_style=False,
    )
    return "".join(f"# {line}\n" for line in document.splitlines())


def scaffold(context: SyncContext, os_name: str, os_version: str) -> List[str]:
    """Create the target directory layout.

    Existing directories and an existing known manifest are left alone.

    Args:
        context: Target directory and architecture
        os_name: Distribution name for the example manifest
        os_version: Distribution version for the example manifest

    Returns:
        Paths that were created
    """
    created = []
    for directory in (
        context.target_dir,
        context.target_dir / "repos",
        context.packages_path,
    ):
        if not directory.is_dir():
            directory.mkdir(parents=True, exist_ok=True)
            created.append(str(directory))

    manifest = context.target_dir / context.known_manifest
    if not manifest.exists():
        manifest.write_text(example_manifest(os_name, os_version, context.arch))
        created.append(str(manifest))
        logger.info(f"Created example file at {manifest}")

    return created

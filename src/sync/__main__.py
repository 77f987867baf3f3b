"""CLI interface for the package mirror."""

import argparse
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

from ..common.config import SyncConfig, SyncContext, load_typed_config
from ..common.errors import NothingToReconcile, PersistenceError
from ..common.logger import ROOT_LOGGER, setup_logger
from ..repos.yum import YumSourceResolver
from ..scanner.integrity_checker import IntegrityChecker
from .diff import diff_packages, format_diff, parse_diff_output
from .fetch import PackageFetcher
from .obsolete import ObsolescenceManager
from .reconcile import ReconciliationEngine
from .scaffold import scaffold


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="rpmsync",
        description="Keep a local RPM mirror in line with its package manifest.",
    )
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument(
        "--target-dir", help="Target directory (overrides config and RPMSYNC_YUM_DIR)"
    )
    parser.add_argument("--arch", help="Architecture to mirror")
    parser.add_argument("--log-level", help="Logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    scaffold_parser = subparsers.add_parser("scaffold", help="Create a target directory")
    scaffold_parser.add_argument("os_name", help="Distribution name, e.g. RedHat")
    scaffold_parser.add_argument("os_version", help="Distribution version, e.g. 8.9")

    sync_parser = subparsers.add_parser("sync", help="Reconcile the target directory")
    sync_parser.add_argument(
        "--allow-substitution",
        action="store_true",
        default=None,
        help="Resolve by package key when a recorded source fails",
    )
    sync_parser.add_argument("--jobs", type=int, help="Parallel fetches")

    subparsers.add_parser("diff", help="Compare the manifest with the package directory")

    fetch_parser = subparsers.add_parser(
        "fetch", help="Fetch the latest version of a package without recording it"
    )
    fetch_parser.add_argument(
        "pkg", help="Package name or glob, or a file holding saved diff output"
    )

    return parser


def _build_collaborators(config: SyncConfig) -> Tuple[YumSourceResolver, IntegrityChecker]:
    """Create the source resolver and validator.

    Raises:
        RuntimeError: If a required tool is not installed
    """
    validator = IntegrityChecker(
        timeout=config.validator.timeout,
        check_signature=config.validator.check_signature,
    )
    resolver = YumSourceResolver(
        yum_conf=config.resolver.yum_conf,
        arch=config.arch,
        repoquery_command=config.resolver.repoquery_command,
        timeout=config.resolver.timeout,
        max_retries=config.resolver.max_retries,
        retry_delay=config.resolver.retry_delay,
        http_timeout=config.resolver.http_timeout,
    )
    return resolver, validator


def _packages_to_fetch(pkg: str) -> List[str]:
    path = Path(pkg)
    if path.is_file():
        return parse_diff_output(path.read_text())
    return [pkg]


def run_sync(context: SyncContext, config: SyncConfig) -> int:
    resolver, validator = _build_collaborators(config)
    try:
        report = ReconciliationEngine(context, resolver, validator).reconcile()
    finally:
        resolver.close()

    for sub in report.substitutions:
        print(f"Updating: {sub.original} with {sub.adopted}")

    if not report.is_success:
        print("Warning: There were errors updating some files:", file=sys.stderr)
        for line in report.format_failures():
            print(line, file=sys.stderr)
        print("Could not update all packages", file=sys.stderr)
        return 1

    return 0


def run_fetch(context: SyncContext, config: SyncConfig, pkg: str) -> int:
    resolver, validator = _build_collaborators(config)
    failed = []
    try:
        manager = ObsolescenceManager(
            PackageFetcher(context.packages_path, resolver, validator),
            context.obsolete_path,
        )
        for name in _packages_to_fetch(pkg):
            record = manager.update(name)
            if record is None:
                failed.append(name)
            else:
                print(f"Fetched {record.rpm_name}")
    finally:
        resolver.close()

    for name in failed:
        print(f"Failed to update {name}", file=sys.stderr)
    return 1 if failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the rpmsync CLI."""
    args = build_parser().parse_args(argv)

    try:
        config = load_typed_config(args.config)
    except (FileNotFoundError, TypeError, yaml.YAMLError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.arch:
        config.arch = args.arch
    if args.log_level:
        config.logging.level = args.log_level
    if getattr(args, "allow_substitution", None):
        config.allow_substitution = True
    if getattr(args, "jobs", None):
        config.max_parallel_fetches = args.jobs

    # Setup logging infrastructure (configures every module logger)
    try:
        setup_logger(
            ROOT_LOGGER,
            log_dir=config.logging.log_dir,
            level=config.logging.level,
            file_logging=config.logging.file_logging,
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    context = SyncContext.from_config(config, target_dir=args.target_dir)

    try:
        if args.command == "scaffold":
            for path in scaffold(context, args.os_name, args.os_version):
                print(f"Created {path}")
            return 0

        if args.command == "diff":
            diff = diff_packages(context)
            print(format_diff(diff))
            return 1 if diff.has_differences else 0

        if args.command == "sync":
            return run_sync(context, config)

        if args.command == "fetch":
            return run_fetch(context, config, args.pkg)

    except (RuntimeError, NothingToReconcile, PersistenceError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 1


if __name__ == "__main__":
    sys.exit(main())

"""Configuration management for rpmsync.

Handles loading of YAML configuration files, environment overrides and
the typed context threaded through a reconciliation run.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml


DEFAULT_CONFIG_PATH = "/etc/rpmsync/config.yaml"

# Environment overrides
ENV_UPDATE_PACKAGES = "RPMSYNC_UPDATE_PACKAGES"
ENV_YUM_DIR = "RPMSYNC_YUM_DIR"

TRUTHY_VALUES = ("yes", "true")


@dataclass
class ResolverConfig:
    """Configuration for the yum-backed source resolver."""

    yum_conf: Optional[str] = None
    repoquery_command: List[str] = field(default_factory=lambda: ["repoquery"])
    timeout: int = 300
    max_retries: int = 3
    retry_delay: int = 2
    http_timeout: int = 300


@dataclass
class ValidatorConfig:
    """Configuration for the artifact validator."""

    timeout: int = 60
    check_signature: bool = False


@dataclass
class LoggingConfig:
    """Configuration for log output."""

    log_dir: str = "/var/log/rpmsync"
    level: str = "INFO"
    file_logging: bool = False


@dataclass
class SyncConfig:
    """Top-level configuration for rpmsync."""

    target_dir: str = "build/yum_data"
    arch: str = "x86_64"
    allow_substitution: bool = False
    max_parallel_fetches: int = 4
    packages_dir: str = "packages"
    obsolete_dir: str = "obsolete"
    known_manifest: str = "packages.yaml"
    unknown_manifest: str = "unknown_packages.yaml"
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass(frozen=True)
class SyncContext:
    """Everything a reconciliation run needs to know about its target.

    Passed explicitly into the engine instead of living in module state.
    """

    target_dir: Path
    arch: str = "x86_64"
    allow_substitution: bool = False
    max_parallel_fetches: int = 4
    packages_dir: str = "packages"
    obsolete_dir: str = "obsolete"
    known_manifest: str = "packages.yaml"
    unknown_manifest: str = "unknown_packages.yaml"

    @property
    def packages_path(self) -> Path:
        """Directory holding the mirrored artifacts."""
        return self.target_dir / self.packages_dir

    @property
    def obsolete_path(self) -> Path:
        """Directory superseded artifacts are moved into."""
        return self.packages_path / self.obsolete_dir

    @classmethod
    def from_config(
        cls, config: SyncConfig, target_dir: Optional[str] = None
    ) -> "SyncContext":
        """Build a context from configuration.

        Args:
            config: SyncConfig instance
            target_dir: Optional override of ``config.target_dir``

        Returns:
            SyncContext instance
        """
        return cls(
            target_dir=Path(target_dir or config.target_dir),
            arch=config.arch,
            allow_substitution=config.allow_substitution,
            max_parallel_fetches=max(1, config.max_parallel_fetches),
            packages_dir=config.packages_dir,
            obsolete_dir=config.obsolete_dir,
            known_manifest=config.known_manifest,
            unknown_manifest=config.unknown_manifest,
        )


def is_truthy(value: Any) -> bool:
    """Interpret a config or environment flag."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_VALUES


def parse_resolver_config(resolver_dict: Dict[str, Any]) -> ResolverConfig:
    """Parse resolver configuration dictionary.

    Args:
        resolver_dict: Resolver configuration dictionary

    Returns:
        ResolverConfig instance
    """
    command = resolver_dict.get("repoquery_command", ["repoquery"])
    if isinstance(command, str):
        command = command.split()

    return ResolverConfig(
        yum_conf=resolver_dict.get("yum_conf"),
        repoquery_command=list(command),
        timeout=resolver_dict.get("timeout", 300),
        max_retries=resolver_dict.get("max_retries", 3),
        retry_delay=resolver_dict.get("retry_delay", 2),
        http_timeout=resolver_dict.get("http_timeout", 300),
    )


def parse_validator_config(validator_dict: Dict[str, Any]) -> ValidatorConfig:
    """Parse validator configuration dictionary.

    Args:
        validator_dict: Validator configuration dictionary

    Returns:
        ValidatorConfig instance
    """
    return ValidatorConfig(
        timeout=validator_dict.get("timeout", 60),
        check_signature=is_truthy(validator_dict.get("check_signature", False)),
    )


def parse_logging_config(logging_dict: Dict[str, Any]) -> LoggingConfig:
    """Parse logging configuration dictionary.

    Args:
        logging_dict: Logging configuration dictionary

    Returns:
        LoggingConfig instance
    """
    return LoggingConfig(
        log_dir=logging_dict.get("log_dir", "/var/log/rpmsync"),
        level=logging_dict.get("level", "INFO"),
        file_logging=is_truthy(logging_dict.get("file_logging", False)),
    )


def parse_config(config_dict: Dict[str, Any]) -> SyncConfig:
    """Parse the full configuration dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        SyncConfig instance
    """
    return SyncConfig(
        target_dir=config_dict.get("target_dir", "build/yum_data"),
        arch=config_dict.get("arch", "x86_64"),
        allow_substitution=is_truthy(config_dict.get("allow_substitution", False)),
        max_parallel_fetches=config_dict.get("max_parallel_fetches", 4),
        packages_dir=config_dict.get("packages_dir", "packages"),
        obsolete_dir=config_dict.get("obsolete_dir", "obsolete"),
        known_manifest=config_dict.get("known_manifest", "packages.yaml"),
        unknown_manifest=config_dict.get("unknown_manifest", "unknown_packages.yaml"),
        resolver=parse_resolver_config(config_dict.get("resolver") or {}),
        validator=parse_validator_config(config_dict.get("validator") or {}),
        logging=parse_logging_config(config_dict.get("logging") or {}),
    )


def apply_env_overrides(
    config: SyncConfig, environ: Optional[Mapping[str, str]] = None
) -> SyncConfig:
    """Apply operator-supplied environment overrides.

    ``RPMSYNC_UPDATE_PACKAGES`` set to ``yes`` or ``true`` enables the
    fall back to the short package key when a recorded source fails.
    ``RPMSYNC_YUM_DIR`` points at the target directory.

    Args:
        config: SyncConfig to update in place
        environ: Environment mapping, ``os.environ`` by default

    Returns:
        The same SyncConfig instance
    """
    if environ is None:
        environ = os.environ

    if ENV_UPDATE_PACKAGES in environ:
        config.allow_substitution = is_truthy(environ[ENV_UPDATE_PACKAGES])

    yum_dir = environ.get(ENV_YUM_DIR)
    if yum_dir:
        config.target_dir = yum_dir

    return config


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        TypeError: If the document root is not a mapping
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    return _expand_env_vars(config)


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def load_typed_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SyncConfig:
    """Load configuration, falling back to defaults when no file exists.

    An explicitly given path must exist; the default path is optional.

    Args:
        config_path: Path to configuration file
        environ: Environment mapping for overrides

    Returns:
        SyncConfig instance with environment overrides applied

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    if config_path is None:
        try:
            config_dict = load_config(DEFAULT_CONFIG_PATH)
        except FileNotFoundError:
            config_dict = {}
    else:
        config_dict = load_config(config_path)

    return apply_env_overrides(parse_config(config_dict), environ)

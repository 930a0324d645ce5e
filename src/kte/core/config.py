"""Configuration management for KTE."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from kte.core.exceptions import ConfigurationError
from kte.core.models import ClusterTopology

# Environment variables that steer shared-provider policy.
ENV_FORCE_ISOLATED = "KTE_FORCE_ISOLATED"
ENV_FORCE_ISOLATED_ALL = "all"

ENV_FORCE_PREEXISTING = "KTE_FORCE_PREEXISTING"
ENV_FORCE_PREEXISTING_ALL = "all"
ENV_FORCE_PREEXISTING_SHARED = "shared"

ENV_PREEXISTING_KUBECONFIG = "KTE_PREEXISTING_KUBECONFIG"

CLUSTER_NAME_PREFIX = "kte-"
FIELD_MANAGER = "kte"

DEFAULT_SHARED_CREATE_TIMEOUT_SECONDS = 600.0
DEFAULT_CREATE_TIMEOUT_SECONDS = 300.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    output: str = "stderr"


class SharedClusterConfig(BaseModel):
    """Settings for the process-wide shared cluster."""

    artifact_dir: str | None = None  # temporary directory when unset
    create_timeout_seconds: float = Field(default=DEFAULT_SHARED_CREATE_TIMEOUT_SECONDS, gt=0)
    node_image: str | None = None
    retain: bool = False
    topology: ClusterTopology | None = None


class WaitConfig(BaseModel):
    """Default convergence wait settings."""

    interval_seconds: float = Field(default=2.0, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0)


class FluxComponentsConfig(BaseModel):
    """Flux controllers to install as add-ons."""

    source_controller: bool = False
    helm_controller: bool = False
    kustomize_controller: bool = False


class AddonsConfig(BaseModel):
    """Optional add-on components."""

    flux_components: FluxComponentsConfig = Field(default_factory=FluxComponentsConfig)


class KteConfig(BaseModel):
    """Main KTE configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    shared_cluster: SharedClusterConfig = Field(default_factory=SharedClusterConfig)
    addons: AddonsConfig = Field(default_factory=AddonsConfig)
    wait: WaitConfig = Field(default_factory=WaitConfig)

    @classmethod
    def from_file(cls, path: str | Path) -> "KteConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            KteConfig instance

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        config_path = Path(path).expanduser()

        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f)
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

        try:
            return cls(**(data or {}))
        except Exception as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

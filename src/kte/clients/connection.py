"""Connection configuration for reaching a cluster API."""

from __future__ import annotations

import copy
from dataclasses import dataclass, replace
from pathlib import Path

from kubernetes import client, config

from kte.core.exceptions import ClientConstructionError
from kte.utils.logging import get_logger, log_error

logger = get_logger(__name__)

IMPERSONATE_USER_HEADER = "Impersonate-User"


@dataclass(frozen=True)
class ConnectionConfig:
    """Immutable description of how to reach one cluster's API.

    The wrapped ``kubernetes.client.Configuration`` is treated as read-only;
    every derived config and every API client gets its own deep copy.
    """

    configuration: client.Configuration
    kubeconfig_path: str | None = None
    context: str | None = None
    impersonate_user: str | None = None

    @classmethod
    def from_kubeconfig(cls, kubeconfig_path: str | Path, context: str | None = None) -> ConnectionConfig:
        """Load a connection config from exactly one kubeconfig file.

        Ambient discovery (``$KUBECONFIG``, ``~/.kube/config``, in-cluster
        service account) is never consulted.

        Args:
            kubeconfig_path: Kubeconfig file to load
            context: Context to use, defaults to the file's current-context

        Returns:
            ConnectionConfig for the selected context

        Raises:
            ClientConstructionError: If the file is missing or malformed
        """
        path = Path(kubeconfig_path)
        if not path.is_file():
            logger.error("kubeconfig_not_found", kubeconfig=str(path))
            raise ClientConstructionError(f"Kubeconfig not found: {path}")

        configuration = client.Configuration()
        try:
            _, active = config.list_kube_config_contexts(config_file=str(path))
            selected = context or (active or {}).get("name")
            config.load_kube_config(
                config_file=str(path),
                context=selected,
                client_configuration=configuration,
                persist_config=False,
            )
        except config.ConfigException as e:
            log_error(logger, "kubeconfig_load_failed", e, kubeconfig=str(path))
            raise ClientConstructionError(f"Failed to load kubeconfig {path}: {e}") from e
        except Exception as e:
            log_error(logger, "kubeconfig_load_failed", e, kubeconfig=str(path))
            raise ClientConstructionError(f"Malformed kubeconfig {path}: {e}") from e

        logger.debug("connection_config_loaded", kubeconfig=str(path), context=selected)
        return cls(configuration=configuration, kubeconfig_path=str(path), context=selected)

    @property
    def host(self) -> str:
        """API server URL."""
        return self.configuration.host

    def copy_configuration(self) -> client.Configuration:
        """Return an independent copy of the underlying client configuration."""
        return copy.deepcopy(self.configuration)

    def with_impersonation(self, user: str) -> ConnectionConfig:
        """Derive a config that issues every request as ``user``.

        Args:
            user: Fully-qualified user name to impersonate

        Returns:
            New ConnectionConfig; this one is left untouched
        """
        return replace(self, configuration=self.copy_configuration(), impersonate_user=user)

    def new_api_client(self) -> client.ApiClient:
        """Build a fresh ApiClient carrying the impersonation header if set."""
        api_client = client.ApiClient(configuration=self.copy_configuration())
        if self.impersonate_user:
            api_client.set_default_header(IMPERSONATE_USER_HEADER, self.impersonate_user)
        return api_client

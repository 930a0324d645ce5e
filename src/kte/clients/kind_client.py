"""kind wrapper implementing the ClusterRuntime interface."""

import subprocess
from pathlib import Path

from kte.core.context import Context
from kte.core.exceptions import ClusterRuntimeError
from kte.core.models import ClusterTopology
from kte.interfaces.cluster_runtime import ClusterRuntime
from kte.utils.logging import get_logger

logger = get_logger(__name__)

# How often a running kind process is checked against its context.
_POLL_INTERVAL_SECONDS = 0.5


class KindClient(ClusterRuntime):
    """Wrapper for the kind command-line tool."""

    def __init__(self, binary: str = "kind"):
        """Initialize kind wrapper.

        Args:
            binary: kind executable name or path
        """
        self.binary = binary

        logger.debug("kind_client_initialized", binary=binary)

    def _run_command(
        self, args: list[str], ctx: Context, cluster_name: str | None = None
    ) -> subprocess.CompletedProcess:
        """Run a kind command, killing it if ``ctx`` is cancelled.

        kind reports progress on stderr; each line is forwarded to the
        structured log so cluster bring-up is visible in test output.

        Args:
            args: Command arguments
            ctx: Cancellation context
            cluster_name: Cluster name for log context

        Returns:
            CompletedProcess instance

        Raises:
            ClusterRuntimeError: If the command fails or kind is missing
            OperationCancelledError: If ctx is cancelled before completion
        """
        ctx.raise_if_done("kind " + args[0])
        cmd = [self.binary, *args]

        logger.debug("running_kind_command", command=" ".join(cmd))

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as e:
            logger.error("kind_not_found", binary=self.binary)
            raise ClusterRuntimeError("kind command not found. Please install kind.") from e

        while True:
            try:
                stdout, stderr = process.communicate(timeout=_POLL_INTERVAL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if ctx.done():
                    process.kill()
                    process.communicate()
                    logger.warning(
                        "kind_command_interrupted",
                        command=" ".join(cmd),
                        cluster_name=cluster_name,
                    )
                    ctx.raise_if_done("kind " + args[0])

        for line in stderr.splitlines():
            if line.strip():
                logger.debug("kind_output", cluster_name=cluster_name, line=line.strip())

        if process.returncode != 0:
            logger.error(
                "kind_command_failed",
                command=" ".join(cmd),
                returncode=process.returncode,
                stderr=stderr,
            )
            raise ClusterRuntimeError(f"kind command failed: {stderr.strip() or stdout.strip()}")

        logger.debug("kind_command_completed", returncode=process.returncode)
        return subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)

    def create(
        self,
        name: str,
        topology: ClusterTopology | None,
        kubeconfig_path: Path,
        wait_timeout: float,
        ctx: Context,
        config_path: Path | None = None,
        node_image: str | None = None,
        retain: bool = False,
    ) -> None:
        """Create a kind cluster and wait for its control plane.

        Args:
            name: Cluster name
            topology: Node layout, or None for kind's single-node default
            kubeconfig_path: Where kind writes the kubeconfig
            wait_timeout: Seconds passed to ``--wait``
            ctx: Cancellation context
            config_path: Where to render ``topology``; required when topology is set
            node_image: Node image override
            retain: Keep nodes when creation fails

        Raises:
            ClusterRuntimeError: If kind fails
        """
        kubeconfig_path.parent.mkdir(parents=True, exist_ok=True)

        wait_seconds = int(ctx.bound(wait_timeout))
        args = [
            "create",
            "cluster",
            "--name",
            name,
            "--kubeconfig",
            str(kubeconfig_path),
            "--wait",
            f"{wait_seconds}s",
        ]

        if topology is not None:
            if config_path is None:
                raise ClusterRuntimeError("a config path is required to create a cluster from a topology")
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(topology.to_yaml())
            args.extend(["--config", str(config_path)])

        if node_image:
            args.extend(["--image", node_image])
        if retain:
            args.append("--retain")

        logger.info("creating_kind_cluster", cluster_name=name, wait_seconds=wait_seconds)
        self._run_command(args, ctx, cluster_name=name)
        logger.info("kind_cluster_created", cluster_name=name, kubeconfig=str(kubeconfig_path))

    def collect_logs(self, name: str, output_dir: Path, ctx: Context) -> None:
        """Export cluster logs with ``kind export logs``.

        Args:
            name: Cluster name
            output_dir: Destination directory
            ctx: Cancellation context
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("exporting_kind_logs", cluster_name=name, output_dir=str(output_dir))
        self._run_command(["export", "logs", str(output_dir), "--name", name], ctx, cluster_name=name)

    def delete(self, name: str, kubeconfig_path: Path | None, ctx: Context) -> None:
        """Delete a kind cluster.

        Args:
            name: Cluster name
            kubeconfig_path: Kubeconfig to remove the cluster's entry from
            ctx: Cancellation context
        """
        args = ["delete", "cluster", "--name", name]
        if kubeconfig_path is not None:
            args.extend(["--kubeconfig", str(kubeconfig_path)])

        logger.info("deleting_kind_cluster", cluster_name=name)
        self._run_command(args, ctx, cluster_name=name)
        logger.info("kind_cluster_deleted", cluster_name=name)

    def list(self, ctx: Context) -> list[str]:
        """List kind clusters.

        Returns:
            Cluster names; empty when none exist
        """
        result = self._run_command(["get", "clusters"], ctx)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

"""Main CLI entry point for KTE."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kte import __version__
from kte.core.config import CLUSTER_NAME_PREFIX, DEFAULT_CREATE_TIMEOUT_SECONDS
from kte.core.exceptions import KteError

if TYPE_CHECKING:
    from kte.clients.kind_client import KindClient
    from kte.core.config import KteConfig

console = Console()


class KteContext:
    """Shared context for CLI commands with lazy initialization."""

    def __init__(self, config_path: str | None):
        """Initialize context with config path.

        Args:
            config_path: Path to configuration file, defaults apply when None
        """
        self.config_path = config_path
        self._config: KteConfig | None = None
        self._runtime: KindClient | None = None

    @property
    def config(self) -> KteConfig:
        """Get or load config lazily."""
        if self._config is None:
            from kte.core.config import KteConfig

            self._config = KteConfig.from_file(self.config_path) if self.config_path else KteConfig()
        return self._config

    @property
    def runtime(self) -> KindClient:
        """Get or create the kind runtime lazily."""
        if self._runtime is None:
            from kte.clients.kind_client import KindClient

            self._runtime = KindClient()
        return self._runtime


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]✗ {escape(str(error))}[/red]")
    raise SystemExit(1) from error


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (overrides config)",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"]),
    default=None,
    help="Log format (overrides config)",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None, log_format: str | None) -> None:
    """kube-test-env (KTE) - Disposable Kubernetes clusters for test suites."""
    from kte.utils.logging import setup_logging

    kte_ctx = KteContext(config_path=config)
    try:
        settings = kte_ctx.config.logging
    except KteError as e:
        _fail(e)

    setup_logging(
        level=log_level or settings.level,
        format=log_format or settings.format,
        output=settings.output,
    )
    ctx.obj = kte_ctx


@cli.command()
@click.option("--artifact-dir", type=click.Path(file_okay=False), default=None, help="Artifact root directory")
@click.option("--workers", type=int, default=None, help="Number of worker nodes")
@click.option(
    "--kind-config",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="kind Cluster config file describing the topology",
)
@click.option("--node-image", default=None, help="Node image override")
@click.option("--retain", is_flag=True, help="Keep nodes if creation fails")
@click.option("--timeout", type=float, default=DEFAULT_CREATE_TIMEOUT_SECONDS, help="Creation deadline in seconds")
@click.pass_obj
def create(
    kte_ctx: KteContext,
    artifact_dir: str | None,
    workers: int | None,
    kind_config: str | None,
    node_image: str | None,
    retain: bool,
    timeout: float,
) -> None:
    """Create a self-managed test cluster."""
    import tempfile

    import yaml

    from kte.core.models import ClusterTopology
    from kte.provider.kind import ManagedClusterProvider

    settings = kte_ctx.config.shared_cluster
    topology = settings.topology
    try:
        if kind_config:
            data = yaml.safe_load(Path(kind_config).read_text()) or {}
            data.pop("kind", None)
            data.pop("apiVersion", None)
            topology = ClusterTopology(**data)
        elif workers is not None:
            topology = ClusterTopology.with_workers(workers)
    except (yaml.YAMLError, ValueError) as e:
        _fail(e)

    root = artifact_dir or settings.artifact_dir or tempfile.mkdtemp(prefix="kte-artifacts-")
    provider = ManagedClusterProvider(
        root,
        runtime=kte_ctx.runtime,
        node_image=node_image or settings.node_image,
        retain=retain or settings.retain,
    )

    console.print(f"[bold blue]Creating cluster {provider.cluster_name}[/bold blue]")
    try:
        provider.create(topology, timeout=timeout)
    except KteError as e:
        _fail(e)

    console.print("[green]✓ Cluster ready[/green]")
    console.print(f"  Name: {provider.cluster_name}")
    console.print(f"  Kubeconfig: {provider.kubeconfig_path}")
    console.print(f"  Logs: {provider.logs_dir}")


@cli.command()
@click.argument("name")
@click.option("--kubeconfig", type=click.Path(dir_okay=False), default=None, help="Kubeconfig to remove the cluster from")
@click.pass_obj
def delete(kte_ctx: KteContext, name: str, kubeconfig: str | None) -> None:
    """Delete a cluster by name."""
    from kte.core.context import Context

    try:
        kte_ctx.runtime.delete(name, Path(kubeconfig) if kubeconfig else None, Context.background())
    except KteError as e:
        _fail(e)
    console.print(f"[green]✓ Deleted {name}[/green]")


@cli.command(name="list")
@click.option("--all", "show_all", is_flag=True, help=f"Include clusters without the '{CLUSTER_NAME_PREFIX}' prefix")
@click.pass_obj
def list_clusters(kte_ctx: KteContext, show_all: bool) -> None:
    """List kind clusters."""
    from kte.core.context import Context

    try:
        names = kte_ctx.runtime.list(Context.background())
    except KteError as e:
        _fail(e)

    if not show_all:
        names = [name for name in names if name.startswith(CLUSTER_NAME_PREFIX)]

    if not names:
        console.print("[yellow]No clusters found[/yellow]")
        return

    table = Table(title=f"Clusters ({len(names)} total)")
    table.add_column("Name", style="cyan")
    table.add_column("Managed by KTE", style="green")
    for name in names:
        table.add_row(name, "yes" if name.startswith(CLUSTER_NAME_PREFIX) else "no")
    console.print(table)


@cli.command()
@click.argument("name")
@click.option("--output-dir", type=click.Path(file_okay=False), required=True, help="Directory to export logs into")
@click.pass_obj
def logs(kte_ctx: KteContext, name: str, output_dir: str) -> None:
    """Export logs of a cluster."""
    from kte.core.context import Context

    try:
        kte_ctx.runtime.collect_logs(name, Path(output_dir), Context.background())
    except KteError as e:
        _fail(e)
    console.print(f"[green]✓ Logs written to {output_dir}[/green]")


@cli.group()
def addons() -> None:
    """Manage optional add-on components."""


@addons.command(name="install")
@click.option("--kubeconfig", type=click.Path(exists=True, dir_okay=False), required=True, help="Target cluster kubeconfig")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context (defaults to current-context)")
@click.option("--source-controller/--no-source-controller", default=None, help="Install Flux source-controller")
@click.option("--helm-controller/--no-helm-controller", default=None, help="Install Flux helm-controller")
@click.option(
    "--kustomize-controller/--no-kustomize-controller",
    default=None,
    help="Install Flux kustomize-controller",
)
@click.option("--timeout", type=float, default=None, help="Readiness timeout in seconds")
@click.pass_obj
def install_addons(
    kte_ctx: KteContext,
    kubeconfig: str,
    kube_context: str | None,
    source_controller: bool | None,
    helm_controller: bool | None,
    kustomize_controller: bool | None,
    timeout: float | None,
) -> None:
    """Install Flux controllers into a cluster."""
    from kte.addons.installer import DEFAULT_WAIT_POLICY, apply_addons
    from kte.clients.connection import ConnectionConfig
    from kte.clients.factory import ClientFactory
    from kte.core.models import ChangeAction, WaitPolicy

    addons_config = kte_ctx.config.addons.model_copy(deep=True)
    flux = addons_config.flux_components
    if source_controller is not None:
        flux.source_controller = source_controller
    if helm_controller is not None:
        flux.helm_controller = helm_controller
    if kustomize_controller is not None:
        flux.kustomize_controller = kustomize_controller

    wait_policy = DEFAULT_WAIT_POLICY
    if timeout is not None:
        wait_policy = WaitPolicy(interval=DEFAULT_WAIT_POLICY.interval, timeout=timeout)

    try:
        connection = ConnectionConfig.from_kubeconfig(kubeconfig, context=kube_context)
        resource_manager = ClientFactory(connection).new_resource_manager()
        change_set = apply_addons(resource_manager, addons_config, wait_policy=wait_policy)
    except KteError as e:
        _fail(e)

    if not len(change_set):
        console.print("[yellow]No add-ons enabled[/yellow]")
        return

    table = Table(title=f"Applied objects ({len(change_set)} total)")
    table.add_column("Object", style="cyan")
    table.add_column("Action", style="bold")
    colors = {ChangeAction.CREATED: "green", ChangeAction.CONFIGURED: "yellow", ChangeAction.UNCHANGED: "dim"}
    for entry in change_set:
        color = colors[entry.action]
        table.add_row(str(entry.ref), f"[{color}]{entry.action.value}[/{color}]")
    console.print(table)
    console.print("[green]✓ Add-ons ready[/green]")


if __name__ == "__main__":
    cli()

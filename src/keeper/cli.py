"""CLI interface for the cert-manager keeper.

Each command runs one lifecycle operation to completion and exits.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from keeper import __version__
from keeper.cluster.addons.cert_manager import CertManagerAddon
from keeper.cluster.addons.versions import UpgradePlan
from keeper.cluster.proxy import KubectlProxy
from keeper.config import KeeperConfig
from keeper.utils.errors import KeeperError

console = Console()


def setup_logging(log_level: str = "info") -> None:
    """Send log records to the console through rich.

    Args:
        log_level: Logging level (debug, info, warning, error)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=console,
                show_time=False,
                show_path=False,
                rich_tracebacks=True,
            )
        ],
        force=True,  # Override any existing config
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="keeper",
        description="Install and upgrade cert-manager in a Kubernetes cluster",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "command",
        choices=["install", "upgrade", "plan", "images"],
        help="install: ensure cert-manager is installed; upgrade: ensure the configured version; "
        "plan: show the upgrade plan; images: list images needed for installation",
    )

    parser.add_argument("--kubeconfig", type=str, help="Path to the kubeconfig file")
    parser.add_argument("--context", type=str, help="Kubeconfig context to use")
    parser.add_argument("--config", type=str, help="Path to a keeper configuration file")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: LOG_LEVEL or info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cert-manager keeper {__version__}",
    )

    return parser


def load_config(args: argparse.Namespace) -> KeeperConfig:
    """Build the configuration, letting command line flags win over the environment.

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config = KeeperConfig(config_file=args.config)
    if args.kubeconfig:
        config.kubeconfig = args.kubeconfig
    if args.context:
        config.kube_context = args.context
    if args.log_level:
        config.log_level = args.log_level
    config.validate()
    return config


def build_addon(config: KeeperConfig) -> CertManagerAddon:
    """Wire the cert-manager addon against the configured cluster."""
    kubeconfig: Path | None = config.get_kubeconfig_path()
    proxy = KubectlProxy(kubeconfig_path=kubeconfig, context=config.kube_context)
    return CertManagerAddon(config, proxy)


def render_plan(plan: UpgradePlan) -> None:
    """Print an upgrade plan as a table."""
    if plan.externally_managed:
        console.print("[yellow]cert-manager is externally managed; nothing to do[/yellow]")
        return

    table = Table(title="cert-manager upgrade plan")
    table.add_column("Current version")
    table.add_column("Target version")
    table.add_column("Upgrade")
    table.add_row(
        plan.from_version or "-",
        plan.to_version,
        "[green]yes[/green]" if plan.should_upgrade else "no",
    )
    console.print(table)


async def run_command(command: str, addon: CertManagerAddon) -> None:
    """Run one lifecycle command."""
    if command == "install":
        await addon.ensure_installed()
        console.print("[green]cert-manager is installed and available[/green]")
    elif command == "upgrade":
        await addon.ensure_latest_version()
        console.print("[green]cert-manager is up to date[/green]")
    elif command == "plan":
        render_plan(await addon.plan_upgrade())
    elif command == "images":
        for image in await addon.images():
            console.print(image)


def main() -> None:
    """Main entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args()

    try:
        config = load_config(args)
    except KeeperError as e:
        console.print(f"[red]Configuration Error: {e}[/red]")
        sys.exit(1)

    setup_logging(config.log_level)

    try:
        asyncio.run(run_command(args.command, build_addon(config)))
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")
        sys.exit(130)
    except KeeperError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()

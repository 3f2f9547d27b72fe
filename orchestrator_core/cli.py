"""
Orchestrator - CLI Entry Points.

Provides:
- orchestrator serve:          Run the orchestrator (HTTP + WebSocket API)
- orchestrator file-processor: Run the file processing service
- orchestrator status:         Show the status table of a running orchestrator
- orchestrator start/stop:     Ask a running orchestrator to start/stop a service
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import aiohttp
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

logger = logging.getLogger("orchestrator")

console = Console()

STATUS_STYLES = {
    "running": "green",
    "connected": "green",
    "starting": "yellow",
    "disconnected": "dim",
    "stopped": "dim",
    "error": "red",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


async def _request(
    method: str,
    url: str,
    timeout: float = 60.0,
) -> Tuple[int, Dict[str, Any]]:
    async with aiohttp.ClientSession() as session:
        async with session.request(
            method, url, timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            return response.status, await response.json(content_type=None)


def render_status(services: Dict[str, Dict[str, Any]]) -> Table:
    table = Table(title="Managed Services")
    table.add_column("Service", style="bold")
    table.add_column("Status")
    table.add_column("Port", justify="right")
    table.add_column("Health URL")
    for name, view in services.items():
        status = view.get("status", "unknown")
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            name,
            f"[{style}]{status}[/{style}]",
            str(view.get("port", "")),
            view.get("url", "-"),
        )
    return table


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from orchestrator_core.api.server import create_app
    from orchestrator_core.config.settings import OrchestratorConfig

    config = OrchestratorConfig()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.no_autostart:
        config.autostart = False
    if args.services_file:
        config.services_file = args.services_file

    uvicorn.run(
        create_app(config=config),
        host=config.host,
        port=config.port,
        log_config=None,
    )
    return 0


def cmd_file_processor(args: argparse.Namespace) -> int:
    import uvicorn

    from orchestrator_core.config.settings import FileProcessorConfig
    from orchestrator_core.file_processor.app import create_app

    config = FileProcessorConfig()
    if args.port:
        config.port = args.port
    if args.upload_dir:
        config.upload_dir = args.upload_dir

    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    url = f"{args.url.rstrip('/')}/api/services/status"
    try:
        _, services = asyncio.run(_request("GET", url, timeout=10.0))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        console.print(f"[red]Orchestrator not reachable at {args.url}: {e}[/red]")
        return 1
    except ValueError as e:
        console.print(f"[red]Invalid response from {args.url}: {e}[/red]")
        return 1
    console.print(render_status(services))
    return 0


def cmd_control(args: argparse.Namespace) -> int:
    url = f"{args.url.rstrip('/')}/api/services/{args.service}/{args.command}"
    try:
        _, payload = asyncio.run(_request("POST", url, timeout=args.timeout))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        console.print(f"[red]Orchestrator not reachable at {args.url}: {e}[/red]")
        return 1
    except ValueError as e:
        console.print(f"[red]Invalid response from {args.url}: {e}[/red]")
        return 1

    if payload.get("success"):
        console.print(f"[green]✓[/green] {payload.get('message', 'ok')}")
        return 0
    console.print(f"[red]✗ {payload.get('kind')}: {payload.get('error')}[/red]")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orchestrator",
        description="Local Server Orchestrator - supervise local AI services",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the orchestrator")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Listen port (default 3001)")
    serve_parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Do not start managed services on boot",
    )
    serve_parser.add_argument(
        "--services-file",
        type=Path,
        metavar="PATH",
        help="YAML file overriding the built-in service descriptors",
    )
    serve_parser.set_defaults(func=cmd_serve)

    fp_parser = subparsers.add_parser("file-processor", help="Run the file processing service")
    fp_parser.add_argument("--port", type=int, help="Listen port (default 3002)")
    fp_parser.add_argument("--upload-dir", type=Path, metavar="PATH", help="Where uploads are stored")
    fp_parser.set_defaults(func=cmd_file_processor)

    default_url = "http://localhost:3001"

    status_parser = subparsers.add_parser("status", help="Show service status")
    status_parser.add_argument("--url", default=default_url, help="Orchestrator base URL")
    status_parser.set_defaults(func=cmd_status)

    for name in ("start", "stop"):
        control_parser = subparsers.add_parser(name, help=f"{name.capitalize()} a service")
        control_parser.add_argument("service", help="Service name, e.g. lmStudio")
        control_parser.add_argument("--url", default=default_url, help="Orchestrator base URL")
        control_parser.add_argument(
            "--timeout",
            type=float,
            default=90.0,
            help="Seconds to wait for the orchestrator to answer",
        )
        control_parser.set_defaults(func=cmd_control)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the orchestrator CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

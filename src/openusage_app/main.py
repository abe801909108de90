# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""Command-line entry point: probe AI tool usage and show it in the terminal."""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Prompt

from openusage import __version__
from openusage.providers import PROVIDER_PLUGINS
from openusage.usage_client import UsageClient
from openusage.utils.paths import get_default_root, get_logs_dir

from .usage_viewer import UsageViewer

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """File logging always; console logging through rich when verbose."""
    log_file = get_logs_dir(get_default_root()) / "openusage.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)

    if verbose:
        console_handler = RichHandler(
            console=Console(stderr=True), show_path=False, rich_tracebacks=True
        )
        console_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(console_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_provider_ids(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    ids = [part.strip() for part in value.split(",") if part.strip()]
    unknown = [pid for pid in ids if pid not in PROVIDER_PLUGINS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"unknown provider(s): {', '.join(unknown)} "
            f"(choose from {', '.join(PROVIDER_PLUGINS)})"
        )
    return ids


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openusage",
        description="Show usage and limits for Claude, Codex, Cursor and Copilot.",
    )
    parser.add_argument(
        "--once", action="store_true", help="Probe once, print the table and exit"
    )
    parser.add_argument(
        "--json", action="store_true", help="Probe once and print provider states as JSON"
    )
    parser.add_argument(
        "--providers",
        type=parse_provider_ids,
        metavar="IDS",
        help="Comma-separated provider ids (default: enabled providers)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


async def run_once(client: UsageClient, args: argparse.Namespace, console: Console) -> int:
    states = await client.refresh(args.providers)
    ids = args.providers or client.enabled_ids()
    if args.json:
        payload = {pid: states[pid].to_dict() for pid in ids if pid in states}
        console.print_json(json.dumps(payload))
    else:
        UsageViewer(client, console).show(ids, clear=False)
    return 0 if all(states[pid].error is None for pid in ids if pid in states) else 1


async def run_interactive(client: UsageClient, args: argparse.Namespace, console: Console) -> int:
    viewer = UsageViewer(client, console)
    await client.refresh(args.providers)
    viewer.mark_refreshed()
    client.start_auto_refresh()
    notice: Optional[str] = None

    while True:
        viewer.show(args.providers)
        if notice:
            console.print(notice)
            notice = None
        choice = await asyncio.to_thread(
            Prompt.ask,
            "[bold]R[/bold] refresh, [bold]Q[/bold] quit",
            choices=["r", "q"],
            default="r",
            console=console,
        )
        if choice == "q":
            return 0
        batch = client.orchestrator.request_manual_refresh(args.providers)
        if batch is None:
            notice = "[yellow]All providers are cooling down; showing current data.[/yellow]"
            continue
        with console.status("[bold]Refreshing...", spinner="dots"):
            await client.runner.wait_idle()
        viewer.mark_refreshed()


async def run(args: argparse.Namespace) -> int:
    console = Console()
    async with UsageClient() as client:
        if args.once or args.json:
            return await run_once(client, args, console)
        return await run_interactive(client, args, console)


def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()

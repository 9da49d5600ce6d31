"""Command line entry point: ``deviceagent``."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal

from deviceagent import __version__
from deviceagent.agent import Agent
from deviceagent.config import AgentConfig
from deviceagent.exceptions import AgentConfigError

_logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deviceagent", description="Run the device agent")
    parser.add_argument("--config", "-c", help="JSON configuration file")
    parser.add_argument("--dir", "-d", help="Working directory (overrides configuration)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(args: argparse.Namespace) -> AgentConfig:
    overrides = {"dir": args.dir} if args.dir else {}
    if args.config:
        config = AgentConfig.from_file(args.config, **overrides)
    else:
        config = AgentConfig.from_env(**overrides)
    return config.validate()


async def run(config: AgentConfig) -> None:
    agent = Agent(config)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    _logger.info("Device agent %s starting (device %s)", __version__, config.device_id)
    await agent.start()
    try:
        await stop_event.wait()
    finally:
        _logger.info("Stopping device agent")
        await agent.stop()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args)
    except AgentConfigError as exc:
        _logger.error("%s", exc)
        return 2

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(config))
    return 0

"""Console entry point for autoagent.

Initializes logging in two phases (defaults then config-driven),
builds the configured gateway, and runs one agent for the goal given
on the command line, printing the feed as it changes. SIGTERM/SIGINT
request a cooperative stop.

Key functions:
    main: Async entry point -- sets up logging and config, runs the
        agent, and returns the process exit code.
    run: Synchronous wrapper that calls asyncio.run(main()).
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

import structlog

from . import __version__
from .logging_config import setup_logging


def _print_message(message) -> None:
    """Render callback: one line per feed change."""
    line = f"[{message.type.value}] {message.value}"
    if message.info:
        line += f"\n    {message.info}"
    print(line, flush=True)


def _loop_budget(value: str) -> int:
    loops = int(value)
    if loops < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return loops


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="autoagent", description="Run an autonomous agent for a goal.")
    parser.add_argument("goal", help="The objective the agent should work toward")
    parser.add_argument("--gateway", choices=("echo", "chat"), help="Override the configured gateway")
    parser.add_argument("--max-loops", type=_loop_budget, help="Override the configured loop budget")
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main async entry point."""
    args = _parse_args(argv)

    # Phase 1: defaults, cache_logger_on_first_use=False
    setup_logging()
    logger = structlog.get_logger("autoagent")
    logger.info("autoagent_starting", version=__version__)

    # Import here to ensure logging is configured first
    from .agent import (
        AgentLifecycle,
        AutonomousAgent,
        ChatCompletionsGateway,
        EchoGateway,
        InMemoryMessagePersistence,
        MessageService,
        get_policy,
    )
    from .config import get_config

    config = get_config()
    config.validate()

    # Phase 2: reconfigure with real config
    setup_logging(config)

    kind = args.gateway or config.gateway_kind
    if kind == "chat":
        gateway = ChatCompletionsGateway(
            api_url=config.gateway_api_url,
            api_key=config.gateway_api_key,
            timeout=config.gateway_timeout,
        )
    else:
        gateway = EchoGateway()

    settings = config.model_settings()
    if args.max_loops is not None:
        settings = settings.model_copy(update={"custom_max_loops": args.max_loops})

    agent = AutonomousAgent(
        args.goal,
        gateway,
        MessageService(render=_print_message),
        persistence=InMemoryMessagePersistence(),
        model_settings=settings,
        selection_policy=get_policy(config.task_selection_policy),
        summarize=config.summarize_enabled,
    )

    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        logger.info("shutdown_signal_received", signal=sig.name)
        agent.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, handle_shutdown, sig)
        except NotImplementedError:
            # Windows: add_signal_handler not supported.
            if sig == signal.SIGINT:
                signal.signal(
                    signal.SIGINT,
                    lambda s, f: handle_shutdown(signal.SIGINT),
                )

    try:
        lifecycle = await agent.run()
    finally:
        await gateway.close()
        logger.info("autoagent_stopped", run_id=agent.run_id)

    return 1 if lifecycle == AgentLifecycle.ERRORED else 0


def run():
    """Synchronous entry point for the ``autoagent`` console script."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()

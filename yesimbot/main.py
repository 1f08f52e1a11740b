"""
Main entry point — parse args, load config, build the orchestrator, answer one message.
"""

from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

import httpx

from .config.settings import Config, load_config
from .core.adapter_pool import AdapterPool
from .core.adapters.base import AdapterConfig, GenerationParameters
from .core.errors import YesImBotError
from .core.memory_store import Embedder, MemoryService, MemoryStore
from .core.models import Message
from .core.orchestrator import Orchestrator, OrchestratorSettings
from .core.structured_logger import setup_structured_logging
from .core.tool_registry import ToolRegistry
from .tools.memory_tools import build_memory_tools

logger = logging.getLogger(__name__)


def build_orchestrator(
    config: Config,
    embedder: Optional[Embedder] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Orchestrator:
    """Wire the pool, registry, memory and settings from a Config."""
    adapter_configs = [AdapterConfig.from_dict(a) for a in config.adapter_entries()]
    params = GenerationParameters.from_dict(config.get("parameters"))
    pool = AdapterPool.from_configs(adapter_configs, params, transport)

    settings = OrchestratorSettings.from_config(config)
    registry = ToolRegistry()

    # Memory needs an embedding client; without one the memory tools stay unregistered
    memory = None
    if embedder is not None:
        store = MemoryStore(config.get("memory.path", ""))
        memory = MemoryService(store, embedder, settings.memory_top_k)
        for tool in build_memory_tools(memory):
            registry.register(tool)

    logger.info(f"Orchestrator ready: {len(pool)} adapter(s), {len(registry)} tool(s)")
    return Orchestrator(pool, registry, memory, settings)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="yesimbot",
        description="Send one chat message through the orchestration pipeline",
    )
    parser.add_argument(
        "message",
        nargs="?",
        help="Message text (read from stdin when omitted)",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to a YAML config file (merged over the defaults)",
    )
    parser.add_argument(
        "--channel",
        default="cli",
        help="Channel id the message belongs to (default: cli)",
    )
    parser.add_argument(
        "--format",
        choices=["json", "xml"],
        help="Override settings.response_format",
    )
    parser.add_argument(
        "--log-level",
        help="Override logging.level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log raw model replies",
    )
    return parser.parse_args(argv)


async def run_once(orchestrator: Orchestrator, channel_id: str, text: str, debug: bool = False) -> dict:
    result = await orchestrator.respond(channel_id, [Message.user(text)], debug=debug)
    return result.to_dict()


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)

    config = load_config(args.config)
    if args.format:
        config.set("settings.response_format", args.format)
    if args.log_level:
        config.set("logging.level", args.log_level)

    setup_structured_logging(
        json_mode=str(config.get("logging.format", "human")).lower() == "json",
        level=config.get("logging.level", "INFO"),
    )

    text = args.message if args.message is not None else sys.stdin.read()
    if not text.strip():
        print("Error: empty message", file=sys.stderr)
        sys.exit(2)

    try:
        orchestrator = build_orchestrator(config)
        output = asyncio.run(run_once(orchestrator, args.channel, text, args.debug))
    except YesImBotError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)

    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()

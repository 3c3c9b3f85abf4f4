"""
AI Analyst CLI entry point.

Provides a command-line interface for asking the analyst questions and
inspecting configuration and tools.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from aianalyst import __version__
from aianalyst.config.logging import get_logger, setup_logging
from aianalyst.config.settings import Settings, load_settings
from aianalyst.llm.events import LoopEventStream, ToolFinished, ToolStarted
from aianalyst.llm.models import LLMError
from aianalyst.llm.prompts import AnalystMode
from aianalyst.session import AnalystSession
from aianalyst.tools.base import LocalToolRegistry, ToolRegistry
from aianalyst.tools.mcp_registry import McpToolRegistry


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="aianalyst",
        description="Tool-calling diabetes data analyst backed by an LLM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"AI Analyst {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Config command
    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    # Ask command
    ask_parser = subparsers.add_parser(
        "ask",
        help="Ask the analyst a question (runs one tool-calling turn)",
    )
    ask_parser.add_argument(
        "question",
        type=str,
        help="The question to ask",
    )
    ask_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in AnalystMode],
        default=AnalystMode.HYPO_DETECTIVE.value,
        help="Analyst mode (default: hypo_detective)",
    )
    ask_parser.add_argument(
        "--max-tool-calls",
        type=int,
        default=None,
        help="Override the tool-call budget for this turn",
    )

    # Tools command
    subparsers.add_parser(
        "tools",
        help="List tools exposed by the configured tool server",
    )

    return parser


def _build_registry(settings: Settings) -> ToolRegistry:
    """MCP server when one is configured, otherwise an empty local registry."""
    if settings.tools.server_command:
        return McpToolRegistry(settings.tools.server_command, settings.tools.server_args)
    return LocalToolRegistry()


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== AI Analyst Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    logger.info(f"LLM Timeout: {settings.llm.timeout_seconds}s")
    logger.info(
        f"LLM Retries: {settings.llm.num_retries} transient, "
        f"{settings.llm.empty_response_retries} empty-response"
    )
    logger.info(f"\nMax Tool Calls: {settings.loop.max_tool_calls}")
    logger.info(f"Loop Settings Max Tool Calls: {settings.loop.loop_settings_max_tool_calls}")
    logger.info(f"Tool Timeout: {settings.loop.tool_timeout_seconds}s")
    logger.info(
        f"\nTool Server: {settings.tools.server_command or 'None (local tools only)'} "
        f"{' '.join(settings.tools.server_args)}".rstrip()
    )
    logger.info(
        f"\nGlucose Thresholds: severe low {settings.glucose.severe_hypo}, "
        f"low {settings.glucose.hypo}, high {settings.glucose.hyper}, "
        f"severe high {settings.glucose.severe_hyper} mg/dL"
    )
    logger.info(
        f"Night Window: {settings.glucose.night_start_hour:02d}:00-"
        f"{settings.glucose.night_end_hour:02d}:00"
    )

    return 0


def _print_events(events: LoopEventStream) -> None:
    tool_events = [e for e in events.drain() if isinstance(e, (ToolStarted, ToolFinished))]
    if not tool_events:
        return
    print("\n--- Tool Calls ---")
    for event in tool_events:
        if isinstance(event, ToolFinished):
            status = "ok" if event.result.ok else f"error: {event.result.error}"
            print(f"  {event.name} → {status}")


async def cmd_ask(args, settings: Settings) -> int:
    """Run one follow-up turn and print the answer."""
    logger = get_logger(__name__)

    if not settings.llm.api_key:
        logger.error("LLM API key not set. Add LLM__API_KEY=<your-key> to your .env file.")
        return 1

    events = LoopEventStream()
    try:
        async with _build_registry(settings) as registry:
            session = AnalystSession.from_settings(
                settings, registry, mode=AnalystMode(args.mode), events=events
            )
            result = await session.send_follow_up(args.question, max_tool_calls=args.max_tool_calls)
    except LLMError as e:
        print(f"\nLLM error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error(f"Ask failed: {e}", exc_info=True)
        return 1

    if result is None:
        print("(cancelled)")
        return 1

    print(f"\n=== AI Analyst ({args.mode}) ===")
    print(f"Q: {args.question}\n")
    print(result.final_text)

    if result.structured_question is not None:
        keys = ", ".join(option.key for option in result.structured_question.options)
        print(f"\nReply with one of: {keys}")

    _print_events(events)
    print(f"\nTool calls used: {result.tool_calls_used}")
    return 0


async def cmd_tools(settings: Settings) -> int:
    """List available tools."""
    logger = get_logger(__name__)

    try:
        async with _build_registry(settings) as registry:
            tools = await registry.list_tools()
    except Exception as e:
        logger.error(f"Listing tools failed: {e}", exc_info=True)
        return 1

    if not tools:
        print("No tools available. Set TOOLS__SERVER_COMMAND to use an MCP tool server.")
        return 0

    print(f"\n=== Tools ({len(tools)}) ===")
    for tool in tools:
        print(f"  {tool['name']}: {tool.get('description', '')}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "ask":
        return asyncio.run(cmd_ask(args, settings))
    elif args.command == "tools":
        return asyncio.run(cmd_tools(settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())

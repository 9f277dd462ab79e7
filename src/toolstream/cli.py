"""Command line interface for toolstream."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

from .config import OrchestratorConfig, TransportConfig, debug_enabled
from .core.errors import ToolExecutionError
from .core.message import ToolCallRecord, ToolResultRecord, UserText, VendorMode
from .io.adapters.http import HttpSessionTransport, McpToolRuntime
from .io.adapters.local import LocalConversationLog
from .runtime.catalog import ToolCatalog
from .runtime.loop import Orchestrator

_MODES = [mode.value for mode in VendorMode]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Stream a gamemaster exchange with tool calling")
    subparsers = parser.add_subparsers(dest="command", required=True)

    chat_parser = subparsers.add_parser("chat", help="run one exchange and stream the reply")
    chat_parser.add_argument("message", help="What the player says")
    chat_parser.add_argument("--mode", choices=_MODES, default=VendorMode.ANTHROPIC_CLIENT_MCP.value)
    chat_parser.add_argument("--model", help="Override the vendor's default model")
    chat_parser.add_argument("--system", dest="system_prompt", help="System prompt")
    chat_parser.add_argument("--max-iterations", type=int, help="Upper bound on model round trips")
    chat_parser.add_argument("--mcp-url", help="MCP server base URL (defaults to MCP_URL)")
    chat_parser.add_argument(
        "--tool-mode",
        action="append",
        default=[],
        help="Active game mode used to filter tools; repeatable",
    )
    chat_parser.add_argument("--log-dir", type=Path, help="Record the exchange as JSON in this directory")
    chat_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    tools_parser = subparsers.add_parser("tools", help="list the tools offered by the MCP server")
    tools_parser.add_argument("--mcp-url", help="MCP server base URL (defaults to MCP_URL)")
    tools_parser.add_argument("--tool-mode", action="append", default=[], help="Active game mode; repeatable")
    tools_parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    return parser


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _transport_config(args: argparse.Namespace) -> TransportConfig:
    config = TransportConfig.from_env()
    if args.mcp_url:
        config.mcp_url = args.mcp_url.rstrip("/")
    return config


def _write_text(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _show_tool_result(call: ToolCallRecord, result: ToolResultRecord) -> None:
    status = "failed" if result.is_error else "ok"
    sys.stderr.write(f"[tool {call.name} {status}]\n")


async def _handle_chat(args: argparse.Namespace) -> int:
    transport_config = _transport_config(args)
    config = OrchestratorConfig.from_mode(
        args.mode,
        model=args.model,
        system_prompt=args.system_prompt,
        max_iterations=args.max_iterations,
    )

    transport = HttpSessionTransport(transport_config)
    runtime = None
    if config.vendor_mode.client_tools and transport_config.mcp_url:
        runtime = McpToolRuntime(transport_config.mcp_url, timeout=transport_config.timeout)
    conversation_log = LocalConversationLog(args.log_dir) if args.log_dir else None
    orchestrator = Orchestrator(transport, config, tool_runtime=runtime, conversation_log=conversation_log)

    try:
        result = await orchestrator.run(
            [UserText(text=args.message)],
            on_text=_write_text,
            on_tool_result=_show_tool_result,
            active_modes=args.tool_mode,
        )
    finally:
        await transport.aclose()
        if runtime is not None:
            await runtime.aclose()

    if result.text:
        sys.stdout.write("\n")
    for warning in result.warnings:
        sys.stderr.write(f"warning: {warning}\n")
    if result.error is not None:
        sys.stderr.write(f"error: {result.error}\n")
    return 0 if result.ok else 1


async def _handle_tools(args: argparse.Namespace) -> int:
    transport_config = _transport_config(args)
    if not transport_config.mcp_url:
        sys.stderr.write("error: set MCP_URL or pass --mcp-url\n")
        return 2

    runtime = McpToolRuntime(transport_config.mcp_url, timeout=transport_config.timeout)
    try:
        descriptors = await ToolCatalog(runtime).descriptors(args.tool_mode)
    except ToolExecutionError as exc:
        sys.stderr.write(f"error: {exc.message}\n")
        return 1
    finally:
        await runtime.aclose()

    for descriptor in descriptors:
        tags = f" [{', '.join(descriptor.tags)}]" if descriptor.tags else ""
        sys.stdout.write(f"{descriptor.name}{tags}: {descriptor.description}\n")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.debug or debug_enabled())
    if args.command == "chat":
        return asyncio.run(_handle_chat(args))
    if args.command == "tools":
        return asyncio.run(_handle_tools(args))
    parser.error("no command provided")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""
localmem MCP Server — Local Agent Memory over the Model Context Protocol

Standalone MCP server exposing localmem operations.  Works with any
MCP-compatible client over stdio.

Architecture: thin MCP layer delegating to MemoryEngine.  No business
logic in this module; stdout is the transport, so logs go to stderr.

Usage:
    python -m localmem.mcp.server --db /path/to/memory.db
    python -m localmem.mcp.server --mode local_english --context-id work
    python -m localmem.mcp.server --config ~/.config/localmem/config.json
"""

from __future__ import annotations

import argparse
import logging
import sys

from localmem.modes import EmbeddingMode

logger = logging.getLogger(__name__)

# Instructions embedded in FastMCP, visible to any MCP client.
_MCP_INSTRUCTIONS = (
    "Persistent memory for agents (8 tools).\n"
    "\n"
    "SEARCH:  Use search_memory first; context_tags boost, never filter.\n"
    "STORE:   Use add_memory with concise single-topic text and reused tags\n"
    "         (check get_context_tags). Local modes need explicit facts.\n"
    "EDIT:    Use update_memory with add_tags/remove_tags for tag changes\n"
    "         (no fact reprocessing), or text for a full rewrite.\n"
    "MODE:    Use switch_embedding_mode only when asked or when OpenAI fails.\n"
)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser for the memory MCP server."""
    p = argparse.ArgumentParser(
        prog="localmem-mcp",
        description="localmem MCP Server — persistent agent memory",
    )
    p.add_argument(
        "--config",
        default=None,
        help="JSON config file (missing or invalid files fall back to defaults)",
    )
    p.add_argument(
        "--db",
        default=None,
        help="SQLite database path (overrides config and $LOCALMEM_DB)",
    )
    p.add_argument(
        "--context-id",
        default=None,
        help="Context (tenant) id (overrides config and $LOCALMEM_CONTEXT_ID)",
    )
    p.add_argument(
        "--mode",
        choices=[m.value for m in EmbeddingMode],
        default=None,
        help="Embedding mode at startup (default: openai with a key, else local)",
    )
    p.add_argument(
        "--strict-config",
        action="store_true",
        help="Fail on invalid configuration values instead of using them",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return p


def create_server(args=None):
    """
    Create and configure the FastMCP server with memory tools.

    Args:
        args: Parsed argparse.Namespace, or None to parse from sys.argv.

    Returns:
        (mcp_server, engine) tuple.
    """
    from mcp.server.fastmcp import FastMCP

    from localmem.config import load_config
    from localmem.engine import MemoryEngine
    from localmem.mcp.tools import register_memory_tools

    if args is None:
        args = build_parser().parse_args()

    config = load_config(args.config, strict=args.strict_config)
    if args.db:
        config.store.db_path = args.db
    if args.context_id:
        config.context_id = args.context_id
    if args.mode:
        config.embedding.mode = args.mode

    engine = MemoryEngine.from_config(config)

    mcp = FastMCP(
        name="localmem Memory",
        instructions=_MCP_INSTRUCTIONS,
    )
    register_memory_tools(mcp, engine)

    logger.info(
        "localmem MCP server ready: db=%s, context=%s, mode=%s",
        config.store.db_path, config.context_id, engine.current_mode.value,
    )
    return mcp, engine


def main():
    """CLI entry point — parse args, create server, run."""
    parser = build_parser()
    args = parser.parse_args()

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    mcp, engine = create_server(args)
    try:
        mcp.run()
    finally:
        engine.close()


if __name__ == "__main__":
    main()

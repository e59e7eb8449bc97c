"""
localmem MCP Tools — 8 memory tools for MCP integration.

Thin wrappers around MemoryEngine.  Each tool:

    ① parses its arguments into a typed request (localmem.requests)
    ② dispatches to the engine
    ③ formats the result (localmem.formatting)

LocalMemError is turned into {"status": "error", "success": False,
"error": kind, ...}; nothing else is caught here.  Not-found results from
the engine are raised as NotFoundError while rendering.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from localmem.engine import MemoryEngine
from localmem.errors import LocalMemError, NotFoundError
from localmem.formatting import (
    DIRECT_ACCESS_PREVIEW,
    format_memory,
    format_search,
    format_switch,
    format_tags,
    format_write,
)
from localmem.requests import dispatch, parse_request

logger = logging.getLogger(__name__)


def _run(engine: MemoryEngine, operation: str, payload: Dict[str, Any], render):
    """Parse, dispatch and render one tool call."""
    t0 = time.monotonic()
    outcome = "ok"
    try:
        request = parse_request(operation, payload)
        return render(request, dispatch(engine, request))
    except LocalMemError as e:
        outcome = e.kind
        d = e.to_dict()
        d["success"] = False
        if operation == "switch_embedding_mode":
            d["current_mode"] = engine.current_mode.value
        return d
    finally:
        logger.debug(
            "%s %s (%.1f ms)", operation, outcome, (time.monotonic() - t0) * 1000,
        )


def _drop_none(**kwargs) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


def register_memory_tools(mcp, engine: MemoryEngine) -> None:
    """
    Register all 8 memory MCP tools on a FastMCP server instance.

    Args:
        mcp: FastMCP server instance.
        engine: Fully initialized MemoryEngine.
    """

    @mcp.tool()
    def add_memory(
        text: str,
        context_tags: Optional[List[str]] = None,
        facts: Optional[List[str]] = None,
        direct_access_only: bool = False,
    ) -> Dict[str, Any]:
        """Store a new memory, broken into searchable facts.

        Provide facts manually for control, or omit them to let AI extract
        them (only in OpenAI mode; extracted facts are returned for review).
        Use direct_access_only for large reference data that should not
        appear in searches or listings.

        Args:
            text: Memory content. Keep concise, focused on a single topic.
            context_tags: Tags for categorization. Reuse existing tags.
            facts: Optional manually specified facts.
            direct_access_only: Store without facts; retrievable only by id.
        """
        payload = _drop_none(
            text=text, context_tags=context_tags, facts=facts,
            direct_access_only=direct_access_only,
        )
        return _run(
            engine, "add_memory", payload,
            lambda req, res: format_write(res, "Added"),
        )

    @mcp.tool()
    def get_memory(memory_id: str) -> Dict[str, Any]:
        """Retrieve a memory by id, with all its facts."""

        def render(req, res):
            if res is None:
                raise NotFoundError(f"Memory with ID '{req.memory_id}' not found")
            memory, facts = res
            return {
                "success": True,
                "memory": format_memory(memory),
                "facts": [{"id": f.id, "text": f.text} for f in facts],
            }

        return _run(engine, "get_memory", {"memory_id": memory_id}, render)

    @mcp.tool()
    def update_memory(
        memory_id: str,
        text: Optional[str] = None,
        context_tags: Optional[List[str]] = None,
        facts: Optional[List[str]] = None,
        add_tags: Optional[List[str]] = None,
        remove_tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Update an existing memory.

        Full update: provide text (and optionally context_tags, facts) to
        replace the content and regenerate facts.  Tag-only update: provide
        add_tags and/or remove_tags without text; facts are untouched.
        """

        def render(req, res):
            if res is None:
                raise NotFoundError("Memory not found or does not belong to context")
            if req.tag_only:
                return {
                    "success": True,
                    "message": "Tags updated",
                    "memory_id": res.id,
                    "context_tags": list(res.tags),
                    "version": res.version,
                    "updated_at": res.updated_at,
                }
            return format_write(res, "Updated")

        payload = _drop_none(
            memory_id=memory_id, text=text, context_tags=context_tags,
            facts=facts, add_tags=add_tags, remove_tags=remove_tags,
        )
        return _run(engine, "update_memory", payload, render)

    @mcp.tool()
    def delete_memory(memory_id: str) -> Dict[str, Any]:
        """Permanently delete a memory and all its facts."""

        def render(req, deleted):
            if not deleted:
                raise NotFoundError("Memory not found or does not belong to context")
            return {"success": True, "message": f"Deleted memory {req.memory_id}"}

        return _run(engine, "delete_memory", {"memory_id": memory_id}, render)

    @mcp.tool()
    def list_memories(
        context_tags: Optional[List[str]] = None,
        limit: Optional[int] = None,
        direct_access_only: bool = False,
    ) -> Dict[str, Any]:
        """List memories newest first, optionally filtered by exact tags.

        With direct_access_only=True, lists only direct-access memories
        (text truncated) to recover their ids.
        """

        def render(req, memories):
            preview = DIRECT_ACCESS_PREVIEW if req.direct_access_only else None
            return {
                "count": len(memories),
                "memories": [format_memory(m, preview) for m in memories],
            }

        payload = _drop_none(
            context_tags=context_tags, limit=limit,
            direct_access_only=direct_access_only,
        )
        return _run(engine, "list_memories", payload, render)

    @mcp.tool()
    def search_memory(
        query: str,
        context_tags: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Semantic search through memories.

        Tags boost relevance (case-insensitive, partial match) but never
        filter: every memory is still searched.
        """
        payload = _drop_none(query=query, context_tags=context_tags, limit=limit)
        return _run(
            engine, "search_memory", payload,
            lambda req, hits: format_search(req.query, hits),
        )

    @mcp.tool()
    def get_context_tags(regex: Optional[str] = None) -> Dict[str, Any]:
        """List tags with memory count and first/last memory dates.

        Args:
            regex: Optional filter, e.g. '(?i)deploy' or '^test'.
        """
        return _run(
            engine, "get_context_tags", _drop_none(regex=regex),
            lambda req, tags: format_tags(tags, filtered=req.regex is not None),
        )

    @mcp.tool()
    def switch_embedding_mode(mode: str) -> Dict[str, Any]:
        """Switch between 'openai', 'local_english' and 'local_multilingual'.

        Only facts lacking a vector in the target mode are embedded;
        switching back to a previously used mode reuses its vectors.
        """
        return _run(
            engine, "switch_embedding_mode", {"mode": mode},
            lambda req, res: format_switch(res),
        )

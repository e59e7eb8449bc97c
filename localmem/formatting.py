"""
Response formatting for MCP tools.

Turns engine results into JSON-ready dicts.  Memory tags are rendered under
``context_tags``, the name agents use when writing them.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from localmem.modes import EmbeddingMode
from localmem.types import Fact, Memory, MemoryHit, ScoredFact, SwitchResult, TagSummary, WriteResult

MAX_TAGS_DISPLAY = 150
TRUNCATE_TAGS_TO = 100

# Direct-access listings show only a preview of the (possibly large) text
DIRECT_ACCESS_PREVIEW = 200


def format_memory(memory: Memory, preview: Optional[int] = None) -> Dict[str, Any]:
    text = memory.text
    if preview is not None and len(text) > preview:
        text = text[:preview] + "..."
    d: Dict[str, Any] = {
        "id": memory.id,
        "context_id": memory.context_id,
        "text": text,
        "context_tags": list(memory.tags),
        "created_at": memory.created_at,
        "updated_at": memory.updated_at,
        "version": memory.version,
    }
    if memory.direct_access_only:
        d["direct_access_only"] = True
    return d


def format_fact(fact: Fact) -> Dict[str, Any]:
    return {
        "id": fact.id,
        "memory_id": fact.memory_id,
        "text": fact.text,
        "created_at": fact.created_at,
        "updated_at": fact.updated_at,
        "version": fact.version,
    }


def format_scored_fact(item: ScoredFact) -> Dict[str, Any]:
    return {
        "id": item.fact.id,
        "text": item.fact.text,
        "score": round(item.score, 6),
    }


def format_hit(hit: MemoryHit) -> Dict[str, Any]:
    return {
        "memory": format_memory(hit.memory),
        "facts": [format_scored_fact(f) for f in hit.facts],
        "max_score": round(hit.score, 6),
    }


def format_tag_summary(summary: TagSummary) -> Dict[str, Any]:
    return summary.to_dict()


def format_write(result: WriteResult, action: str) -> Dict[str, Any]:
    """Response for add/update.  Extracted facts are echoed for review."""
    d: Dict[str, Any] = {
        "success": True,
        "memory": format_memory(result.memory),
        "message": f"{action} memory with {len(result.facts)} facts",
    }
    if result.memory.direct_access_only:
        d["message"] = f"{action} direct-access memory (not searchable)"
        return d
    if result.ai_extracted:
        d["facts"] = [format_fact(f) for f in result.facts]
        d["ai_extracted"] = True
    else:
        d["facts_count"] = len(result.facts)
        d["ai_extracted"] = False
    return d


def format_search(query: str, hits: Sequence[MemoryHit]) -> Dict[str, Any]:
    return {
        "query": query,
        "results": len(hits),
        "memories": [format_hit(h) for h in hits],
    }


def format_tags(summaries: List[TagSummary], filtered: bool) -> Dict[str, Any]:
    """Tag listing; more than MAX_TAGS_DISPLAY tags are cut to TRUNCATE_TAGS_TO."""
    total = len(summaries)
    d: Dict[str, Any] = {"count": total, "filtered": filtered, "truncated": False}
    shown = summaries
    if total > MAX_TAGS_DISPLAY:
        shown = summaries[:TRUNCATE_TAGS_TO]
        d["truncated"] = True
        d["message"] = (
            f"Returning first {TRUNCATE_TAGS_TO} context tags out of {total}. "
            f"For a more precise search, use the regex filter to narrow down results."
        )
    d["tags"] = [format_tag_summary(s) for s in shown]
    return d


def format_switch(result: SwitchResult) -> Dict[str, Any]:
    d = result.to_dict()
    d["success"] = True
    d["current_mode"] = result.active_mode
    if result.missing_before:
        d["message"] = (
            f"Switched to {result.active_mode}. Created {result.embedded_count} "
            f"missing embeddings in {result.elapsed_seconds:.1f}s."
        )
    else:
        d["message"] = (
            f"Switched to {result.active_mode}. All facts already have "
            f"{result.active_mode} embeddings."
        )
    if result.active_mode == EmbeddingMode.OPENAI.value:
        d["note"] = "Automatic fact extraction is available in OpenAI mode."
    else:
        d["note"] = (
            "Manual facts are required in local mode for add_memory and "
            "update_memory operations."
        )
    return d

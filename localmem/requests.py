"""
Typed requests for every memory operation.

Each request is a frozen dataclass whose ``from_dict`` checks the shape of
an untyped payload (as received from an MCP client) and raises
ValidationError on anything malformed.  ``dispatch`` routes a parsed
request to the matching MemoryEngine method.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from localmem.errors import ValidationError
from localmem.modes import EmbeddingMode, parse_mode

# ---------------------------------------------------------------------------
# Field checks
# ---------------------------------------------------------------------------


def _payload(d: Any) -> Mapping[str, Any]:
    if d is None:
        return {}
    if not isinstance(d, Mapping):
        raise ValidationError(f"request payload must be an object, got {type(d).__name__}")
    return d


def _req_str(d: Mapping[str, Any], key: str) -> str:
    value = d.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required")
    return value


def _opt_str(d: Mapping[str, Any], key: str) -> Optional[str]:
    value = d.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _opt_str_list(d: Mapping[str, Any], key: str) -> Optional[Tuple[str, ...]]:
    value = d.get(key)
    if value is None:
        return None
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{key} must be an array of strings")
    return tuple(value)


def _opt_limit(d: Mapping[str, Any], key: str = "limit") -> Optional[int]:
    value = d.get(key)
    if value is None:
        return None
    # JSON numbers may arrive as 10.0
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{key} must be a positive integer")
    return value


def _opt_bool(d: Mapping[str, Any], key: str) -> bool:
    value = d.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddMemoryRequest:
    text: str
    context_tags: Tuple[str, ...] = ()
    facts: Optional[Tuple[str, ...]] = None
    direct_access_only: bool = False

    @classmethod
    def from_dict(cls, d: Any) -> AddMemoryRequest:
        d = _payload(d)
        facts = _opt_str_list(d, "facts")
        if facts is not None and any(not f.strip() for f in facts):
            raise ValidationError("facts must not contain empty strings")
        return cls(
            text=_req_str(d, "text"),
            context_tags=_opt_str_list(d, "context_tags") or (),
            facts=facts or None,
            direct_access_only=_opt_bool(d, "direct_access_only"),
        )


@dataclass(frozen=True)
class GetMemoryRequest:
    memory_id: str

    @classmethod
    def from_dict(cls, d: Any) -> GetMemoryRequest:
        return cls(memory_id=_req_str(_payload(d), "memory_id"))


@dataclass(frozen=True)
class UpdateMemoryRequest:
    """Full update (``text`` given) or tag-only update (add/remove tags)."""

    memory_id: str
    text: Optional[str] = None
    context_tags: Tuple[str, ...] = ()
    facts: Optional[Tuple[str, ...]] = None
    add_tags: Optional[Tuple[str, ...]] = None
    remove_tags: Optional[Tuple[str, ...]] = None

    @property
    def tag_only(self) -> bool:
        return self.text is None

    @classmethod
    def from_dict(cls, d: Any) -> UpdateMemoryRequest:
        d = _payload(d)
        memory_id = _req_str(d, "memory_id")
        text = _opt_str(d, "text")
        if text is not None and not text.strip():
            text = None
        add_tags = _opt_str_list(d, "add_tags")
        remove_tags = _opt_str_list(d, "remove_tags")
        if text is None and add_tags is None and remove_tags is None:
            raise ValidationError(
                "text is required for full memory update "
                "(or provide add_tags/remove_tags for a tag-only update)"
            )
        facts = _opt_str_list(d, "facts")
        if facts is not None and any(not f.strip() for f in facts):
            raise ValidationError("facts must not contain empty strings")
        return cls(
            memory_id=memory_id,
            text=text,
            context_tags=_opt_str_list(d, "context_tags") or (),
            facts=facts or None,
            add_tags=add_tags,
            remove_tags=remove_tags,
        )


@dataclass(frozen=True)
class DeleteMemoryRequest:
    memory_id: str

    @classmethod
    def from_dict(cls, d: Any) -> DeleteMemoryRequest:
        return cls(memory_id=_req_str(_payload(d), "memory_id"))


@dataclass(frozen=True)
class ListMemoriesRequest:
    context_tags: Optional[Tuple[str, ...]] = None
    limit: Optional[int] = None
    direct_access_only: bool = False

    @classmethod
    def from_dict(cls, d: Any) -> ListMemoriesRequest:
        d = _payload(d)
        return cls(
            context_tags=_opt_str_list(d, "context_tags"),
            limit=_opt_limit(d),
            direct_access_only=_opt_bool(d, "direct_access_only"),
        )


@dataclass(frozen=True)
class SearchMemoryRequest:
    query: str
    context_tags: Tuple[str, ...] = ()
    limit: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Any) -> SearchMemoryRequest:
        d = _payload(d)
        return cls(
            query=_req_str(d, "query"),
            context_tags=_opt_str_list(d, "context_tags") or (),
            limit=_opt_limit(d),
        )


@dataclass(frozen=True)
class GetTagsRequest:
    regex: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Any) -> GetTagsRequest:
        return cls(regex=_opt_str(_payload(d), "regex") or None)


@dataclass(frozen=True)
class SwitchModeRequest:
    mode: EmbeddingMode

    @classmethod
    def from_dict(cls, d: Any) -> SwitchModeRequest:
        d = _payload(d)
        if d.get("mode") in (None, ""):
            raise ValidationError(
                "mode parameter is required (openai, local_english, or local_multilingual)"
            )
        return cls(mode=parse_mode(d["mode"]))


OPERATIONS: Dict[str, Type] = {
    "add_memory": AddMemoryRequest,
    "get_memory": GetMemoryRequest,
    "update_memory": UpdateMemoryRequest,
    "delete_memory": DeleteMemoryRequest,
    "list_memories": ListMemoriesRequest,
    "search_memory": SearchMemoryRequest,
    "get_context_tags": GetTagsRequest,
    "switch_embedding_mode": SwitchModeRequest,
}


def parse_request(operation: str, payload: Any):
    """Parse a payload for a named operation into its request dataclass."""
    cls = OPERATIONS.get(operation)
    if cls is None:
        raise ValidationError(
            f"Unknown operation: {operation!r}. "
            f"Must be one of: {', '.join(OPERATIONS)}"
        )
    return cls.from_dict(payload)


def dispatch(engine, request):
    """Run a parsed request against a MemoryEngine and return its result."""
    if isinstance(request, AddMemoryRequest):
        return engine.add_memory(
            request.text,
            list(request.context_tags),
            list(request.facts) if request.facts else None,
            direct_access_only=request.direct_access_only,
        )
    if isinstance(request, GetMemoryRequest):
        return engine.get_memory(request.memory_id)
    if isinstance(request, UpdateMemoryRequest):
        if request.tag_only:
            return engine.update_tags(
                request.memory_id,
                list(request.add_tags) if request.add_tags is not None else None,
                list(request.remove_tags) if request.remove_tags is not None else None,
            )
        return engine.update_memory(
            request.memory_id,
            request.text,
            list(request.context_tags),
            list(request.facts) if request.facts else None,
        )
    if isinstance(request, DeleteMemoryRequest):
        return engine.delete_memory(request.memory_id)
    if isinstance(request, ListMemoriesRequest):
        return engine.list_memories(
            list(request.context_tags) if request.context_tags else None,
            request.limit,
            direct_access_only=request.direct_access_only,
        )
    if isinstance(request, SearchMemoryRequest):
        return engine.search_memory(
            request.query, list(request.context_tags), request.limit,
        )
    if isinstance(request, GetTagsRequest):
        return engine.get_tags(request.regex)
    if isinstance(request, SwitchModeRequest):
        return engine.switch_mode(request.mode)
    raise ValidationError(f"Unsupported request type: {type(request).__name__}")

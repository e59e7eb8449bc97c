"""
Tests for localmem.requests — payload validation and dispatch.
"""

import pytest

from localmem.errors import ValidationError
from localmem.modes import EmbeddingMode
from localmem.requests import (
    AddMemoryRequest,
    GetTagsRequest,
    ListMemoriesRequest,
    SearchMemoryRequest,
    SwitchModeRequest,
    UpdateMemoryRequest,
    dispatch,
    parse_request,
)
from localmem.types import WriteResult


class TestAddMemoryRequest:
    def test_minimal(self):
        req = AddMemoryRequest.from_dict({"text": "hello"})
        assert req.text == "hello"
        assert req.context_tags == ()
        assert req.facts is None
        assert req.direct_access_only is False

    def test_full(self):
        req = AddMemoryRequest.from_dict({
            "text": "t", "context_tags": ["a"], "facts": ["f"], "direct_access_only": True,
        })
        assert req.context_tags == ("a",)
        assert req.facts == ("f",)
        assert req.direct_access_only is True

    def test_empty_facts_list_means_none(self):
        assert AddMemoryRequest.from_dict({"text": "t", "facts": []}).facts is None

    @pytest.mark.parametrize("payload", [
        {},
        {"text": ""},
        {"text": "   "},
        {"text": 5},
        {"text": "t", "context_tags": "single"},
        {"text": "t", "context_tags": [1]},
        {"text": "t", "facts": ["ok", " "]},
        {"text": "t", "direct_access_only": "yes"},
    ])
    def test_rejected(self, payload):
        with pytest.raises(ValidationError):
            AddMemoryRequest.from_dict(payload)

    def test_payload_must_be_object(self):
        with pytest.raises(ValidationError, match="must be an object"):
            AddMemoryRequest.from_dict(["text"])


class TestUpdateMemoryRequest:
    def test_full_update(self):
        req = UpdateMemoryRequest.from_dict({"memory_id": "abc", "text": "new"})
        assert req.tag_only is False

    def test_tag_only(self):
        req = UpdateMemoryRequest.from_dict({"memory_id": "abc", "add_tags": ["x"]})
        assert req.tag_only is True
        assert req.add_tags == ("x",)
        assert req.remove_tags is None

    def test_needs_text_or_tags(self):
        with pytest.raises(ValidationError, match="text is required"):
            UpdateMemoryRequest.from_dict({"memory_id": "abc"})

    def test_blank_text_with_tags_is_tag_only(self):
        req = UpdateMemoryRequest.from_dict(
            {"memory_id": "abc", "text": "", "remove_tags": ["x"]},
        )
        assert req.tag_only is True

    def test_memory_id_required(self):
        with pytest.raises(ValidationError, match="memory_id is required"):
            UpdateMemoryRequest.from_dict({"text": "new"})


class TestLimits:
    def test_integral_float_accepted(self):
        assert SearchMemoryRequest.from_dict({"query": "q", "limit": 10.0}).limit == 10

    @pytest.mark.parametrize("limit", [0, -1, 2.5, "10", True])
    def test_bad_limits(self, limit):
        with pytest.raises(ValidationError, match="positive integer"):
            ListMemoriesRequest.from_dict({"limit": limit})

    def test_absent_limit(self):
        assert ListMemoriesRequest.from_dict(None).limit is None


class TestOtherRequests:
    def test_switch_mode(self):
        assert SwitchModeRequest.from_dict({"mode": "OpenAI "}).mode is EmbeddingMode.OPENAI

    def test_switch_mode_required(self):
        with pytest.raises(ValidationError, match="mode parameter is required"):
            SwitchModeRequest.from_dict({})

    def test_switch_mode_invalid(self):
        with pytest.raises(ValidationError, match="Invalid mode"):
            SwitchModeRequest.from_dict({"mode": "gpt"})

    def test_tags_regex_blank_is_none(self):
        assert GetTagsRequest.from_dict({"regex": ""}).regex is None

    def test_parse_unknown_operation(self):
        with pytest.raises(ValidationError, match="Unknown operation"):
            parse_request("drop_tables", {})

    def test_parse_known_operation(self):
        req = parse_request("search_memory", {"query": "q", "context_tags": ["a"]})
        assert isinstance(req, SearchMemoryRequest)
        assert req.context_tags == ("a",)


class TestDispatch:
    def test_add_then_get(self, engine):
        result = dispatch(engine, parse_request(
            "add_memory", {"text": "hello", "facts": ["greeting"]},
        ))
        assert isinstance(result, WriteResult)
        memory, facts = dispatch(
            engine, parse_request("get_memory", {"memory_id": result.memory.id}),
        )
        assert memory.text == "hello"
        assert [f.text for f in facts] == ["greeting"]

    def test_update_routes_tag_only(self, engine):
        added = engine.add_memory("t", tags=["a"], facts=["f"])
        memory = dispatch(engine, parse_request(
            "update_memory", {"memory_id": added.memory.id, "add_tags": ["b"]},
        ))
        assert memory.tags == ["a", "b"]

    def test_update_routes_full(self, engine):
        added = engine.add_memory("t", tags=["a"], facts=["f"])
        result = dispatch(engine, parse_request(
            "update_memory",
            {"memory_id": added.memory.id, "text": "t2", "facts": ["g"]},
        ))
        assert result.memory.text == "t2"
        assert [f.text for f in result.facts] == ["g"]

    def test_switch(self, engine):
        result = dispatch(
            engine, parse_request("switch_embedding_mode", {"mode": "local_english"}),
        )
        assert result.active_mode == "local_english"

    def test_unsupported_request(self, engine):
        with pytest.raises(ValidationError, match="Unsupported"):
            dispatch(engine, object())

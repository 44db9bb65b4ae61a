"""Generation pipeline: keywords, catalog match, graph parse, validation, clarifications."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from n8n_draft_agent.catalog import NodeCatalog
from n8n_draft_agent.generation import (
    GenerationError,
    GenerationPipeline,
    classify_draft_intent,
    extract_keywords,
    generate_workflow,
    parse_workflow_response,
)
from n8n_draft_agent.reasoning import ModelResponseError

_CATALOG = NodeCatalog([
    {
        "name": "n8n-nodes-base.scheduleTrigger",
        "displayName": "Schedule Trigger",
        "description": "Triggers the workflow on a schedule",
        "group": ["trigger", "schedule"],
        "properties": [{"name": "rule", "required": True, "default": {"interval": []}}],
    },
    {
        "name": "n8n-nodes-base.gmail",
        "displayName": "Gmail",
        "description": "Send and read email with Gmail",
        "group": ["transform"],
        "properties": [
            {"name": "sendTo", "displayName": "To", "required": True, "default": ""},
            {"name": "subject", "displayName": "Subject", "default": ""},
        ],
        "credentials": [{"name": "gmailOAuth2"}],
    },
    {
        "name": "n8n-nodes-base.slack",
        "displayName": "Slack",
        "description": "Post messages to Slack",
        "group": ["output"],
        "properties": [{"name": "channelId", "displayName": "Channel", "required": True, "default": ""}],
    },
])


def _graph(gmail_params=None, meta=None, name="Daily Digest"):
    graph = {
        "name": name,
        "nodes": [
            {
                "name": "Schedule Trigger",
                "type": "n8n-nodes-base.scheduleTrigger",
                "typeVersion": 1,
                "parameters": {"rule": {"interval": [{"field": "days"}]}},
            },
            {
                "name": "Send Email",
                "type": "n8n-nodes-base.gmail",
                "typeVersion": 2,
                "parameters": gmail_params if gmail_params is not None else {"sendTo": "me@example.com"},
            },
        ],
        "connections": {
            "Schedule Trigger": {"main": [[{"node": "Send Email", "type": "main", "index": 0}]]},
        },
    }
    if name is None:
        del graph["name"]
    if meta is not None:
        graph["_meta"] = meta
    return graph


def _model(keywords=None, graph_reply=None):
    """Model stub: structured calls return keywords, text calls return graph_reply."""

    async def call(prompt, schema=None, temperature=0.0):
        if schema is not None:
            if isinstance(keywords, Exception):
                raise keywords
            return keywords
        if isinstance(graph_reply, Exception):
            raise graph_reply
        return graph_reply

    model = AsyncMock()
    model.call = AsyncMock(side_effect=call)
    return model


def _text_prompts(model):
    return [c.args[0] for c in model.call.call_args_list if c.kwargs.get("schema") is None]


def _section(prompt, heading):
    """Body of one "## heading" block of a generation prompt."""
    body = prompt.split(f"## {heading}", 1)[1]
    return body.split("\n## ", 1)[0]


# ---------------------------------------------------------------------------
# Keyword extraction
# ---------------------------------------------------------------------------


class TestExtractKeywords:
    @pytest.mark.asyncio
    async def test_truncates_trims_and_drops_empty(self):
        model = _model({"keywords": [" gmail ", "", "schedule", "a", "b", "c", "d"]})
        assert await extract_keywords(model, "email me daily") == ["gmail", "schedule", "a", "b"]

    @pytest.mark.asyncio
    async def test_non_object_reply(self):
        with pytest.raises(GenerationError) as exc_info:
            await extract_keywords(_model(["gmail"]), "x")
        assert exc_info.value.kind == "keywords_invalid"

    @pytest.mark.asyncio
    async def test_missing_field(self):
        with pytest.raises(GenerationError) as exc_info:
            await extract_keywords(_model({"words": ["gmail"]}), "x")
        assert exc_info.value.kind == "keywords_invalid"

    @pytest.mark.asyncio
    async def test_non_string_element(self):
        with pytest.raises(GenerationError) as exc_info:
            await extract_keywords(_model({"keywords": ["gmail", 3]}), "x")
        assert exc_info.value.kind == "keywords_invalid"

    @pytest.mark.asyncio
    async def test_undecodable_reply(self):
        model = _model(ModelResponseError("bad json", raw="not json"))
        with pytest.raises(GenerationError) as exc_info:
            await extract_keywords(model, "x")
        assert exc_info.value.kind == "keywords_invalid"
        assert exc_info.value.raw == "not json"


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class TestParseWorkflowResponse:
    def test_plain_json(self):
        assert parse_workflow_response(json.dumps(_graph()))["name"] == "Daily Digest"

    def test_fenced_json(self):
        reply = "```json\n" + json.dumps(_graph()) + "\n```"
        assert len(parse_workflow_response(reply)["nodes"]) == 2

    def test_bare_fence(self):
        reply = "```\n" + json.dumps(_graph()) + "\n```"
        assert "connections" in parse_workflow_response(reply)

    def test_invalid_json_keeps_raw(self):
        with pytest.raises(GenerationError) as exc_info:
            parse_workflow_response("Sure! Here is your workflow")
        err = exc_info.value
        assert err.kind == "graph_parse"
        assert err.raw == "Sure! Here is your workflow"
        assert err.message.startswith("Failed to parse workflow JSON")
        assert "Raw response: Sure! Here is your workflow" in err.message

    def test_missing_nodes(self):
        with pytest.raises(GenerationError) as exc_info:
            parse_workflow_response(json.dumps({"connections": {}}))
        assert exc_info.value.message == "Invalid workflow: missing or invalid nodes array"

    def test_missing_connections(self):
        with pytest.raises(GenerationError) as exc_info:
            parse_workflow_response(json.dumps({"nodes": []}))
        assert exc_info.value.kind == "graph_parse"
        assert "connections" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_default_name_from_prompt(self):
        prompt = "Every morning send me an email summarising yesterday's Stripe payments please"
        model = _model(graph_reply=json.dumps(_graph(name=None)))
        workflow = await generate_workflow(model, prompt, [])
        assert workflow["name"] == f"Workflow - {prompt[:50].strip()}"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestGenerateDraftGraph:
    @pytest.mark.asyncio
    async def test_happy_path_is_positioned_without_questions(self):
        model = _model({"keywords": ["schedule", "gmail"]}, json.dumps(_graph()))
        graph = await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me daily")

        assert [n["position"] for n in graph["nodes"]] == [[250, 250], [500, 250]]
        assert "requiresClarification" not in graph.get("_meta", {})

    @pytest.mark.asyncio
    async def test_parallel_branches_share_a_column(self):
        graph = _graph()
        graph["nodes"].append({
            "name": "Post to Slack", "type": "n8n-nodes-base.slack", "typeVersion": 1,
            "parameters": {"channelId": "#general"},
        })
        graph["connections"]["Schedule Trigger"]["main"][0].append(
            {"node": "Post to Slack", "type": "main", "index": 0}
        )
        model = _model({"keywords": ["gmail", "slack"]}, json.dumps(graph))

        result = await GenerationPipeline(model, _CATALOG).generate_draft_graph("email and slack me daily")

        positions = {n["name"]: n["position"] for n in result["nodes"]}
        assert positions == {
            "Schedule Trigger": [250, 250],
            "Send Email": [500, 200],
            "Post to Slack": [500, 300],
        }

    @pytest.mark.asyncio
    async def test_model_positions_are_kept(self):
        graph = _graph()
        graph["nodes"][0]["position"] = [100, 100]
        graph["nodes"][1]["position"] = [400, 120]
        model = _model({"keywords": ["gmail"]}, json.dumps(graph))

        result = await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me")

        assert [n["position"] for n in result["nodes"]] == [[100, 100], [400, 120]]

    @pytest.mark.asyncio
    async def test_matched_definitions_embedded_in_prompt(self):
        model = _model({"keywords": ["gmail"]}, json.dumps(_graph()))
        await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me")

        prompt = _text_prompts(model)[0]
        nodes_section = _section(prompt, "Relevant Nodes Available")
        assert '"n8n-nodes-base.gmail"' in nodes_section
        assert '"n8n-nodes-base.slack"' not in nodes_section
        assert "email me" in _section(prompt, "User Request")

    @pytest.mark.asyncio
    async def test_no_catalog_match_skips_generation(self):
        model = _model({"keywords": ["xyznonexistent"]}, json.dumps(_graph()))
        with pytest.raises(GenerationError) as exc_info:
            await GenerationPipeline(model, _CATALOG).generate_draft_graph("do the thing")

        assert exc_info.value.kind == "no_catalog_match"
        assert "xyznonexistent" in exc_info.value.message
        assert _text_prompts(model) == []

    @pytest.mark.asyncio
    async def test_unparseable_graph(self):
        model = _model({"keywords": ["gmail"]}, "I cannot do that")
        with pytest.raises(GenerationError) as exc_info:
            await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me")
        assert exc_info.value.kind == "graph_parse"

    @pytest.mark.asyncio
    async def test_structurally_invalid_graph(self):
        graph = _graph()
        graph["connections"]["Send Email"] = {"main": [[{"node": "Ghost", "type": "main", "index": 0}]]}
        model = _model({"keywords": ["gmail"]}, json.dumps(graph))

        with pytest.raises(GenerationError) as exc_info:
            await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me")

        assert exc_info.value.kind == "graph_invalid"
        assert exc_info.value.message.startswith("Generated workflow is invalid: ")
        assert "Ghost" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_required_parameter_becomes_question(self):
        model = _model({"keywords": ["gmail"]}, json.dumps(_graph(gmail_params={})))
        graph = await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me")

        assert graph["_meta"]["requiresClarification"] == [
            'What should "To" be for the "Send Email" node?'
        ]

    @pytest.mark.asyncio
    async def test_questions_appended_after_model_questions_without_duplicates(self):
        question = 'What should "To" be for the "Send Email" node?'
        meta = {"requiresClarification": ["Which inbox?", question], "assumptions": ["daily at 9"]}
        model = _model({"keywords": ["gmail"]}, json.dumps(_graph(gmail_params={}, meta=meta)))

        graph = await GenerationPipeline(model, _CATALOG).generate_draft_graph("email me")

        assert graph["_meta"]["requiresClarification"] == ["Which inbox?", question]
        assert graph["_meta"]["assumptions"] == ["daily at 9"]

    @pytest.mark.asyncio
    async def test_parameter_check_can_be_disabled(self):
        model = _model({"keywords": ["gmail"]}, json.dumps(_graph(gmail_params={})))
        pipeline = GenerationPipeline(model, _CATALOG, check_required_params=False)
        graph = await pipeline.generate_draft_graph("email me")
        assert "_meta" not in graph


class TestModifyDraftGraph:
    @pytest.mark.asyncio
    async def test_sends_graph_without_meta_and_new_definitions(self):
        current = _graph(meta={"requiresClarification": ["Which inbox?"]})
        current["nodes"][0]["position"] = [250, 300]
        current["nodes"][1]["position"] = [500, 300]
        updated = _graph()
        updated["nodes"].append({
            "name": "Post to Slack", "type": "n8n-nodes-base.slack", "typeVersion": 1,
            "parameters": {"channelId": "#general"},
        })
        updated["connections"]["Send Email"] = {
            "main": [[{"node": "Post to Slack", "type": "main", "index": 0}]]
        }
        model = _model({"keywords": ["slack"]}, json.dumps(updated))

        graph = await GenerationPipeline(model, _CATALOG).modify_draft_graph(current, "also post to slack")

        prompt = _text_prompts(model)[0]
        existing = _section(prompt, "Existing Workflow (modify this)")
        assert "_meta" not in existing
        assert "Which inbox?" not in existing
        nodes_section = _section(prompt, "Relevant Nodes Available")
        assert '"n8n-nodes-base.gmail"' in nodes_section
        assert '"n8n-nodes-base.slack"' in nodes_section
        assert "also post to slack" in _section(prompt, "Modification Request")
        assert [n["name"] for n in graph["nodes"]] == ["Schedule Trigger", "Send Email", "Post to Slack"]
        assert graph["nodes"][2]["position"] == [750, 250]

    @pytest.mark.asyncio
    async def test_keyword_failure_falls_back_to_existing_nodes(self):
        model = _model(ModelResponseError("bad", raw="??"), json.dumps(_graph(name=None)))
        graph = await GenerationPipeline(model, _CATALOG).modify_draft_graph(_graph(), "use a different subject")

        assert graph["name"] == "Daily Digest"
        assert '"n8n-nodes-base.gmail"' in _section(_text_prompts(model)[0], "Relevant Nodes Available")

    def test_collect_existing_definitions_deduplicates(self):
        graph = _graph()
        graph["nodes"].append({"name": "Second Email", "type": "n8n-nodes-base.gmail"})
        graph["nodes"].append({"name": "Unknown", "type": "n8n-nodes-base.nope"})
        defs = GenerationPipeline(_model(), _CATALOG).collect_existing_node_definitions(graph)
        assert [d["name"] for d in defs] == ["n8n-nodes-base.scheduleTrigger", "n8n-nodes-base.gmail"]


# ---------------------------------------------------------------------------
# Draft intent
# ---------------------------------------------------------------------------


class TestClassifyDraftIntent:
    _draft = SimpleNamespace(graph=_graph(), original_prompt="email me daily")

    @pytest.mark.asyncio
    async def test_modify_with_request(self):
        model = _model({"intent": "modify", "modificationRequest": "send at 8am", "reason": "change"})
        result = await classify_draft_intent(model, "make it 8am", self._draft)
        assert result.intent == "modify"
        assert result.modification_request == "send at 8am"

        prompt = model.call.call_args.args[0]
        assert "Send Email (n8n-nodes-base.gmail)" in prompt
        assert "email me daily" in prompt
        assert "make it 8am" in prompt

    @pytest.mark.asyncio
    async def test_unknown_intent_shows_preview(self):
        result = await classify_draft_intent(_model({"intent": "maybe"}), "hmm", self._draft)
        assert result.intent == "show_preview"

    @pytest.mark.asyncio
    async def test_model_failure_shows_preview(self):
        model = _model(RuntimeError("timeout"))
        result = await classify_draft_intent(model, "yes", self._draft)
        assert result.intent == "show_preview"
        assert "timeout" in result.reason

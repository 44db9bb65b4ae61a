"""DraftLifecycle state machine: create, preview, confirm, modify, cancel, new, TTL."""

from __future__ import annotations

import asyncio
import gc
from unittest.mock import AsyncMock, MagicMock

import pytest

from n8n_draft_agent.credentials import MissingConnection
from n8n_draft_agent.drafts import (
    Draft,
    DraftLifecycle,
    InMemoryCache,
    draft_key,
    format_draft_summary,
    format_preview,
)
from n8n_draft_agent.generation import GenerationError
from n8n_draft_agent.service import DeployResult

USER = "u1"


def _graph(name="Stripe Summary", questions=None):
    graph = {
        "name": name,
        "nodes": [
            {"name": "Schedule Trigger", "type": "n8n-nodes-base.scheduleTrigger",
             "position": [250, 300], "parameters": {}},
            {"name": "Gmail", "type": "n8n-nodes-base.gmail", "position": [500, 300], "parameters": {},
             "credentials": {"gmailOAuth2Api": {"id": "{{CREDENTIAL_ID}}", "name": "Gmail"}}},
        ],
        "connections": {"Schedule Trigger": {"main": [[{"node": "Gmail", "type": "main", "index": 0}]]}},
        "_meta": {"assumptions": ["Runs at 9am"], "suggestions": []},
    }
    if questions:
        graph["_meta"]["requiresClarification"] = list(questions)
    return graph


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _intent(intent, modification_request=None):
    reply = {"intent": intent, "reason": "test"}
    if modification_request is not None:
        reply["modificationRequest"] = modification_request
    return reply


def _lifecycle(graph=None, intent=None, deploy=None, **kwargs):
    pipeline = MagicMock()
    pipeline.generate_draft_graph = AsyncMock(return_value=graph or _graph())
    pipeline.modify_draft_graph = AsyncMock(return_value=_graph(name="Modified Summary"))

    service = MagicMock()
    service.deploy_workflow = AsyncMock(
        return_value=deploy or DeployResult(id="wf-1", name="Stripe Summary", active=False, node_count=2)
    )

    model = AsyncMock()
    model.call = AsyncMock(return_value=intent or _intent("confirm"))

    cache = InMemoryCache()
    clock = kwargs.pop("clock", FakeClock())
    lifecycle = DraftLifecycle(cache, pipeline, service, model, clock=clock, **kwargs)
    return lifecycle, cache, pipeline, service, model


async def _seed(cache, graph=None, created_at=1_000.0, prompt="summarise stripe payments"):
    draft = Draft(graph=graph or _graph(), original_prompt=prompt, user_id=USER, created_at=created_at)
    await cache.set(draft_key(USER), draft.to_dict())
    return draft


# ---------------------------------------------------------------------------
# No draft
# ---------------------------------------------------------------------------


class TestAbsent:
    @pytest.mark.asyncio
    async def test_first_message_creates_preview(self):
        lifecycle, cache, pipeline, _, model = _lifecycle()

        result = await lifecycle.handle_message(USER, "Summarise Stripe payments by email every Monday")

        assert result.action == "preview"
        assert result.success is True
        assert result.text.startswith("## Workflow Preview")
        assert "**Generated Workflow:** Stripe Summary" in result.text
        assert 'Reply "yes"' in result.text
        assert draft_key(USER) in cache
        pipeline.generate_draft_graph.assert_awaited_once_with("Summarise Stripe payments by email every Monday")
        model.call.assert_not_called()

    @pytest.mark.asyncio
    async def test_open_questions_produce_clarification(self):
        lifecycle, cache, *_ = _lifecycle(graph=_graph(questions=["Which Stripe account?"]))

        result = await lifecycle.handle_message(USER, "Summarise Stripe payments")

        assert result.action == "clarification"
        assert "I need more information before this workflow can be deployed:" in result.text
        assert "- Which Stripe account?" in result.text
        assert 'Reply "yes"' not in result.text
        assert result.draft.needs_clarification

    @pytest.mark.asyncio
    async def test_empty_text_asks_for_description(self):
        lifecycle, cache, pipeline, *_ = _lifecycle()

        result = await lifecycle.handle_message(USER, "   ")

        assert result.action == "needs_description"
        assert result.success is False
        pipeline.generate_draft_graph.assert_not_called()

    @pytest.mark.asyncio
    async def test_generation_failure_stores_nothing(self):
        lifecycle, cache, pipeline, *_ = _lifecycle()
        pipeline.generate_draft_graph.side_effect = GenerationError(
            "no_catalog_match", "No n8n nodes matched the keywords: frobnicate"
        )

        result = await lifecycle.handle_message(USER, "frobnicate the thing")

        assert result.action == "generation_failed"
        assert result.success is False
        assert "Failed to create workflow: No n8n nodes matched the keywords: frobnicate" in result.text
        assert draft_key(USER) not in cache


# ---------------------------------------------------------------------------
# TTL
# ---------------------------------------------------------------------------


class TestExpiry:
    @pytest.mark.asyncio
    async def test_expired_draft_is_treated_as_absent(self):
        clock = FakeClock(now=1_000.0 + 1801)
        lifecycle, cache, pipeline, _, model = _lifecycle(clock=clock)
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "post RSS items to Slack")

        assert result.action == "preview"
        model.call.assert_not_called()
        pipeline.generate_draft_graph.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_draft_within_ttl_is_kept(self):
        clock = FakeClock(now=1_000.0 + 1800)
        lifecycle, cache, *_ = _lifecycle(clock=clock)
        await _seed(cache)
        assert await lifecycle.get_pending_draft(USER) is not None

    @pytest.mark.asyncio
    async def test_expired_slot_is_deleted_on_read(self):
        clock = FakeClock(now=5_000.0)
        lifecycle, cache, *_ = _lifecycle(clock=clock)
        await _seed(cache)

        assert await lifecycle.get_pending_draft(USER) is None
        assert draft_key(USER) not in cache

    @pytest.mark.asyncio
    async def test_unreadable_slot_is_discarded(self):
        lifecycle, cache, *_ = _lifecycle()
        await cache.set(draft_key(USER), {"graph": {}})
        assert await lifecycle.get_pending_draft(USER) is None
        assert draft_key(USER) not in cache

    @pytest.mark.asyncio
    async def test_modify_resets_created_at(self):
        clock = FakeClock(now=1_000.0)
        lifecycle, cache, *_ = _lifecycle(intent=_intent("modify", "run at 8am"), clock=clock)
        await _seed(cache, created_at=1_000.0)

        clock.now = 2_500.0
        await lifecycle.handle_message(USER, "make it 8am")

        clock.now = 2_500.0 + 1700
        draft = await lifecycle.get_pending_draft(USER)
        assert draft is not None
        assert draft.created_at == 2_500.0


# ---------------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------------


class TestConfirm:
    @pytest.mark.asyncio
    async def test_confirm_deploys_and_clears(self):
        lifecycle, cache, _, service, _ = _lifecycle(intent=_intent("confirm"))
        draft = await _seed(cache)

        result = await lifecycle.handle_message(USER, "yes")

        service.deploy_workflow.assert_awaited_once_with(draft.graph, USER)
        assert result.action == "deployed"
        assert 'Workflow "Stripe Summary" deployed successfully.' in result.text
        assert "ID: wf-1" in result.text
        assert draft_key(USER) not in cache

    @pytest.mark.asyncio
    async def test_missing_credentials_listed_with_auth_url(self):
        deploy = DeployResult(
            id="wf-2", name="Stripe Summary", active=False, node_count=2,
            missing_connections=[
                MissingConnection("gmailOAuth2Api", auth_url="https://auth.example.com/gmail",
                                  display_name="Gmail", provider="gmail"),
                MissingConnection("stripeApi", display_name="Stripe", provider="stripe"),
            ],
        )
        lifecycle, cache, *_ = _lifecycle(intent=_intent("confirm"), deploy=deploy)
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "deploy it")

        assert "- Gmail (gmailOAuth2Api): authorize at https://auth.example.com/gmail" in result.text
        assert "- Stripe (stripeApi)" in result.text
        assert result.deploy.missing_credentials == ["gmailOAuth2Api", "stripeApi"]

    @pytest.mark.asyncio
    async def test_deploy_failure_keeps_draft(self):
        lifecycle, cache, _, service, _ = _lifecycle(intent=_intent("confirm"))
        service.deploy_workflow.side_effect = RuntimeError("n8n unreachable")
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "yes")

        assert result.action == "deploy_failed"
        assert result.success is False
        assert "n8n unreachable" in result.text
        assert draft_key(USER) in cache

    @pytest.mark.asyncio
    async def test_blocked_deploy_keeps_draft(self):
        deploy = DeployResult(
            id="", name="Stripe Summary", active=False, node_count=2,
            missing_connections=[MissingConnection("stripeApi", display_name="Stripe")],
        )
        lifecycle, cache, *_ = _lifecycle(intent=_intent("confirm"), deploy=deploy)
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "yes")

        assert result.action == "deploy_blocked"
        assert "- Stripe (stripeApi)" in result.text
        assert draft_key(USER) in cache

    @pytest.mark.asyncio
    async def test_confirm_with_open_questions_becomes_modify(self):
        lifecycle, cache, pipeline, service, _ = _lifecycle(intent=_intent("confirm"))
        draft = await _seed(cache, graph=_graph(questions=["Which Stripe account?"]))

        result = await lifecycle.handle_message(USER, "yes, use the main account")

        service.deploy_workflow.assert_not_called()
        pipeline.modify_draft_graph.assert_awaited_once_with(draft.graph, "yes, use the main account")
        assert result.action == "modified"
        assert "**Modified Workflow:** Modified Summary" in result.text


# ---------------------------------------------------------------------------
# Cancel / modify / new / unclear
# ---------------------------------------------------------------------------


class TestOtherIntents:
    @pytest.mark.asyncio
    async def test_cancel(self):
        lifecycle, cache, _, service, _ = _lifecycle(intent=_intent("cancel"))
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "never mind")

        assert result.action == "cancelled"
        assert result.text == "Workflow draft cancelled."
        assert draft_key(USER) not in cache
        service.deploy_workflow.assert_not_called()

    @pytest.mark.asyncio
    async def test_modify_uses_extracted_request(self):
        lifecycle, cache, pipeline, *_ = _lifecycle(intent=_intent("modify", "send to finance@example.com"))
        draft = await _seed(cache)

        result = await lifecycle.handle_message(USER, "actually send it to finance")

        pipeline.modify_draft_graph.assert_awaited_once_with(draft.graph, "send to finance@example.com")
        stored = await lifecycle.get_pending_draft(USER)
        assert stored.graph["name"] == "Modified Summary"
        assert stored.original_prompt == "summarise stripe payments"
        assert result.action == "modified"

    @pytest.mark.asyncio
    async def test_modify_falls_back_to_message(self):
        lifecycle, cache, pipeline, *_ = _lifecycle(intent=_intent("modify"))
        draft = await _seed(cache)
        await lifecycle.handle_message(USER, "add a slack step")
        pipeline.modify_draft_graph.assert_awaited_once_with(draft.graph, "add a slack step")

    @pytest.mark.asyncio
    async def test_modify_failure_keeps_draft(self):
        lifecycle, cache, pipeline, *_ = _lifecycle(intent=_intent("modify", "x"))
        pipeline.modify_draft_graph.side_effect = GenerationError("graph_parse", "Failed to parse workflow JSON")
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "change it")

        assert result.action == "modify_failed"
        assert "Failed to parse workflow JSON" in result.text
        assert (await lifecycle.get_pending_draft(USER)).graph["name"] == "Stripe Summary"

    @pytest.mark.asyncio
    async def test_new_replaces_draft(self):
        lifecycle, cache, pipeline, *_ = _lifecycle(intent=_intent("new"), graph=_graph(name="RSS to Slack"))
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "post RSS items to Slack instead")

        assert result.action == "preview"
        stored = await lifecycle.get_pending_draft(USER)
        assert stored.graph["name"] == "RSS to Slack"
        assert stored.original_prompt == "post RSS items to Slack instead"

    @pytest.mark.asyncio
    async def test_new_without_description_clears_draft(self):
        lifecycle, cache, pipeline, *_ = _lifecycle(intent=_intent("new"))
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "   ")

        assert result.action == "needs_description"
        assert result.success is False
        assert draft_key(USER) not in cache
        assert await lifecycle.get_pending_draft(USER) is None
        pipeline.generate_draft_graph.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_failure_restores_previous_draft(self):
        lifecycle, cache, pipeline, *_ = _lifecycle(intent=_intent("new"))
        pipeline.generate_draft_graph.side_effect = GenerationError("keywords_invalid", "bad keywords")
        draft = await _seed(cache)

        result = await lifecycle.handle_message(USER, "something else entirely")

        assert result.action == "new_restored"
        assert result.text.startswith("I couldn't understand the new request (bad keywords).")
        assert "**Generated Workflow:** Stripe Summary" in result.text
        restored = await lifecycle.get_pending_draft(USER)
        assert restored.to_dict() == draft.to_dict()

    @pytest.mark.asyncio
    async def test_unclassifiable_message_reshows_preview(self):
        lifecycle, cache, pipeline, service, model = _lifecycle()
        model.call.side_effect = RuntimeError("model timeout")
        await _seed(cache)

        result = await lifecycle.handle_message(USER, "hmm")

        assert result.action == "show_preview"
        assert result.text.startswith("## Workflow Preview")
        pipeline.modify_draft_graph.assert_not_called()
        service.deploy_workflow.assert_not_called()
        assert draft_key(USER) in cache


# ---------------------------------------------------------------------------
# Helpers and concurrency
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.asyncio
    async def test_discard_draft(self):
        lifecycle, cache, *_ = _lifecycle()
        await _seed(cache)
        assert await lifecycle.discard_draft(USER) is True
        assert await lifecycle.discard_draft(USER) is False

    def test_preview_lists_nodes_credentials_and_assumptions(self):
        draft = Draft(graph=_graph(), original_prompt="p", user_id=USER, created_at=0)
        text = format_preview(draft)
        assert "**Nodes (2):**" in text
        assert "1. Schedule Trigger (scheduleTrigger)" in text
        assert "**Credentials:** gmailOAuth2Api" in text
        assert "- Runs at 9am" in text

    def test_draft_summary(self):
        draft = Draft(graph=_graph(), original_prompt="p", user_id=USER, created_at=0)
        assert format_draft_summary(draft) == (
            'A workflow draft "Stripe Summary" is pending. Nodes: Schedule Trigger → Gmail'
        )

    @pytest.mark.asyncio
    async def test_serialized_turns_do_not_interleave(self):
        events = []

        async def slow_generate(prompt):
            events.append(f"start:{prompt}")
            await asyncio.sleep(0.01)
            events.append(f"end:{prompt}")
            return _graph()

        lifecycle, cache, pipeline, _, model = _lifecycle(
            intent=_intent("new"), serialize_per_user=True
        )
        pipeline.generate_draft_graph.side_effect = slow_generate

        await asyncio.gather(
            lifecycle.handle_message(USER, "first"),
            lifecycle.handle_message(USER, "second"),
        )

        assert events == ["start:first", "end:first", "start:second", "end:second"]

    @pytest.mark.asyncio
    async def test_user_locks_released_after_turns(self):
        lifecycle, cache, *_ = _lifecycle(intent=_intent("new"), serialize_per_user=True)

        await asyncio.gather(
            lifecycle.handle_message("a", "email me daily"),
            lifecycle.handle_message("a", "post to slack"),
            lifecycle.handle_message("b", "summarise stripe"),
        )
        gc.collect()

        assert len(lifecycle._locks) == 0
        assert await lifecycle.get_pending_draft("a") is not None

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from chatty.config import Settings
from chatty.schemas.message import Message
from chatty.services.smart_reply import (
    SmartReplyService,
    SmartReplySuggestions,
    clean_suggestions,
    render_history,
)
from chatty.services.telemetry import get_counter

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def fake_client(text=None, error=None):
    generate = AsyncMock(return_value=SimpleNamespace(text=text), side_effect=error)
    return SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate))), generate


def message(i, sender, text):
    return Message(
        id=f"m{i}",
        conversation_id="alice_bob",
        sender_id=sender,
        text=text,
        created_at=T0 + timedelta(minutes=i),
    )


def test_disabled_without_api_key():
    service = SmartReplyService.from_settings(Settings(JWT_SECRET="x", GEMINI_API_KEY=""))
    assert service.enabled is False


@pytest.mark.asyncio
async def test_disabled_service_returns_no_suggestions():
    assert await SmartReplyService().suggest("hello?") == []


@pytest.mark.asyncio
async def test_suggest_returns_cleaned_suggestions():
    client, generate = fake_client(json.dumps({"suggestions": ["Sure!", " sure! ", "On my way", "Give me 5", ""]}))
    service = SmartReplyService(client=client, model="test-model")

    suggestions = await service.suggest("Coming tonight?", ["Them: hey", "Me: hi"])

    assert suggestions == ["Sure!", "On my way", "Give me 5"]
    kwargs = generate.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert "Coming tonight?" in kwargs["contents"]
    assert kwargs["config"].response_schema is SmartReplySuggestions


@pytest.mark.asyncio
async def test_history_is_capped_to_recent_turns():
    client, generate = fake_client(json.dumps({"suggestions": ["a", "b", "c"]}))
    service = SmartReplyService(client=client)
    history = [f"Them: line {i}" for i in range(10)]

    await service.suggest("latest", history)

    prompt = generate.call_args.kwargs["contents"]
    assert "line 4" not in prompt
    assert "line 5" in prompt
    assert "line 9" in prompt


@pytest.mark.asyncio
async def test_too_few_suggestions_yield_empty_list():
    client, _ = fake_client(json.dumps({"suggestions": ["Only one"]}))

    assert await SmartReplyService(client=client).suggest("hi") == []


@pytest.mark.asyncio
async def test_invalid_json_yields_empty_list():
    client, _ = fake_client("not json at all")

    assert await SmartReplyService(client=client).suggest("hi") == []
    assert get_counter("smart_reply_failures_total") == 1


@pytest.mark.asyncio
async def test_request_failure_yields_empty_list():
    client, _ = fake_client(error=RuntimeError("quota exceeded"))

    assert await SmartReplyService(client=client).suggest("hi") == []
    assert get_counter("smart_reply_failures_total") == 1


@pytest.mark.asyncio
async def test_suggest_for_thread_replies_to_latest_counterpart_message():
    client, generate = fake_client(json.dumps({"suggestions": ["Yes", "No", "Maybe"]}))
    service = SmartReplyService(client=client)
    messages = [
        message(1, "bob", "lunch?"),
        message(2, "alice", "where?"),
        message(3, "bob", "the usual place"),
        message(4, "alice", None),
    ]

    assert await service.suggest_for_thread(messages, "alice") == ["Yes", "No", "Maybe"]

    prompt = generate.call_args.kwargs["contents"]
    assert "the usual place" in prompt
    assert "Them: lunch?" in prompt
    assert "Me: where?" in prompt


@pytest.mark.asyncio
async def test_suggest_for_thread_without_counterpart_messages():
    client, generate = fake_client(json.dumps({"suggestions": ["a", "b", "c"]}))

    assert await SmartReplyService(client=client).suggest_for_thread([message(1, "alice", "hi")], "alice") == []
    generate.assert_not_called()


def test_render_history_skips_attachments():
    lines = render_history([message(1, "alice", "hi"), message(2, "bob", None)], "alice")
    assert lines == ["Me: hi"]


def test_clean_suggestions_caps_at_five():
    assert len(clean_suggestions([f"reply {i}" for i in range(8)])) == 5

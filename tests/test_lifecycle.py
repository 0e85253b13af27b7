from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from support_core.context_cache import ContextCache, context_session_key
from support_core.errors import ErrorKind
from support_core.lifecycle import ConversationManager, detect_conversation_end
from support_core.phrases import FAREWELL_MESSAGES
from support_core.schemas import ContextMessage, ConversationStatus, MessageRole
from tests.utils import InMemoryConversationStore, InMemoryMessageStore


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock():
    return _Clock()


@pytest.fixture()
def stores(clock):
    conversations = InMemoryConversationStore(now_fn=clock)
    messages = InMemoryMessageStore(conversations)
    return conversations, messages


@pytest.fixture()
def manager(stores, redis, clock):
    conversations, messages = stores
    return ConversationManager(
        conversations,
        messages,
        ContextCache(redis, ttl_seconds=3600, max_messages=10),
        max_context_messages=10,
        max_message_length_for_ending=100,
        inactivity_minutes=15,
        now_fn=clock,
    )


@pytest.mark.parametrize(
    "text, expected",
    [
        ("bye", True),
        ("Goodbye!", True),
        ("ok that’s all", True),
        ("ok bye", True),
        ("thanks, bye!", True),
        ("BYE", True),
        ("alright, goodbye!!", True),
        ("that's all, thanks", False),
        ("bye, but first where is my order?", False),
        ("thanks", True),
        ("Thank you.", True),
        ("thanks, and when do you open?", False),
        ("bye's", False),
        ("I need to buy a bicycle", False),
        ("", False),
        ("   ", False),
        (None, False),
        (42, False),
        ("I'm done " + "x" * 120, False),
    ],
)
def test_detect_conversation_end(text, expected):
    assert detect_conversation_end(text, 100) is expected


@pytest.mark.asyncio
async def test_get_or_create_reuses_active_conversation(manager, clock):
    first, created = await manager.get_or_create_conversation("client-a", "s1")
    clock.now += timedelta(minutes=3)
    second, created_again = await manager.get_or_create_conversation("client-a", "s1")

    assert created is True
    assert created_again is False
    assert second.id == first.id


@pytest.mark.asyncio
async def test_sessions_are_scoped_per_client(manager):
    a, _ = await manager.get_or_create_conversation("client-a", "s1")
    b, _ = await manager.get_or_create_conversation("client-b", "s1")
    assert a.id != b.id


@pytest.mark.asyncio
async def test_debug_messages_do_not_count(manager, stores):
    conversations, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")

    await manager.add_message(conv.id, MessageRole.USER, "hello", tokens=3)
    await manager.add_debug_message(conv.id, "Tool Call: x", kind="tool_call")

    stored = await conversations.get(conv.id)
    assert stored.message_count == 1
    assert stored.tokens_total == 3
    assert await messages.count(conv.id) == 1
    assert await messages.count(conv.id, include_debug=True) == 2
    assert messages.by_role(MessageRole.DEBUG)[0].metadata == {"kind": "tool_call"}


@pytest.mark.asyncio
async def test_debug_message_failures_are_swallowed(manager, monkeypatch):
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")

    async def _broken_append(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(manager._messages, "append", _broken_append)
    assert await manager.add_debug_message(conv.id, "trace", kind="tool_result") is None


@pytest.mark.asyncio
async def test_load_context_rebuilds_pruned_window_with_system_first(manager, stores):
    _, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    for i in range(15):
        role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
        await messages.append(conv.id, role, f"m{i}")
    await messages.append(conv.id, MessageRole.DEBUG, "trace")

    context = await manager.load_context("s1", conv, "SYSTEM")

    assert len(context) == 10
    assert context[0] == ContextMessage(role="system", content="SYSTEM")
    assert [m.content for m in context[1:]] == [f"m{i}" for i in range(6, 15)]


@pytest.mark.asyncio
async def test_load_context_serves_current_cache_and_swaps_prompt(manager, stores):
    _, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    await messages.append(conv.id, MessageRole.USER, "hi")
    await manager.load_context("s1", conv, "OLD PROMPT")

    # Same durable count: the cached window is used, with the new prompt.
    context = await manager.load_context("s1", conv, "NEW PROMPT")
    assert context[0].content == "NEW PROMPT"
    assert [m.content for m in context[1:]] == ["hi"]


@pytest.mark.asyncio
async def test_load_context_rebuilds_when_cache_lags_durable_history(manager, stores):
    _, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    await messages.append(conv.id, MessageRole.USER, "first")
    await manager.load_context("s1", conv, "P")

    # Written by another worker without a cache update.
    await messages.append(conv.id, MessageRole.ASSISTANT, "second")

    context = await manager.load_context("s1", conv, "P")
    assert [m.content for m in context] == ["P", "first", "second"]


@pytest.mark.asyncio
async def test_append_to_context_tracks_durable_count(manager, stores):
    _, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    await manager.load_context("s1", conv, "P")

    await messages.append(conv.id, MessageRole.USER, "q")
    await messages.append(conv.id, MessageRole.ASSISTANT, "a")
    window = await manager.append_to_context(
        "s1",
        conv,
        [ContextMessage(role="user", content="q"), ContextMessage(role="assistant", content="a")],
    )

    assert window.message_count == 2
    context = await manager.load_context("s1", conv, "P")
    assert [m.content for m in context] == ["P", "q", "a"]


@pytest.mark.asyncio
async def test_end_conversation_is_idempotent_and_clears_cache(manager, redis):
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    await manager.load_context("s1", conv, "P")
    key = "support:context:" + context_session_key("client-a", "s1")
    assert await redis.get(key) is not None

    first = await manager.end_conversation_by_id(conv.id)
    second = await manager.end_conversation_by_id(conv.id)

    assert first.ok and second.ok
    assert first.value.status is ConversationStatus.ENDED
    assert second.value.ended_at == first.value.ended_at
    assert await redis.get(key) is None


@pytest.mark.asyncio
async def test_end_unknown_conversation_is_not_found(manager):
    outcome = await manager.end_conversation_by_id("nope")
    assert outcome.ok is False
    assert outcome.kind is ErrorKind.NOT_FOUND

    outcome = await manager.end_conversation("client-a", "no-session")
    assert outcome.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_next_message_after_end_starts_a_new_conversation(manager):
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    await manager.end_conversation("client-a", "s1")

    fresh, created = await manager.get_or_create_conversation("client-a", "s1")
    assert created is True
    assert fresh.id != conv.id


@pytest.mark.asyncio
async def test_handle_conversation_end_saves_both_messages(manager, stores):
    conversations, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")

    farewell = await manager.handle_conversation_end(conv, "s1", "bye")

    assert farewell in FAREWELL_MESSAGES
    roles = [(m.role, m.content) for m in messages.messages]
    assert roles == [(MessageRole.USER, "bye"), (MessageRole.ASSISTANT, farewell)]
    assert (await conversations.get(conv.id)).status is ConversationStatus.ENDED


@pytest.mark.asyncio
async def test_handle_conversation_end_can_skip_an_already_saved_user_message(manager, stores):
    conversations, messages = stores
    conv, _ = await manager.get_or_create_conversation("client-a", "s1")
    await manager.add_message(conv.id, MessageRole.USER, "bye")

    farewell = await manager.handle_conversation_end(conv, "s1", "bye", save_user_message=False)

    roles = [(m.role, m.content) for m in messages.messages]
    assert roles == [(MessageRole.USER, "bye"), (MessageRole.ASSISTANT, farewell)]
    assert (await conversations.get(conv.id)).status is ConversationStatus.ENDED


@pytest.mark.asyncio
async def test_auto_end_only_touches_idle_conversations(manager, stores, clock):
    conversations, _ = stores
    idle, _ = await manager.get_or_create_conversation("client-a", "idle")
    clock.now += timedelta(minutes=20)
    fresh, _ = await manager.get_or_create_conversation("client-a", "fresh")

    result = await manager.auto_end_inactive()

    assert result.ended == 1
    assert [c.id for c in result.conversations] == [idle.id]
    assert (await conversations.get(fresh.id)).is_active


@pytest.mark.asyncio
async def test_auto_end_collects_failures_and_continues(manager, stores, clock):
    conversations, _ = stores
    broken, _ = await manager.get_or_create_conversation("client-a", "s1")
    ok, _ = await manager.get_or_create_conversation("client-a", "s2")
    conversations.fail_end_for.add(broken.id)
    clock.now += timedelta(minutes=30)

    result = await manager.auto_end_inactive()

    assert result.ended == 1
    assert [c.id for c in result.conversations] == [ok.id]
    assert [f.conversation_id for f in result.failures] == [broken.id]
    assert "database is gone" in result.failures[0].error

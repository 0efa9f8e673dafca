"""Test suite for the message/analysis orchestrator."""

import json

import pytest

from conftest import HEADACHE_ANALYSIS, RecordingEngine, ScriptedProvider
from mediai_chat.domain.errors import ConversationNotFound
from mediai_chat.domain.models import HealthProfile, Role
from mediai_chat.repositories.memory import InMemoryRepository
from mediai_chat.services.orchestrator import MessageOrchestrator


async def make_conversation(repository):
    user = await repository.create_user("bob@example.com", "hash", "Bob", "Smith")
    return await repository.create_conversation(user.id, "Headache")


@pytest.mark.asyncio
async def test_user_message_gets_reply_and_analysis(repository, engine):
    """Test that one turn appends a user message, a reply and an analysis."""
    conversation = await make_conversation(repository)
    await repository.add_message(conversation.id, Role.USER, "Earlier note")
    await repository.add_message(conversation.id, Role.ASSISTANT, "Earlier reply")
    orchestrator = MessageOrchestrator(repository, engine)

    result = await orchestrator.post_user_message(
        conversation.id, "I have a throbbing headache for 3 days, worse when bending over"
    )

    assert result.error is None
    assert result.message.role == Role.ASSISTANT
    assert result.message.content == HEADACHE_ANALYSIS["message"]
    assert result.analysis.urgency_level.value == "moderate"
    assert result.analysis.follow_up_question == HEADACHE_ANALYSIS["followUpQuestion"]

    messages = await repository.get_messages(conversation.id)
    assert len(messages) == 4
    assert [m.role for m in messages[-2:]] == [Role.USER, Role.ASSISTANT]

    analyses = await repository.get_analyses(conversation.id)
    assert len(analyses) == 1
    assert analyses[0].message_id == result.message.id
    assert analyses[0].conversation_id == conversation.id


@pytest.mark.asyncio
async def test_history_includes_previous_turns_in_order(repository, engine):
    conversation = await make_conversation(repository)
    orchestrator = MessageOrchestrator(repository, engine)

    first = await orchestrator.post_user_message(conversation.id, "My knee hurts")
    await orchestrator.post_user_message(conversation.id, "It is swollen too")

    assert engine.calls[0]["history"] == [{"role": "user", "content": "My knee hurts"}]
    assert engine.calls[1]["history"] == [
        {"role": "user", "content": "My knee hurts"},
        {"role": "assistant", "content": first.message.content},
        {"role": "user", "content": "It is swollen too"},
    ]
    assert engine.calls[1]["symptom_text"] == "It is swollen too"


@pytest.mark.asyncio
async def test_provider_failure_keeps_user_message(repository):
    """Test that a transport error returns the stored user message and an error."""
    engine = RecordingEngine(ScriptedProvider(ConnectionError("network unreachable")))
    conversation = await make_conversation(repository)
    orchestrator = MessageOrchestrator(repository, engine)

    result = await orchestrator.post_user_message(conversation.id, "Chest tightness")

    assert result.analysis is None
    assert result.error.startswith("Failed to analyze symptoms:")
    assert "network unreachable" in result.error
    assert result.message.role == Role.USER
    assert result.message.content == "Chest tightness"

    messages = await repository.get_messages(conversation.id)
    assert [m.id for m in messages] == [result.message.id]
    assert await repository.get_analyses(conversation.id) == []


@pytest.mark.asyncio
async def test_malformed_output_still_produces_reply(repository):
    engine = RecordingEngine(ScriptedProvider("no json here"))
    conversation = await make_conversation(repository)
    orchestrator = MessageOrchestrator(repository, engine)

    result = await orchestrator.post_user_message(conversation.id, "Itchy eyes")

    assert result.error is None
    assert result.analysis.urgency_level.value == "mild"
    assert result.analysis.conditions[0].name == "Unable to analyze symptoms"
    assert len(await repository.get_analyses(conversation.id)) == 1


@pytest.mark.asyncio
async def test_assistant_message_skips_analysis(repository, engine):
    conversation = await make_conversation(repository)
    orchestrator = MessageOrchestrator(repository, engine)

    result = await orchestrator.post_user_message(
        conversation.id, "Hello, how can I help?", role=Role.ASSISTANT
    )

    assert result.message.role == Role.ASSISTANT
    assert result.analysis is None and result.error is None
    assert engine.calls == []
    assert await repository.get_analyses(conversation.id) == []


@pytest.mark.asyncio
async def test_profile_context_reaches_engine(repository, engine, provider):
    conversation = await make_conversation(repository)
    await repository.save_health_profile(
        HealthProfile(user_id=conversation.user_id, age=67, medications=["warfarin"])
    )
    orchestrator = MessageOrchestrator(repository, engine)

    await orchestrator.post_user_message(conversation.id, "Nosebleed that won't stop")

    context = engine.calls[0]["profile_context"]
    assert "Age: 67" in context
    assert "warfarin" in context
    assert context in provider.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_unknown_conversation_persists_nothing(engine):
    repository = InMemoryRepository()
    orchestrator = MessageOrchestrator(repository, engine)

    with pytest.raises(ConversationNotFound):
        await orchestrator.post_user_message(999, "Hello")
    assert engine.calls == []


@pytest.mark.asyncio
async def test_each_turn_adds_exactly_two_messages(repository):
    provider = ScriptedProvider(json.dumps(HEADACHE_ANALYSIS))
    orchestrator = MessageOrchestrator(repository, RecordingEngine(provider))
    conversation = await make_conversation(repository)

    for turn in range(1, 4):
        await orchestrator.post_user_message(conversation.id, f"Update {turn}")
        assert len(await repository.get_messages(conversation.id)) == 2 * turn
        assert len(await repository.get_analyses(conversation.id)) == turn


class ReplyFailingRepository(InMemoryRepository):
    """Store whose assistant-reply write always fails."""

    async def add_assistant_reply(self, conversation_id, result):
        raise RuntimeError("value too long for column specialty")


@pytest.mark.asyncio
async def test_store_failure_after_analysis_keeps_user_message(engine):
    """Test that a failed reply write returns the stored user message and an error."""
    repository = ReplyFailingRepository()
    conversation = await make_conversation(repository)
    orchestrator = MessageOrchestrator(repository, engine)

    result = await orchestrator.post_user_message(conversation.id, "Blurred vision")

    assert result.analysis is None
    assert result.message.role == Role.USER
    assert result.message.content == "Blurred vision"
    assert result.error.startswith("Failed to save analysis:")
    assert "specialty" in result.error
    assert len(engine.calls) == 1

    messages = await repository.get_messages(conversation.id)
    assert [m.id for m in messages] == [result.message.id]
    assert await repository.get_analyses(conversation.id) == []

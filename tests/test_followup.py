"""Tests for nexus.swarm.followup — bounded follow-up chat."""

from __future__ import annotations

import pytest

from nexus.config import ChatConfig
from nexus.swarm.errors import QueryError
from nexus.swarm.followup import FollowUpChat
from nexus.swarm.models import AgentRecord, AgentStatus, Mission, MissionStatus


def _finished_mission(result: str = "found flights") -> Mission:
    return Mission(
        goal="Plan a trip",
        status=MissionStatus.COMPLETE,
        final_report="# Trip report",
        agents=[
            AgentRecord(id="A1", name="Researcher", role="r", status=AgentStatus.COMPLETE, result=result),
        ],
    )


@pytest.mark.asyncio
async def test_ask_appends_both_turns(backend, chat_config):
    chat = FollowUpChat(_finished_mission(), backend, chat_config)

    answer = await chat.ask("  which airline?  ")

    assert answer == "answer to which airline?"
    assert [(t.role, t.content) for t in chat.turns] == [
        ("user", "which airline?"),
        ("assistant", "answer to which airline?"),
    ]
    call = backend.query_calls[0]
    assert call["goal"] == "Plan a trip"
    assert call["report"] == "# Trip report"
    assert call["history"] == []


@pytest.mark.asyncio
async def test_history_is_passed_on_next_question(backend, chat_config):
    chat = FollowUpChat(_finished_mission(), backend, chat_config)
    await chat.ask("first")
    await chat.ask("second")

    assert [t.content for t in backend.query_calls[1]["history"]] == ["first", "answer to first"]


@pytest.mark.asyncio
async def test_failed_question_leaves_log_unchanged(backend, chat_config):
    chat = FollowUpChat(_finished_mission(), backend, chat_config)
    await chat.ask("first")
    backend.answer_error = QueryError("provider down")

    with pytest.raises(QueryError):
        await chat.ask("second")

    assert len(chat.turns) == 2


@pytest.mark.asyncio
async def test_empty_question_rejected(backend, chat_config):
    chat = FollowUpChat(_finished_mission(), backend, chat_config)
    with pytest.raises(QueryError):
        await chat.ask("   ")
    assert backend.query_calls == []


@pytest.mark.asyncio
async def test_mission_without_report_rejected(backend, chat_config):
    mission = _finished_mission()
    mission.final_report = None
    chat = FollowUpChat(mission, backend, chat_config)
    with pytest.raises(QueryError):
        await chat.ask("anything?")


@pytest.mark.asyncio
async def test_context_window_is_bounded(backend):
    chat = FollowUpChat(_finished_mission(), backend, ChatConfig(_env_file=None, max_history_turns=2))
    for i in range(3):
        await chat.ask(f"q{i}")

    assert len(chat.turns) == 6
    assert [t.content for t in chat.context_window()] == ["q2", "answer to q2"]
    assert [t.content for t in backend.query_calls[2]["history"]] == ["q1", "answer to q1"]


@pytest.mark.asyncio
async def test_long_agent_results_are_truncated(backend):
    config = ChatConfig(_env_file=None, max_result_chars=100)
    chat = FollowUpChat(_finished_mission(result="y" * 500), backend, config)

    await chat.ask("summary?")

    sent = backend.query_calls[0]["agents"][0].result
    assert sent == "y" * 100 + "\n[truncated]"

"""Tests for nexus.swarm.models — plan validation and mission records."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from nexus.swarm.errors import DecompositionError
from nexus.swarm.models import (
    AgentPlan,
    AgentRecord,
    AgentStatus,
    Mission,
    MissionArchiveEntry,
    MissionStatus,
    validate_plan,
)


def _plan(agent_id: str, dependency_id=None, name: str = "Worker") -> AgentPlan:
    return AgentPlan(id=agent_id, name=name, role="does work", dependency_id=dependency_id)


class TestAgentPlan:

    def test_parses_provider_alias(self) -> None:
        plan = AgentPlan.model_validate(
            {"id": " A2 ", "name": "Coder", "role": "writes code", "dependencyId": "A1"}
        )
        assert plan.id == "A2"
        assert plan.dependency_id == "A1"

    @pytest.mark.parametrize("raw", [None, "", "  ", "none", "None", "null"])
    def test_no_dependency_spellings(self, raw) -> None:
        plan = AgentPlan.model_validate({"id": "A1", "name": "n", "role": "r", "dependencyId": raw})
        assert plan.dependency_id is None

    def test_record_starts_queued(self) -> None:
        record = AgentRecord.from_plan(_plan("A1"))
        assert record.status == AgentStatus.QUEUED
        assert record.progress == 0
        assert record.result is None
        assert record.is_root


class TestValidatePlan:

    def test_valid_chain(self) -> None:
        plans = [_plan("A1"), _plan("A2", "A1"), _plan("A3", "A2")]
        assert validate_plan(plans) == plans

    def test_empty_plan_rejected(self) -> None:
        with pytest.raises(DecompositionError):
            validate_plan([])

    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(DecompositionError, match="Duplicate"):
            validate_plan([_plan("A1"), _plan("A1"), _plan("A2")])

    def test_self_dependency_rejected(self) -> None:
        with pytest.raises(DecompositionError, match="itself"):
            validate_plan([_plan("A1"), _plan("A2", "A2"), _plan("A3")])

    def test_unknown_dependency_rejected(self) -> None:
        with pytest.raises(DecompositionError, match="unknown"):
            validate_plan([_plan("A1"), _plan("A2", "Z9"), _plan("A3")])

    def test_cycle_rejected(self) -> None:
        with pytest.raises(DecompositionError, match="cycle"):
            validate_plan([_plan("A1"), _plan("B1", "B2"), _plan("B2", "B1")])

    def test_blank_name_rejected(self) -> None:
        with pytest.raises(DecompositionError):
            validate_plan([_plan("A1", name="  "), _plan("A2"), _plan("A3")])

    def test_unusual_size_still_accepted(self) -> None:
        plans = [_plan(f"A{i}") for i in range(1, 8)]
        assert len(validate_plan(plans)) == 7


class TestMission:

    def test_from_plan(self) -> None:
        mission = Mission.from_plan("Plan a trip", [_plan("A1"), _plan("A2", "A1")])
        assert mission.status == MissionStatus.PLANNED
        assert mission.mission_id.startswith("mission-")
        assert [a.id for a in mission.dependents_of("A1")] == ["A2"]
        assert mission.agent("missing") is None
        assert not mission.all_complete

    def test_all_complete_and_finished(self) -> None:
        mission = Mission.from_plan("g", [_plan("A1")])
        mission.agents[0].status = AgentStatus.COMPLETE
        assert mission.all_complete
        assert not mission.is_finished
        mission.status = MissionStatus.ABORTED
        assert mission.is_finished

    def test_empty_mission_is_never_all_complete(self) -> None:
        assert not Mission(goal="g").all_complete

    def test_archive_entry_is_frozen(self) -> None:
        entry = MissionArchiveEntry(goal="g", report="r")
        with pytest.raises(ValidationError):
            entry.goal = "other"  # type: ignore[misc]

"""Tests for fleet.admission checks."""

from datetime import datetime, timedelta, timezone

import pytest
import time_machine

from fleet.admission import (
    calculate_stagger_delay,
    check_concurrency_limit,
    check_depth_limit,
    check_duplicate_lead,
    check_name_available,
    check_parent_agent_limit,
    check_run_session_limit,
    check_task_lock,
    filter_active,
    is_running_as_root,
    is_task_lock_permitted,
    parent_has_scouts,
    validate_hierarchy,
)
from fleet.errors import AgentError, HierarchyError

NOW = datetime(2026, 1, 5, 10, 0, 10, tzinfo=timezone.utc)


class TestValidateHierarchy:
    """Only leads may be spawned without a parent."""

    @pytest.mark.parametrize("capability", ["builder", "scout", "reviewer", "merger", "monitor"])
    def test_coordinator_cannot_spawn_non_lead(self, capability):
        with pytest.raises(HierarchyError) as exc_info:
            validate_hierarchy(None, capability, agent_name="x")

        error = exc_info.value
        assert error.code == "HIERARCHY_VIOLATION"
        assert error.requested_capability == capability
        assert error.agent_name == "x"
        assert f'"{capability}"' in error.message
        assert "--force-hierarchy" in error.message

    def test_coordinator_may_spawn_lead(self):
        validate_hierarchy(None, "lead")

    @pytest.mark.parametrize("capability", ["builder", "scout", "lead"])
    def test_any_capability_with_parent(self, capability):
        validate_hierarchy("lead-1", capability)

    def test_force_override(self):
        validate_hierarchy(None, "builder", force_override=True)


class TestDepthLimit:

    def test_depth_above_max_rejected(self):
        with pytest.raises(AgentError) as exc_info:
            check_depth_limit(3, 2, agent_name="deep")
        assert "depth 3 > maxDepth 2" in exc_info.value.message
        assert exc_info.value.agent_name == "deep"

    def test_depth_equal_max_allowed(self):
        check_depth_limit(2, 2)

    def test_force_bypasses_limit(self):
        check_depth_limit(10, 2, force=True)


class TestRunSessionLimit:

    def test_zero_is_unlimited(self):
        assert check_run_session_limit(0, 1000) is False

    def test_blocks_at_limit(self):
        assert check_run_session_limit(3, 3) is True
        assert check_run_session_limit(3, 4) is True

    def test_allows_below_limit(self):
        assert check_run_session_limit(3, 2) is False


class TestParentAgentLimit:

    def test_disabled_at_zero_or_negative(self, session_factory):
        sessions = [session_factory(f"b{i}", parent_agent="lead-1") for i in range(10)]
        assert check_parent_agent_limit(sessions, "lead-1", 0) is False
        assert check_parent_agent_limit(sessions, "lead-1", -1) is False

    def test_blocks_when_parent_has_max_children(self, session_factory):
        sessions = [
            session_factory("b1", parent_agent="lead-1"),
            session_factory("b2", parent_agent="lead-1"),
            session_factory("b3", parent_agent="lead-2"),
        ]
        assert check_parent_agent_limit(sessions, "lead-1", 2) is True
        assert check_parent_agent_limit(sessions, "lead-2", 2) is False

    def test_terminal_children_do_not_count(self, session_factory):
        sessions = [
            session_factory("b1", parent_agent="lead-1"),
            session_factory("b2", parent_agent="lead-1", state="completed"),
            session_factory("b3", parent_agent="lead-1", state="zombie"),
        ]
        assert check_parent_agent_limit(sessions, "lead-1", 2) is False


class TestTaskLock:

    def test_returns_active_holder(self, session_factory):
        sessions = [
            session_factory("lead-1", capability="lead", task_id="task-7"),
            session_factory("b1", task_id="task-8"),
        ]
        assert check_task_lock(sessions, "task-7") == "lead-1"

    def test_never_returns_terminal_holder(self, session_factory):
        sessions = [
            session_factory("old", task_id="task-7", state="completed"),
            session_factory("dead", task_id="task-7", state="zombie"),
        ]
        assert check_task_lock(sessions, "task-7") is None

    def test_unlocked_task(self, session_factory):
        assert check_task_lock([session_factory("b1")], "other") is None

    def test_holder_may_delegate_to_child(self):
        assert is_task_lock_permitted("lead-1", "lead-1") is True

    def test_other_agent_may_not_take_locked_task(self):
        assert is_task_lock_permitted("lead-1", "lead-2") is False
        assert is_task_lock_permitted("lead-1", None) is False

    def test_free_task_is_permitted(self):
        assert is_task_lock_permitted(None, None) is True

    def test_decisions_are_stable_on_one_snapshot(self, session_factory):
        sessions = [session_factory("lead-1", capability="lead", task_id="task-7")]
        first = check_task_lock(sessions, "task-7")
        second = check_task_lock(sessions, "task-7")
        assert first == second == "lead-1"


class TestDuplicateLead:

    def test_finds_active_lead_on_task(self, session_factory):
        sessions = [
            session_factory("b1", task_id="task-7"),
            session_factory("lead-1", capability="lead", task_id="task-7"),
        ]
        assert check_duplicate_lead(sessions, "task-7") == "lead-1"

    def test_ignores_builders_and_terminal_leads(self, session_factory):
        sessions = [
            session_factory("b1", task_id="task-7"),
            session_factory("lead-1", capability="lead", task_id="task-7", state="completed"),
        ]
        assert check_duplicate_lead(sessions, "task-7") is None


class TestNameAndConcurrency:

    def test_name_in_use_by_active_session(self, session_factory):
        with pytest.raises(AgentError) as exc_info:
            check_name_available([session_factory("b1", state="stalled")], "b1")
        assert 'Agent name "b1" is already in use (state: stalled)' in exc_info.value.message

    def test_name_reusable_after_completion(self, session_factory):
        check_name_available([session_factory("b1", state="completed")], "b1")

    def test_concurrency_limit_reached(self, session_factory):
        sessions = [session_factory("a"), session_factory("b")]
        with pytest.raises(AgentError) as exc_info:
            check_concurrency_limit(sessions, 2, agent_name="c")
        assert "2/2" in exc_info.value.message
        assert exc_info.value.code == "AGENT_ERROR"

    def test_concurrency_ignores_terminal_sessions(self, session_factory):
        sessions = [session_factory("a"), session_factory("b", state="zombie")]
        check_concurrency_limit(sessions, 2)

    def test_filter_active(self, session_factory):
        sessions = [
            session_factory("a", state="booting"),
            session_factory("b", state="working"),
            session_factory("c", state="stalled"),
            session_factory("d", state="zombie"),
            session_factory("e", state="completed"),
        ]
        assert [s.agent_name for s in filter_active(sessions)] == ["a", "b", "c"]


class TestStaggerDelay:

    def test_zero_when_disabled(self, session_factory):
        assert calculate_stagger_delay(0, [session_factory("a")], now=NOW) == 0
        assert calculate_stagger_delay(-5, [session_factory("a")], now=NOW) == 0

    def test_zero_with_no_active_sessions(self, session_factory):
        assert calculate_stagger_delay(2000, [], now=NOW) == 0
        assert calculate_stagger_delay(2000, [session_factory("a", state="completed")], now=NOW) == 0

    def test_remaining_time_since_latest_start(self, session_factory):
        sessions = [
            session_factory("old", started_at=(NOW - timedelta(seconds=30)).isoformat()),
            session_factory("new", started_at=(NOW - timedelta(milliseconds=500)).isoformat()),
        ]
        assert calculate_stagger_delay(2000, sessions, now=NOW) == 1500

    def test_zero_once_stagger_has_elapsed(self, session_factory):
        sessions = [session_factory("a", started_at=(NOW - timedelta(seconds=5)).isoformat())]
        assert calculate_stagger_delay(2000, sessions, now=NOW) == 0

    def test_never_exceeds_stagger_for_future_start(self, session_factory):
        sessions = [session_factory("a", started_at=(NOW + timedelta(seconds=5)).isoformat())]
        assert calculate_stagger_delay(2000, sessions, now=NOW) == 2000

    @pytest.mark.parametrize("offset_ms", [0, 1, 250, 1999, 2000, 60000])
    def test_bounds(self, session_factory, offset_ms):
        sessions = [session_factory("a", started_at=(NOW - timedelta(milliseconds=offset_ms)).isoformat())]
        delay = calculate_stagger_delay(2000, sessions, now=NOW)
        assert 0 <= delay <= 2000

    @time_machine.travel(datetime(2026, 1, 5, 10, 0, 1, tzinfo=timezone.utc), tick=False)
    def test_uses_current_time_by_default(self, session_factory):
        sessions = [session_factory("a", started_at="2026-01-05T10:00:00+00:00")]
        assert calculate_stagger_delay(2000, sessions) == 1000


class TestParentHasScouts:

    def test_any_state_counts(self, session_factory):
        sessions = [session_factory("s1", capability="scout", parent_agent="lead-1", state="completed")]
        assert parent_has_scouts(sessions, "lead-1") is True

    def test_other_parents_scouts_do_not_count(self, session_factory):
        sessions = [
            session_factory("s1", capability="scout", parent_agent="lead-2"),
            session_factory("b1", parent_agent="lead-1"),
        ]
        assert parent_has_scouts(sessions, "lead-1") is False


class TestRunningAsRoot:

    def test_root(self):
        assert is_running_as_root(getuid=lambda: 0) is True

    def test_regular_user(self):
        assert is_running_as_root(getuid=lambda: 1000) is False

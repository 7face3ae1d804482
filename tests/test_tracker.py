"""Tests for the issue tracker wrappers."""

import json
from unittest.mock import MagicMock, patch

import pytest

from fleet.errors import TrackerCLINotFoundError, TrackerError, TrackerIssueNotFoundError
from fleet.tracker import (
    BeadsTracker,
    SeedsTracker,
    TrackerIssue,
    create_tracker_client,
    resolve_backend,
)


def completed(stdout="", returncode=0, stderr=""):
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestTrackerIssue:

    @pytest.mark.parametrize("status,workable", [
        ("open", True),
        ("in_progress", True),
        ("closed", False),
        ("blocked", False),
    ])
    def test_is_workable(self, status, workable):
        assert TrackerIssue(id="t-1", title="x", status=status).is_workable is workable


class TestBeadsShow:

    def test_show_success(self):
        mock_output = json.dumps([{
            "id": "proj-abc",
            "title": "Add spawn command",
            "description": "Details",
            "status": "open",
            "priority": 2,
            "issue_type": "feature",
        }])

        with patch("fleet.tracker.subprocess.run", return_value=completed(mock_output)) as mock_run:
            issue = BeadsTracker().show("proj-abc")

        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == ["bd", "show", "proj-abc", "--json"]
        assert issue.id == "proj-abc"
        assert issue.status == "open"
        assert issue.type == "feature"
        assert issue.priority == 2

    def test_show_skips_preamble(self):
        mock_output = "Note: auto-synced\n" + json.dumps([{"id": "proj-abc", "title": "t", "status": "open"}])

        with patch("fleet.tracker.subprocess.run", return_value=completed(mock_output)):
            assert BeadsTracker().show("proj-abc").title == "t"

    def test_show_not_found(self):
        with patch("fleet.tracker.subprocess.run", return_value=completed(returncode=1, stderr="no issue")):
            with pytest.raises(TrackerIssueNotFoundError) as exc_info:
                BeadsTracker().show("nope")

        assert exc_info.value.issue_id == "nope"

    def test_show_empty_list_is_not_found(self):
        with patch("fleet.tracker.subprocess.run", return_value=completed("[]")):
            with pytest.raises(TrackerIssueNotFoundError):
                BeadsTracker().show("nope")

    def test_cli_missing(self):
        with patch("fleet.tracker.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(TrackerCLINotFoundError) as exc_info:
                BeadsTracker().show("proj-abc")

        assert "bd CLI not found" in exc_info.value.message


class TestSeedsShow:

    def test_envelope(self):
        mock_output = json.dumps({"success": True, "issue": {
            "id": "sd-1", "title": "Scout API", "status": "in_progress", "type": "task",
            "blockedBy": ["sd-0"],
        }})

        with patch("fleet.tracker.subprocess.run", return_value=completed(mock_output)) as mock_run:
            issue = SeedsTracker(cwd="/repo").show("sd-1")

        assert mock_run.call_args.args[0][0] == "sd"
        assert mock_run.call_args.kwargs["cwd"] == "/repo"
        assert issue.blocked_by == ["sd-0"]
        assert issue.is_workable

    def test_show_takes_first_of_issues_envelope(self):
        mock_output = json.dumps({"issues": [
            {"id": "sd-1", "title": "a", "status": "open"},
            {"id": "sd-2", "title": "b", "status": "open"},
        ]})

        with patch("fleet.tracker.subprocess.run", return_value=completed(mock_output)):
            issue = SeedsTracker().show("sd-1")

        assert issue.id == "sd-1"


class TestClaim:

    def test_claim_sets_in_progress(self):
        with patch("fleet.tracker.subprocess.run", return_value=completed()) as mock_run:
            BeadsTracker().claim("proj-abc")

        assert mock_run.call_args.args[0] == ["bd", "update", "proj-abc", "--status", "in_progress"]

    def test_claim_failure(self):
        with patch("fleet.tracker.subprocess.run", return_value=completed(returncode=2, stderr="dirty")):
            with pytest.raises(TrackerError) as exc_info:
                BeadsTracker().claim("proj-abc")

        assert "exit 2" in exc_info.value.message


class TestBackendSelection:

    def test_auto_prefers_beads_dir(self, tmp_path):
        (tmp_path / ".beads").mkdir()
        assert resolve_backend("auto", tmp_path) == "beads"

    def test_auto_falls_back_to_seeds(self, tmp_path):
        assert resolve_backend("auto", tmp_path) == "seeds"

    def test_explicit(self, tmp_path):
        (tmp_path / ".beads").mkdir()
        assert resolve_backend("seeds", tmp_path) == "seeds"

    def test_create_client(self, tmp_path):
        client = create_tracker_client("beads", tmp_path)
        assert isinstance(client, BeadsTracker)
        assert client.cwd == tmp_path

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(TrackerError):
            create_tracker_client("jira", tmp_path)

"""Tests for action risk classification."""

import pytest

from devconsole.risk import assess_risk, warning_text


@pytest.mark.parametrize(
    "action",
    ["write_file_content", "delete_asset", "install_asset", "execute_arbitrary_db_query", "restore_file"],
)
def test_destructive_actions_are_high_risk(action):
    assert assess_risk(action) == "high"


@pytest.mark.parametrize("action", ["toggle_asset_status", "create_site_backup"])
def test_reversible_changes_are_medium_risk(action):
    assert assess_risk(action) == "medium"


@pytest.mark.parametrize(
    "action",
    ["list_assets", "read_file_content", "get_db_tables", "get_asset_files", "get_file_history", "ping",
     "run_security_scan", "list_site_backups"],
)
def test_discovery_actions_are_low_risk(action):
    assert assess_risk(action) == "low"


def test_unknown_action_defaults_to_low():
    assert assess_risk("summon_dragons") == "low"


def test_warning_text_follows_tier():
    assert warning_text("delete_asset").startswith("HIGH RISK")
    assert warning_text("toggle_asset_status").startswith("Medium Risk")

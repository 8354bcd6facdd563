from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from helpdesk.config import Priority
from helpdesk.core import ConfigurationException
from helpdesk.triage.domain import DEFAULT_RULES, rule_priority
from helpdesk.triage.infrastructure import RulesConfigManager

RULES_YAML = """
high_deadline_hours: 4
medium_deadline_hours: 12
high_terms: [Refund]
medium_terms: [typo]
"""


@pytest.fixture
def rules_file(tmp_path) -> Path:
    path = tmp_path / "triage_rules.yaml"
    path.write_text(RULES_YAML)
    return path


def test_load_reads_yaml(rules_file, now):
    manager = RulesConfigManager()

    rules = manager.load(rules_file)

    assert rules.high_terms == ["refund"]
    assert rules.high_deadline_hours == 4
    assert manager.rules is rules
    assert rule_priority("Hi", "", now + timedelta(hours=10), now=now, rules=rules) == Priority.MEDIUM


def test_missing_file_uses_defaults(tmp_path):
    manager = RulesConfigManager()

    assert manager.load(tmp_path / "nope.yaml") == DEFAULT_RULES


@pytest.mark.parametrize(
    "content",
    [
        "high_terms: [unclosed",
        "- just\n- a list\n",
        "high_deadline_hours: 100\nmedium_deadline_hours: 10\n",
    ],
)
def test_invalid_file_is_a_configuration_error(tmp_path, content):
    path = tmp_path / "rules.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationException):
        RulesConfigManager().load(path)


def test_failed_reload_keeps_current_rules(rules_file):
    manager = RulesConfigManager()
    loaded = manager.load(rules_file)

    rules_file.write_text("high_terms: [unclosed")

    assert manager.reload() is False
    assert manager.rules is loaded


def test_reload_picks_up_changes(rules_file):
    manager = RulesConfigManager()
    manager.load(rules_file)

    rules_file.write_text("high_terms: [chargeback]\n")

    assert manager.reload() is True
    assert manager.rules.high_terms == ["chargeback"]
    assert manager.rules.high_deadline_hours == DEFAULT_RULES.high_deadline_hours


def test_reload_without_load_is_a_noop():
    assert RulesConfigManager().reload() is False


def test_watching_requires_load():
    with pytest.raises(RuntimeError):
        RulesConfigManager().start_watching()


def test_watcher_starts_and_stops(rules_file):
    manager = RulesConfigManager()
    manager.load(rules_file)

    manager.start_watching()
    manager.stop_watching()
    manager.stop_watching()

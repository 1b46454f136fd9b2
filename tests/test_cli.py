"""Tests for settings, paths and the click CLI."""

import json
import sys

import pytest
import yaml
from click.testing import CliRunner

from convoflow.capabilities import ActionType
from convoflow.config import Settings, load_settings
from convoflow.main import build_integrations, cli
from convoflow.utils.paths import get_config_dir, get_data_dir


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "storage": {"backend": "sqlite", "db_path": str(tmp_path / "workflows.db")},
        "notifications": {"default_organizer": "boss@x.com"},
    }))
    return path


def _invoke(config_file, *args):
    runner = CliRunner()
    return runner.invoke(cli, ["--config", str(config_file), "--log-level", "ERROR", *args])


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CONVOFLOW_CONFIG", raising=False)
        settings = Settings()
        assert settings.executor.availability_policy == "fail_open"
        assert settings.executor.await_input_on_missing is True
        assert settings.storage.backend == "sqlite"
        assert settings.server.port == 8430
        assert settings.capabilities.timeout_seconds == 10.0

    def test_yaml_overlay(self, config_file, tmp_path):
        settings = load_settings(config_file)
        assert settings.notifications.default_organizer == "boss@x.com"
        assert settings.get_db_path() == tmp_path / "workflows.db"

    def test_missing_yaml_uses_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.storage.backend == "sqlite"

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONVOFLOW_EXECUTOR__AVAILABILITY_POLICY", "fail_closed")
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.executor.availability_policy == "fail_closed"

    def test_default_db_path_under_data_dir(self, tmp_path):
        settings = Settings(data_dir=str(tmp_path))
        assert settings.get_db_path() == tmp_path / "workflows.db"


class TestBuildIntegrations:
    def test_nothing_configured(self):
        manager = build_integrations(Settings())
        assert not manager.has_capability(ActionType.SCHEDULE_MEETING)
        assert not manager.has_capability(ActionType.SEND_CHAT_MESSAGE)

    def test_http_and_slack(self):
        settings = Settings.model_validate({
            "capabilities": {
                "http": {"base_url": "https://integrations.test", "actions": ["schedule_meeting"]},
                "slack": {"webhook_url": "https://hooks.slack.test/x"},
            },
        })
        manager = build_integrations(settings)
        assert manager.has_capability(ActionType.SCHEDULE_MEETING)
        assert not manager.has_capability(ActionType.CHECK_AVAILABILITY)
        assert manager.has_capability(ActionType.SEND_CHAT_MESSAGE)


class TestCli:
    def test_create_and_show(self, config_file):
        result = _invoke(config_file, "create", "--conversation", "conv-1", "title=Sync")
        assert result.exit_code == 0, result.output
        workflow_id = result.stdout.strip().splitlines()[-1]

        shown = _invoke(config_file, "show", workflow_id)
        assert shown.exit_code == 0, shown.output
        data = json.loads(shown.stdout)
        assert data["id"] == workflow_id
        assert data["context"] == {"title": "Sync"}
        assert data["template_id"] == "meeting_scheduler"

    def test_run_stops_for_input_then_fails_without_calendar(self, config_file):
        created = _invoke(config_file, "create", "--conversation", "conv-1")
        workflow_id = created.stdout.strip().splitlines()[-1]

        waiting = _invoke(config_file, "run", workflow_id)
        assert waiting.exit_code == 0, waiting.output
        assert json.loads(waiting.stdout)["missing_fields"] == ["attendees"]

        provided = _invoke(
            config_file, "input", workflow_id,
            "attendees=a@x.com,b@x.com",
            "startTime=2025-01-01T10:00:00Z",
            "endTime=2025-01-01T11:00:00Z",
        )
        assert provided.exit_code == 0, provided.output

        finished = _invoke(config_file, "run", workflow_id)
        body = json.loads(finished.stdout)
        assert body["status"] == "failed"
        assert body["failed_task"] == "book_meeting"
        assert body["error_kind"] == "provider_unavailable"

        shown = _invoke(config_file, "show", "--events", workflow_id)
        events = [e["event"] for e in json.loads(shown.stdout)["events"]]
        assert "task_awaiting_input" in events
        assert events[-1] == "workflow_failed"

    def test_cancel(self, config_file):
        created = _invoke(config_file, "create", "--conversation", "conv-1")
        workflow_id = created.stdout.strip().splitlines()[-1]
        result = _invoke(config_file, "cancel", workflow_id)
        assert result.exit_code == 0
        assert result.stdout.strip() == f"{workflow_id}: cancelled"

    def test_unknown_workflow(self, config_file):
        result = _invoke(config_file, "advance", "missing")
        assert result.exit_code == 1
        assert "Workflow not found" in result.output

    def test_unknown_template(self, config_file):
        result = _invoke(config_file, "create", "--conversation", "c", "--template", "nope")
        assert result.exit_code == 2

    def test_bad_pair(self, config_file):
        result = _invoke(config_file, "create", "--conversation", "c", "oops")
        assert result.exit_code == 2


class TestPaths:
    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONVOFLOW_CONFIG_DIR", str(tmp_path / "cfg"))
        monkeypatch.setenv("CONVOFLOW_DATA_DIR", str(tmp_path / "data"))
        assert get_config_dir() == tmp_path / "cfg"
        assert get_data_dir() == tmp_path / "data"

    def test_xdg_layout(self, monkeypatch, tmp_path):
        monkeypatch.delenv("CONVOFLOW_DATA_DIR", raising=False)
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        assert get_data_dir() == tmp_path / "convoflow"

"""Tests for wiring and the CLI."""

import fakeredis
import httpx
import pytest
from typer.testing import CliRunner

from buddy.cli import app
from buddy.delivery.scheduler import DeliveryScheduler
from buddy.dependencies import build_delivery_scheduler, load_agent_factory
from buddy.services.agent import TemplateAgent

runner = CliRunner()


class TestLoadAgentFactory:
    """Tests for load_agent_factory."""

    def test_resolves_module_callable(self):
        assert load_agent_factory("buddy.services.agent:TemplateAgent") is TemplateAgent

    @pytest.mark.parametrize("path", ["buddy.services.agent", ":TemplateAgent", "module:"])
    def test_rejects_malformed_path(self, path):
        with pytest.raises(ValueError):
            load_agent_factory(path)

    def test_missing_attribute(self):
        with pytest.raises(AttributeError):
            load_agent_factory("buddy.services.agent:NoSuchAgent")


class TestBuildDeliveryScheduler:
    """Tests for build_delivery_scheduler."""

    def test_builds_with_default_collaborators(self, app_config, redis_server):
        redis_client = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
        http_client = httpx.AsyncClient()

        scheduler = build_delivery_scheduler(redis_client, http_client, app_config)

        assert isinstance(scheduler, DeliveryScheduler)
        assert isinstance(scheduler._agent, TemplateAgent)


class TestCli:
    """Tests for the buddy CLI."""

    def test_run_respects_disabled_scheduler(self, test_settings, monkeypatch):
        monkeypatch.setattr("buddy.cli.get_settings", lambda: test_settings)

        result = runner.invoke(app, ["run"])

        assert result.exit_code == 0
        assert "Scheduler disabled" in result.output

    def test_clear_checkpoints(self, app_config, redis_server, monkeypatch):
        sync_client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
        sync_client.set("checkpoint:sub-1", "{}")
        sync_client.set("partial-write:sub-1:task", "{}")
        sync_client.set("subscriber:sub-1", "{}")

        monkeypatch.setattr("buddy.cli.get_config", lambda: app_config)
        monkeypatch.setattr(
            "buddy.cli.create_redis",
            lambda settings: fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True),
        )

        result = runner.invoke(app, ["clear-checkpoints", "--yes"])

        assert result.exit_code == 0
        assert "Removed 2 keys" in result.output
        assert sync_client.exists("subscriber:sub-1") == 1
        assert sync_client.exists("checkpoint:sub-1") == 0

    def test_clear_checkpoints_requires_confirmation(self):
        result = runner.invoke(app, ["clear-checkpoints"], input="n\n")

        assert result.exit_code != 0

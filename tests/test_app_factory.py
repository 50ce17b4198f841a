"""Tests for the application factory and service container wiring."""

from unittest.mock import patch

import pytest

from insights_exporter import create_app
from insights_exporter.exceptions import ConfigError
from insights_exporter.services.snapshot_scheduler import SnapshotScheduler


def test_container_provides_singletons(app):
    container = app.container

    assert container.snapshot_scheduler() is container.snapshot_scheduler()
    assert container.collector_registry() is container.collector_registry()
    assert isinstance(container.snapshot_scheduler(), SnapshotScheduler)


def test_scheduler_holds_the_only_writer(app):
    app.container.snapshot_scheduler()

    with pytest.raises(RuntimeError, match="already acquired"):
        app.container.workflow_metrics_registry().acquire_writer()


def test_insights_client_uses_settings(app):
    client = app.container.insights_client()

    assert client.workflows_url == (
        "https://circleci.example.com/api/v2/insights/gh/acme/widgets/workflows"
    )


def test_skip_background_services_does_not_start_scheduler(app):
    scheduler = app.container.snapshot_scheduler()

    assert scheduler._thread is None


def test_startup_starts_scheduler(test_settings):
    settings = test_settings.model_copy(update={"snapshot_on_startup": False})

    app = create_app(settings)
    try:
        scheduler = app.container.snapshot_scheduler()
        assert scheduler._thread is not None
        assert scheduler._thread.is_alive()
    finally:
        app.container.snapshot_scheduler().stop()
        app.container.unwire()


def test_create_app_loads_settings_from_environment(clean_env):
    with pytest.raises(ConfigError, match="missing credential"):
        with patch("httpx.get") as mock_get:
            create_app(skip_background_services=True)

    mock_get.assert_not_called()

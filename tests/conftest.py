"""Pytest fixtures for the insights exporter tests."""

from collections.abc import Generator

import pytest
from flask.testing import FlaskClient
from prometheus_client import CollectorRegistry

from insights_exporter import create_app
from insights_exporter.app import App
from insights_exporter.config import Environment, Settings
from tests.testing_utils import StubLifecycleCoordinator

_ENV_VARS = (
    "API_POLL_INTERVAL_SECONDS",
    "API_CREDENTIAL",
    "CIRCLECI_API_INTERVAL",
    "CIRCLECI_TOKEN",
    "INSIGHTS_API_BASE_URL",
    "INSIGHTS_VCS",
    "INSIGHTS_ORG",
    "INSIGHTS_REPO",
    "INSIGHTS_BRANCH",
    "INSIGHTS_REPORTING_WINDOW",
    "INSIGHTS_AUTH_HEADER",
    "INSIGHTS_HTTP_TIMEOUT",
    "REMOTE_ERROR_ESCALATION_THRESHOLD",
    "DECODE_ERROR_ESCALATION_THRESHOLD",
    "SNAPSHOT_ON_STARTUP",
    "FLASK_ENV",
    "HOST",
    "PORT",
    "WAITRESS_THREADS",
    "GRACEFUL_SHUTDOWN_TIMEOUT",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove exporter variables from the environment and ignore any .env file."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setitem(Environment.model_config, "env_file", None)
    return monkeypatch


def _build_test_settings() -> Settings:
    """Construct base Settings object for tests."""
    return Settings(
        poll_interval_seconds=300,
        api_credential="test-token",
        api_base_url="https://circleci.example.com/api/v2",
        vcs="gh",
        org="acme",
        repo="widgets",
        branch="main",
        reporting_window="last-7-days",
        auth_header="Circle-Token",
        http_timeout=5.0,
        remote_error_escalation_threshold=3,
        decode_error_escalation_threshold=2,
        snapshot_on_startup=False,
        flask_env="testing",
    )


@pytest.fixture
def test_settings() -> Settings:
    return _build_test_settings()


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def lifecycle_coordinator() -> StubLifecycleCoordinator:
    return StubLifecycleCoordinator()


@pytest.fixture
def app(test_settings: Settings) -> Generator[App, None, None]:
    """Create an app with background services disabled."""
    app = create_app(test_settings, skip_background_services=True)
    yield app
    app.container.unwire()


@pytest.fixture
def client(app: App) -> FlaskClient:
    return app.test_client()

"""Tests for the command line entry point."""

import json
import threading
from unittest.mock import patch

import httpx
import pytest

from insights_exporter.runner import create_parser, main, run_server
from insights_exporter.utils.lifecycle_coordinator import (
    EXIT_CONFIG_ERROR,
    EXIT_FATAL_FETCH,
    EXIT_FETCH_FAILED,
    EXIT_OK,
)
from tests.testing_utils import mock_response, page_payload, workflow_item


class TestParser:
    def test_default_command(self):
        args = create_parser().parse_args([])
        assert args.command is None

    def test_snapshot_command(self):
        args = create_parser().parse_args(["snapshot"])
        assert args.command == "snapshot"

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["bogus"])


class TestStartupConfiguration:
    """Startup configuration failures stop the process before any work starts."""

    def test_missing_credential_exits_before_server_and_network(self, clean_env):
        with patch("insights_exporter.runner.run_server") as mock_run_server, \
                patch("httpx.get") as mock_get:
            with pytest.raises(SystemExit) as exc_info:
                main(["serve"])

        assert exc_info.value.code == EXIT_CONFIG_ERROR
        mock_run_server.assert_not_called()
        mock_get.assert_not_called()

    def test_invalid_interval_exits_with_config_error(self, clean_env):
        clean_env.setenv("API_CREDENTIAL", "secret")
        clean_env.setenv("API_POLL_INTERVAL_SECONDS", "abc")

        with patch("insights_exporter.runner.run_server") as mock_run_server:
            with pytest.raises(SystemExit) as exc_info:
                main([])

        assert exc_info.value.code == EXIT_CONFIG_ERROR
        mock_run_server.assert_not_called()

    def test_serve_exits_with_lifecycle_exit_code(self, clean_env):
        clean_env.setenv("API_CREDENTIAL", "secret")

        with patch("insights_exporter.runner.run_server", return_value=3) as mock_run_server:
            with pytest.raises(SystemExit) as exc_info:
                main(["serve"])

        assert exc_info.value.code == 3
        settings = mock_run_server.call_args.args[0]
        assert settings.api_credential == "secret"
        assert settings.poll_interval_seconds == 300


class TestSnapshotCommand:
    def test_prints_success_rates(self, clean_env, capsys):
        clean_env.setenv("API_CREDENTIAL", "secret")
        payload = page_payload([workflow_item("deploy", 0.5), workflow_item("build", 0.9)])

        with patch("httpx.get") as mock_get:
            mock_get.return_value = mock_response(payload=payload)
            with pytest.raises(SystemExit) as exc_info:
                main(["snapshot"])

        assert exc_info.value.code == EXIT_OK
        assert json.loads(capsys.readouterr().out) == {"build": 0.9, "deploy": 0.5}
        assert mock_get.call_args.kwargs["headers"]["Circle-Token"] == "secret"

    def test_fetch_failure(self, clean_env, capsys):
        clean_env.setenv("API_CREDENTIAL", "secret")

        with patch("httpx.get") as mock_get:
            mock_get.side_effect = httpx.ConnectError("Connection refused")
            with pytest.raises(SystemExit) as exc_info:
                main(["snapshot"])

        assert exc_info.value.code == EXIT_FETCH_FAILED
        assert "Snapshot failed" in capsys.readouterr().err


class TestRunServer:
    """run_server waits for the lifecycle to finish and returns its exit code."""

    def _run(self, settings):
        result: list[int] = []
        thread = threading.Thread(target=lambda: result.append(run_server(settings)), daemon=True)
        thread.start()
        thread.join(timeout=10)
        assert not thread.is_alive(), "run_server did not return after shutdown"
        return result[0]

    def test_escalation_on_first_tick_exits_with_fatal_code(self, test_settings):
        settings = test_settings.model_copy(
            update={"snapshot_on_startup": True, "remote_error_escalation_threshold": 1}
        )

        served = threading.Event()

        with patch("insights_exporter.runner.serve", side_effect=lambda *a, **kw: served.set()), \
                patch("signal.signal"), \
                patch("httpx.get") as mock_get:
            mock_get.return_value = mock_response(status_code=401, text="unauthorized")
            exit_code = self._run(settings)
            assert served.wait(timeout=5)

        assert exit_code == EXIT_FATAL_FETCH
        mock_get.assert_called_once()

    def test_signal_shutdown_exits_cleanly(self, test_settings):
        def shutdown_while_serving(wsgi, **kwargs):
            wsgi.application.container.lifecycle_coordinator().shutdown()

        with patch("insights_exporter.runner.serve", side_effect=shutdown_while_serving), \
                patch("signal.signal") as mock_signal, \
                patch("httpx.get") as mock_get:
            exit_code = self._run(test_settings)

        assert exit_code == EXIT_OK
        assert mock_signal.call_count == 2
        mock_get.assert_not_called()

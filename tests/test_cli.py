"""Tests for the authbridge command-line interface."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from authbridge import __version__
from authbridge.app import app
from authbridge.auth.session import SessionManager, UnconfiguredSessionManager
from authbridge.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_INVALID_USAGE,
    EXIT_SUCCESS,
)

SERVICE = "com.authbridge.desktop"


@pytest.fixture(autouse=True)
def _plain_diagnostics(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")


@pytest.fixture()
def bridge_factory(config, keyring_backend, idp):
    """Patch the command module's factory to build managers on the fakes."""

    def _build(**kwargs):
        return SessionManager.from_config(
            config, secret_backend=keyring_backend, http_client=idp.client()
        )

    with patch("authbridge.commands.auth.create_session_manager", side_effect=_build) as factory:
        yield factory


def _store_session(keyring_backend, token: str) -> None:
    keyring_backend.set_password(SERVICE, "session_token", token)
    keyring_backend.set_password(SERVICE, "user_id", "user_123")
    keyring_backend.set_password(SERVICE, "session_id", "sess_456")


class TestRootApp:
    def test_version(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == EXIT_SUCCESS
        assert f"authbridge {__version__}" in result.output

    def test_help_lists_commands(self, cli_runner) -> None:
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == EXIT_SUCCESS
        for command in ("login", "open-url", "status", "logout"):
            assert command in result.output

    def test_unconfigured(self, cli_runner) -> None:
        unconfigured = UnconfiguredSessionManager("Sign-in is not configured: set AUTHBRIDGE_ISSUER_HOST")
        with patch("authbridge.commands.auth.create_session_manager", return_value=unconfigured):
            result = cli_runner.invoke(app, ["status"])
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "not configured" in result.output

    def test_config_option_is_forwarded(self, cli_runner, tmp_path: Path) -> None:
        path = tmp_path / "custom.json"
        factory = MagicMock(return_value=UnconfiguredSessionManager("missing"))
        with patch("authbridge.commands.auth.create_session_manager", factory):
            cli_runner.invoke(app, ["--config", str(path), "logout"])
        factory.assert_called_once_with(config_path=path)


class TestLogin:
    def test_browser_flow(self, cli_runner, bridge_factory, make_token, keyring_backend) -> None:
        opened: list[str] = []
        token = make_token()

        def fake_open(url: str) -> bool:
            opened.append(url)
            return True

        def fake_prompt(text: str) -> str:
            state = parse_qs(urlsplit(opened[0]).query)["state"][0]
            return f"authbridge://auth/callback?token={token}&state={state}"

        with patch("authbridge.commands.auth.webbrowser.open", side_effect=fake_open), patch(
            "authbridge.commands.auth.typer.prompt", side_effect=fake_prompt
        ):
            result = cli_runner.invoke(app, ["login"])

        assert result.exit_code == EXIT_SUCCESS, result.output
        assert opened[0].startswith("https://idp.example.com/auth/desktop?state=")
        assert "Signed in as user_123" in result.output
        assert keyring_backend.get_password(SERVICE, "session_token") == token

    def test_no_browser_prints_url(self, cli_runner, bridge_factory, make_token) -> None:
        browser = MagicMock()
        with patch("authbridge.commands.auth.webbrowser.open", browser), patch(
            "authbridge.commands.auth.typer.prompt",
            return_value=f"authbridge://auth/callback?token={make_token()}&state=forged",
        ):
            result = cli_runner.invoke(app, ["login", "--no-browser"])

        browser.assert_not_called()
        assert "https://idp.example.com/auth/desktop?state=" in result.stdout
        assert result.exit_code == EXIT_AUTH_FAILURE
        assert "does not match" in result.output

    def test_foreign_link(self, cli_runner, bridge_factory) -> None:
        with patch("authbridge.commands.auth.webbrowser.open", return_value=True), patch(
            "authbridge.commands.auth.typer.prompt", return_value="https://example.com/"
        ):
            result = cli_runner.invoke(app, ["login"])
        assert result.exit_code == EXIT_INVALID_USAGE

    def test_already_signed_in(
        self, cli_runner, bridge_factory, make_token, keyring_backend
    ) -> None:
        _store_session(keyring_backend, make_token())
        browser = MagicMock()
        with patch("authbridge.commands.auth.webbrowser.open", browser):
            result = cli_runner.invoke(app, ["login"])
        assert result.exit_code == EXIT_SUCCESS
        assert "Already signed in" in result.output
        browser.assert_not_called()


class TestOpenUrl:
    def test_direct_link_disabled(self, cli_runner, bridge_factory, make_token) -> None:
        result = cli_runner.invoke(app, ["open-url", f"authbridge://auth/direct?token={make_token()}"])
        assert result.exit_code == EXIT_AUTH_FAILURE
        assert "disabled" in result.output

    def test_callback_without_pending_login(self, cli_runner, bridge_factory, make_token) -> None:
        result = cli_runner.invoke(
            app, ["open-url", f"authbridge://auth/callback?token={make_token()}&state=s"]
        )
        assert result.exit_code == EXIT_AUTH_FAILURE
        assert "No login is pending" in result.output

    def test_unknown_link(self, cli_runner, bridge_factory) -> None:
        result = cli_runner.invoke(app, ["open-url", "other://auth/callback?token=t&state=s"])
        assert result.exit_code == EXIT_INVALID_USAGE

    def test_incomplete_link(self, cli_runner, bridge_factory) -> None:
        result = cli_runner.invoke(app, ["open-url", "authbridge://auth/callback?state=s"])
        assert result.exit_code == EXIT_INVALID_USAGE
        assert "no token" in result.output


class TestStatus:
    def test_signed_in_json(
        self, cli_runner, bridge_factory, make_token, keyring_backend
    ) -> None:
        _store_session(keyring_backend, make_token())
        result = cli_runner.invoke(app, ["--json", "status"])
        assert result.exit_code == EXIT_SUCCESS, result.output
        record = json.loads(result.stdout)
        assert record["authenticated"] is True
        assert record["user_id"] == "user_123"
        assert record["session_valid"] is True
        assert record["state"] == "authenticated"

    def test_signed_out(self, cli_runner, bridge_factory) -> None:
        result = cli_runner.invoke(app, ["--plain", "status"])
        assert result.exit_code == EXIT_AUTH_FAILURE
        assert "authenticated\tFalse" in result.stdout


class TestLogout:
    def test_clears_keychain(self, cli_runner, bridge_factory, make_token, keyring_backend) -> None:
        _store_session(keyring_backend, make_token())
        result = cli_runner.invoke(app, ["logout"])
        assert result.exit_code == EXIT_SUCCESS
        assert "Signed out" in result.output
        assert keyring_backend.entries == {}

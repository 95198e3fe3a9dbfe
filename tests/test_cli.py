"""End-to-end tests of the ``authflow`` command line through Typer's runner."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from authflow import __version__
from authflow.app import app
from authflow.config import config_path, default_storage_path, load_options, save_options
from authflow.exceptions import ConfigError, NotAuthenticatedError
from authflow.hosted import HostedUIUserPool
from authflow.models import AuthOptions, OAuthOptions
from authflow.storage import FileStorage


@pytest.fixture
def hosted_options(isolated_config: Path) -> AuthOptions:
    options = AuthOptions(
        user_pool_id="eu-west-1_pool",
        user_pool_web_client_id="client123",
        oauth=OAuthOptions(
            domain="auth.example.com",
            redirect_sign_in="http://localhost:8976/callback",
            redirect_sign_out="http://localhost:8976/",
        ),
    )
    save_options(options)
    return options


@pytest.fixture
def signed_in(hosted_options: AuthOptions, session_factory) -> FileStorage:
    """Seed the on-disk session store with a valid session for alice.

    Without the user-admin scope the CLI never calls userInfo.
    """
    storage = FileStorage(default_storage_path())
    session = session_factory("alice", scope="openid email")
    HostedUIUserPool(hosted_options, storage).cache_session("alice", session)
    return storage


def test_version(cli_runner):
    result = cli_runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.output.strip() == f"authflow {__version__}"


class TestConfigCommands:
    def test_path(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["config", "path"])

        assert result.exit_code == 0
        assert result.output.strip() == str(config_path())

    def test_set_scalar(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["config", "set", "user_pool_web_client_id", "abc"])

        assert result.exit_code == 0
        assert "Set user_pool_web_client_id = abc" in result.output
        assert load_options().user_pool_web_client_id == "abc"

    def test_set_json_object(self, cli_runner, isolated_config):
        value = json.dumps(
            {"domain": "auth.example.com", "redirect_sign_in": "http://localhost:8976/callback"}
        )

        result = cli_runner.invoke(app, ["config", "set", "oauth", value])

        assert result.exit_code == 0
        assert load_options().oauth.domain == "auth.example.com"

    def test_set_nested_list(self, cli_runner, hosted_options):
        result = cli_runner.invoke(app, ["config", "set", "oauth.scope", '["openid", "phone"]'])

        assert result.exit_code == 0
        assert load_options().oauth.scope == ["openid", "phone"]

    def test_set_incomplete_oauth_fails_validation(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["config", "set", "oauth.domain", "auth.example.com"])

        assert result.exit_code == 2
        assert "Validation error" in result.output
        assert not config_path().exists()

    def test_set_malformed_json(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["config", "set", "oauth.scope", "[openid"])

        assert result.exit_code == 2
        assert "Invalid JSON" in result.output

    def test_show_applies_overrides(self, cli_runner, hosted_options):
        result = cli_runner.invoke(
            app, ["--json", "--quiet", "--client-id", "from-flag", "config", "show"]
        )

        assert result.exit_code == 0
        shown = json.loads(result.stdout)
        assert shown["user_pool_web_client_id"] == "from-flag"
        assert shown["oauth"]["domain"] == "auth.example.com"


class TestAuthCommands:
    def test_login_without_hosted_ui(self, cli_runner, isolated_config):
        result = cli_runner.invoke(app, ["login"])

        assert isinstance(result.exception, ConfigError)
        assert "Hosted UI is not configured" in str(result.exception)

    def test_whoami_signed_out(self, cli_runner, hosted_options):
        result = cli_runner.invoke(app, ["whoami"])

        assert isinstance(result.exception, NotAuthenticatedError)
        assert "authflow login" in result.output

    def test_session(self, cli_runner, signed_in):
        result = cli_runner.invoke(app, ["--json", "session"])

        assert result.exit_code == 0, result.output
        summary = json.loads(result.stdout)
        assert summary["username"] == "alice"
        assert summary["valid"] is True
        assert summary["refreshable"] is True
        assert summary["scopes"] == ["email", "openid"]

    def test_session_plain_never_prints_tokens(self, cli_runner, signed_in):
        token = signed_in.get_item("authflow.client123.alice.accessToken")

        result = cli_runner.invoke(app, ["--plain", "session"])

        assert result.exit_code == 0
        assert "username\talice" in result.output
        assert token not in result.output

    def test_logout_clears_session_store(self, cli_runner, signed_in):
        result = cli_runner.invoke(app, ["logout"])

        assert result.exit_code == 0
        assert "Signed out." in result.output
        remaining = FileStorage(default_storage_path())
        assert remaining.get_item("authflow.client123.LastAuthUser") is None
        assert remaining.get_item("authflow.client123.alice.idToken") is None

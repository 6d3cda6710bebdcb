"""Tests for settings discovery and loading."""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from oauthflow.config import (
    SettingsError,
    _resolve_env_vars,
    find_settings_files,
    load_settings,
    parse_client_settings,
)
from oauthflow.oauth.client_config import EndpointAuthMethod
from oauthflow.oauth.grants import AuthorizationCodeGrant, GrantType, ImplicitGrant, PasswordGrant


class TestResolveEnvVars:
    """Tests for ${VAR} resolution."""

    def test_resolves_nested_values(self) -> None:
        """Test that strings in lists and dicts are resolved."""
        with patch.dict(os.environ, {"CLIENT_ID": "abc", "HOST": "auth.example.com"}):
            value = _resolve_env_vars(
                {"client_id": "${CLIENT_ID}", "uris": ["https://${HOST}/cb"], "n": 3}
            )
        assert value == {"client_id": "abc", "uris": ["https://auth.example.com/cb"], "n": 3}

    def test_missing_variable_is_empty(self) -> None:
        """Test that undefined variables resolve to an empty string."""
        with patch.dict(os.environ, {}, clear=True):
            assert _resolve_env_vars("${NOPE}") == ""


class TestParseClientSettings:
    """Tests for parse_client_settings."""

    def test_splits_grant_options(self) -> None:
        """Test that grant options are kept apart from configuration."""
        client = parse_client_settings(
            "corp",
            {
                "grant_type": "password",
                "client_id": "abc",
                "token_uri": "https://auth.example.com/token",
                "username": "jane",
                "password": "pw",
                "headers": {"X-Tenant": "7"},
            },
        )

        assert client.grant_type is GrantType.PASSWORD
        assert client.options == {"username": "jane", "password": "pw", "headers": {"X-Tenant": "7"}}
        assert "username" not in client.settings
        grant = client.grant()
        assert isinstance(grant, PasswordGrant)
        assert grant.headers == {"X-Tenant": "7"}

    def test_defaults_to_authorization_code(self) -> None:
        """Test the default grant and its options."""
        client = parse_client_settings(
            "gh", {"authorize_uri": "https://github.com/login/oauth/authorize", "pkce": True}
        )
        grant = client.grant()
        assert isinstance(grant, AuthorizationCodeGrant)
        assert grant.use_pkce

    def test_implicit_options(self) -> None:
        """Test the implicit grant's query option."""
        client = parse_client_settings("x", {"grant_type": "implicit", "params_in_query": True})
        grant = client.grant()
        assert isinstance(grant, ImplicitGrant)
        assert grant.params_in_query

    def test_configuration(self) -> None:
        """Test that settings keys build the client configuration."""
        client = parse_client_settings(
            "x",
            {
                "client_id": "abc",
                "client_secret": "def",
                "authorize_uri": "https://auth.example.com/authorize",
                "redirect_uris": "http://127.0.0.1:8400/cb",
                "parameters": {"audience": "api"},
                "token_assume_unexpired": "false",
                "token_endpoint_auth_method": "client_secret_post",
            },
        )

        config = client.configuration()

        assert config.redirect == "http://127.0.0.1:8400/cb"
        assert config.token_endpoint == "https://auth.example.com/authorize"
        assert config.custom_parameters == {"audience": "api"}
        assert not config.access_token_assume_unexpired
        assert config.endpoint_auth_method is EndpointAuthMethod.CLIENT_SECRET_POST
        assert config.secret_in_body

    def test_unknown_grant(self) -> None:
        """Test that unsupported grant types are reported."""
        with pytest.raises(SettingsError, match="unknown grant_type"):
            parse_client_settings("x", {"grant_type": "device_code"})

    def test_not_an_object(self) -> None:
        """Test that a client entry must be an object."""
        with pytest.raises(SettingsError):
            parse_client_settings("x", ["nope"])


class TestLoadSettings:
    """Tests for load_settings."""

    def test_explicit_file(self) -> None:
        """Test loading clients from an explicit settings file."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "oauth.json"
            path.write_text(
                json.dumps(
                    {
                        "clients": {
                            "svc": {
                                "grant_type": "client_credentials",
                                "client_id": "abc",
                                "client_secret": "def",
                                "token_uri": "https://auth.example.com/token",
                            }
                        }
                    }
                )
            )

            settings = load_settings(settings_path=path)

        assert list(settings.clients) == ["svc"]
        assert settings.settings_path == path
        assert settings.get("svc").grant_type is GrantType.CLIENT_CREDENTIALS

    def test_single_client_file(self) -> None:
        """Test that a file holding one settings mapping defines one client."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "github-oauth.json"
            path.write_text(
                json.dumps(
                    {
                        "grant_type": "client_credentials",
                        "client_id": "abc",
                        "client_secret": "def",
                        "token_uri": "https://auth.example.com/token",
                    }
                )
            )

            settings = load_settings(settings_path=path)

        assert list(settings.clients) == ["github-oauth"]
        client = settings.get("github-oauth")
        assert client.grant_type is GrantType.CLIENT_CREDENTIALS
        assert client.configuration().client_secret == "def"

    @pytest.mark.parametrize("content", [["nope"], "text", {"clients": ["a"]}])
    def test_malformed_file(self, content) -> None:
        """Test that settings other than an object are reported."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "oauth.json"
            path.write_text(json.dumps(content))

            with pytest.raises(SettingsError, match="must be"):
                load_settings(settings_path=path, env_path=Path(tmpdir) / "missing.env")

    def test_env_file_is_loaded(self) -> None:
        """Test that .env values feed ${VAR} references."""
        with tempfile.TemporaryDirectory() as tmpdir:
            env_path = Path(tmpdir) / ".env"
            env_path.write_text("OAUTHFLOW_TEST_SECRET=from-dotenv\n")
            path = Path(tmpdir) / "my-oauth.json"
            path.write_text(
                json.dumps({"clients": {"svc": {"client_secret": "${OAUTHFLOW_TEST_SECRET}"}}})
            )

            with patch.dict(os.environ, {}, clear=False):
                settings = load_settings(settings_path=path, env_path=env_path)
                assert settings.env_path == env_path
                assert settings.get("svc").settings["client_secret"] == "from-dotenv"

    def test_unknown_client(self) -> None:
        """Test that looking up an unknown client lists the known ones."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "oauth.json"
            path.write_text(json.dumps({"clients": {"a": {}, "b": {}}}))
            settings = load_settings(settings_path=path)

        with pytest.raises(SettingsError, match="Available clients: a, b"):
            settings.get("c")

    def test_no_settings_file(self) -> None:
        """Test the error when no settings file exists."""
        with tempfile.TemporaryDirectory() as tmpdir:
            with patch("oauthflow.config.SETTINGS_SEARCH_DIRS", [Path(tmpdir)]):
                with pytest.raises(FileNotFoundError, match="No OAuth settings file found"):
                    load_settings(env_path=Path(tmpdir) / "missing.env")

    def test_discovery_filters_by_name(self) -> None:
        """Test that only files with 'oauth' in the name are found."""
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir)
            (base / "oauth.json").write_text("{}")
            (base / "work-OAuth.json").write_text("{}")
            (base / "package.json").write_text("{}")

            with patch("oauthflow.config.SETTINGS_SEARCH_DIRS", [base]):
                found = find_settings_files()

        assert sorted(p.name for p in found) == ["oauth.json", "work-OAuth.json"]

    def test_first_definition_wins(self) -> None:
        """Test that earlier files take precedence for the same client name."""
        with tempfile.TemporaryDirectory() as tmpdir:
            base = Path(tmpdir)
            (base / "a-oauth.json").write_text(json.dumps({"clients": {"x": {"client_id": "first"}}}))
            (base / "b-oauth.json").write_text(json.dumps({"clients": {"x": {"client_id": "second"}}}))

            with patch("oauthflow.config.SETTINGS_SEARCH_DIRS", [base]):
                settings = load_settings(env_path=base / "missing.env")

        assert settings.get("x").configuration().client_id == "first"
        assert len(settings.settings_paths) == 2

"""Settings discovery and loading for oauthflow.

Settings are JSON files with "oauth" in their name, holding one entry per
client under ``clients``:

    {
      "clients": {
        "github": {
          "grant_type": "authorization_code",
          "client_id": "${GITHUB_CLIENT_ID}",
          "client_secret": "${GITHUB_CLIENT_SECRET}",
          "authorize_uri": "https://github.com/login/oauth/authorize",
          "token_uri": "https://github.com/login/oauth/access_token",
          "redirect_uris": ["http://127.0.0.1:8400/callback"],
          "scope": "user repo"
        }
      }
    }

``${VAR}`` references are resolved from the environment after the ``.env``
file has been loaded.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .oauth.client_config import ClientConfiguration
from .oauth.grants import GrantStrategy, GrantType, grant_for

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

SETTINGS_SEARCH_DIRS = [
    Path("."),
    Path(".oauthflow"),
    Path.home() / ".oauthflow",
]

ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".oauthflow" / ".env",
]

GRANT_OPTION_KEYS = {"username", "password", "pkce", "params_in_query", "form_response", "headers"}


class SettingsError(Exception):
    """A settings file was found but an entry in it is unusable."""

    pass


def _resolve_env_vars(value: Any) -> Any:
    """Replace ``${VAR}`` references in strings, recursing into lists and dicts.

    Missing variables resolve to an empty string.
    """
    if isinstance(value, str):
        if "${" not in value:
            return value
        return ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    if isinstance(value, dict):
        return {key: _resolve_env_vars(item) for key, item in value.items()}
    return value


@dataclass
class ClientSettings:
    """Settings for one named client.

    ``options`` holds the grant-specific keys (``username``, ``password``,
    ``pkce``, ``params_in_query``, ``form_response``, ``headers``);
    everything else configures the ``ClientConfiguration``.
    """

    name: str
    grant_type: GrantType
    settings: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)

    def configuration(self) -> ClientConfiguration:
        return ClientConfiguration.from_settings(self.settings)

    def grant(self) -> GrantStrategy:
        opts = self.options
        if self.grant_type is GrantType.AUTHORIZATION_CODE:
            return grant_for(
                self.grant_type,
                use_pkce=bool(opts.get("pkce", False)),
                form_encoded_response=bool(opts.get("form_response", False)),
            )
        if self.grant_type is GrantType.IMPLICIT:
            return grant_for(self.grant_type, params_in_query=bool(opts.get("params_in_query", False)))
        if self.grant_type is GrantType.PASSWORD:
            return grant_for(
                self.grant_type,
                username=opts.get("username"),
                password=opts.get("password"),
                headers=opts.get("headers"),
            )
        return grant_for(self.grant_type)


@dataclass
class Settings:
    """All clients from every settings file found."""

    clients: dict[str, ClientSettings] = field(default_factory=dict)
    settings_path: Path | None = None
    settings_paths: list[Path] = field(default_factory=list)
    env_path: Path | None = None

    def get(self, name: str) -> ClientSettings:
        """Look up a client by name.

        Raises:
            SettingsError: If no client has that name
        """
        if name not in self.clients:
            available = ", ".join(sorted(self.clients)) or "(none)"
            raise SettingsError(f"Unknown client '{name}'. Available clients: {available}")
        return self.clients[name]


def find_settings_files(explicit_path: Path | None = None) -> list[Path]:
    """Find JSON files with "oauth" in the name, in search directory order."""
    if explicit_path:
        return [explicit_path] if explicit_path.exists() else []

    found: list[Path] = []
    seen: set[Path] = set()
    for directory in SETTINGS_SEARCH_DIRS:
        if not directory.is_dir():
            continue
        for json_file in sorted(directory.glob("*.json")):
            if "oauth" not in json_file.name.lower():
                continue
            resolved = json_file.resolve()
            if resolved in seen:
                continue
            seen.add(resolved)
            found.append(json_file)
    return found


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        return explicit_path if explicit_path.exists() else None
    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def parse_client_settings(name: str, data: Any) -> ClientSettings:
    """Split a raw client entry into configuration settings and grant options.

    Raises:
        SettingsError: If the entry is not an object or names an unknown grant
    """
    if not isinstance(data, dict):
        raise SettingsError(f"Client '{name}' must be a JSON object")

    data = _resolve_env_vars(data)
    grant_name = data.get("grant_type", GrantType.AUTHORIZATION_CODE.value)
    try:
        grant_type = GrantType(grant_name)
    except ValueError:
        supported = ", ".join(g.value for g in GrantType)
        raise SettingsError(
            f"Client '{name}' has unknown grant_type '{grant_name}'. Supported: {supported}"
        ) from None

    options = {key: value for key, value in data.items() if key in GRANT_OPTION_KEYS}
    settings = {
        key: value
        for key, value in data.items()
        if key not in GRANT_OPTION_KEYS and key != "grant_type"
    }
    return ClientSettings(name=name, grant_type=grant_type, settings=settings, options=options)


def _client_entries(settings_file: Path, data: Any) -> dict[str, Any]:
    """Client entries of one settings file.

    A file is either ``{"clients": {name: settings}}`` or a single settings
    mapping, which becomes one client named after the file (``github-oauth.json``
    defines ``github-oauth``).
    """
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {settings_file} must contain a JSON object")
    if "clients" not in data:
        return {settings_file.stem: data}
    clients = data["clients"] or {}
    if not isinstance(clients, dict):
        raise SettingsError(f"'clients' in {settings_file} must be an object")
    return clients


def load_settings(
    settings_path: Path | None = None,
    env_path: Path | None = None,
) -> Settings:
    """Load client settings from discovered or explicit paths.

    Args:
        settings_path: Explicit settings file (optional)
        env_path: Explicit .env file (optional)

    Returns:
        Settings with the clients of every file found; the first
        definition of a name wins

    Raises:
        FileNotFoundError: If no settings file is found
        json.JSONDecodeError: If a settings file is invalid JSON
        SettingsError: If a client entry is unusable
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)

    settings_files = find_settings_files(settings_path)
    if not settings_files:
        searched = ", ".join(str(p) for p in SETTINGS_SEARCH_DIRS)
        raise FileNotFoundError(
            f"No OAuth settings file found.\n\n"
            f"Searched directories for *oauth*.json files:\n"
            f"  {searched}\n\n"
            f"Create one with your clients. Example (oauth.json):\n\n"
            f'{{\n  "clients": {{\n'
            f'    "example": {{\n'
            f'      "grant_type": "client_credentials",\n'
            f'      "client_id": "${{EXAMPLE_CLIENT_ID}}",\n'
            f'      "client_secret": "${{EXAMPLE_CLIENT_SECRET}}",\n'
            f'      "token_uri": "https://auth.example.com/token"\n'
            f"    }}\n  }}\n}}"
        )

    clients: dict[str, ClientSettings] = {}
    for settings_file in settings_files:
        with open(settings_file) as f:
            data = json.load(f)
        for name, entry in _client_entries(settings_file, data).items():
            if name not in clients:
                clients[name] = parse_client_settings(name, entry)

    return Settings(
        clients=clients,
        settings_path=settings_files[0],
        settings_paths=settings_files,
        env_path=env_file,
    )

"""CLI entry point for oauthflow."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NoReturn

import click

from . import __version__
from .config import ClientSettings, Settings, SettingsError, load_settings
from .oauth.callback import BrowserPresenter
from .oauth.errors import OAuth2Error
from .oauth.grants import GrantType
from .oauth.loader import DataLoader
from .oauth.orchestrator import OAuth2
from .oauth.request import WireRequest
from .oauth.store import TokenStore, TokenStoreError
from .output import OutputHandler

logger = logging.getLogger("oauthflow")

HELP_TEXT = {
    "no_client_id": "Set client_id, or registration_uri to register dynamically, in the settings file.",
    "no_client_secret": "The client credentials grant needs client_secret in the settings file.",
    "no_redirect_url": "Add a redirect URI to redirect_uris in the settings file.",
    "no_username": "Set username for this client in the settings file.",
    "no_password": "Set password for this client in the settings file.",
    "not_using_tls": "Endpoints must use https (loopback redirects are exempt).",
    "wrong_username_password": "The server rejected the username or password.",
    "network_error": "Check your network connection and the endpoint URLs.",
    "invalid_state": "The redirect did not belong to this login attempt. Run login again.",
    "request_cancelled": "Authorization was cancelled.",
}


def _format_timedelta(seconds: float) -> str:
    """Human-readable duration, e.g. "45 minutes" or "3 days"."""
    seconds = int(seconds)
    if seconds < 0:
        return "expired"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} seconds"


class PromptPresenter:
    """Prints the authorize URL and asks for the redirect URL the browser ended on."""

    async def present(self, url: str, redirect_uri: str) -> str:
        click.echo("Open this URL in a browser and authorize access:\n")
        click.echo(f"  {url}\n")
        click.echo(f"You will be redirected to {redirect_uri}...")
        return await asyncio.to_thread(click.prompt, "Paste the full redirect URL")


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option("--settings", "settings_path", type=click.Path(exists=True), help="Path to OAuth settings file")
@click.option("--env-file", "env_path", type=click.Path(exists=True), help="Path to .env file")
@click.option(
    "--store-dir",
    type=click.Path(file_okay=False),
    envvar="OAUTHFLOW_STORE_DIR",
    help="Directory for encrypted token storage",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: click.Context,
    json_mode: bool,
    settings_path: str | None,
    env_path: str | None,
    store_dir: str | None,
    verbose: bool,
) -> None:
    """oauthflow - Obtain, refresh and use OAuth2 access tokens."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["settings_path"] = Path(settings_path) if settings_path else None
    ctx.obj["env_path"] = Path(env_path) if env_path else None
    ctx.obj["store_dir"] = Path(store_dir) if store_dir else None
    ctx.obj["output"] = OutputHandler(json_mode)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


def get_settings(ctx: click.Context) -> Settings | NoReturn:
    """Get settings from context, handling errors."""
    output: OutputHandler = ctx.obj["output"]
    try:
        return load_settings(ctx.obj["settings_path"], ctx.obj["env_path"])
    except FileNotFoundError as e:
        output.error(e, help_text=str(e))
        raise SystemExit(1)  # Never reached due to sys.exit in output.error
    except json.JSONDecodeError as e:
        output.error(
            e,
            error_type="SettingsParseError",
            help_text="The settings file contains invalid JSON. Check for syntax errors.",
        )
        raise SystemExit(1)
    except SettingsError as e:
        output.error(e)
        raise SystemExit(1)


def get_client(ctx: click.Context, name: str) -> ClientSettings | NoReturn:
    output: OutputHandler = ctx.obj["output"]
    try:
        return get_settings(ctx).get(name)
    except SettingsError as e:
        output.error(e, help_text="Run 'oauthflow clients' to list configured clients.")
        raise SystemExit(1)


def get_store(ctx: click.Context) -> TokenStore:
    if "store" not in ctx.obj:
        ctx.obj["store"] = TokenStore(ctx.obj["store_dir"])
    store: TokenStore = ctx.obj["store"]
    return store


def build_oauth2(ctx: click.Context, client: ClientSettings, no_browser: bool = False) -> OAuth2:
    """Create the orchestrator for a configured client, with storage and presenter."""
    config = client.configuration()
    if not client.grant_type.uses_redirect:
        return OAuth2(config, grant=client.grant(), storage=get_store(ctx))

    presenter: Any = PromptPresenter()
    redirect = config.redirect or ""
    can_listen = redirect.startswith(("http://127.0.0.1:", "http://localhost:", "http://[::1]:"))
    fragment_flow = client.grant_type is GrantType.IMPLICIT and not client.options.get("params_in_query")
    if can_listen and not no_browser and not fragment_flow:
        presenter = BrowserPresenter()
    return OAuth2(config, grant=client.grant(), storage=get_store(ctx), presenter=presenter)


def fail(ctx: click.Context, error: Exception) -> NoReturn:
    output: OutputHandler = ctx.obj["output"]
    help_text = HELP_TEXT.get(error.code) if isinstance(error, OAuth2Error) else None
    output.error(error, help_text=help_text)
    raise SystemExit(1)


def token_summary(oauth2: OAuth2) -> dict[str, Any]:
    """Non-secret description of the current token state."""
    record = oauth2.tokens
    summary: dict[str, Any] = {
        "authorized": oauth2.has_unexpired_access_token(),
        "has_refresh_token": bool(oauth2.refresh_token),
        "client_id": oauth2.config.client_id,
        "expires_at": None,
        "expires_in": None,
        "scope": None,
    }
    if record is not None:
        summary["scope"] = record.scope
        if record.expires_at is not None:
            remaining = (record.expires_at - datetime.now(timezone.utc)).total_seconds()
            summary["expires_at"] = record.expires_at.isoformat()
            summary["expires_in"] = _format_timedelta(remaining)
    return summary


@main.command("clients")
@click.pass_context
def clients_cmd(ctx: click.Context) -> None:
    """List configured clients."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)

    rows = []
    for name, client in settings.clients.items():
        config = client.configuration()
        missing = [key for key in client.grant_type.required_settings if not getattr(config, key)]
        rows.append(
            [
                name,
                client.grant_type.value,
                config.storage_key or "-",
                config.client_id or "-",
                ", ".join(missing) or "-",
            ]
        )
    output.table(["NAME", "GRANT", "ENDPOINT", "CLIENT ID", "MISSING"], rows)


@main.command("authorize-url")
@click.argument("name")
@click.option("--redirect", help="Redirect URI to use instead of the configured one")
@click.option("--scope", help="Scope to request instead of the configured one")
@click.pass_context
def authorize_url_cmd(ctx: click.Context, name: str, redirect: str | None, scope: str | None) -> None:
    """Print the authorize URL for a redirect-based client."""
    output: OutputHandler = ctx.obj["output"]
    client = get_client(ctx, name)
    oauth2 = build_oauth2(ctx, client)
    try:
        url = oauth2.authorize_url(redirect=redirect, scope=scope)
    except OAuth2Error as e:
        fail(ctx, e)
    output.success(
        {"url": url, "state": oauth2.context.state, "redirect_uri": oauth2.context.redirect_url},
        human_message=url,
    )


@main.command()
@click.argument("name")
@click.option("--no-browser", is_flag=True, help="Print the authorize URL instead of opening a browser")
@click.pass_context
def login(ctx: click.Context, name: str, no_browser: bool) -> None:
    """Obtain a token for a client, reusing or refreshing a stored one if possible."""
    output: OutputHandler = ctx.obj["output"]
    client = get_client(ctx, name)
    oauth2 = build_oauth2(ctx, client, no_browser=no_browser)
    try:
        asyncio.run(oauth2.authorize())
    except OAuth2Error as e:
        fail(ctx, e)

    summary = token_summary(oauth2)
    message = f"Authorized '{name}'"
    if summary["expires_in"]:
        message += f" (expires in {summary['expires_in']})"
    output.success(summary, human_message=click.style(message, fg="green"))


@main.command()
@click.argument("name")
@click.pass_context
def token(ctx: click.Context, name: str) -> None:
    """Print a usable access token, authorizing first if needed."""
    output: OutputHandler = ctx.obj["output"]
    client = get_client(ctx, name)
    oauth2 = build_oauth2(ctx, client)
    try:
        asyncio.run(oauth2.authorize())
    except OAuth2Error as e:
        fail(ctx, e)

    record = oauth2.tokens
    assert record is not None
    output.success(
        {
            "access_token": record.access_token,
            "token_type": record.token_type,
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        },
        human_message=record.access_token,
    )


@main.command()
@click.argument("name")
@click.pass_context
def refresh(ctx: click.Context, name: str) -> None:
    """Exchange the stored refresh token for a new access token."""
    output: OutputHandler = ctx.obj["output"]
    client = get_client(ctx, name)
    oauth2 = build_oauth2(ctx, client)
    try:
        asyncio.run(oauth2.refresh())
    except OAuth2Error as e:
        fail(ctx, e)
    output.success(token_summary(oauth2), human_message=f"Refreshed token for '{name}'")


@main.command()
@click.argument("name")
@click.pass_context
def register(ctx: click.Context, name: str) -> None:
    """Register a client dynamically if it has no client id yet."""
    output: OutputHandler = ctx.obj["output"]
    client = get_client(ctx, name)
    oauth2 = build_oauth2(ctx, client)
    already_registered = bool(oauth2.config.client_id)
    try:
        asyncio.run(oauth2.register_client_if_needed())
    except OAuth2Error as e:
        fail(ctx, e)

    data = {"client_id": oauth2.config.client_id, "registered": not already_registered}
    if already_registered:
        output.success(data, human_message=f"'{name}' already has client id {oauth2.config.client_id}")
    else:
        output.success(data, human_message=f"Registered '{name}' as {oauth2.config.client_id}")


@main.command()
@click.argument("name", required=False)
@click.pass_context
def status(ctx: click.Context, name: str | None) -> None:
    """Show token status for one or all clients."""
    output: OutputHandler = ctx.obj["output"]
    settings = get_settings(ctx)
    names = [get_client(ctx, name).name] if name else list(settings.clients)

    results: dict[str, Any] = {}
    for client_name in names:
        results[client_name] = token_summary(build_oauth2(ctx, settings.clients[client_name]))

    if ctx.obj["json_mode"]:
        output.success(results)
        return

    rows = []
    for client_name, summary in results.items():
        state = "authorized" if summary["authorized"] else "not authorized"
        if not summary["authorized"] and summary["has_refresh_token"]:
            state = "refreshable"
        rows.append([client_name, state, summary["expires_in"] or "-"])
    output.table(["NAME", "STATUS", "EXPIRES IN"], rows)


@main.command()
@click.argument("name", required=False)
@click.option("--all", "all_clients", is_flag=True, help="Remove every stored token and client")
@click.option("--forget-client", is_flag=True, help="Also remove dynamically registered client credentials")
@click.pass_context
def logout(ctx: click.Context, name: str | None, all_clients: bool, forget_client: bool) -> None:
    """Remove stored tokens."""
    output: OutputHandler = ctx.obj["output"]
    if all_clients:
        try:
            get_store(ctx).clear_all()
        except TokenStoreError as e:
            fail(ctx, e)
        output.success({"cleared": "all"}, human_message="Removed all stored tokens and clients")
        return
    if not name:
        output.error(click.UsageError("Give a client name or --all"))
        return

    oauth2 = build_oauth2(ctx, get_client(ctx, name))
    try:
        oauth2.forget_tokens()
        if forget_client:
            oauth2.forget_client()
    except TokenStoreError as e:
        fail(ctx, e)
    output.success({"cleared": name, "forgot_client": forget_client}, human_message=f"Logged out of '{name}'")


@main.command()
@click.argument("name")
@click.argument("url")
@click.option("--method", "-X", default="GET", help="HTTP method")
@click.option("--header", "-H", "headers", multiple=True, help="Extra header, 'Name: value'")
@click.option("--data", "-d", help="Request body")
@click.pass_context
def fetch(
    ctx: click.Context,
    name: str,
    url: str,
    method: str,
    headers: tuple[str, ...],
    data: str | None,
) -> None:
    """Send an authorized request to URL and print the response."""
    output: OutputHandler = ctx.obj["output"]
    oauth2 = build_oauth2(ctx, get_client(ctx, name))

    request_headers: dict[str, str] = {}
    for header in headers:
        key, sep, value = header.partition(":")
        if not sep:
            output.error(click.BadParameter(f"Invalid header '{header}', expected 'Name: value'"))
            return
        request_headers[key.strip()] = value.strip()

    request = WireRequest(
        method=method.upper(),
        url=url,
        headers=request_headers,
        body=data.encode("utf-8") if data is not None else None,
    )
    try:
        response = asyncio.run(DataLoader(oauth2).perform(request))
    except OAuth2Error as e:
        fail(ctx, e)
    assert response is not None

    body: Any = response.text
    try:
        body = json.loads(body)
    except json.JSONDecodeError:
        pass

    if ctx.obj["json_mode"]:
        output.success({"status": response.status_code, "body": body})
    else:
        click.echo(f"HTTP {response.status_code}", err=True)
        click.echo(body if isinstance(body, str) else json.dumps(body, indent=2))

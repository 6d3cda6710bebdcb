"""oauthflow - An OAuth2 client engine and CLI for obtaining and using access tokens."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("oauthflow")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Engine
    "OAuth2",
    "DataLoader",
    "ClientConfiguration",
    "GrantType",
    "TokenStore",
    # Settings/CLI
    "Settings",
    "load_settings",
    "OutputHandler",
]

# Components load on first access
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("OAuth2", "DataLoader", "ClientConfiguration", "GrantType", "TokenStore"):
        from . import oauth
        return getattr(oauth, name)
    elif name in ("Settings", "load_settings"):
        from .config import Settings, load_settings
        return {"Settings": Settings, "load_settings": load_settings}[name]
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

"""Secure credential persistence.

``TokenStorage`` is the narrow interface the ``OAuth2`` orchestrator talks
to. ``TokenStore`` implements it with encrypted JSON files:

- Fernet symmetric encryption (AES-128-CBC + HMAC)
- the encryption key held in the OS keyring (Keychain, libsecret, DPAPI),
  with a machine-derived fallback key when no keyring backend is available
- owner-only file permissions
- file locking so concurrent processes never interleave writes

Entries are keyed by the client's authorize URL.
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Protocol

import keyring
from cryptography.fernet import Fernet, InvalidToken

from .tokens import ClientCredentials, TokenRecord

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "oauthflow"
KEYRING_USERNAME = "token-encryption-key"

DEFAULT_STORE_DIR = Path.home() / ".cache" / "oauthflow"

TOKENS_FILE = "tokens.json"
CLIENTS_FILE = "clients.json"


if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _locked(path: Path, exclusive: bool) -> Iterator[None]:
        """Hold an flock on ``<path>.lock`` for the duration of the block."""
        lock_path = path.with_suffix(path.suffix + ".lock")
        lock_path.touch(exist_ok=True)
        with open(lock_path, "r") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

else:
    import msvcrt

    @contextmanager
    def _locked(path: Path, exclusive: bool) -> Iterator[None]:
        """Lock the first byte of ``<path>.lock``; msvcrt has no shared locks."""
        lock_path = path.with_suffix(path.suffix + ".lock")
        lock_path.touch(exist_ok=True)
        with open(lock_path, "r+") as handle:
            msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
            try:
                yield
            finally:
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


class TokenStoreError(Exception):
    """Error in token storage operations."""

    pass


class TokenDecryptionError(TokenStoreError):
    """A storage file could not be decrypted or decoded.

    The encryption key changed (keyring cleared, different machine) or the
    file is corrupted. Stored tokens are lost; ``clear_all()`` resets the store.
    """

    pass


class TokenStorage(Protocol):
    """What the orchestrator needs from a credential store."""

    def load_tokens(self, key: str) -> TokenRecord | None: ...

    def store_tokens(self, key: str, record: TokenRecord) -> None: ...

    def delete_tokens(self, key: str) -> bool: ...

    def load_client(self, key: str) -> ClientCredentials | None: ...

    def store_client(self, key: str, client: ClientCredentials) -> None: ...

    def delete_client(self, key: str) -> bool: ...


def _machine_key() -> bytes:
    """Fernet key derived from machine and user identity, used without a keyring."""
    parts = []
    machine_id = Path("/etc/machine-id")
    if machine_id.exists():
        parts.append(machine_id.read_text().strip())
    parts.append(str(Path.home()))
    parts.append(os.environ.get("USER", os.environ.get("USERNAME", "oauthflow")))
    digest = hashlib.sha256(":".join(parts).encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def normalize_key(key: str) -> str:
    return key.rstrip("/").lower()


class TokenStore:
    """Encrypted file storage for tokens and registered clients.

    Files live in ``~/.cache/oauthflow/`` (0700 directory, 0600 files).
    """

    def __init__(self, store_dir: Path | None = None):
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self._using_keyring = False

        self.store_dir.mkdir(parents=True, exist_ok=True)
        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not restrict permissions on {self.store_dir}: {e}")

        self._cipher = Fernet(self._load_key())

    def _load_key(self) -> bytes:
        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, key)
                logger.debug("Stored a new encryption key in the keyring")
        except Exception as e:
            # Any backend failure (missing backend, locked keychain, D-Bus errors)
            logger.warning(
                f"Keyring not available ({type(e).__name__}: {e}). "
                f"Falling back to a machine-derived encryption key."
            )
            return _machine_key()
        self._using_keyring = True
        return key.encode("ascii")

    def is_using_keyring(self) -> bool:
        return self._using_keyring

    def _read(self, filename: str) -> dict[str, Any]:
        path = self.store_dir / filename
        if not path.exists():
            return {}

        with _locked(path, exclusive=False):
            ciphertext = path.read_bytes()
        try:
            plaintext = self._cipher.decrypt(ciphertext)
        except InvalidToken as e:
            raise TokenDecryptionError(
                f"Cannot decrypt {filename}: the encryption key has changed. "
                f"Run 'oauthflow logout --all' and authorize again."
            ) from e
        try:
            data: dict[str, Any] = json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise TokenDecryptionError(
                f"{filename} is corrupted. Run 'oauthflow logout --all' and authorize again."
            ) from e
        return data

    def _write(self, filename: str, data: dict[str, Any]) -> None:
        path = self.store_dir / filename
        ciphertext = self._cipher.encrypt(json.dumps(data).encode("utf-8"))
        with _locked(path, exclusive=True):
            path.write_bytes(ciphertext)
            try:
                path.chmod(stat.S_IRUSR | stat.S_IWUSR)
            except OSError as e:
                logger.warning(f"Could not restrict permissions on {path}: {e}")

    def _delete_entry(self, filename: str, key: str) -> bool:
        data = self._read(filename)
        if normalize_key(key) not in data:
            return False
        del data[normalize_key(key)]
        self._write(filename, data)
        return True

    def load_tokens(self, key: str) -> TokenRecord | None:
        entry = self._read(TOKENS_FILE).get(normalize_key(key))
        if entry is None:
            return None
        try:
            return TokenRecord.from_dict(entry)
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring invalid token data for {key}: {e}")
            return None

    def store_tokens(self, key: str, record: TokenRecord) -> None:
        data = self._read(TOKENS_FILE)
        data[normalize_key(key)] = record.to_dict()
        self._write(TOKENS_FILE, data)
        logger.debug(f"Stored tokens for {key}")

    def delete_tokens(self, key: str) -> bool:
        deleted = self._delete_entry(TOKENS_FILE, key)
        if deleted:
            logger.debug(f"Deleted tokens for {key}")
        return deleted

    def load_client(self, key: str) -> ClientCredentials | None:
        entry = self._read(CLIENTS_FILE).get(normalize_key(key))
        if entry is None:
            return None
        try:
            return ClientCredentials.from_dict(entry)
        except (KeyError, ValueError) as e:
            logger.warning(f"Ignoring invalid client data for {key}: {e}")
            return None

    def store_client(self, key: str, client: ClientCredentials) -> None:
        data = self._read(CLIENTS_FILE)
        data[normalize_key(key)] = client.to_dict()
        self._write(CLIENTS_FILE, data)
        logger.debug(f"Stored client credentials for {key}")

    def delete_client(self, key: str) -> bool:
        deleted = self._delete_entry(CLIENTS_FILE, key)
        if deleted:
            logger.debug(f"Deleted client credentials for {key}")
        return deleted

    def clear_all(self) -> None:
        """Delete every stored token and client."""
        for filename in (TOKENS_FILE, CLIENTS_FILE):
            path = self.store_dir / filename
            if path.exists():
                path.unlink()
        logger.info("Cleared all stored tokens and clients")

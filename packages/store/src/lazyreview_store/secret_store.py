"""SecretStore — provider tokens in the OS keychain, or an encrypted file.

Resolution is a two-tier strategy decided on every call:

  1. keychain — the ``keyring`` package and whatever platform backend it
     finds (macOS Keychain, Secret Service, Windows Credential Locker).
  2. file     — AES-256-GCM with a locally generated key:
       secrets.key   32 random bytes, created once, never rotated
       secrets.json  {account: base64(nonce[12] ‖ tag[16] ‖ ciphertext)}

Only "the keychain integration is unavailable" moves a call to tier 2: the
package is not installed, keyring resolved to its fail backend, or a call
raised NoKeyringError. That is an expected condition on headless machines
and is logged at DEBUG only. Any other keyring error is a real failure and
propagates.

Both files are rewritten whole on every change (temp file, fsync,
os.replace) with owner-only permissions, which is safe for one process at a
time but not for concurrent writers. Losing secrets.key makes every stored
secret unreadable; there is no recovery path.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import tempfile
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from lazyreview_store.errors import SecretDecryptionError, SecretStoreError

try:
    import keyring
    import keyring.errors
    from keyring.backends import fail as _keyring_fail
except ImportError:
    keyring = None  # type: ignore[assignment]
    _keyring_fail = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

BACKEND_KEYCHAIN = "keychain"
BACKEND_FILE = "file"
_BACKENDS = ("auto", BACKEND_KEYCHAIN, BACKEND_FILE)

KEY_FILENAME = "secrets.key"
DATA_FILENAME = "secrets.json"

_KEY_SIZE = 32
_NONCE_SIZE = 12
_TAG_SIZE = 16
_FILE_MODE = 0o600
_DIR_MODE = 0o700

DEFAULT_SERVICE = "lazyreview"


def derive_account(provider: str, host: str) -> str:
    """Return the storage key for a provider token: ``"<provider>:<host>"``."""
    return f"{provider}:{host}"


class SecretStore:
    """Stores, retrieves and deletes secrets keyed by account.

    ``backend`` forces a tier: ``"file"`` never touches the keychain,
    ``"keychain"`` raises SecretStoreError when no keychain is available, and
    ``"auto"`` (the default) prefers the keychain and falls back silently.
    Secrets are never cached; every get_secret() reads the backend.
    """

    def __init__(self, directory: str | Path, service: str = DEFAULT_SERVICE, backend: str = "auto"):
        if backend not in _BACKENDS:
            raise ValueError(f"Unknown secret backend {backend!r}. Expected one of: {', '.join(_BACKENDS)}")
        self._dir = Path(directory)
        self._service = service
        self._backend = backend

    @property
    def key_path(self) -> Path:
        return self._dir / KEY_FILENAME

    @property
    def data_path(self) -> Path:
        return self._dir / DATA_FILENAME

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def store_secret(self, account: str, secret: str) -> str:
        """Persist ``secret`` under ``account`` and return the backend used."""
        if self._keychain_available():
            try:
                keyring.set_password(self._service, account, secret)
                logger.debug("Stored secret for %s in the keychain", account)
                return BACKEND_KEYCHAIN
            except keyring.errors.NoKeyringError:
                self._keychain_unusable()

        records = self._read_records()
        records[account] = self._encrypt(account, secret)
        self._write_records(records)
        logger.debug("Stored secret for %s in %s", account, self.data_path)
        return BACKEND_FILE

    def get_secret(self, account: str) -> str | None:
        """Return the secret for ``account``, or None when neither backend has one."""
        if self._keychain_available():
            try:
                secret = keyring.get_password(self._service, account)
            except keyring.errors.NoKeyringError:
                self._keychain_unusable()
                secret = None
            if secret is not None:
                return secret

        blob = self._read_records().get(account)
        if blob is None:
            return None
        return self._decrypt(account, blob)

    def delete_secret(self, account: str) -> str:
        """Remove ``account`` from every backend that holds it. Idempotent."""
        used = BACKEND_FILE
        if self._keychain_available():
            try:
                keyring.delete_password(self._service, account)
                used = BACKEND_KEYCHAIN
            except keyring.errors.PasswordDeleteError:
                used = BACKEND_KEYCHAIN
            except keyring.errors.NoKeyringError:
                self._keychain_unusable()

        # Also drop any file entry so a stale fallback copy cannot resurface.
        if self.data_path.exists():
            records = self._read_records()
            if records.pop(account, None) is not None:
                self._write_records(records)
        return used

    # ------------------------------------------------------------------ #
    # Keychain tier                                                        #
    # ------------------------------------------------------------------ #

    def _keychain_available(self) -> bool:
        if self._backend == BACKEND_FILE:
            return False
        if keyring is None or isinstance(keyring.get_keyring(), _keyring_fail.Keyring):
            self._keychain_unusable()
            return False
        return True

    def _keychain_unusable(self) -> None:
        if self._backend == BACKEND_KEYCHAIN:
            raise SecretStoreError("The OS keychain is not available on this system.")
        logger.debug("OS keychain unavailable, using encrypted file store in %s", self._dir)

    # ------------------------------------------------------------------ #
    # File tier                                                            #
    # ------------------------------------------------------------------ #

    def _load_key(self, create: bool) -> bytes | None:
        if not self.key_path.exists():
            if not create:
                return None
            key = AESGCM.generate_key(bit_length=_KEY_SIZE * 8)
            self._atomic_write(self.key_path, key)
            logger.debug("Generated new secret store key at %s", self.key_path)
            return key

        try:
            key = self.key_path.read_bytes()
        except OSError as e:
            raise SecretStoreError(f"Cannot read key file {self.key_path}: {e}") from e
        if len(key) != _KEY_SIZE:
            raise SecretDecryptionError(
                f"Key file {self.key_path} is corrupted (expected {_KEY_SIZE} bytes, found {len(key)})"
            )
        return key

    def _encrypt(self, account: str, secret: str) -> str:
        key = self._load_key(create=True)
        nonce = os.urandom(_NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, secret.encode("utf-8"), account.encode("utf-8"))
        ciphertext, tag = sealed[:-_TAG_SIZE], sealed[-_TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def _decrypt(self, account: str, blob: str) -> str:
        key = self._load_key(create=False)
        if key is None:
            raise SecretDecryptionError(f"Key file {self.key_path} is missing; stored secrets cannot be read")

        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SecretDecryptionError(f"Stored secret for {account} is not valid base64") from e
        if len(raw) < _NONCE_SIZE + _TAG_SIZE:
            raise SecretDecryptionError(f"Stored secret for {account} is truncated")

        nonce = raw[:_NONCE_SIZE]
        tag = raw[_NONCE_SIZE : _NONCE_SIZE + _TAG_SIZE]
        ciphertext = raw[_NONCE_SIZE + _TAG_SIZE :]
        try:
            plain = AESGCM(key).decrypt(nonce, ciphertext + tag, account.encode("utf-8"))
        except InvalidTag as e:
            raise SecretDecryptionError(f"Stored secret for {account} failed authentication") from e
        return plain.decode("utf-8")

    def _read_records(self) -> dict[str, str]:
        if not self.data_path.exists():
            return {}
        try:
            raw = self.data_path.read_text()
        except OSError as e:
            raise SecretStoreError(f"Cannot read secret file {self.data_path}: {e}") from e
        try:
            records = json.loads(raw)
        except ValueError as e:
            raise SecretDecryptionError(f"Secret file {self.data_path} is corrupted: {e}") from e
        if not isinstance(records, dict):
            raise SecretDecryptionError(f"Secret file {self.data_path} does not contain a JSON object")
        return records

    def _write_records(self, records: dict[str, str]) -> None:
        self._atomic_write(self.data_path, json.dumps(records, indent=2, sort_keys=True).encode("utf-8"))

    def _atomic_write(self, path: Path, data: bytes) -> None:
        try:
            self._dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{path.name}.")
            try:
                # Owner read/write only, on creation and on every rewrite.
                os.fchmod(fd, _FILE_MODE)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
            os.chmod(path, _FILE_MODE)
        except OSError as e:
            raise SecretStoreError(f"Could not write {path}: {e}") from e

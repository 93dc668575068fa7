"""Provider token resolution.

Resolution order (stops at first success):
  1. The variable named by the provider's ``token_env`` config entry
  2. LAZYREVIEW_<PROVIDER>_TOKEN (e.g. LAZYREVIEW_GITLAB_TOKEN)
  3. GITHUB_TOKEN, for GitHub only (CI injects it automatically)
  4. The secret store (keychain or encrypted file), under "<provider>:<host>"
  5. The host's own CLI session: `gh auth token` / `glab auth token`
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING

from lazyreview_store.secret_store import derive_account

if TYPE_CHECKING:
    from lazyreview_store.secret_store import SecretStore

logger = logging.getLogger(__name__)

SOURCE_ENV = "env"
SOURCE_STORE = "store"
SOURCE_CLI = "cli"

_HOST_CLIS = {
    "github": "gh",
    "gitlab": "glab",
}


def token_env_var(provider_type: str) -> str:
    return f"LAZYREVIEW_{provider_type.upper()}_TOKEN"


def resolve_token(
    provider_type: str,
    host: str,
    secret_store: SecretStore | None = None,
    token_env: str | None = None,
) -> str | None:
    """Return a token for the provider or None if no valid source is available.

    Never raises for a missing token — callers should check for None and emit
    a UsageError. A corrupted secret store does raise, since guessing past it
    would hide the problem.
    """
    found = resolve_token_with_source(provider_type, host, secret_store, token_env)
    return found[0] if found else None


def resolve_token_with_source(
    provider_type: str,
    host: str,
    secret_store: SecretStore | None = None,
    token_env: str | None = None,
) -> tuple[str, str] | None:
    """Like resolve_token(), but also report where the token came from."""
    for var in _env_candidates(provider_type, token_env):
        token = os.environ.get(var)
        if token:
            return token, SOURCE_ENV

    if secret_store is not None:
        token = secret_store.get_secret(derive_account(provider_type, host))
        if token:
            return token, SOURCE_STORE

    token = _token_from_host_cli(provider_type, host)
    if token:
        return token, SOURCE_CLI
    return None


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


def _env_candidates(provider_type: str, token_env: str | None) -> list[str]:
    candidates = []
    if token_env:
        candidates.append(token_env)
    candidates.append(token_env_var(provider_type))
    if provider_type == "github":
        candidates.append("GITHUB_TOKEN")
    return candidates


def _token_from_host_cli(provider_type: str, host: str) -> str | None:
    """Reuse the token that `gh auth login` / `glab auth login` stored."""
    binary = _HOST_CLIS.get(provider_type)
    if binary is None:
        return None
    try:
        result = subprocess.run(
            [binary, "auth", "token", "--hostname", host],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        # CLI not installed or timed out; fall through.
        return None

    if result.returncode == 0:
        token = result.stdout.strip()
        if token:
            logger.debug("Resolved %s token via %s CLI session.", provider_type, binary)
            return token
    return None

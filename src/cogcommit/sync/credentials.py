"""
File-based credential storage for cloud sync.

The login flow (out of process) writes ``~/.cogcommit/auth.json`` with an
access token, refresh token, expiry and user profile. The sync engines only
read it through a ``CredentialProvider`` and ask for one refresh before giving
up.
"""

import json
import logging
import os
import secrets
import stat
import sys
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

from cogcommit.config import settings

logger = logging.getLogger(__name__)

# Refresh a token this many seconds before it actually expires
REFRESH_MARGIN_SECONDS = 60


@dataclass
class AuthTokens:
    """Stored session tokens and the identity they are bound to."""

    access_token: str
    refresh_token: str
    expires_at: float  # Unix seconds
    user_id: str
    user: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, margin: float = 0.0) -> bool:
        return time.time() + margin >= self.expires_at

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthTokens":
        user = data.get("user") or {}
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=float(data.get("expires_at", 0)),
            user_id=data.get("user_id") or user.get("id", ""),
            user=user,
        )


class CredentialProvider(Protocol):
    """Source of access tokens for the remote client."""

    def load_tokens(self) -> Optional[AuthTokens]:
        """Return valid (unexpired) tokens, or None."""
        ...

    async def refresh_if_needed(self) -> bool:
        """Refresh expiring tokens; return True if valid tokens are available."""
        ...


class FileCredentialProvider:
    """
    Credential provider backed by a JSON file with 0600 permissions.

    Refresh exchanges the stored refresh token at the remote auth endpoint
    (``POST /auth/v1/token?grant_type=refresh_token``) and rewrites the file.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        remote_url: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            path: Token file (default: ``settings.auth_path``)
            remote_url: Remote service base URL (default: settings)
            anon_key: Public API key (default: settings)
            timeout: Request timeout for refresh calls
            transport: Optional httpx transport (tests)
        """
        self.path = path or settings.auth_path
        self.remote_url = (remote_url or settings.remote_url).rstrip("/")
        self.anon_key = anon_key or settings.remote_anon_key
        self.timeout = timeout or settings.remote_timeout
        self._transport = transport

    def _read(self) -> Optional[AuthTokens]:
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                return AuthTokens.from_dict(json.load(f))
        except (json.JSONDecodeError, KeyError, OSError, ValueError) as e:
            logger.warning(f"Failed to load auth tokens: {e}")
            return None

    def load_tokens(self) -> Optional[AuthTokens]:
        """
        Load stored tokens.

        Returns:
            Tokens if present and not expired, None otherwise
        """
        tokens = self._read()
        if tokens is None or tokens.is_expired():
            return None
        return tokens

    def save_tokens(self, tokens: AuthTokens) -> None:
        """Write tokens to disk with owner-only permissions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(asdict(tokens), f, indent=2)
        os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)

    def clear(self) -> bool:
        """
        Delete stored tokens (logout).

        Returns:
            True if a token file was removed
        """
        if self.path.exists():
            self.path.unlink()
            return True
        return False

    async def refresh_if_needed(self) -> bool:
        """
        Refresh the access token if it expires within the refresh margin.

        Returns:
            True if usable tokens are available afterwards
        """
        tokens = self._read()
        if tokens is None:
            return False
        if not tokens.is_expired(margin=REFRESH_MARGIN_SECONDS):
            return True
        if not tokens.refresh_token or not self.remote_url:
            return not tokens.is_expired()

        logger.info("Refreshing access token")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.remote_url}/auth/v1/token",
                    params={"grant_type": "refresh_token"},
                    headers={"apikey": self.anon_key},
                    json={"refresh_token": tokens.refresh_token},
                )
        except httpx.RequestError as e:
            logger.warning(f"Token refresh failed: {e}")
            return not tokens.is_expired()

        if not response.is_success:
            logger.warning(f"Token refresh rejected: HTTP {response.status_code}")
            return False

        data = response.json()
        expires_at = data.get("expires_at")
        if expires_at is None:
            expires_at = time.time() + float(data.get("expires_in", 3600))
        user = data.get("user") or tokens.user
        refreshed = AuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", tokens.refresh_token),
            expires_at=float(expires_at),
            user_id=user.get("id", tokens.user_id),
            user=user,
        )
        self.save_tokens(refreshed)
        return True


def get_machine_id(path: Optional[Path] = None) -> str:
    """
    Get this device's machine id, creating it on first use.

    Args:
        path: Machine id file (default: ``settings.machine_id_path``)

    Returns:
        Stable machine id string
    """
    machine_id_path = path or settings.machine_id_path
    if machine_id_path.exists():
        return machine_id_path.read_text().strip()

    machine_id = f"{sys.platform}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    machine_id_path.parent.mkdir(parents=True, exist_ok=True)
    machine_id_path.write_text(machine_id)
    logger.debug(f"Generated machine id {machine_id}")
    return machine_id

"""Bearer token acquisition from the Azure CLI login session."""

from __future__ import annotations

import json
import logging
import subprocess
from datetime import datetime, timezone

from pydantic import BaseModel

from adox.errors import AuthError

logger = logging.getLogger(__name__)

# Well-known application ID of the Azure DevOps resource
DEVOPS_RESOURCE_ID = "499b84ac-1321-427f-aa17-267ca6975798"


class Token(BaseModel):
    value: str
    acquired_at: datetime
    expires_on: datetime | None = None

    def is_fresh(self, now: datetime | None = None, max_age_s: int = 3000) -> bool:
        now = now or datetime.now(timezone.utc)
        if self.expires_on is not None and now >= self.expires_on:
            return False
        return (now - self.acquired_at).total_seconds() < max_age_s


def _parse_expiry(payload: dict) -> datetime | None:
    # Newer CLI versions emit a POSIX ``expires_on``; older ones only ``expiresOn``
    epoch = payload.get("expires_on")
    if epoch is not None:
        try:
            return datetime.fromtimestamp(int(epoch), tz=timezone.utc)
        except (TypeError, ValueError):
            pass
    local = payload.get("expiresOn")
    if local:
        try:
            return datetime.strptime(local, "%Y-%m-%d %H:%M:%S.%f").astimezone(timezone.utc)
        except ValueError:
            return None
    return None


class Authenticator:
    """Exchanges the ``az login`` session for a DevOps-scoped bearer token."""

    def __init__(
        self,
        az_cli_path: str = "az",
        static_token: str | None = None,
        max_age_s: int = 3000,
        timeout_s: float = 60.0,
    ) -> None:
        self.az_cli_path = az_cli_path
        self.static_token = static_token
        self.max_age_s = max_age_s
        self.timeout_s = timeout_s

    def acquire_token(self) -> Token:
        now = datetime.now(timezone.utc)
        if self.static_token:
            logger.info("Using pre-supplied access token")
            return Token(value=self.static_token, acquired_at=now)

        cmd = [
            self.az_cli_path, "account", "get-access-token",
            "--resource", DEVOPS_RESOURCE_ID,
            "--output", "json",
        ]
        logger.info("Requesting DevOps token from Azure CLI session")
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout_s, check=False,
            )
        except FileNotFoundError as e:
            raise AuthError(f"Azure CLI not found at {self.az_cli_path!r}; run 'az login' first") from e
        except subprocess.TimeoutExpired as e:
            raise AuthError(f"Azure CLI token request timed out after {self.timeout_s}s") from e

        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            raise AuthError(f"Token exchange failed (exit {proc.returncode}): {stderr[:500]}")

        try:
            payload = json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise AuthError("Azure CLI returned malformed token output") from e

        value = payload.get("accessToken") if isinstance(payload, dict) else None
        if not value:
            raise AuthError("Azure CLI returned no access token")

        token = Token(value=value, acquired_at=now, expires_on=_parse_expiry(payload))
        logger.info("Token acquired (expires %s)", token.expires_on or "unknown")
        return token

    def ensure_fresh(self, token: Token, now: datetime | None = None) -> Token:
        """Return ``token`` if still fresh, otherwise acquire a new one."""
        if token.is_fresh(now, self.max_age_s):
            return token
        logger.info("Token is stale, re-acquiring")
        return self.acquire_token()

"""
Persistent shared secret for authenticating local relay clients.

The token lives in a single per-user file. It is created on first start with
owner-only permissions and reused verbatim (whitespace-trimmed) afterwards.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path

DEFAULT_TOKEN_PATH = Path.home() / ".dandy-notifier-token"

logger = logging.getLogger("dandynotifier.token")


def default_token_path() -> Path:
    """Token file location, honoring DANDY_NOTIFIER_TOKEN_FILE."""
    env_path = os.environ.get("DANDY_NOTIFIER_TOKEN_FILE", "")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_TOKEN_PATH


class TokenStore:
    """Loads or creates the relay's bearer token."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path).expanduser() if path is not None else default_token_path()

    def read(self) -> str | None:
        """Return the stored token, or None if the file is missing or blank."""
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, UnicodeDecodeError):
            return None
        except OSError:
            logger.warning("Could not read token file %s", self.path, exc_info=True)
            return None
        return token or None

    def load_or_create(self) -> str:
        token = self.read()
        if token:
            logger.debug("Reusing token from %s", self.path)
            return token

        token = secrets.token_hex(32)
        try:
            self._write(token)
            logger.info("Created new auth token at %s", self.path)
        except OSError:
            # The token still works for this process; clients just can't find it.
            logger.error("Failed to persist auth token to %s", self.path, exc_info=True)
        return token

    def _write(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(token)
        try:
            os.chmod(tmp, 0o600)
        except OSError:
            pass  # Windows doesn't support Unix permissions
        tmp.replace(self.path)

"""File-backed persistence for the backend OAuth credential."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("codex-bridge")

TOKEN_SCHEMA_VERSION = 1
EXPIRY_SKEW_MS = 60_000


@dataclass(frozen=True)
class TokenSet:
    """One backend credential; replaced wholesale, never mutated."""

    access_token: str
    refresh_token: str
    expires_at: int  # epoch milliseconds
    account_id: Optional[str] = None


def now_ms() -> int:
    return int(time.time() * 1000)


def is_expired(token: TokenSet, skew_ms: int = EXPIRY_SKEW_MS, now: Optional[int] = None) -> bool:
    """True when the token expires within ``skew_ms`` of ``now``."""
    current = now_ms() if now is None else now
    return token.expires_at <= current + skew_ms


class TokenStore:
    """Reads and writes the persisted credential file.

    The on-disk shape is::

        {"version": 1, "access": "...", "refresh": "...",
         "expires": 1735000000000, "accountId": "..."}

    A missing, unreadable, malformed or version-mismatched file reads as
    ``None`` rather than raising.
    """

    def __init__(self, file_path: Path | str) -> None:
        self.file_path = Path(file_path)

    def read(self) -> Optional[TokenSet]:
        if not self.file_path.exists():
            return None
        try:
            persisted = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self.file_path, exc)
            return None
        return _from_persisted(persisted)

    def write(self, token: TokenSet) -> None:
        payload: dict[str, Any] = {
            "version": TOKEN_SCHEMA_VERSION,
            "access": token.access_token,
            "refresh": token.refresh_token,
            "expires": token.expires_at,
        }
        if token.account_id:
            payload["accountId"] = token.account_id
        self._write_json(payload)

    def clear(self) -> None:
        self._write_json(
            {"version": TOKEN_SCHEMA_VERSION, "access": "", "refresh": "", "expires": 0}
        )

    def _write_json(self, payload: dict[str, Any]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_path, self.file_path)


def _from_persisted(persisted: Any) -> Optional[TokenSet]:
    if not isinstance(persisted, dict):
        return None
    if persisted.get("version") != TOKEN_SCHEMA_VERSION:
        return None
    access = persisted.get("access")
    refresh = persisted.get("refresh")
    expires = persisted.get("expires")
    if not isinstance(access, str) or not isinstance(refresh, str):
        return None
    if not isinstance(expires, (int, float)) or isinstance(expires, bool):
        return None
    account_id = persisted.get("accountId")
    return TokenSet(
        access_token=access,
        refresh_token=refresh,
        expires_at=int(expires),
        account_id=account_id if isinstance(account_id, str) and account_id else None,
    )

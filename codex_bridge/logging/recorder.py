"""On-disk request logging for inbound front-protocol calls."""

import asyncio
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from .setup import mask_token

logger = logging.getLogger("codex-bridge")

SENSITIVE_HEADERS = {"authorization", "x-api-key", "proxy-authorization", "cookie"}


class RequestLogRecorder:
    """Capture one inbound request and write it as a JSON file."""

    def __init__(self, log_dir: Path, kind: str) -> None:
        now = datetime.now(timezone.utc)
        self.kind = kind
        self.log_dir = Path(log_dir)
        timestamp = now.strftime("%Y%m%dT%H%M%S%fZ")
        self.log_path = self.log_dir / f"{timestamp}-{kind}-{uuid.uuid4().hex}.json"
        self._started = now.isoformat()
        self._entry: Optional[dict[str, Any]] = None

    def record_request(
        self,
        headers: Mapping[str, str],
        body: Any,
        query: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._entry = {
            "timestamp": self._started,
            "type": self.kind,
            "headers": self._safe_headers(headers),
            "query": dict(query or {}),
            "body": body,
        }

    async def flush(self) -> None:
        """Write the captured entry; failures are logged, never raised."""
        if self._entry is None:
            return
        try:
            await asyncio.to_thread(self._write_to_disk)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to log incoming request to %s: %s", self.log_path, exc)

    def _write_to_disk(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.log_path.with_suffix(self.log_path.suffix + ".tmp")
        content = json.dumps(self._entry, ensure_ascii=False, indent=2, default=str)
        tmp_path.write_text(content + "\n", encoding="utf-8")
        os.replace(tmp_path, self.log_path)

    @staticmethod
    def _safe_headers(data: Mapping[str, str]) -> dict[str, str]:
        masked: dict[str, str] = {}
        for key, value in data.items():
            value = str(value)
            if key.lower() not in SENSITIVE_HEADERS:
                masked[key] = value
            elif value.lower().startswith("bearer "):
                masked[key] = f"Bearer {mask_token(value[7:])}"
            else:
                masked[key] = mask_token(value) or ""
        return masked


async def log_proxy_request(
    cache_dir: Path,
    kind: str,
    headers: Mapping[str, str],
    body: Any,
    query: Optional[Mapping[str, str]] = None,
) -> Path:
    """Record one inbound request under ``<cache_dir>/request-logs``."""
    recorder = RequestLogRecorder(Path(cache_dir) / "request-logs", kind)
    recorder.record_request(headers, body, query)
    await recorder.flush()
    return recorder.log_path

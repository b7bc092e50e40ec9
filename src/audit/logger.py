"""Audit trail — append-only JSON Lines record of webhook outcomes."""

from __future__ import annotations

import fcntl
import logging
from pathlib import Path

from src.models import AuditEvent

logger = logging.getLogger(__name__)


class AuditLogger:
    """Appends one JSON line per audit event under an exclusive file lock."""

    def __init__(self, log_path: str) -> None:
        self.log_path = Path(log_path)

    def log(self, event: AuditEvent) -> None:
        line = event.model_dump_json(exclude_none=True)
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    f.write(line + "\n")
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except OSError as exc:
            logger.warning("Failed to write audit event to %s: %s", self.log_path, exc)

"""
Credential audit log.
Created: 2026-10-19

Append-only JSONL record of security-relevant credential events: client
registration, token issuance/rotation/revocation, failed logins, API key
lifecycle. Writing an audit entry never fails the request that caused it.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("toolgate.audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal credential lifecycle
    WARNING = "warning"  # Failed login, rejected grant
    ALERT = "alert"  # Replay of a used code or rotated refresh token


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # user_id, client_id or "anonymous"
    action: str  # e.g. "token_issued", "api_key_revoked"
    target: str  # e.g. "client:abc", "key:123"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        actor: str,
        action: str,
        target: str,
        **context: Any,
    ) -> AuditEvent:
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            context=context,
        )


class AuditLogger:
    """Append-only JSONL writer. ``log_path=None`` keeps events in the process log only."""

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path
        self._lock = threading.Lock()

    def log(self, event: AuditEvent) -> None:
        record = asdict(event)
        record["severity"] = event.severity.value
        logger.info("%s %s -> %s", event.action, event.actor, event.target)
        if self.log_path is None:
            return
        try:
            with self._lock:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event.action)

    def credential_event(
        self,
        action: str,
        *,
        actor: str,
        target: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> None:
        self.log(AuditEvent.create(severity, actor, action, target, **context))


_NULL_AUDIT = AuditLogger(None)


def null_audit_logger() -> AuditLogger:
    """Audit logger that only echoes to the process log (tests, memory backend)."""
    return _NULL_AUDIT

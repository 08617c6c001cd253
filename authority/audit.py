"""
Audit collaborator. The authority reports security events here and moves on:
a failing recorder is logged and never blocks or fails the token path.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authority.audit")

AUTHORIZATION_CODE_REPLAY = "authorization_code_replay"
REFRESH_TOKEN_REUSE = "refresh_token_reuse"
CLIENT_REVOKED = "client_revoked"


class AuditRecorder:
    def record_security_event(self, kind: str, context: Mapping[str, Any]) -> None:
        raise NotImplementedError


class LoggingAuditRecorder(AuditRecorder):
    """Writes security events to the `authority.audit` logger."""

    def record_security_event(self, kind: str, context: Mapping[str, Any]) -> None:
        audit_logger.warning("security_event kind=%s context=%s", kind, dict(context))


def report(recorder: AuditRecorder | None, kind: str, **context: Any) -> None:
    """Fire-and-forget delivery of one security event."""
    if recorder is None:
        return
    try:
        recorder.record_security_event(kind, context)
    except Exception:
        logger.exception("Audit recorder failed for security event %s", kind)

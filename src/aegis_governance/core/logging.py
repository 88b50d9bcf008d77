# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of AEGIS Governance.
#
# AEGIS Governance is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
AEGIS Governance -- structured event logger

Every governance decision (promotion, evaluation, hot-reload,
revalidation, tamper detection, remote call) is emitted as one
component-tagged line that operators can tail or grep.

FORMAT:
    TIMESTAMP | LEVEL | COMPONENT    | MESSAGE | k=v k=v

    2026-02-09T17:30:45.123Z | DECN  | StateMachine | Agent a1 -> GOVERNED_VALID | score=100
    2026-02-09T17:30:46.500Z | RLOAD | Runtime      | Policy default v2 published | new_hash="sha256:..."
    2026-02-09T17:30:46.501Z | TAMP  | StateMachine | Spec tamper detected | agent_id="a1"

USAGE:
    from aegis_governance.core.logging import get_logger
    log = get_logger()
    log.decision("a1", "GOVERNED_VALID", reason="compliant", score=100)
    log.hot_reload("ws-1", "default", version=2, old_hash=h1, new_hash=h2)

Module internals keep using ``logging.getLogger(__name__)`` style loggers;
this logger is for the decision trail.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
LOG_BACKUP_COUNT = 20
LOGGER_NAME = "aegis_governance.decisions"


class GovernanceLogFormatter(logging.Formatter):
    """Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}"""

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.fromtimestamp(record.created, timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = getattr(record, "aegis_level", record.levelname)
        component = getattr(record, "component", "System")
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        return (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )


class GovernanceLogger:
    """
    Decision-trail logger for the governance core.

    - stderr at WARNING+ (tamper, invalidation, remote failures)
    - optional rotating file at DEBUG+ (10 MB per file)
    - records propagate to the ``aegis_governance`` logger hierarchy, so
      pytest's ``caplog`` and host applications see them too
    """

    def __init__(self, log_file: str | Path | None = None, stderr: bool = True):
        self._logger = logging.getLogger(LOGGER_NAME)
        self._logger.setLevel(logging.DEBUG)
        self._log_file: Path | None = None

        # Remove existing handlers to avoid duplicates
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        if stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(logging.WARNING)
            stderr_handler.setFormatter(GovernanceLogFormatter())
            self._logger.addHandler(stderr_handler)

        if log_file:
            self.add_file_log(log_file)

    def add_file_log(self, log_file: str | Path) -> None:
        """Mirror every event into a rotating log file."""
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            str(path),
            maxBytes=MAX_LOG_FILE_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(GovernanceLogFormatter())
        self._logger.addHandler(handler)
        self._log_file = path

    @property
    def log_file(self) -> Path | None:
        return self._log_file

    def _log(self, level: int, aegis_level: str, component: str, message: str, **fields):
        """Core log method."""
        record = self._logger.makeRecord(
            name=LOGGER_NAME,
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.component = component
        record.aegis_level = aegis_level
        record.fields = fields
        self._logger.handle(record)

    # =========================================================================
    # Standard levels
    # =========================================================================

    def info(self, component: str, message: str, **fields):
        self._log(logging.INFO, "INFO", component, message, **fields)

    def warn(self, component: str, message: str, **fields):
        self._log(logging.WARNING, "WARN", component, message, **fields)

    def error(self, component: str, message: str, **fields):
        self._log(logging.ERROR, "ERROR", component, message, **fields)

    def debug(self, component: str, message: str, **fields):
        self._log(logging.DEBUG, "DEBUG", component, message, **fields)

    # =========================================================================
    # Governance events
    # =========================================================================

    def promotion(self, agent_id: str, passed: bool, errors: list[str] | None = None, **fields):
        """Log a sandbox -> governed promotion attempt."""
        fields.update(agent_id=agent_id, passed=passed, errors=len(errors or []))
        level = logging.INFO if passed else logging.WARNING
        verdict = "accepted" if passed else "rejected"
        self._log(level, "PROMO", "StateMachine", f"Promotion {verdict}", **fields)

    def decision(self, agent_id: str, status: str, reason: str = "", **fields):
        """Log a governance status decision."""
        fields.update(agent_id=agent_id, reason=reason)
        level = logging.WARNING if status == "GOVERNED_INVALIDATED" else logging.INFO
        self._log(level, "DECN", "StateMachine", f"Agent {agent_id} -> {status}", **fields)

    def tamper(self, agent_id: str, expected: str | None, actual: str, **fields):
        """Log a spec-hash mismatch."""
        fields.update(agent_id=agent_id, expected=str(expected), actual=actual)
        self._log(logging.WARNING, "TAMP", "StateMachine", "Spec tamper detected", **fields)

    def hot_reload(
        self,
        workspace_id: str,
        policy_set: str,
        version: int = 0,
        old_hash: str | None = None,
        new_hash: str = "",
        success: bool = True,
        **fields,
    ):
        """Log a policy hot-reload."""
        fields.update(
            workspace=workspace_id,
            old_hash=str(old_hash),
            new_hash=new_hash,
            success=success,
        )
        level = logging.INFO if success else logging.ERROR
        message = (
            f"Policy {policy_set} v{version} published" if success else f"Policy {policy_set} reload aborted"
        )
        self._log(level, "RLOAD", "Runtime", message, **fields)

    def revalidation(
        self,
        workspace_id: str,
        policy_set: str,
        invalidated: int = 0,
        restricted: int = 0,
        valid: int = 0,
        failed: int = 0,
        expired: int = 0,
        **fields,
    ):
        """Log the outcome of a revalidation batch."""
        fields.update(
            workspace=workspace_id,
            invalidated=invalidated,
            restricted=restricted,
            valid=valid,
            expired=expired,
            failed=failed,
        )
        level = logging.WARNING if failed else logging.INFO
        self._log(level, "RVAL", "Runtime", f"Revalidated policy set {policy_set}", **fields)

    def admission(self, agent_id: str, admitted: bool, codes: list[str] | None = None, **fields):
        """Log an admission decision on agent start."""
        fields.update(agent_id=agent_id, admitted=admitted, codes=",".join(codes or []))
        level = logging.INFO if admitted else logging.WARNING
        verdict = "admitted" if admitted else "denied"
        self._log(level, "ADMIT", "Runtime", f"Agent {agent_id} {verdict}", **fields)

    def remote_call(
        self,
        method: str,
        path: str,
        status: int = 0,
        attempt: int = 1,
        latency_ms: int = 0,
        success: bool = True,
        **fields,
    ):
        """Log one attempt of a remote orchestrator call."""
        fields.update(status=status, attempt=attempt, latency_ms=latency_ms)
        level = logging.DEBUG if success else logging.WARNING
        self._log(level, "REMOT", "External", f"{method} {path}", **fields)

    def http_request(self, method: str, path: str, status: int = 200, latency_ms: int = 0, **fields):
        """Log an HTTP request served by the orchestrator API."""
        fields.update(method=method, path=path, status=status, latency_ms=latency_ms)
        level = logging.INFO if status < 400 else logging.WARNING
        self._log(level, "HTTP", "Server", f"{method} {path} -> {status}", **fields)


# =============================================================================
# SINGLETON
# =============================================================================

_instance: GovernanceLogger | None = None


def get_logger(log_file: str | Path | None = None) -> GovernanceLogger:
    """Get or create the process-wide decision logger."""
    global _instance
    if _instance is None:
        _instance = GovernanceLogger(log_file=log_file)
    elif log_file and _instance.log_file != Path(log_file).expanduser():
        _instance.add_file_log(log_file)
    return _instance

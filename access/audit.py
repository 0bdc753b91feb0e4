# LibraryGate - Audit logging (every grant change is logged)
#
# Pipeline: audit logger -> QueueHandler -> QueueListener -> file (jsonl) + memory.
# Entries are sanitized before they leave the queue; notes and emails never reach the file.
import copy
import json
import logging
import logging.handlers
import queue
import re
import uuid
from collections import deque
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AccessControlAuditLog
from .models import AuditLogEntry

logger = logging.getLogger(__name__)

AUDIT_MEMORY_LIMIT = 1000
AUDIT_LOG_MEMORY: deque[dict] = deque(maxlen=AUDIT_MEMORY_LIMIT)
EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_REDACTED_KEYS = ("notes", "reason", "email", "password")


def sanitize_for_log(data: dict) -> dict:
    sanitized = copy.deepcopy(data)

    def _scrub(obj):
        if isinstance(obj, dict):
            for key in list(obj.keys()):
                val = obj[key]
                if key.lower() in _REDACTED_KEYS and val is not None:
                    obj[key] = "[REDACTED]"
                elif isinstance(val, str):
                    obj[key] = EMAIL_PATTERN.sub("[REDACTED-EMAIL]", val)
                else:
                    _scrub(val)
        elif isinstance(obj, list):
            for i, item in enumerate(obj):
                if isinstance(item, str):
                    obj[i] = EMAIL_PATTERN.sub("[REDACTED-EMAIL]", item)
                else:
                    _scrub(item)

    _scrub(sanitized)
    return sanitized


class AuditFileHandler(logging.Handler):
    def __init__(self, filepath: Path):
        super().__init__()
        self.filepath = Path(filepath)

    def emit(self, record):
        try:
            entry = getattr(record, "audit_entry", None)
            if entry:
                self.filepath.parent.mkdir(parents=True, exist_ok=True)
                with open(self.filepath, "a", encoding="utf-8") as f:
                    f.write(json.dumps(sanitize_for_log(entry), default=str) + "\n")
        except Exception:
            self.handleError(record)


class AuditMemoryHandler(logging.Handler):
    def emit(self, record):
        try:
            entry = getattr(record, "audit_entry", None)
            if entry:
                AUDIT_LOG_MEMORY.append(sanitize_for_log(entry))
        except Exception:
            self.handleError(record)


_audit_queue: queue.Queue = queue.Queue(-1)
_audit_logger = logging.getLogger("librarygate.audit")
_audit_logger.setLevel(logging.INFO)
_audit_logger.propagate = False
_audit_logger.addHandler(logging.handlers.QueueHandler(_audit_queue))

_queue_listener: logging.handlers.QueueListener | None = None


def start_audit_logger(audit_file: Path) -> None:
    """Start draining the audit queue into the jsonl file and the in-memory log."""
    global _queue_listener
    if _queue_listener is not None:
        return
    _queue_listener = logging.handlers.QueueListener(
        _audit_queue, AuditFileHandler(audit_file), AuditMemoryHandler(),
        respect_handler_level=True,
    )
    _queue_listener.start()
    logger.info("Audit logger ready (QueueHandler -> %s)", audit_file)


def shutdown_audit_logger() -> None:
    global _queue_listener
    if _queue_listener is not None:
        _queue_listener.stop()
        _queue_listener = None


def log_audit(entry: AuditLogEntry) -> dict:
    """Put an entry on the audit queue. Returns the raw dict that was queued."""
    payload = entry.model_dump(mode="json")
    record = logging.LogRecord(
        name="librarygate.audit", level=logging.INFO, pathname="", lineno=0,
        msg="audit", args=(), exc_info=None,
    )
    record.audit_entry = payload
    _audit_logger.handle(record)
    return payload


def record_change(
    session: AsyncSession,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    performed_by_id: str,
    performed_by_role: str,
    platform_id: str | None = None,
    school_id: str | None = None,
    changes: dict | None = None,
) -> None:
    """Stage an AccessControlAuditLog row and queue the matching audit entry.

    The row is committed together with the grant change it describes.
    """
    changes = json.loads(json.dumps(changes or {}, default=str))
    session.add(AccessControlAuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        performed_by_id=performed_by_id,
        performed_by_role=performed_by_role,
        platform_id=platform_id,
        school_id=school_id,
        changes=changes,
    ))
    log_audit(AuditLogEntry(
        trace_id=f"tr-{uuid.uuid4().hex[:8]}",
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        performed_by_id=performed_by_id,
        performed_by_role=performed_by_role,
        platform_id=platform_id,
        school_id=school_id,
        changes=changes,
    ))


def get_audit_sample(
    limit: int = 50,
    *,
    school_id: str | None = None,
    platform_id: str | None = None,
) -> list[dict]:
    """Return the most recent sanitized entries for one school or one platform.

    With neither scope given nothing is returned.
    """
    if school_id is None and platform_id is None:
        return []
    entries = [
        entry for entry in list(AUDIT_LOG_MEMORY)
        if (school_id is None or entry.get("school_id") == school_id)
        and (platform_id is None or entry.get("platform_id") == platform_id)
    ]
    return entries[-limit:] if limit > 0 else []

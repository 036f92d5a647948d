"""
Proctoring Logger - Logs exam lifecycle and violation events
"""

import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event.

    Args:
        session_id: Exam session ID
        event_type: Type of event (exam_start, violation, monitor_disabled, ...)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"

    if details:
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        message += f" {detail_str}"

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_exam_start(session_id: str, user_id: str, questions: int, duration_seconds: int):
    """Log exam start event"""
    log_proctor_event(
        session_id=session_id,
        event_type="exam_start",
        details={
            "user_id": user_id,
            "questions": questions,
            "duration_seconds": duration_seconds
        }
    )


def log_exam_submit(session_id: str, trigger: str, answered: int, violations: int):
    """Log exam submission"""
    log_proctor_event(
        session_id=session_id,
        event_type="exam_submit",
        details={
            "trigger": trigger,
            "answered": answered,
            "violations": violations
        }
    )


def log_violation_recorded(session_id: str, kind: str, description: str, total: int):
    """Log when a violation is appended to the session log"""
    log_proctor_event(
        session_id=session_id,
        event_type="violation",
        details={
            "kind": kind,
            "description": repr(description),
            "total": total
        },
        level="warning"
    )


def log_monitor_disabled(session_id: str, modality: str, reason: str):
    """Log a sensor modality being disabled after a fatal error"""
    log_proctor_event(
        session_id=session_id,
        event_type="monitor_disabled",
        details={
            "modality": modality,
            "reason": repr(reason)
        },
        level="error"
    )


def log_persistence_failure(session_id: str, operation: str, error: str):
    """Log a session store write that failed"""
    log_proctor_event(
        session_id=session_id,
        event_type="persistence_failure",
        details={
            "operation": operation,
            "error": repr(error)
        },
        level="error"
    )

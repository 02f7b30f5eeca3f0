"""
Logging for the permit coordination engine.

structlog on top of stdlib logging. Events are snake_case names with
keyword context; UUIDs are logged as strings so JSON output stays flat.

Usage:
    from logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("project_created", project_id=str(project.id), applicant_id=project.applicant_id)
"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from uuid import UUID

import structlog

from conflict_config import LOG_LEVEL, JSON_LOGS


def _renderer(json_logs: bool):
    if json_logs:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: one JSON object per line instead of console output
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(json_logs),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)
    logging.getLogger().setLevel(numeric_level)
    # SQL echo is controlled by the engine, keep the driver quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def _id(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def log_project_transition(
    project_id: str,
    from_state: str,
    to_state: str,
    actor_id: str
) -> None:
    """One line per accepted lifecycle change."""
    get_logger("project_transition").info(
        "project_transition",
        project_id=project_id,
        from_state=from_state,
        to_state=to_state,
        actor_id=actor_id,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


def log_conflict_detection(
    exclude_project_id: Optional[UUID],
    conflicting_project_ids: Iterable[UUID],
    moratorium_ids: Iterable[UUID],
    duration_ms: float
) -> None:
    conflicting = [str(i) for i in conflicting_project_ids]
    moratoriums = [str(i) for i in moratorium_ids]
    get_logger("conflict_detection").info(
        "conflicts_detected" if conflicting or moratoriums else "no_conflicts_detected",
        project_id=_id(exclude_project_id),
        conflicting_project_ids=conflicting,
        moratorium_ids=moratoriums,
        duration_ms=round(duration_ms, 2),
    )


def log_graph_update(
    project_id: UUID,
    has_conflict: bool,
    newly_linked: Iterable[UUID],
    already_linked: Iterable[UUID],
    failed: Iterable[UUID]
) -> None:
    """
    Summarise one application of a detection result to the conflict graph.

    Failed counterparts are logged at WARNING since the graph stays
    asymmetric until the next detection run for them.
    """
    failed = [str(i) for i in failed]
    logger = get_logger("conflict_graph")
    log_func = logger.warning if failed else logger.info
    log_func(
        "conflict_graph_updated",
        project_id=str(project_id),
        has_conflict=has_conflict,
        newly_linked=[str(i) for i in newly_linked],
        already_linked=len(list(already_linked)),
        failed=failed,
    )


def log_error(
    error: Exception,
    context: dict | None = None,
    level: str = "ERROR"
) -> None:
    """Log an exception with its context and stack trace."""
    logger = get_logger("error_handler")
    log_func = getattr(logger, level.lower(), logger.error)

    log_data = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    to_dict = getattr(error, "to_dict", None)
    if callable(to_dict):
        log_data["error_details"] = to_dict()["error"].get("details")

    if context:
        log_data.update(context)

    log_func("error_occurred", **log_data, exc_info=error)


def http_request_summary(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    request_id: Optional[str] = None
) -> None:
    logger = get_logger("http")
    log_func = logger.warning if status_code >= 500 else logger.info
    log_func(
        "http_request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
        request_id=request_id,
    )


setup_logging(level=LOG_LEVEL, json_logs=JSON_LOGS)

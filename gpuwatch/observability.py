"""Observability sink for unhandled failures and operational warnings.

Everything goes through stdlib logging (JSON file handlers pick it up) and
Prometheus counters so dashboards can alert on it.
"""

import logging

from gpuwatch import metrics

logger = logging.getLogger("gpuwatch.observability")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def capture_exception(error: BaseException, component: str = "pipeline", **context) -> None:
    """
    Report an exception with structured context.

    Args:
        error: The exception to report
        component: Subsystem label for the metrics counter
        **context: Extra fields attached to the log record (job id, source, ...)
    """
    metrics.captured_exceptions_total.labels(component=component).inc()
    logger.error(
        "Captured exception in %s: %s",
        component,
        error,
        exc_info=(type(error), error, error.__traceback__),
        extra={"component": component, **context},
    )


def capture_message(text: str, level: str = "info", **context) -> None:
    """
    Report an operational message (e.g. stale data warning).

    Args:
        text: Message text
        level: debug | info | warning | error | fatal
        **context: Extra fields attached to the log record
    """
    level = level.lower()
    metrics.captured_messages_total.labels(level=level).inc()
    logger.log(_LEVELS.get(level, logging.INFO), text, extra=context)

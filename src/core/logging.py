"""Logfire setup and the tracing helpers used by the negotiation engine and service.

Modules log through `logging.getLogger(__name__)`; once `configure_logfire`
has run, those records and the spans below are shipped with the settings'
service name and environment.
"""

import logging

import logfire

from src.core.config import Settings, settings


def configure_logfire(config: Settings | None = None) -> None:
    """One-time setup for the host process. Nothing is sent without a token."""
    config = config or settings
    logfire.configure(
        token=config.logfire_token,
        service_name=config.service_name,
        environment=config.environment,
        send_to_logfire="if-token-present",
    )
    logging.getLogger(__name__).info(
        "Logfire configured for %s", config.service_name, extra={"environment": config.environment}
    )


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Trace one engine or service call, e.g. span("negotiation_engine.accept_cost", task_id=...)."""
    return logfire.span(name, **attributes)


def log_with_task_context(
    logger: logging.Logger,
    level: str,
    message: str,
    task_id: str | None = None,
    **fields: object,
) -> None:
    """Log with the task id and any extra fields attached as structured attributes.

    `task_id` is left off the record when not given, so sweeps over many tasks
    can log a summary line through the same helper.
    """
    context = {"task_id": task_id, **fields} if task_id else fields
    getattr(logger, level.lower())(message, extra=context)

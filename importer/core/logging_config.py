"""
Logging setup for importer runs.

Modules log through ``logging.getLogger(__name__)``. A structlog
ProcessorFormatter on the single root handler renders every record:
console lines in development, JSON lines everywhere else.

Logs go to stderr so the CLI's progress lines and summary on stdout
stay readable when both share a terminal.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from importer.config import AppEnv

# Request-level chatter from client libraries drowns out pipeline progress.
NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "PIL")


def _use_json(app_env: AppEnv, log_format: str) -> bool:
    if log_format in ("json", "console"):
        return log_format == "json"
    return app_env != AppEnv.DEVELOPMENT


def _pre_chain() -> list[Processor]:
    """Processors applied to every record, whether from stdlib or structlog."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _render_chain(use_json: bool) -> list[Processor]:
    if use_json:
        return [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    return [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
    ]


def setup_logging(
    app_env: AppEnv,
    log_level: str = "INFO",
    log_format: str = "auto",
) -> None:
    """
    Route all logging through one structlog-formatted stderr handler.

    Args:
        app_env: Picks the renderer when ``log_format`` is ``"auto"``.
        log_level: Root level name; unknown names fall back to INFO.
        log_format: ``"json"``, ``"console"`` or ``"auto"``.
    """
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=_render_chain(_use_json(app_env, log_format)),
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_item_context(item_id: str) -> None:
    """Tag every following log line in this task with the marketplace item id."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(item_id=item_id)


def current_item_id() -> str | None:
    return structlog.contextvars.get_contextvars().get("item_id")

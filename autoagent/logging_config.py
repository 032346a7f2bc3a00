"""Logging setup for autoagent.

Modules log through ``structlog.get_logger("autoagent.<subsystem>")``.
Underneath those are ordinary stdlib loggers, so routing is done with
stdlib handlers:

    autoagent.agent     agent.log      run loop, store, work units
    autoagent.gateway   gateway.log    provider requests and failures
    autoagent.messages  messages.log   feed sends and updates

Every event also propagates to ``autoagent.log`` and to stderr. Events
are rendered by a ``ProcessorFormatter`` on each handler, so the file
output stays plain while the terminal gets colors.
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Dict, List

import structlog

SUBSYSTEMS = ("agent", "gateway", "messages")

LOGGER_PREFIX = "autoagent"

_REDACTED = "***REDACTED***"

# Provider keys (the caller's custom_api_key) and the gateway's auth header
_SECRET_PATTERN = re.compile(r"sk-[A-Za-z0-9_-]{20,}|Bearer\s+[A-Za-z0-9_./-]{20,}")


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return _SECRET_PATTERN.sub(_REDACTED, value)
    if isinstance(value, dict):
        return {k: _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that redacts API keys anywhere in an event."""
    return {key: _scrub(value) for key, value in event_dict.items()}


_SHARED_PROCESSORS = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    sanitize_secrets,
]


def _formatter(colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
    )


def _level(name: Any, default: int) -> int:
    value = logging.getLevelName(str(name).upper())
    return value if isinstance(value, int) else default


def _replace_handlers(logger: logging.Logger, handlers: List[logging.Handler]) -> None:
    for old in logger.handlers:
        old.close()
    logger.handlers[:] = handlers


def setup_logging(config=None) -> None:
    """Route autoagent logging to stderr and rotating files.

    ``main`` calls this twice: first without a config so startup events
    are visible, then with the loaded ``Config``, which swaps in the
    configured directory, levels and rotation sizes. Logger caching is
    only turned on by the second call.

    A log directory that cannot be created leaves console-only logging.
    """
    if config is not None:
        log_dir = Path(config.log_dir)
        level = _level(config.logging_level, logging.INFO)
        overrides = config.logging_subsystem_levels or {}
        max_bytes = config.logging_max_file_size_mb * 1024 * 1024
        backup_count = config.logging_backup_count
    else:
        log_dir = Path(__file__).parent.parent / "logs"
        level = logging.INFO
        overrides = {}
        max_bytes = 10 * 1024 * 1024
        backup_count = 5

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        writable = True
    except OSError as exc:
        writable = False
        print(f"WARNING: cannot create log directory {log_dir}: {exc}", file=sys.stderr)

    def rotating(filename: str, file_level: int) -> List[logging.Handler]:
        if not writable:
            return []
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(file_level)
        handler.setFormatter(_formatter(colors=False))
        return [handler]

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(_formatter(colors=sys.stderr.isatty()))
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers[:] = [console]

    package = logging.getLogger(LOGGER_PREFIX)
    package.setLevel(logging.DEBUG)
    _replace_handlers(package, rotating(f"{LOGGER_PREFIX}.log", level))

    for subsystem in SUBSYSTEMS:
        sub_level = _level(overrides.get(subsystem, ""), level)
        sub_logger = logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}")
        sub_logger.setLevel(sub_level)
        sub_logger.propagate = True
        _replace_handlers(sub_logger, rotating(f"{subsystem}.log", sub_level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_SHARED_PROCESSORS,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )

"""
Logging infrastructure for ContentGuard.

Provides:
- JSON-lines file output with request context and classified-error fields
- Rich console output that tags each line with the credential and operation
- Contextual logging bound to a credential/resource/operation

Modules attach a failure with ``extra={"error": classified_error}``; both
handlers expand it into kind, HTTP status, attempts and retry-after.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson

from contentguard.core.config.models import LoggingConfig
from contentguard.core.resilience.errors import ClassifiedError

if TYPE_CHECKING:
    from rich.console import Console

ROOT_LOGGER = "contentguard"

# Request context copied from record extras
CONTEXT_FIELDS = ("credential", "resource", "operation", "attempt", "max_attempts")

LEVEL_STYLES = {
    logging.DEBUG: "dim",
    logging.INFO: "default",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def record_error(record: logging.LogRecord) -> ClassifiedError | None:
    """The classified error attached to a record, if any."""
    error = getattr(record, "error", None)
    if isinstance(error, ClassifiedError):
        return error
    if record.exc_info and isinstance(record.exc_info[1], ClassifiedError):
        return record.exc_info[1]
    return None


def error_fields(error: ClassifiedError) -> dict[str, Any]:
    """Structured view of a classified error. Never includes credentials."""
    return {
        "kind": error.kind.value,
        "http_status": error.http_status,
        "retryable": error.retryable,
        "attempts": error.attempts,
        "retry_after_seconds": error.retry_after_seconds,
        "error_code": error.error_code,
    }


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


# =============================================================================
# JSON Formatter for File Logging
# =============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per record: message, request context, error fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **context_fields(record),
        }

        error = record_error(record)
        if error is not None:
            entry["error"] = error_fields(error)
        if record.exc_info and error is None:
            entry["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(entry, default=str).decode("utf-8")


# =============================================================================
# Rich Console Handler
# =============================================================================


def describe_error(error: ClassifiedError) -> str:
    """Short suffix such as ``rate_limit, HTTP 429, 2 attempt(s), retry in 30.0s``."""
    parts = [error.kind.value]
    if error.http_status is not None:
        parts.append(f"HTTP {error.http_status}")
    if error.attempts:
        parts.append(f"{error.attempts} attempt(s)")
    if error.retry_after_seconds is not None:
        parts.append(f"retry in {error.retry_after_seconds:.1f}s")
    return ", ".join(parts)


class RichConsoleHandler(logging.Handler):
    """Console handler tagging lines with ``credential resource:operation``."""

    def __init__(self, console: "Console | None" = None, level: int = logging.INFO):
        super().__init__(level)
        if console is None:
            from rich.console import Console
            console = Console(stderr=True)
        self.console = console

    def render(self, record: logging.LogRecord) -> str:
        from rich.markup import escape

        style = LEVEL_STYLES.get(record.levelno, "default")
        context = context_fields(record)

        tags = []
        if "credential" in context:
            tags.append(f"[magenta]{escape(str(context['credential']))}[/magenta]")
        if "resource" in context and "operation" in context:
            tags.append(f"[cyan]{escape(context['resource'])}:{escape(context['operation'])}[/cyan]")

        line = escape(self.format(record))
        error = record_error(record)
        if error is not None:
            line = f"{line} [dim]({escape(describe_error(error))})[/dim]"

        prefix = " ".join(tags)
        return f"{prefix} [{style}]{line}[/{style}]" if prefix else f"[{style}]{line}[/{style}]"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.console.print(self.render(record), markup=True, highlight=False)
            if record.exc_info and record_error(record) is None:
                self.console.print_exception()
        except Exception:
            self.handleError(record)


# =============================================================================
# Logger Configuration
# =============================================================================


def _console_handler(level: int, rich_console: bool) -> logging.Handler:
    if rich_console:
        handler: logging.Handler = RichConsoleHandler(level=level)
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        handler.setLevel(level)
    return handler


def _file_handler(log_file: Path | str, json_format: bool) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path, encoding="utf-8")
    # The file keeps everything; the console follows the configured level
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )
    return handler


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    json_format: bool = True,
    rich_console: bool = True,
) -> logging.Logger:
    """Configure the ``contentguard`` logger tree.

    Replaces any handlers installed by an earlier call.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional file receiving every record
        json_format: Write the file as JSON lines
        rich_console: Use Rich for console output

    Returns:
        The ``contentguard`` logger
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_console_handler(numeric_level, rich_console))
    if log_file:
        logger.addHandler(_file_handler(log_file, json_format))

    return logger


def setup_logging_from_config(config: LoggingConfig) -> logging.Logger:
    """Set up logging from the `logging` section of the app config."""
    return setup_logging(
        level=config.level,
        log_file=config.file,
        json_format=config.json_format,
        rich_console=config.rich_console,
    )


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger under the ``contentguard.`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


# =============================================================================
# Contextual Logging Adapter
# =============================================================================


class ContextualLogger(logging.LoggerAdapter):
    """Logger adapter bound to one request's credential/resource/operation.

    Only the credential *identity* is attached, never a token. Extras
    passed on a call are kept and win over the bound context.
    """

    def __init__(
        self,
        logger: logging.Logger,
        credential: str | None = None,
        resource: str | None = None,
        operation: str | None = None,
    ):
        context = {"credential": credential, "resource": resource, "operation": operation}
        super().__init__(logger, {k: v for k, v in context.items() if v})

    @property
    def credential(self) -> str | None:
        return self.extra.get("credential")

    @property
    def resource(self) -> str | None:
        return self.extra.get("resource")

    @property
    def operation(self) -> str | None:
        return self.extra.get("operation")

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def with_context(
        self,
        credential: str | None = None,
        resource: str | None = None,
        operation: str | None = None,
    ) -> "ContextualLogger":
        """Derive a logger, replacing only the fields given."""
        return ContextualLogger(
            self.logger,
            credential=credential or self.credential,
            resource=resource or self.resource,
            operation=operation or self.operation,
        )


def get_contextual_logger(
    name: str | None = None,
    credential: str | None = None,
    resource: str | None = None,
    operation: str | None = None,
) -> ContextualLogger:
    """Contextual logger under ``contentguard.<name>``."""
    return ContextualLogger(
        get_logger(name),
        credential=credential,
        resource=resource,
        operation=operation,
    )

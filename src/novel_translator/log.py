"""Structured logging setup for the CLI and API server."""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import structlog

VERBOSITY_LEVELS = {-1: logging.WARNING, 1: logging.DEBUG}

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "uvicorn.access", "multipart")


def resolve_level(verbosity: int = 0, default: str = "INFO") -> int:
    """Pick the root log level.

    ``-v``/``-q`` win over the configured ``LOG_LEVEL``; an unknown level
    name falls back to INFO.
    """
    if verbosity in VERBOSITY_LEVELS:
        return VERBOSITY_LEVELS[verbosity]
    level = logging.getLevelName(default.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(
    verbosity: int = 0,
    log_file: Optional[Path] = None,
    default_level: str = "INFO",
) -> None:
    """Route structlog through stdlib logging.

    Args:
        verbosity: -1=quiet, 0=use ``default_level``, 1=verbose
        log_file: Optional path that receives every record as a JSON line
        default_level: Level name used when no verbosity flag is given
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolve_level(verbosity, default_level))

    # stderr keeps rich progress output on stdout intact
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
            ],
            foreign_pre_chain=pre_chain,
        )
    )
    root.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(ensure_ascii=False),
                ],
                foreign_pre_chain=pre_chain,
            )
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
        # Root must let DEBUG through for the file; console keeps the chosen level
        console.setLevel(root.level)
        root.setLevel(logging.DEBUG)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def run_context(project_id: str, job_id: Optional[str] = None, kind: str = "") -> Iterator[None]:
    """Attach project and job ids to every log line emitted inside the block."""
    fields = {"project": project_id}
    if job_id:
        fields["job"] = job_id
    if kind:
        fields["run"] = kind
    with structlog.contextvars.bound_contextvars(**fields):
        yield

from fastapi import Request
import logging
from typing import Any
from rich.logging import RichHandler
from downly.config.settings import config

logger = logging.getLogger("downly.request")

def setup_logging() -> None:
    """Install the root handler according to config.logging"""
    handlers: list[logging.Handler]
    if config.logging.enable_rich:
        handlers = [RichHandler(rich_tracebacks=True, show_path=False)]
    else:
        handlers = [logging.StreamHandler()]

    logging.basicConfig(
        level=config.logging.level,
        format=config.logging.format,
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )

def log_with_context(
    request: Request,
    level: int,
    message: str,
    **kwargs: Any
) -> None:
    """
    Log with request context.
    Automatically includes request_id for tracing.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    extra = {
        "request_id": request_id,
        **kwargs
    }
    logger.log(level, f"[{request_id}] {message}", extra=extra)

def log_info(request: Request, message: str, **kwargs: Any) -> None:
    log_with_context(request, logging.INFO, message, **kwargs)

def log_error(request: Request, message: str, **kwargs: Any) -> None:
    log_with_context(request, logging.ERROR, message, **kwargs)

def log_warning(request: Request, message: str, **kwargs: Any) -> None:
    log_with_context(request, logging.WARNING, message, **kwargs)

def log_debug(request: Request, message: str, **kwargs: Any) -> None:
    log_with_context(request, logging.DEBUG, message, **kwargs)

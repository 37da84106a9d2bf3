"""Logging configuration for mgmtcraft.

Provides:
- Console output plus a rotating log file
- A separate performance logger timing every management round trip

Environment Variables:
    MGMTCRAFT_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    MGMTCRAFT_LOG_FILE: Path to log file (default: ~/.mgmtcraft/mgmtcraft.log)
    MGMTCRAFT_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    MGMTCRAFT_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from mcp_app_server.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("connect")
    async def connect(self):
        ...

    async with timed_section("add_resource", server_id="local", address="/subsystem=jca"):
        ...
"""
import inspect
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Timing logger, kept apart from the main logger for easy filtering
perf_logger = logging.getLogger("mgmtcraft.perf")

PACKAGE_LOGGER = "mcp_app_server"


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("MGMTCRAFT_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    default_path = Path.home() / ".mgmtcraft" / "mgmtcraft.log"
    return Path(os.environ.get("MGMTCRAFT_LOG_FILE", str(default_path)))


def setup_logging(console: bool = True) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (respects MGMTCRAFT_LOG_LEVEL), stderr only
    - File handler with rotation at DEBUG level
    - Performance file handler for timing lines

    Args:
        console: Attach the console handler (the CLI prints its own report)
    """
    log_level = get_log_level()
    log_file = get_log_file()
    max_size_mb = int(os.environ.get("MGMTCRAFT_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("MGMTCRAFT_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-40s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    handlers: list[logging.Handler] = []
    if console:
        # stderr, stdout belongs to the MCP stdio transport
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(main_format)
        handlers.append(console_handler)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)
    handlers.append(file_handler)

    perf_log_file = log_file.parent / "mgmtcraft-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    # Calling again replaces the handlers of the previous call
    _close_handlers(package_logger)
    _close_handlers(perf_logger)

    package_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    for handler in handlers:
        package_logger.addHandler(handler)

    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(perf_handler)

    package_logger.info(
        f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}"
    )


def _close_handlers(target: logging.Logger) -> None:
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()


def _perf_line(operation: str, server_id: Optional[str], elapsed: float, status: str) -> str:
    return f"{operation:20s} | {server_id or 'N/A':15s} | {elapsed:8.2f}ms | {status}"


def timed(operation: str, server_id: Optional[str] = None):
    """Decorator logging the execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "connect", "execute")
        server_id: Server identifier, inferred from ``self.server_id`` if omitted
    """
    def decorator(func: Callable) -> Callable:
        def resolve_server(args: tuple) -> Optional[str]:
            if server_id is None and args and hasattr(args[0], "server_id"):
                return args[0].server_id
            return server_id

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            srv = resolve_server(args)
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, srv, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_perf_line(operation, srv, elapsed, "OK"))
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            srv = resolve_server(args)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(_perf_line(operation, srv, elapsed, f"FAIL: {e}"))
                raise
            elapsed = (time.perf_counter() - start) * 1000
            perf_logger.info(_perf_line(operation, srv, elapsed, "OK"))
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, server_id: Optional[str] = None, **extra):
    """Async context manager timing a code section.

    Args:
        operation: Name of the operation
        server_id: Server identifier
        **extra: Additional context to log
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items())

    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = _perf_line(operation, server_id, elapsed, f"FAIL: {e}")
        perf_logger.warning(f"{msg} | {extra_str}" if extra_str else msg)
        raise

    elapsed = (time.perf_counter() - start) * 1000
    msg = _perf_line(operation, server_id, elapsed, "OK")
    perf_logger.info(f"{msg} | {extra_str}" if extra_str else msg)

"""Runtime monitoring and logging helpers for patchmanager."""

from __future__ import annotations

import faulthandler
import logging
import sys
import threading
import time
import traceback
from datetime import date
from pathlib import Path
from typing import Callable, Optional

LOGGER_NAME = "patchmanager"

_INITIALIZED = False
_FAULT_HANDLER_FILE = None
_SESSION_LOG_DATE: Optional[date] = None
_EVENT_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _default_log_path() -> Path:
    from .shared_config import LOGS_DIR

    base = Path(LOGS_DIR)
    base.mkdir(parents=True, exist_ok=True)
    session_day = _SESSION_LOG_DATE or date.today()
    return base / f"runtime-{session_day.isoformat()}.log"


def _formatter() -> logging.Formatter:
    return logging.Formatter(fmt=_EVENT_FORMAT, datefmt=_DATE_FORMAT)


def setup_runtime_monitor(app_name: str = LOGGER_NAME) -> logging.Logger:
    """Initialize global runtime monitoring/logging once per process."""
    global _INITIALIZED, _SESSION_LOG_DATE, _FAULT_HANDLER_FILE
    logger = logging.getLogger(app_name)

    if _INITIALIZED:
        return logger

    logger.setLevel(logging.INFO)
    logger.propagate = False

    if _SESSION_LOG_DATE is None:
        _SESSION_LOG_DATE = date.today()

    log_path = _default_log_path()
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(_formatter())
    logger.addHandler(file_handler)

    # low-level crash dumps to a dedicated file
    crash_log = log_path.with_name("crash.log")
    _FAULT_HANDLER_FILE = crash_log.open("a", encoding="utf-8")
    faulthandler.enable(file=_FAULT_HANDLER_FILE)

    logger.info("Runtime monitor initialized")
    logger.info("Log file: %s", log_path)

    _install_exception_hooks(logger)

    _INITIALIZED = True
    return logger


def setup_monitoring(log_file: Optional[str] = None, echo: bool = False) -> logging.Logger:
    """(Re)configure the event logger for CLI runs.

    Replaces handlers installed by a previous call so tests and repeated
    CLI invocations write to the file they ask for.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, "_patchmanager_owned", False):
            logger.removeHandler(handler)
            handler.close()

    path = Path(log_file) if log_file else _default_log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    already_logged = any(
        isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path.resolve()
        for h in logger.handlers
    )
    if not already_logged:
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(_formatter())
        file_handler._patchmanager_owned = True
        logger.addHandler(file_handler)

    if echo:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(_formatter())
        stream_handler._patchmanager_owned = True
        logger.addHandler(stream_handler)

    return logger


def log_event(event: str, message: str, level: int = logging.INFO) -> None:
    """Write a structured ``event | message`` record."""
    logging.getLogger(LOGGER_NAME).log(level, "%s | %s", event, message)


def tail_events(log_file: Optional[str] = None, poll_interval: float = 0.5) -> None:
    """Follow the event log and print new lines until interrupted."""
    path = Path(log_file) if log_file else _default_log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    print(f"Tailing {path} (Ctrl+C to stop)")
    try:
        with path.open("r", encoding="utf-8") as fh:
            fh.seek(0, 2)
            while True:
                line = fh.readline()
                if line:
                    print(line, end="")
                else:
                    time.sleep(poll_interval)
    except KeyboardInterrupt:
        pass


def _install_exception_hooks(logger: logging.Logger) -> None:
    def _print_to_terminal(exc_type, exc_value, exc_tb, *, prefix: str | None = None) -> None:
        stream = getattr(sys, "__stderr__", None) or sys.stderr
        if stream is None:
            return
        if prefix:
            print(prefix, file=stream)
        traceback.print_exception(exc_type, exc_value, exc_tb, file=stream)
        stream.flush()

    def _sys_hook(exc_type, exc_value, exc_tb):
        if exc_type and issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))
        _print_to_terminal(exc_type, exc_value, exc_tb, prefix="[patchmanager] Unhandled exception")

    def _thread_hook(args: threading.ExceptHookArgs):
        thread_name = args.thread.name if args.thread else "<unknown>"
        logger.critical(
            "Unhandled thread exception in %s",
            thread_name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        _print_to_terminal(
            args.exc_type,
            args.exc_value,
            args.exc_traceback,
            prefix=f"[patchmanager] Unhandled thread exception ({thread_name})",
        )

    sys.excepthook = _sys_hook
    threading.excepthook = _thread_hook


def monitor_action(action: str, *, logger: Optional[logging.Logger] = None) -> None:
    """Emit a real-time action event."""
    (logger or logging.getLogger(LOGGER_NAME)).info("action: %s", action)


def start_monitored_thread(
    target: Callable[[], None],
    *,
    name: str,
    logger: Optional[logging.Logger] = None,
    daemon: bool = True,
) -> threading.Thread:
    """Start a thread that logs start/end and never fails silently."""
    log = logger or logging.getLogger(LOGGER_NAME)

    def _wrapped():
        log.info("thread start: %s", name)
        started = time.time()
        try:
            target()
            log.info("thread end: %s (%.2fs)", name, time.time() - started)
        except Exception:
            log.exception("thread crash: %s", name)
            raise

    th = threading.Thread(target=_wrapped, name=name, daemon=daemon)
    th.start()
    return th
